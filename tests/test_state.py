from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

from overseer.models import (
    REASON_INACTIVITY,
    JobRunResult,
    RunRecord,
    SupervisorState,
    classify_run,
)
from overseer.state import StateStore

UTC = timezone.utc
T0 = datetime(2026, 3, 1, 6, 0, 0, 123456, tzinfo=UTC)


def _result(name: str, success: bool, attempt: int = 1) -> JobRunResult:
    return JobRunResult(
        job_name=name,
        success=success,
        start_time=T0,
        end_time=T0 + timedelta(seconds=42),
        duration_ms=42_000,
        exit_code=0 if success else -15,
        error_message=None if success else "Killed after 10m 0s without output (exit code -15)",
        attempt=attempt,
        failure_reason=None if success else REASON_INACTIVITY,
    )


def _record(run_id: str, offset_minutes: int = 0) -> RunRecord:
    start = T0 + timedelta(minutes=offset_minutes)
    results = [_result("S62", True), _result("S63", False, attempt=3)]
    return RunRecord(
        run_id=run_id,
        start_time=start,
        end_time=start + timedelta(minutes=1),
        duration_ms=60_000,
        jobs_processed=results,
        status=classify_run(results),
    )


def test_missing_state_file_yields_default(tmp_path: Path) -> None:
    state = StateStore(tmp_path / "scheduler_state.json").load()
    assert state == SupervisorState()
    assert state.is_running is False
    assert state.run_history == []


def test_corrupt_state_file_is_not_fatal(tmp_path: Path) -> None:
    path = tmp_path / "scheduler_state.json"
    path.write_text("{not json", encoding="utf-8")
    assert StateStore(path).load() == SupervisorState()

    path.write_text(json.dumps({"run_history": [{"run_id": "x"}]}), encoding="utf-8")
    assert StateStore(path).load() == SupervisorState()

    path.write_text(json.dumps(["a", "list"]), encoding="utf-8")
    assert StateStore(path).load() == SupervisorState()


def test_save_then_load_round_trips_every_field(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "nested" / "scheduler_state.json")
    state = SupervisorState(
        last_run_start_time=T0,
        last_run_end_time=T0 + timedelta(minutes=1),
        next_scheduled_run=T0 + timedelta(hours=6),
        is_running=True,
        current_job="S63",
        run_history=[_record("run_2", 360), _record("run_1")],
    )
    assert store.save(state) is True
    assert store.load() == state


def test_save_rewrites_the_whole_document(tmp_path: Path) -> None:
    path = tmp_path / "scheduler_state.json"
    store = StateStore(path)
    store.save(SupervisorState(run_history=[_record("run_1")], current_job="S62"))
    store.save(SupervisorState())
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["run_history"] == []
    assert payload["current_job"] is None
    assert not (tmp_path / "scheduler_state.json.tmp").exists()


def test_save_failure_is_reported_not_raised(tmp_path: Path) -> None:
    blocked = tmp_path / "scheduler_state.json"
    blocked.mkdir()
    assert StateStore(blocked).save(SupervisorState()) is False


def test_load_accepts_javascript_style_timestamps(tmp_path: Path) -> None:
    path = tmp_path / "scheduler_state.json"
    path.write_text(
        json.dumps({"last_run_start_time": "2026-03-01T06:00:00.000Z", "is_running": False}),
        encoding="utf-8",
    )
    state = StateStore(path).load()
    assert state.last_run_start_time == datetime(2026, 3, 1, 6, 0, tzinfo=UTC)


def test_history_is_bounded_newest_first() -> None:
    state = SupervisorState()
    for idx in range(101):
        state.record_run(_record(f"run_{idx}", idx), limit=100)
    assert len(state.run_history) == 100
    assert state.run_history[0].run_id == "run_100"
    assert state.run_history[-1].run_id == "run_1"
    assert all(record.run_id != "run_0" for record in state.run_history)


def test_classify_run() -> None:
    assert classify_run([_result("a", True), _result("b", True)]) == "completed"
    assert classify_run([_result("a", False), _result("b", False)]) == "failed"
    assert classify_run([_result("a", True), _result("b", False)]) == "partial"
    assert classify_run([]) == "completed"
