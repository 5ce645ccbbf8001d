from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Callable

import pytest

from overseer.models import REASON_INACTIVITY
from overseer.orchestrator import RunOrchestrator, generate_run_id
from overseer.retry import RetryController


def test_partial_run_excludes_disabled_jobs_and_retries_failures(
    tmp_path: Path, make_ctx, write_script: Callable[[str, str], Path]
) -> None:
    attempts_log = tmp_path / "attempts.txt"
    write_script("jobs/A.py", "print('A ok', flush=True)\n")
    write_script(
        "jobs/B.py",
        (
            "from pathlib import Path\n"
            f"log = Path({str(attempts_log)!r})\n"
            "log.write_text((log.read_text() if log.exists() else '') + 'B\\n')\n"
            "raise SystemExit(1)\n"
        ),
    )
    write_script("jobs/C.py", "raise SystemExit('C must never run')\n")
    ctx = make_ctx(
        [{"name": "A"}, {"name": "B"}, {"name": "C", "enabled": False}],
        max_retries=3,
    )

    record = RunOrchestrator(ctx).run()

    assert [result.job_name for result in record.jobs_processed] == ["A", "B"]
    assert record.status == "partial"
    a_result, b_result = record.jobs_processed
    assert a_result.success is True
    assert a_result.attempt == 1
    assert b_result.success is False
    assert b_result.attempt == 3
    assert b_result.exit_code == 1
    assert attempts_log.read_text().splitlines() == ["B", "B", "B"]

    persisted = json.loads(ctx.config.state_path.read_text(encoding="utf-8"))
    assert persisted["is_running"] is False
    assert persisted["current_job"] is None
    assert persisted["run_history"][0]["run_id"] == record.run_id
    assert persisted["run_history"][0]["status"] == "partial"
    assert persisted["last_run_end_time"] is not None


def test_all_failed_and_all_succeeded_statuses(make_ctx, fake_launcher) -> None:
    ctx = make_ctx([{"name": "A"}, {"name": "B"}], max_retries=1)
    assert RunOrchestrator(ctx, RetryController(ctx, fake_launcher({"A": [1], "B": [2]}))).run().status == "failed"
    assert RunOrchestrator(ctx, RetryController(ctx, fake_launcher({"A": [0], "B": [0]}))).run().status == "completed"
    assert [record.status for record in ctx.state.run_history] == ["completed", "failed"]


def test_state_is_persisted_before_each_job_starts(make_ctx, fake_launcher) -> None:
    ctx = make_ctx([{"name": "A"}, {"name": "B"}])
    snapshots = []

    def observe(name: str, attempt: int) -> None:
        on_disk = json.loads(ctx.config.state_path.read_text(encoding="utf-8"))
        snapshots.append((name, on_disk["is_running"], on_disk["current_job"]))

    RunOrchestrator(ctx, RetryController(ctx, fake_launcher({}, on_launch=observe))).run()
    assert snapshots == [("A", True, "A"), ("B", True, "B")]


def test_shutdown_stops_launching_further_jobs(make_ctx, fake_launcher) -> None:
    ctx = make_ctx([{"name": "A"}, {"name": "B"}, {"name": "C"}])
    launcher = fake_launcher({}, on_launch=lambda name, attempt: ctx.shutdown.request("SIGINT"))
    record = RunOrchestrator(ctx, RetryController(ctx, launcher)).run()
    assert launcher.calls == [("A", 1)]
    assert [result.job_name for result in record.jobs_processed] == ["A"]
    assert record.jobs_processed[0].success is True
    assert ctx.state.is_running is False


def test_history_keeps_newest_hundred_runs(make_ctx, fake_launcher) -> None:
    ctx = make_ctx([{"name": "A"}])
    orchestrator = RunOrchestrator(ctx, RetryController(ctx, fake_launcher({})))
    run_ids = [orchestrator.run().run_id for _ in range(101)]

    reloaded = ctx.store.load()
    assert len(reloaded.run_history) == 100
    assert [record.run_id for record in reloaded.run_history] == list(reversed(run_ids[1:]))
    assert run_ids[0] not in {record.run_id for record in reloaded.run_history}


@pytest.mark.skipif(os.name != "posix", reason="needs SIGTERM semantics")
def test_stalled_job_is_killed_and_counted_as_failure(
    tmp_path: Path, make_ctx, write_script: Callable[[str, str], Path]
) -> None:
    write_script(
        "jobs/stuck.py",
        "import signal, time\nsignal.signal(signal.SIGTERM, signal.SIG_IGN)\ntime.sleep(60)\n",
    )
    ctx = make_ctx(
        [{"name": "stuck"}],
        max_retries=1,
        inactivity_timeout_ms=800,
        liveness_check_interval_ms=50,
        kill_grace_ms=300,
    )
    record = RunOrchestrator(ctx).run()
    result = record.jobs_processed[0]
    assert record.status == "failed"
    assert result.success is False
    assert result.failure_reason == REASON_INACTIVITY
    assert result.exit_code == -9
    assert "without output" in (result.error_message or "")


def test_run_ids_are_unique() -> None:
    ids = {generate_run_id() for _ in range(200)}
    assert len(ids) == 200
    assert all(run_id.startswith("run_") for run_id in ids)
