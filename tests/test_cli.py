from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest
import yaml

from overseer import cli
from overseer.config import load_config
from overseer.models import SupervisorState
from overseer.scheduler import Scheduler
from overseer.state import StateStore


@pytest.fixture(autouse=True)
def _quiet_process_hooks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(Scheduler, "install_signal_handlers", lambda self: None)
    monkeypatch.setattr(cli, "add_file_logging", lambda log_dir: None)
    monkeypatch.setattr(cli, "setup_logging", lambda: None)


def _write_config(tmp_path: Path, **overrides: object) -> Path:
    payload = {
        "interval_hours": 6,
        "retry_delay_ms": 0,
        "max_retries": 2,
        "command": "{python} jobs/{name}.py",
        "jobs": [{"name": "A"}, {"name": "B"}, {"name": "C", "enabled": False}],
    }
    payload.update(overrides)
    path = tmp_path / "overseer.yaml"
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def test_validate_prints_summary(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = _write_config(tmp_path)
    assert cli.main(["--config", str(config_path), "validate"]) == 0
    output = capsys.readouterr().out
    assert "Config valid" in output
    assert "Enabled jobs: 2" in output
    assert "- C: disabled" in output


def test_invalid_config_exits_with_one(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, jobs=[])
    assert cli.main(["validate", "--config", str(config_path)]) == 1
    assert cli.main(["start", "--config", str(config_path)]) == 1


def test_run_then_status(
    tmp_path: Path, write_script: Callable[[str, str], Path], capsys: pytest.CaptureFixture[str]
) -> None:
    write_script("jobs/A.py", "print('A ok')\n")
    write_script("jobs/B.py", "raise SystemExit(4)\n")
    config_path = _write_config(tmp_path)

    assert cli.main(["run", "--config", str(config_path)]) == 1
    capsys.readouterr()

    assert cli.main(["status", "--config", str(config_path), "--limit", "1"]) == 0
    output = capsys.readouterr().out
    assert "Runs recorded: 1" in output
    assert " partial " in output
    assert "- A: ok attempt=1" in output
    assert "- B: FAILED attempt=2 (Failed after 2 attempts: Exited with code 4)" in output


def test_run_single_job(tmp_path: Path, write_script: Callable[[str, str], Path]) -> None:
    write_script("jobs/A.py", "print('A ok')\n")
    config_path = _write_config(tmp_path)
    assert cli.main(["run", "--config", str(config_path), "--job", "A"]) == 0
    assert cli.main(["run", "--config", str(config_path), "--job", "C"]) == 1
    assert cli.main(["run", "--config", str(config_path), "--job", "Z"]) == 1


def test_status_marks_next_run_as_estimate(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = _write_config(tmp_path)
    store = StateStore(load_config(config_path).state_path)
    store.save(SupervisorState(next_scheduled_run=datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)))

    assert cli.main(["status", "--config", str(config_path)]) == 0
    output = capsys.readouterr().out
    assert "Next scheduled run: 2026-03-01T18:00:00" in output
    assert "(estimated as last run end + 6h)" in output
