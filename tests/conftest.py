from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from overseer.config import JobSpec, ScheduleConfig, parse_config
from overseer.context import SupervisorContext
from overseer.process import ProcessOutcome


class FakeLauncher:
    """Stands in for JobLauncher: returns scripted exit codes per job."""

    def __init__(self, exit_codes: Dict[str, List[int]], on_launch: Optional[Callable[[str, int], None]] = None):
        self.exit_codes = {name: list(codes) for name, codes in exit_codes.items()}
        self.on_launch = on_launch
        self.calls: List[tuple] = []

    def __call__(self, job: JobSpec, run_id: str, attempt: int) -> ProcessOutcome:
        self.calls.append((job.name, attempt))
        if self.on_launch:
            self.on_launch(job.name, attempt)
        codes = self.exit_codes.get(job.name, [0])
        code = codes.pop(0) if len(codes) > 1 else codes[0]
        return ProcessOutcome(exit_code=code, success=code == 0)

    def attempts(self, job_name: str) -> int:
        return sum(1 for name, _ in self.calls if name == job_name)


@pytest.fixture
def write_script(tmp_path: Path) -> Callable[[str, str], Path]:
    def _write(relative: str, body: str) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., ScheduleConfig]:
    def _make(jobs: List[Dict[str, Any]], **overrides: Any) -> ScheduleConfig:
        payload: Dict[str, Any] = {
            "interval_hours": 1,
            "retry_delay_ms": 0,
            "command": "{python} jobs/{name}.py",
            "jobs": jobs,
        }
        payload.update(overrides)
        return parse_config(payload, tmp_path)

    return _make


@pytest.fixture
def make_ctx(make_config: Callable[..., ScheduleConfig]) -> Callable[..., SupervisorContext]:
    def _make(jobs: List[Dict[str, Any]], **overrides: Any) -> SupervisorContext:
        return SupervisorContext.create(make_config(jobs, **overrides))

    return _make


@pytest.fixture
def fake_launcher() -> Callable[..., FakeLauncher]:
    return FakeLauncher
