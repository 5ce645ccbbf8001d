from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

UTC = timezone.utc

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_PARTIAL = "partial"
VALID_STATUSES = {STATUS_COMPLETED, STATUS_FAILED, STATUS_PARTIAL}

REASON_EXIT_CODE = "exit_code"
REASON_SPAWN_FAILURE = "spawn_failure"
REASON_INACTIVITY = "inactivity_timeout"
REASON_SHUTDOWN = "shutdown"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def format_ts(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat()


def parse_ts(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"expected ISO timestamp string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_duration(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    minutes, rest = divmod(ms, 60_000)
    return f"{minutes}m {rest // 1000}s"


def classify_run(results: List["JobRunResult"]) -> str:
    """completed when nothing failed, failed when nothing succeeded, else partial."""
    succeeded = sum(1 for result in results if result.success)
    failed = len(results) - succeeded
    if failed == 0:
        return STATUS_COMPLETED
    if succeeded == 0:
        return STATUS_FAILED
    return STATUS_PARTIAL


@dataclass
class JobRunResult:
    job_name: str
    success: bool
    start_time: datetime
    end_time: datetime
    duration_ms: int
    exit_code: int
    error_message: Optional[str] = None
    attempt: int = 1
    failure_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "job_name": self.job_name,
            "success": self.success,
            "start_time": format_ts(self.start_time),
            "end_time": format_ts(self.end_time),
            "duration_ms": self.duration_ms,
            "exit_code": self.exit_code,
            "attempt": self.attempt,
        }
        if self.error_message is not None:
            payload["error_message"] = self.error_message
        if self.failure_reason is not None:
            payload["failure_reason"] = self.failure_reason
        return payload

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "JobRunResult":
        return JobRunResult(
            job_name=str(raw["job_name"]),
            success=bool(raw["success"]),
            start_time=parse_ts(raw["start_time"]),
            end_time=parse_ts(raw["end_time"]),
            duration_ms=int(raw["duration_ms"]),
            exit_code=int(raw["exit_code"]),
            error_message=raw.get("error_message"),
            attempt=int(raw.get("attempt", 1)),
            failure_reason=raw.get("failure_reason"),
        )


@dataclass
class RunRecord:
    run_id: str
    start_time: datetime
    end_time: datetime
    duration_ms: int
    jobs_processed: List[JobRunResult]
    status: str

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.jobs_processed if result.success)

    @property
    def failure_count(self) -> int:
        return len(self.jobs_processed) - self.success_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "start_time": format_ts(self.start_time),
            "end_time": format_ts(self.end_time),
            "duration_ms": self.duration_ms,
            "jobs_processed": [result.to_dict() for result in self.jobs_processed],
            "status": self.status,
        }

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "RunRecord":
        status = raw["status"]
        if status not in VALID_STATUSES:
            raise ValueError(f'unknown run status "{status}"')
        return RunRecord(
            run_id=str(raw["run_id"]),
            start_time=parse_ts(raw["start_time"]),
            end_time=parse_ts(raw["end_time"]),
            duration_ms=int(raw["duration_ms"]),
            jobs_processed=[JobRunResult.from_dict(item) for item in raw.get("jobs_processed", [])],
            status=status,
        )


@dataclass
class SupervisorState:
    last_run_start_time: Optional[datetime] = None
    last_run_end_time: Optional[datetime] = None
    next_scheduled_run: Optional[datetime] = None
    is_running: bool = False
    current_job: Optional[str] = None
    run_history: List[RunRecord] = field(default_factory=list)

    def record_run(self, record: RunRecord, limit: int) -> None:
        """Prepend a run record, evicting the oldest entries beyond ``limit``."""
        self.run_history.insert(0, record)
        del self.run_history[limit:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_run_start_time": format_ts(self.last_run_start_time),
            "last_run_end_time": format_ts(self.last_run_end_time),
            "next_scheduled_run": format_ts(self.next_scheduled_run),
            "is_running": self.is_running,
            "current_job": self.current_job,
            "run_history": [record.to_dict() for record in self.run_history],
        }

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "SupervisorState":
        history_raw = raw.get("run_history") or []
        if not isinstance(history_raw, list):
            raise ValueError("run_history must be a list")
        current_job = raw.get("current_job")
        return SupervisorState(
            last_run_start_time=parse_ts(raw.get("last_run_start_time")),
            last_run_end_time=parse_ts(raw.get("last_run_end_time")),
            next_scheduled_run=parse_ts(raw.get("next_scheduled_run")),
            is_running=bool(raw.get("is_running", False)),
            current_job=str(current_job) if current_job is not None else None,
            run_history=[RunRecord.from_dict(item) for item in history_raw],
        )
