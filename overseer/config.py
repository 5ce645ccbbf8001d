"""
Schedule definition loading.

The schedule is a YAML (or JSON) mapping describing the run interval, retry
policy, liveness thresholds and the ordered list of jobs. It is read once at
startup; any problem is reported as a ConfigError before scheduling begins.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import yaml

from overseer.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "overseer.yaml"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 60_000
DEFAULT_PROCESS_TIMEOUT_MS = 1_800_000
DEFAULT_INACTIVITY_TIMEOUT_MS = 600_000
DEFAULT_LIVENESS_CHECK_INTERVAL_MS = 60_000
DEFAULT_KILL_GRACE_MS = 5_000
DEFAULT_SHUTDOWN_GRACE_MS = 30_000
DEFAULT_HISTORY_LIMIT = 100
DEFAULT_COMMAND = "{python} collect.py --avatar={name}"
DEFAULT_DATA_DIR = "data"
STATE_FILE_NAME = "scheduler_state.json"

# camelCase spellings from older JSON schedule files.
KEY_ALIASES = {
    "intervalHours": "interval_hours",
    "maxRetries": "max_retries",
    "retryDelayMs": "retry_delay_ms",
    "processTimeoutMs": "process_timeout_ms",
    "inactivityTimeoutMs": "inactivity_timeout_ms",
    "avatars": "jobs",
}
TOP_LEVEL_KEYS = {
    "version",
    "interval_hours",
    "max_retries",
    "retry_delay_ms",
    "process_timeout_ms",
    "inactivity_timeout_ms",
    "liveness_check_interval_ms",
    "kill_grace_ms",
    "shutdown_grace_ms",
    "history_limit",
    "command",
    "working_dir",
    "data_dir",
    "state_file",
    "jobs",
}
JOB_KEYS = {"name", "enabled", "args"}


@dataclass(frozen=True)
class JobSpec:
    name: str
    enabled: bool = True
    args: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ScheduleConfig:
    interval_hours: float
    jobs: List[JobSpec]
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    # Loaded and reported but not enforced; only inactivity kills a job.
    process_timeout_ms: int = DEFAULT_PROCESS_TIMEOUT_MS
    inactivity_timeout_ms: int = DEFAULT_INACTIVITY_TIMEOUT_MS
    liveness_check_interval_ms: int = DEFAULT_LIVENESS_CHECK_INTERVAL_MS
    kill_grace_ms: int = DEFAULT_KILL_GRACE_MS
    shutdown_grace_ms: int = DEFAULT_SHUTDOWN_GRACE_MS
    history_limit: int = DEFAULT_HISTORY_LIMIT
    command: List[str] = field(default_factory=lambda: shlex.split(DEFAULT_COMMAND))
    working_dir: Path = field(default_factory=Path.cwd)
    data_dir: Path = field(default_factory=lambda: Path.cwd() / DEFAULT_DATA_DIR)
    state_file: Optional[Path] = None

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.interval_hours)

    @property
    def enabled_jobs(self) -> List[JobSpec]:
        return [job for job in self.jobs if job.enabled]

    @property
    def state_path(self) -> Path:
        return self.state_file or (self.data_dir / STATE_FILE_NAME)

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    def job_storage_dir(self, job_name: str) -> Path:
        return self.data_dir / job_name


def ensure_bool(value: Any, field_path: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"Error: {field_path} must be true or false.")
    return value


def ensure_int(value: Any, field_path: str, default: int, minimum: int = 1) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Error: {field_path} must be an integer.")
    if value < minimum:
        raise ConfigError(f"Error: {field_path} must be >= {minimum}.")
    return value


def ensure_str(value: Any, field_path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Error: {field_path} must be a non-empty string.")
    return value.strip()


def parse_interval_hours(value: Any, field_path: str = "interval_hours") -> float:
    if value is None:
        raise ConfigError(f"Error: {field_path} is required (positive number of hours).")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"Error: {field_path} must be a positive number.")
    if value <= 0:
        raise ConfigError(f"Error: {field_path} must be > 0.")
    return float(value)


def parse_argv(value: Any, field_path: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        try:
            return shlex.split(value)
        except ValueError as exc:
            raise ConfigError(f"Error: {field_path} is not a valid argument string: {exc}") from exc
    if isinstance(value, list):
        out: List[str] = []
        for idx, item in enumerate(value):
            if isinstance(item, bool) or not isinstance(item, (str, int, float)):
                raise ConfigError(f"Error: {field_path}[{idx}] must be a string.")
            out.append(str(item))
        return out
    raise ConfigError(f"Error: {field_path} must be a string or a list of strings.")


def _resolve_dir(value: Any, base_dir: Path, field_path: str, must_exist: bool) -> Path:
    raw = Path(ensure_str(value, field_path))
    resolved = (raw if raw.is_absolute() else base_dir / raw).resolve()
    if must_exist and not resolved.is_dir():
        raise ConfigError(f"Error: directory does not exist at {field_path}: {resolved}")
    return resolved


def _normalize_keys(payload: Dict[str, Any]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}
    for key, value in payload.items():
        canonical = KEY_ALIASES.get(key, key)
        if canonical in normalized:
            raise ConfigError(f'Error: "{key}" duplicates "{canonical}".')
        normalized[canonical] = value
    return normalized


def _load_config_payload(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        raise ConfigError(f"Error: Config file not found: {config_path}")

    try:
        payload = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Error: Failed to parse {config_path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigError("Error: Top-level config must be a mapping.")
    return _normalize_keys(payload)


def parse_jobs(raw: Any, field_path: str = "jobs") -> List[JobSpec]:
    if not isinstance(raw, list) or not raw:
        raise ConfigError(f"Error: {field_path} must be a non-empty list.")

    seen_names: Set[str] = set()
    jobs: List[JobSpec] = []
    for idx, job_raw in enumerate(raw):
        path = f"{field_path}[{idx}]"
        if not isinstance(job_raw, dict):
            raise ConfigError(f"Error: {path} must be a mapping.")
        unknown = set(job_raw.keys()) - JOB_KEYS
        if unknown:
            raise ConfigError(f"Error: Unknown keys in {path}: {sorted(unknown)}.")

        name = ensure_str(job_raw.get("name"), f"{path}.name")
        if "/" in name or "\\" in name or name in {".", ".."}:
            raise ConfigError(f'Error: {path}.name "{name}" cannot be used as a directory name.')
        if name in seen_names:
            raise ConfigError(f'Error: Duplicate job name "{name}".')
        seen_names.add(name)

        jobs.append(
            JobSpec(
                name=name,
                enabled=ensure_bool(job_raw.get("enabled"), f"{path}.enabled", True),
                args=parse_argv(job_raw.get("args"), f"{path}.args"),
            )
        )
    return jobs


def parse_config(payload: Dict[str, Any], config_dir: Path) -> ScheduleConfig:
    payload = _normalize_keys(payload)
    unknown_top = set(payload.keys()) - TOP_LEVEL_KEYS
    if unknown_top:
        raise ConfigError(f"Error: Unknown top-level keys: {sorted(unknown_top)}.")

    jobs = parse_jobs(payload.get("jobs"))
    interval_hours = parse_interval_hours(payload.get("interval_hours"))

    command = parse_argv(payload.get("command", DEFAULT_COMMAND), "command")
    if not command:
        raise ConfigError("Error: command must not be empty.")
    for idx, token in enumerate(command):
        try:
            token.format(python="python", name="job")
        except (KeyError, IndexError, ValueError) as exc:
            raise ConfigError(
                f"Error: command[{idx}] may only use {{python}} and {{name}} placeholders, got \"{token}\"."
            ) from exc

    working_dir = _resolve_dir(payload.get("working_dir", "."), config_dir, "working_dir", must_exist=True)
    data_dir = _resolve_dir(payload.get("data_dir", DEFAULT_DATA_DIR), working_dir, "data_dir", must_exist=False)
    state_file: Optional[Path] = None
    if payload.get("state_file") is not None:
        state_raw = Path(ensure_str(payload["state_file"], "state_file"))
        state_file = (state_raw if state_raw.is_absolute() else data_dir / state_raw).resolve()

    return ScheduleConfig(
        interval_hours=interval_hours,
        jobs=jobs,
        max_retries=ensure_int(payload.get("max_retries"), "max_retries", DEFAULT_MAX_RETRIES, 1),
        retry_delay_ms=ensure_int(payload.get("retry_delay_ms"), "retry_delay_ms", DEFAULT_RETRY_DELAY_MS, 0),
        process_timeout_ms=ensure_int(
            payload.get("process_timeout_ms"), "process_timeout_ms", DEFAULT_PROCESS_TIMEOUT_MS, 1
        ),
        inactivity_timeout_ms=ensure_int(
            payload.get("inactivity_timeout_ms"), "inactivity_timeout_ms", DEFAULT_INACTIVITY_TIMEOUT_MS, 1
        ),
        liveness_check_interval_ms=ensure_int(
            payload.get("liveness_check_interval_ms"),
            "liveness_check_interval_ms",
            DEFAULT_LIVENESS_CHECK_INTERVAL_MS,
            1,
        ),
        kill_grace_ms=ensure_int(payload.get("kill_grace_ms"), "kill_grace_ms", DEFAULT_KILL_GRACE_MS, 0),
        shutdown_grace_ms=ensure_int(
            payload.get("shutdown_grace_ms"), "shutdown_grace_ms", DEFAULT_SHUTDOWN_GRACE_MS, 0
        ),
        history_limit=ensure_int(payload.get("history_limit"), "history_limit", DEFAULT_HISTORY_LIMIT, 1),
        command=command,
        working_dir=working_dir,
        data_dir=data_dir,
        state_file=state_file,
    )


def load_config(config_path: Path) -> ScheduleConfig:
    payload = _load_config_payload(config_path)
    config = parse_config(payload, config_path.resolve().parent)
    logger.info(
        "Configuration loaded: interval_hours=%s, jobs=%s, enabled=%s",
        config.interval_hours,
        len(config.jobs),
        [job.name for job in config.enabled_jobs],
    )
    logger.debug(
        "process_timeout_ms=%s is advisory; only inactivity_timeout_ms=%s is enforced.",
        config.process_timeout_ms,
        config.inactivity_timeout_ms,
    )
    return config
