"""
overseer command line.

validate  check a schedule file
run       execute one run now and exit
start     run the scheduler until SIGINT/SIGTERM
status    show persisted scheduler state and recent runs
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from overseer.config import DEFAULT_CONFIG, JobSpec, ScheduleConfig, load_config
from overseer.context import SupervisorContext
from overseer.errors import OverseerError
from overseer.logging_setup import add_file_logging, setup_logging
from overseer.models import STATUS_COMPLETED, format_duration, format_ts
from overseer.orchestrator import RunOrchestrator
from overseer.scheduler import Scheduler
from overseer.state import StateStore

logger = logging.getLogger("overseer")

DEFAULT_STATUS_LIMIT = 10


def select_jobs(config: ScheduleConfig, job_name: Optional[str]) -> List[JobSpec]:
    selected = config.jobs
    if job_name:
        selected = [job for job in selected if job.name == job_name]
        if not selected:
            raise OverseerError(f'Unknown job "{job_name}".')
    selected = [job for job in selected if job.enabled]
    if not selected:
        raise OverseerError("No enabled jobs selected.")
    return selected


def command_validate(config_path: Path) -> int:
    config = load_config(config_path)
    print(f"Config valid: {config_path}")
    print(f"Interval: every {config.interval_hours}h")
    print(f"Retries: {config.max_retries} (delay {format_duration(config.retry_delay_ms)})")
    print(f"Inactivity timeout: {format_duration(config.inactivity_timeout_ms)}")
    print(f"State file: {config.state_path}")
    print(f"Total jobs: {len(config.jobs)}")
    print(f"Enabled jobs: {len(config.enabled_jobs)}")
    for job in config.jobs:
        print(f"- {job.name}: {'enabled' if job.enabled else 'disabled'}")
    return 0


def command_run(config_path: Path, job_name: Optional[str]) -> int:
    config = load_config(config_path)
    add_file_logging(config.log_dir)
    jobs = select_jobs(config, job_name)
    ctx = SupervisorContext.create(config)
    scheduler = Scheduler(ctx)
    scheduler.recover()
    scheduler.install_signal_handlers()
    record = RunOrchestrator(ctx).run(jobs)
    if ctx.shutdown_requested:
        scheduler.finalize()
    return 0 if record.status == STATUS_COMPLETED else 1


def command_start(config_path: Path) -> int:
    config = load_config(config_path)
    add_file_logging(config.log_dir)
    scheduler = Scheduler(SupervisorContext.create(config))
    scheduler.install_signal_handlers()
    return scheduler.start()


def command_status(config_path: Path, limit: int) -> int:
    config = load_config(config_path)
    state = StateStore(config.state_path).load()
    print("=" * 80)
    print(f"State file: {config.state_path}")
    print(f"Running: {state.is_running}" + (f" (current job: {state.current_job})" if state.current_job else ""))
    print(f"Last run started: {format_ts(state.last_run_start_time) or 'never'}")
    print(f"Last run ended: {format_ts(state.last_run_end_time) or 'never'}")
    if state.next_scheduled_run is None:
        print("Next scheduled run: none")
    else:
        # The daemon's trigger is anchored at its start time, so the real
        # trigger can come earlier than this by up to one run's duration.
        print(
            f"Next scheduled run: {format_ts(state.next_scheduled_run)} "
            f"(estimated as last run end + {config.interval_hours:g}h)"
        )
    print(f"Runs recorded: {len(state.run_history)}")
    for record in state.run_history[:limit]:
        print("-" * 80)
        print(
            f"{record.run_id} {record.status} started={format_ts(record.start_time)} "
            f"duration={format_duration(record.duration_ms)}"
        )
        for result in record.jobs_processed:
            line = f"  - {result.job_name}: {'ok' if result.success else 'FAILED'} attempt={result.attempt}"
            if result.error_message:
                line += f" ({result.error_message})"
            print(line)
    print("=" * 80)
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="overseer: interval scheduler and process supervisor for collection jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG,
        help=f"Path to schedule file (default: {DEFAULT_CONFIG})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Validate the schedule file")
    validate_parser.add_argument("--config", default=argparse.SUPPRESS, help="Path to schedule file")

    run_parser = subparsers.add_parser("run", help="Run all enabled jobs once")
    run_parser.add_argument("--config", default=argparse.SUPPRESS, help="Path to schedule file")
    run_parser.add_argument("--job", help="Run one job by name")

    start_parser = subparsers.add_parser("start", help="Run the scheduler loop")
    start_parser.add_argument("--config", default=argparse.SUPPRESS, help="Path to schedule file")

    status_parser = subparsers.add_parser("status", help="Show scheduler state and run history")
    status_parser.add_argument("--config", default=argparse.SUPPRESS, help="Path to schedule file")
    status_parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_STATUS_LIMIT,
        help=f"Number of recent runs to show (default: {DEFAULT_STATUS_LIMIT})",
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    config_path = Path(args.config or DEFAULT_CONFIG).resolve()

    try:
        if args.command == "validate":
            return command_validate(config_path)
        if args.command == "run":
            return command_run(config_path, job_name=args.job)
        if args.command == "start":
            return command_start(config_path)
        if args.command == "status":
            if args.limit <= 0:
                raise OverseerError("--limit must be >= 1")
            return command_status(config_path, limit=args.limit)
        raise OverseerError(f"Unsupported command: {args.command}")
    except OverseerError as exc:
        logger.error(str(exc))
        return 1
    except Exception as exc:  # pragma: no cover - last resort for the daemon
        logger.exception("Failed to start scheduler: %s", exc)
        return 1
