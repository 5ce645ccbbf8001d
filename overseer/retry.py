"""
Single-job execution with bounded retries.

A job is attempted up to ``max_retries`` times. Every attempt is a fresh
process watched by a LivenessMonitor; the pause between attempts doubles as a
shutdown checkpoint.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import sys
import time
from typing import Callable, Dict, List, Optional

from overseer.config import JobSpec, ScheduleConfig
from overseer.context import SupervisorContext
from overseer.liveness import LivenessMonitor
from overseer.models import (
    REASON_EXIT_CODE,
    REASON_INACTIVITY,
    REASON_SHUTDOWN,
    REASON_SPAWN_FAILURE,
    JobRunResult,
    format_duration,
    utc_now,
)
from overseer.process import SPAWN_FAILURE_EXIT_CODE, ProcessHandle, ProcessOutcome

logger = logging.getLogger(__name__)

Launcher = Callable[[JobSpec, str, int], ProcessOutcome]


def build_job_command(config: ScheduleConfig, job: JobSpec) -> List[str]:
    replacements = {"python": sys.executable, "name": job.name}
    argv = [token.format(**replacements) for token in config.command]
    return argv + list(job.args)


def build_job_env(job: JobSpec, run_id: str, attempt: int) -> Dict[str, str]:
    env = os.environ.copy()
    env.update(
        {
            "AVATAR_NAME": job.name,
            "OVERSEER_JOB_NAME": job.name,
            "OVERSEER_RUN_ID": run_id,
            "OVERSEER_ATTEMPT": str(attempt),
        }
    )
    return env


class JobLauncher:
    """Spawn one attempt of a job and block until its process is gone."""

    def __init__(self, ctx: SupervisorContext):
        self.ctx = ctx

    def __call__(self, job: JobSpec, run_id: str, attempt: int) -> ProcessOutcome:
        config = self.ctx.config
        handle = ProcessHandle.spawn(
            job.name,
            build_job_command(config, job),
            cwd=config.working_dir,
            env=build_job_env(job, run_id, attempt),
        )
        self.ctx.shutdown.attach(handle)
        monitor = LivenessMonitor(
            handle,
            inactivity_timeout=config.inactivity_timeout_ms / 1000.0,
            check_interval=config.liveness_check_interval_ms / 1000.0,
            kill_grace=config.kill_grace_ms / 1000.0,
        )
        if not handle.has_exited():
            monitor.start()
        try:
            return handle.outcome()
        finally:
            monitor.stop()
            self.ctx.shutdown.detach(handle)


def describe_failure(outcome: ProcessOutcome, config: ScheduleConfig) -> str:
    if outcome.spawn_error is not None:
        return f"Spawn failure: {outcome.spawn_error}"
    if outcome.terminated_reason == REASON_INACTIVITY:
        return (
            f"Killed after {format_duration(config.inactivity_timeout_ms)} without output "
            f"(exit code {outcome.exit_code})"
        )
    if outcome.terminated_reason == REASON_SHUTDOWN:
        return f"Terminated by supervisor shutdown (exit code {outcome.exit_code})"
    return f"Exited with code {outcome.exit_code}"


def failure_reason(outcome: ProcessOutcome) -> str:
    if outcome.spawn_error is not None:
        return REASON_SPAWN_FAILURE
    return outcome.terminated_reason or REASON_EXIT_CODE


class RetryController:
    def __init__(self, ctx: SupervisorContext, launcher: Optional[Launcher] = None):
        self.ctx = ctx
        self.launcher: Launcher = launcher or JobLauncher(ctx)

    def ensure_job_storage(self, job: JobSpec) -> Optional[str]:
        path = self.ctx.config.job_storage_dir(job.name)
        if path.is_dir():
            return None
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("[%s] Cannot create job storage %s: %s", job.name, path, exc)
            return str(exc)
        logger.info("[%s] Created storage directory %s", job.name, path)
        return None

    def run(self, job: JobSpec, run_id: str) -> JobRunResult:
        config = self.ctx.config
        max_retries = config.max_retries

        storage_error = self.ensure_job_storage(job)
        if storage_error is not None:
            now = utc_now()
            return JobRunResult(
                job_name=job.name,
                success=False,
                start_time=now,
                end_time=now,
                duration_ms=0,
                exit_code=SPAWN_FAILURE_EXIT_CODE,
                error_message=f"Cannot create job storage: {storage_error}",
                attempt=1,
                failure_reason=REASON_SPAWN_FAILURE,
            )

        attempt = 0
        while True:
            attempt += 1
            logger.info("[%s] Running job %s (attempt %s/%s)", run_id, job.name, attempt, max_retries)
            result = self._attempt(job, run_id, attempt)
            if result.success:
                logger.info(
                    "[%s] Job %s completed successfully in %s",
                    run_id,
                    job.name,
                    format_duration(result.duration_ms),
                )
                return result

            log = logger.error if result.failure_reason == REASON_INACTIVITY else logger.warning
            log(
                "[%s] Job %s failed on attempt %s/%s (%s): %s",
                run_id,
                job.name,
                attempt,
                max_retries,
                result.failure_reason,
                result.error_message,
            )
            if attempt >= max_retries:
                break
            if self.ctx.shutdown_requested:
                return self._stopped(result, max_retries)
            logger.info(
                "[%s] Retrying job %s in %s",
                run_id,
                job.name,
                format_duration(config.retry_delay_ms),
            )
            if self.ctx.shutdown.event.wait(config.retry_delay_ms / 1000.0):
                return self._stopped(result, max_retries)

        return dataclasses.replace(
            result,
            attempt=max_retries,
            error_message=f"Failed after {max_retries} attempts: {result.error_message}",
        )

    def _attempt(self, job: JobSpec, run_id: str, attempt: int) -> JobRunResult:
        started = utc_now()
        started_mono = time.monotonic()
        outcome = self.launcher(job, run_id, attempt)
        ended = utc_now()
        duration_ms = int((time.monotonic() - started_mono) * 1000)
        if outcome.success:
            return JobRunResult(
                job_name=job.name,
                success=True,
                start_time=started,
                end_time=ended,
                duration_ms=duration_ms,
                exit_code=outcome.exit_code,
                attempt=attempt,
            )
        return JobRunResult(
            job_name=job.name,
            success=False,
            start_time=started,
            end_time=ended,
            duration_ms=duration_ms,
            exit_code=outcome.exit_code,
            error_message=describe_failure(outcome, self.ctx.config),
            attempt=attempt,
            failure_reason=failure_reason(outcome),
        )

    def _stopped(self, last: JobRunResult, max_retries: int) -> JobRunResult:
        logger.info("[%s] Shutdown requested; not retrying.", last.job_name)
        return dataclasses.replace(
            last,
            error_message=(
                f"Stopped after {last.attempt} of {max_retries} attempts, shutdown requested: "
                f"{last.error_message}"
            ),
        )
