from __future__ import annotations

import logging
import random
import string
import time
from typing import List, Optional

from overseer.config import JobSpec
from overseer.context import SupervisorContext
from overseer.models import JobRunResult, RunRecord, classify_run, format_duration, utc_now
from overseer.retry import RetryController

logger = logging.getLogger(__name__)

RUN_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_run_id() -> str:
    suffix = "".join(random.choice(RUN_ID_ALPHABET) for _ in range(9))
    return f"run_{int(time.time() * 1000)}_{suffix}"


class RunOrchestrator:
    """Executes one scheduled run: every enabled job, in config order, one at a time."""

    def __init__(self, ctx: SupervisorContext, retry: Optional[RetryController] = None):
        self.ctx = ctx
        self.retry = retry or RetryController(ctx)

    def run(self, jobs: Optional[List[JobSpec]] = None) -> RunRecord:
        ctx = self.ctx
        state = ctx.state
        selected = jobs if jobs is not None else ctx.config.enabled_jobs
        run_id = generate_run_id()
        started = utc_now()
        started_mono = time.monotonic()

        state.is_running = True
        state.last_run_start_time = started
        ctx.persist()
        logger.info("[%s] Starting scheduled run for %s job(s)", run_id, len(selected))

        results: List[JobRunResult] = []
        for idx, job in enumerate(selected):
            if ctx.shutdown_requested:
                skipped = [remaining.name for remaining in selected[idx:]]
                logger.info("[%s] Shutdown requested, skipping remaining jobs: %s", run_id, skipped)
                break
            state.current_job = job.name
            ctx.persist()
            results.append(self.retry.run(job, run_id))

        ended = utc_now()
        record = RunRecord(
            run_id=run_id,
            start_time=started,
            end_time=ended,
            duration_ms=int((time.monotonic() - started_mono) * 1000),
            jobs_processed=results,
            status=classify_run(results),
        )

        state.record_run(record, ctx.config.history_limit)
        state.is_running = False
        state.current_job = None
        state.last_run_end_time = ended
        ctx.persist()

        logger.info(
            "[%s] Scheduled run %s: %s succeeded, %s failed in %s",
            run_id,
            record.status,
            record.success_count,
            record.failure_count,
            format_duration(record.duration_ms),
        )
        return record
