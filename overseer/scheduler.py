"""
Fixed-interval scheduling loop.

The first run starts immediately; later runs fire on a fixed cadence anchored
at startup. A trigger that comes due while a run is still going is dropped,
never queued, so a slow run delays the next one instead of stacking up.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections import deque
from datetime import timedelta
from typing import Callable, Optional

from overseer.context import SupervisorContext
from overseer.errors import StartupError
from overseer.models import RunRecord, format_ts, utc_now
from overseer.orchestrator import RunOrchestrator

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)
SIGNAL_POLL_SECONDS = 0.1


class Scheduler:
    def __init__(
        self,
        ctx: SupervisorContext,
        orchestrator: Optional[RunOrchestrator] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ctx = ctx
        self.orchestrator = orchestrator or RunOrchestrator(ctx)
        self._clock = clock
        self._pending_signals: "deque[str]" = deque()
        self._stopped = threading.Event()

    @property
    def interval(self) -> timedelta:
        return self.ctx.config.interval

    def recover(self) -> None:
        """Reset a run left marked in progress by a crashed supervisor and prove state is writable."""
        state = self.ctx.state
        if state.is_running:
            logger.warning(
                "Previous run started at %s never finished (current_job=%s); treating it as crashed.",
                format_ts(state.last_run_start_time),
                state.current_job,
            )
            state.is_running = False
            state.current_job = None
        if not self.ctx.persist():
            raise StartupError(f"Error: cannot write scheduler state to {self.ctx.store.path}")

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM to request_shutdown through a watcher thread.

        The handler may interrupt the main thread while it holds a threading
        lock, so it only queues the signal name.
        """

        def handler(signum: int, _frame: object) -> None:
            self._pending_signals.append(signal.Signals(signum).name)

        for sig in SHUTDOWN_SIGNALS:
            signal.signal(sig, handler)
        threading.Thread(target=self._watch_signals, daemon=True, name="overseer-signals").start()

    def request_shutdown(self, signal_name: Optional[str] = None) -> bool:
        return self.ctx.shutdown.request(signal_name)

    def run_cycle(self) -> RunRecord:
        record = self.orchestrator.run()
        self.ctx.state.next_scheduled_run = utc_now() + self.interval
        self.ctx.persist()
        logger.info("Next scheduled run: %s", format_ts(self.ctx.state.next_scheduled_run))
        return record

    def on_trigger(self) -> Optional[RunRecord]:
        if self.ctx.shutdown_requested:
            return None
        if self.ctx.state.is_running:
            logger.warning("Previous run still in progress, skipping this interval")
            return None
        return self.run_cycle()

    def start(self) -> int:
        interval_seconds = self.interval.total_seconds()
        self.recover()
        logger.info(
            "Starting scheduler with %s hour interval (%s job(s) enabled)",
            self.ctx.config.interval_hours,
            len(self.ctx.config.enabled_jobs),
        )

        next_tick = self._clock() + interval_seconds
        self.on_trigger()
        while not self.ctx.shutdown_requested:
            next_tick = self._skip_elapsed(next_tick, interval_seconds)
            if self.ctx.shutdown.event.wait(max(0.0, next_tick - self._clock())):
                break
            next_tick += interval_seconds
            self.on_trigger()

        self.finalize()
        return 0

    def finalize(self) -> None:
        self.ctx.shutdown.join(timeout=self.ctx.shutdown.shutdown_grace + 5.0)
        state = self.ctx.state
        state.is_running = False
        state.current_job = None
        state.next_scheduled_run = None
        self.ctx.persist()
        logger.info("Scheduler stopped")
        self._stopped.set()

    def _watch_signals(self) -> None:
        while not self._stopped.wait(SIGNAL_POLL_SECONDS):
            while self._pending_signals:
                self.request_shutdown(self._pending_signals.popleft())

    def _skip_elapsed(self, next_tick: float, interval_seconds: float) -> float:
        now = self._clock()
        while next_tick <= now:
            logger.warning("Previous run still in progress, skipping this interval")
            next_tick += interval_seconds
        return next_tick
