from __future__ import annotations

import logging
import threading
from typing import Optional

from overseer.models import REASON_INACTIVITY, format_duration
from overseer.process import ProcessHandle

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Kill a job that has produced no output for ``inactivity_timeout`` seconds.

    The check runs on its own daemon thread at a fixed cadence, independent of
    the threshold. A job that keeps printing is never killed, however long it
    runs.
    """

    def __init__(
        self,
        handle: ProcessHandle,
        inactivity_timeout: float,
        check_interval: float,
        kill_grace: float,
    ):
        self.handle = handle
        self.inactivity_timeout = inactivity_timeout
        self.check_interval = check_interval
        self.kill_grace = kill_grace
        self.fired = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "LivenessMonitor":
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"overseer-{self.handle.job_name}-liveness",
        )
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.kill_grace + self.check_interval + 1.0)

    def check(self) -> bool:
        """Run one inactivity check; True if it initiated termination."""
        if self.fired or self.handle.has_exited():
            return False
        idle = self.handle.seconds_since_activity()
        if idle < self.inactivity_timeout:
            return False
        self.fired = True
        logger.error(
            "[%s] Stuck: no output for %s, killing process tree",
            self.handle.job_name,
            format_duration(int(idle * 1000)),
        )
        self.handle.terminate(graceful=True, grace_seconds=self.kill_grace, reason=REASON_INACTIVITY)
        return True

    def _run(self) -> None:
        while not self._stop_event.wait(self.check_interval):
            if self.handle.has_exited():
                return
            if self.check():
                return
