from __future__ import annotations

import logging
import threading
from typing import List, Optional

from overseer.models import REASON_SHUTDOWN
from overseer.process import ProcessHandle

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Tracks the in-flight job process and stops it when shutdown is requested.

    ``request()`` flips the shutdown event and hands the in-flight process to
    a background thread, which interrupts it and escalates to a kill after
    ``shutdown_grace``. Signal handlers must not call it directly; the
    scheduler forwards signals from a watcher thread.
    """

    def __init__(self, shutdown_grace: float):
        self.shutdown_grace = shutdown_grace
        self.event = threading.Event()
        self.signal_name: Optional[str] = None
        self._lock = threading.Lock()
        self._handle: Optional[ProcessHandle] = None
        self._threads: List[threading.Thread] = []

    @property
    def requested(self) -> bool:
        return self.event.is_set()

    @property
    def in_flight(self) -> Optional[ProcessHandle]:
        return self._handle

    def request(self, signal_name: Optional[str] = None) -> bool:
        with self._lock:
            if self.event.is_set():
                logger.warning("Shutdown already in progress (signal=%s)", signal_name)
                return False
            self.signal_name = signal_name
            self.event.set()
            handle = self._handle
        logger.info("Stopping scheduler (signal=%s)...", signal_name)
        if handle is not None:
            self._stop_in_flight(handle)
        return True

    def attach(self, handle: ProcessHandle) -> None:
        with self._lock:
            self._handle = handle
            late = self.event.is_set()
        if late:
            self._stop_in_flight(handle)

    def detach(self, handle: ProcessHandle) -> None:
        with self._lock:
            if self._handle is handle:
                self._handle = None

    def join(self, timeout: Optional[float] = None) -> None:
        for thread in list(self._threads):
            thread.join(timeout)

    def _stop_in_flight(self, handle: ProcessHandle) -> None:
        if handle.has_exited():
            return
        thread = threading.Thread(
            target=self._terminate,
            args=(handle,),
            daemon=True,
            name="overseer-shutdown",
        )
        self._threads.append(thread)
        thread.start()

    def _terminate(self, handle: ProcessHandle) -> None:
        logger.info("[%s] Waiting for current job process to exit...", handle.job_name)
        if handle.terminate(graceful=True, grace_seconds=self.shutdown_grace, reason=REASON_SHUTDOWN):
            return
        # Termination already under way elsewhere; bound it by our own window.
        if handle.wait(self.shutdown_grace) is None:
            logger.warning("[%s] Force killing job process", handle.job_name)
            handle.kill()
