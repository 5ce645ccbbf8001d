"""
Isolated job processes.

A ProcessHandle owns one spawned job: two reader threads forward its output
line by line and stamp the last-activity clock, a reaper thread records the
exit status, and terminate() takes the whole process subtree down with an
interrupt-then-kill escalation.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, IO, List, Optional

import psutil

logger = logging.getLogger(__name__)

SPAWN_FAILURE_EXIT_CODE = -1
READER_JOIN_SECONDS = 2.0
KILL_WAIT_SECONDS = 1.0
POLL_SECONDS = 0.05

# (stream name, line) for each non-empty output line.
OutputCallback = Callable[[str, str], None]


@dataclass(frozen=True)
class ProcessOutcome:
    exit_code: int
    success: bool
    spawn_error: Optional[str] = None
    terminated_reason: Optional[str] = None


class ProcessHandle:
    def __init__(
        self,
        job_name: str,
        process: Optional[subprocess.Popen],
        spawn_error: Optional[str] = None,
        on_output: Optional[OutputCallback] = None,
    ):
        self.job_name = job_name
        self.on_output = on_output
        self.last_activity = time.monotonic()
        self._process = process
        self._spawn_error = spawn_error
        self._exited = threading.Event()
        self._terminate_lock = threading.Lock()
        self._terminating = False
        self._terminated_reason: Optional[str] = None
        self._readers: List[threading.Thread] = []

        if process is None:
            self._exited.set()
            return

        for name, stream, level in (
            ("stdout", process.stdout, logging.DEBUG),
            ("stderr", process.stderr, logging.WARNING),
        ):
            if stream is None:
                continue
            reader = threading.Thread(
                target=self._pump,
                args=(name, stream, level),
                daemon=True,
                name=f"overseer-{job_name}-{name}",
            )
            reader.start()
            self._readers.append(reader)
        threading.Thread(target=self._reap, args=(process,), daemon=True, name=f"overseer-{job_name}-reaper").start()

    @classmethod
    def spawn(
        cls,
        job_name: str,
        argv: List[str],
        cwd: Path,
        env: Dict[str, str],
        on_output: Optional[OutputCallback] = None,
    ) -> "ProcessHandle":
        logger.info("[%s] Starting: %s", job_name, " ".join(argv))
        try:
            process = subprocess.Popen(
                argv,
                cwd=str(cwd),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                # Keep terminal Ctrl+C away from the job; shutdown decides its fate.
                start_new_session=os.name == "posix",
            )
        except (OSError, ValueError) as exc:
            logger.error("[%s] Failed to spawn process: %s", job_name, exc)
            return cls(job_name, None, spawn_error=str(exc))
        logger.debug("[%s] Spawned pid=%s", job_name, process.pid)
        return cls(job_name, process, on_output=on_output)

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def terminating(self) -> bool:
        return self._terminating

    def has_exited(self) -> bool:
        return self._exited.is_set()

    def seconds_since_activity(self) -> float:
        return time.monotonic() - self.last_activity

    def wait(self, timeout: Optional[float] = None) -> Optional[ProcessOutcome]:
        """Block until the process has exited; None if ``timeout`` elapsed first."""
        if not self._exited.wait(timeout):
            return None
        return self.outcome()

    def outcome(self) -> ProcessOutcome:
        """Block until the process has exited and return how it ended."""
        self._exited.wait()
        if self._process is None:
            return ProcessOutcome(
                exit_code=SPAWN_FAILURE_EXIT_CODE,
                success=False,
                spawn_error=self._spawn_error,
                terminated_reason=self._terminated_reason,
            )
        code = self._process.returncode
        exit_code = code if code is not None else SPAWN_FAILURE_EXIT_CODE
        return ProcessOutcome(
            exit_code=exit_code,
            success=exit_code == 0 and self._terminated_reason is None,
            terminated_reason=self._terminated_reason,
        )

    def terminate(self, graceful: bool = True, grace_seconds: float = 5.0, reason: Optional[str] = None) -> bool:
        """Stop the process subtree once; later calls return False and do nothing.

        Graceful termination interrupts the job's process group and every
        known descendant, then waits ``grace_seconds`` before killing whatever
        is still alive.
        """
        with self._terminate_lock:
            if self._terminating or self.has_exited():
                return False
            self._terminating = True
            if reason is not None:
                self._terminated_reason = reason

        # Descendants must be collected before the parent dies and they get reparented.
        descendants = self._descendants()
        if not graceful:
            self._kill_tree(descendants)
            return True

        logger.info(
            "[%s] Sending SIGTERM to process tree (pid=%s, descendants=%s)",
            self.job_name,
            self.pid,
            len(descendants),
        )
        self._signal_root(kill=False)
        self._signal_group("SIGTERM")
        for proc in descendants:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as exc:
                logger.warning("[%s] Cannot signal pid=%s: %s", self.job_name, proc.pid, exc)

        deadline = time.monotonic() + grace_seconds
        root_exited = self._wait_root(grace_seconds)
        alive = _wait_gone(descendants, max(0.0, deadline - time.monotonic()))
        if root_exited and not alive and not self._group_members():
            return True

        logger.warning(
            "[%s] Process tree still alive %.1fs after SIGTERM; escalating to SIGKILL",
            self.job_name,
            grace_seconds,
        )
        self._kill_tree(alive)
        return True

    def kill(self) -> None:
        """Unconditionally kill the subtree, bypassing the terminate guard."""
        with self._terminate_lock:
            self._terminating = True
        self._kill_tree(self._descendants())

    def _kill_tree(self, descendants: List[psutil.Process]) -> None:
        self._signal_root(kill=True)
        self._signal_group("SIGKILL")
        for proc in descendants:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as exc:
                logger.warning("[%s] Cannot kill pid=%s: %s", self.job_name, proc.pid, exc)
        _wait_gone(descendants, KILL_WAIT_SECONDS)

    def _signal_root(self, kill: bool) -> None:
        if self._process is None or self._process.returncode is not None:
            return
        try:
            if kill:
                self._process.kill()
            else:
                self._process.terminate()
        except ProcessLookupError:
            pass

    def _signal_group(self, signame: str) -> None:
        # The job leads its own session, so its pid is also the process group id.
        # Helpers that double-forked away from the tree are still in the group.
        if self._process is None or os.name != "posix":
            return
        try:
            os.killpg(self._process.pid, getattr(signal, signame))
        except ProcessLookupError:
            pass
        except PermissionError as exc:
            logger.warning("[%s] Cannot signal process group %s: %s", self.job_name, self._process.pid, exc)

    def _wait_root(self, timeout: float) -> bool:
        if self._process is None:
            return True
        try:
            self._process.wait(timeout)
        except subprocess.TimeoutExpired:
            return False
        return True

    def _descendants(self) -> List[psutil.Process]:
        if self._process is None:
            return []
        found: List[psutil.Process] = []
        if self._process.returncode is None:
            try:
                found = psutil.Process(self._process.pid).children(recursive=True)
            except (psutil.NoSuchProcess, psutil.ZombieProcess):
                pass
        known = {proc.pid for proc in found}
        return found + [proc for proc in self._group_members() if proc.pid not in known]

    def _group_members(self) -> List[psutil.Process]:
        """Live processes in the job's process group, the root excluded."""
        if self._process is None or os.name != "posix":
            return []
        pgid = self._process.pid
        members = []
        for proc in psutil.process_iter():
            if proc.pid == pgid:
                continue
            try:
                if os.getpgid(proc.pid) == pgid and _is_live(proc):
                    members.append(proc)
            except (OSError, psutil.Error):
                continue
        return members

    def _pump(self, name: str, stream: IO[str], level: int) -> None:
        try:
            for line in iter(stream.readline, ""):
                self.last_activity = time.monotonic()
                text = line.rstrip()
                if text:
                    logger.log(level, "[%s] %s", self.job_name, text)
                    self._forward(name, text)
        except (OSError, ValueError) as exc:
            logger.debug("[%s] Output stream closed: %s", self.job_name, exc)
        finally:
            stream.close()

    def _forward(self, name: str, text: str) -> None:
        if self.on_output is None:
            return
        try:
            self.on_output(name, text)
        except Exception:
            logger.exception("[%s] Output callback failed", self.job_name)

    def _reap(self, process: subprocess.Popen) -> None:
        code = process.wait()
        for reader in self._readers:
            reader.join(timeout=READER_JOIN_SECONDS)
        logger.debug("[%s] Process exited with code %s", self.job_name, code)
        self._exited.set()


def _is_live(proc: psutil.Process) -> bool:
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def _wait_gone(procs: List[psutil.Process], timeout: float) -> List[psutil.Process]:
    """Poll until every process is gone or a zombie; returns the ones still alive."""
    deadline = time.monotonic() + timeout
    while True:
        alive = [proc for proc in procs if _is_live(proc)]
        if not alive or time.monotonic() >= deadline:
            return alive
        time.sleep(POLL_SECONDS)
