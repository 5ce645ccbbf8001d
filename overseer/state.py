from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from overseer.models import SupervisorState

logger = logging.getLogger(__name__)


class StateStore:
    """JSON persistence for the supervisor's crash-recoverable state.

    Reads never fail: a missing or corrupt file yields a fresh state. Writes
    never raise: a failed save is logged and reported through the return
    value so that a running supervisor keeps going without its history.
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> SupervisorState:
        if not self.path.exists():
            logger.info("No scheduler state at %s; starting fresh.", self.path)
            return SupervisorState()
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("top-level state must be an object")
            return SupervisorState.from_dict(payload)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable scheduler state %s: %s", self.path, exc)
            return SupervisorState()

    def save(self, state: SupervisorState) -> bool:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(state.to_dict(), indent=4), encoding="utf-8")
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save scheduler state to %s: %s", self.path, exc)
            return False
        return True
