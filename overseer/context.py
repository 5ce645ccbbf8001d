from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from overseer.config import ScheduleConfig
from overseer.models import SupervisorState
from overseer.shutdown import ShutdownCoordinator
from overseer.state import StateStore


@dataclass
class SupervisorContext:
    """Everything one supervisor needs, built once at startup and passed down.

    ``state`` is only mutated on the main scheduling thread; ``shutdown`` is
    the one piece shared with signal handlers and helper threads.
    """

    config: ScheduleConfig
    store: StateStore
    state: SupervisorState
    shutdown: ShutdownCoordinator

    @classmethod
    def create(cls, config: ScheduleConfig, state: Optional[SupervisorState] = None) -> "SupervisorContext":
        store = StateStore(config.state_path)
        return cls(
            config=config,
            store=store,
            state=state if state is not None else store.load(),
            shutdown=ShutdownCoordinator(shutdown_grace=config.shutdown_grace_ms / 1000.0),
        )

    @property
    def shutdown_requested(self) -> bool:
        return self.shutdown.requested

    def persist(self) -> bool:
        return self.store.save(self.state)
