"""Engine context shared by every component of one engine instance."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from autofarm.core.collaborators import Collaborators
from autofarm.core.config import EngineConfig
from autofarm.core.events import EventBus
from autofarm.core.storage import KeyValueStore
from autofarm.core.timers import TimerRegistry


@dataclass
class FarmContext:
    config: EngineConfig
    store: KeyValueStore
    collaborators: Collaborators
    clock: Callable[[], float] = time.time
    bus: EventBus = field(default_factory=EventBus)
    timers: TimerRegistry | None = None

    def __post_init__(self) -> None:
        if self.timers is None:
            self.timers = TimerRegistry(self.clock)

    def now(self) -> float:
        return self.clock()
