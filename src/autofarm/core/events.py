"""Typed in-process event bus.

Every topic is a frozen pydantic model. Outbound events announce engine
state changes to subscribers (status tracker, WebSocket clients); inbound
events are triggers published by the game integration layer and consumed
by the engine.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, ClassVar, Iterator, TypeVar

from pydantic import BaseModel, ConfigDict

from autofarm.core.logging import get_logger
from autofarm.models import AttackReport, Target, Village

log = get_logger("events")


class FarmEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    topic: ClassVar[str] = "event"

    def payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# ------------------------------------------------------------------
# Outbound: run state
# ------------------------------------------------------------------


class Started(FarmEvent):
    topic: ClassVar[str] = "start"


class Paused(FarmEvent):
    topic: ClassVar[str] = "pause"


class VillageChanged(FarmEvent):
    topic: ClassVar[str] = "nextVillage"
    village: Village


class VillagesUpdated(FarmEvent):
    topic: ClassVar[str] = "villagesUpdate"
    village_ids: list[int]


class CommandSent(FarmEvent):
    topic: ClassVar[str] = "sendCommand"
    origin: Village
    target: Target


class CommandLimit(FarmEvent):
    topic: ClassVar[str] = "commandLimit"
    village: Village


class StallRecovered(FarmEvent):
    topic: ClassVar[str] = "stallRecovered"
    idle_seconds: float


# ------------------------------------------------------------------
# Outbound: targets
# ------------------------------------------------------------------


class TargetIgnored(FarmEvent):
    topic: ClassVar[str] = "ignoredTarget"
    target: Target


class VillageIgnored(FarmEvent):
    topic: ClassVar[str] = "ignoredVillage"
    target: Target


class PriorityTargetAdded(FarmEvent):
    topic: ClassVar[str] = "priorityTargetAdded"
    target: Target


class LoadingTargetsStarted(FarmEvent):
    topic: ClassVar[str] = "startLoadingTargets"


class LoadingTargetsFinished(FarmEvent):
    topic: ClassVar[str] = "endLoadingTargets"


# ------------------------------------------------------------------
# Outbound: dead ends
# ------------------------------------------------------------------


class NoTargets(FarmEvent):
    topic: ClassVar[str] = "noTargets"


class NoVillages(FarmEvent):
    topic: ClassVar[str] = "noVillages"


class NoUnits(FarmEvent):
    topic: ClassVar[str] = "noUnits"


class NoPreset(FarmEvent):
    topic: ClassVar[str] = "noPreset"


class SingleCycleEnd(FarmEvent):
    topic: ClassVar[str] = "singleCycleEnd"


class SingleCycleEndNoVillages(FarmEvent):
    topic: ClassVar[str] = "singleCycleEndNoVillages"


class SingleCycleNext(FarmEvent):
    topic: ClassVar[str] = "singleCycleNext"
    next_run: float


class SingleCycleNextNoVillages(FarmEvent):
    topic: ClassVar[str] = "singleCycleNextNoVillages"
    next_run: float


# ------------------------------------------------------------------
# Outbound: configuration
# ------------------------------------------------------------------


class SettingsChanged(FarmEvent):
    topic: ClassVar[str] = "settingsChange"
    effects: dict[str, bool]


class SettingError(FarmEvent):
    topic: ClassVar[str] = "settingError"
    key: str
    bounds: dict[str, float] | None = None


class PresetsChanged(FarmEvent):
    topic: ClassVar[str] = "presetsChange"


class GroupsChanged(FarmEvent):
    topic: ClassVar[str] = "groupsChanged"


class EventsReset(FarmEvent):
    topic: ClassVar[str] = "resetEvents"


class Notification(FarmEvent):
    """User-facing message. Suppressed by ``EventBus.notifications_muted``."""

    topic: ClassVar[str] = "notification"
    level: str
    message: str


# ------------------------------------------------------------------
# Inbound triggers
# ------------------------------------------------------------------


class CommandReturned(FarmEvent):
    topic: ClassVar[str] = "commandReturned"
    origin_id: int


class ReportReceived(FarmEvent):
    topic: ClassVar[str] = "reportReceived"
    report: AttackReport


class WindowClosed(FarmEvent):
    topic: ClassVar[str] = "windowClosed"
    name: str


class GroupsUpdated(FarmEvent):
    topic: ClassVar[str] = "groupsUpdated"


class GroupVillageLinked(FarmEvent):
    topic: ClassVar[str] = "groupVillageLinked"
    group_id: int
    village_id: int


class PresetsUpdated(FarmEvent):
    topic: ClassVar[str] = "presetsUpdated"


class Reconnected(FarmEvent):
    topic: ClassVar[str] = "reconnected"


E = TypeVar("E", bound=FarmEvent)
Handler = Callable[[E], "Awaitable[None] | None"]


class EventBus:
    """Publish/subscribe channel keyed by event class."""

    def __init__(self) -> None:
        self._handlers: dict[type[FarmEvent], list[Handler]] = defaultdict(list)
        self._global_handlers: list[Handler] = []
        self._muted = 0
        self._notifications_muted = 0
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_type: type[E], handler: Callable[[E], Any]) -> None:
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: Callable[[FarmEvent], Any]) -> None:
        self._global_handlers.append(handler)

    def unsubscribe_all(self, handler: Callable[[FarmEvent], Any]) -> None:
        if handler in self._global_handlers:
            self._global_handlers.remove(handler)

    @property
    def notifications_enabled(self) -> bool:
        return self._notifications_muted == 0

    def publish(self, event: FarmEvent) -> None:
        if self._muted:
            return
        if isinstance(event, Notification) and self._notifications_muted:
            log.debug("notification_muted", message=event.message)
            return
        for handler in [*self._handlers.get(type(event), ()), *self._global_handlers]:
            result = handler(event)
            if inspect.isawaitable(result):
                self._track(result, event)

    def notify(self, level: str, message: str) -> None:
        self.publish(Notification(level=level, message=message))

    async def drain(self) -> None:
        """Wait until every coroutine handler spawned so far has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @contextmanager
    def muted(self) -> Iterator[None]:
        """Suppress all events inside the block."""
        self._muted += 1
        try:
            yield
        finally:
            self._muted -= 1

    @contextmanager
    def notifications_muted(self) -> Iterator[None]:
        """Suppress user notifications inside the block; other events still flow."""
        self._notifications_muted += 1
        try:
            yield
        finally:
            self._notifications_muted -= 1

    def _track(self, awaitable: Awaitable[None], event: FarmEvent) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                log.error("event_handler_failed", topic=event.topic, error=str(t.exception()))

        task.add_done_callback(_done)
