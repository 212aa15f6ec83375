"""Status line and recent-activity log derived from engine events."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from autofarm.core.events import (
    CommandLimit,
    CommandSent,
    EventsReset,
    FarmEvent,
    LoadingTargetsFinished,
    LoadingTargetsStarted,
    NoPreset,
    NoTargets,
    NoUnits,
    NoVillages,
    Paused,
    PriorityTargetAdded,
    SingleCycleEnd,
    SingleCycleEndNoVillages,
    SingleCycleNext,
    SingleCycleNextNoVillages,
    Started,
    VillageChanged,
    VillageIgnored,
)
from autofarm.core.logging import get_logger

if TYPE_CHECKING:
    from autofarm.core.context import FarmContext
    from autofarm.managers.settings_manager import SettingsManager

log = get_logger("manager.event_log")

EVENTS_KEY = "last_events"

STATUS_BY_EVENT: dict[type[FarmEvent], str] = {
    Started: "attacking",
    CommandSent: "attacking",
    Paused: "paused",
    NoPreset: "paused",
    NoUnits: "no_units",
    NoVillages: "no_villages",
    NoTargets: "no_targets",
    CommandLimit: "command_limit",
    LoadingTargetsStarted: "loading_targets",
    LoadingTargetsFinished: "analysing_targets",
    SingleCycleEnd: "cycle_finished",
    SingleCycleEndNoVillages: "cycle_finished_no_villages",
    SingleCycleNext: "waiting_next_cycle",
    SingleCycleNextNoVillages: "waiting_next_cycle_no_villages",
}

# Event type -> setting that enables recording it
RECORDED_EVENTS: dict[type[FarmEvent], str] = {
    CommandSent: "event_attack",
    VillageChanged: "event_village_change",
    PriorityTargetAdded: "event_priority_add",
    VillageIgnored: "event_ignored_village",
}


class EventLog:
    """Tracks the current status and the newest recorded events."""

    def __init__(self, ctx: FarmContext, settings: SettingsManager) -> None:
        self.ctx = ctx
        self.settings = settings
        self.status = "paused"
        self.entries: list[dict[str, Any]] = []

    async def load(self) -> None:
        self.entries = await self.ctx.store.get(EVENTS_KEY, [])

    def attach(self) -> None:
        self.ctx.bus.subscribe_all(self.on_event)

    def detach(self) -> None:
        self.ctx.bus.unsubscribe_all(self.on_event)

    def on_event(self, event: FarmEvent):
        status = STATUS_BY_EVENT.get(type(event))
        if status:
            self.status = status

        if isinstance(event, EventsReset):
            self.entries = []
            return self._save()

        toggle = RECORDED_EVENTS.get(type(event))
        if toggle is None or not getattr(self.settings.settings, toggle):
            return None

        entry = {"topic": event.topic, "time": self.ctx.now(), "data": event.payload()}
        limit = self.settings.settings.events_limit
        self.entries = [entry, *self.entries][:limit]
        return self._save()

    async def _save(self) -> None:
        await self.ctx.store.set(EVENTS_KEY, self.entries)
