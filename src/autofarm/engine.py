"""Farm engine - run state machine tying pool, catalog and selector together."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from autofarm.core.collaborators import Dispatch, DispatchResult
from autofarm.core.context import FarmContext
from autofarm.core.events import (
    CommandLimit,
    CommandReturned,
    CommandSent,
    EventsReset,
    GroupsChanged,
    GroupsUpdated,
    GroupVillageLinked,
    NoPreset,
    NoTargets,
    NoUnits,
    NoVillages,
    Paused,
    PresetsChanged,
    PresetsUpdated,
    Reconnected,
    ReportReceived,
    SettingError,
    SettingsChanged,
    VillageChanged,
    VillagesUpdated,
    WindowClosed,
)
from autofarm.core.exceptions import (
    NoPresetError,
    NoVillageError,
    PreconditionError,
    SettingValidationError,
)
from autofarm.core.humanizer import Humanizer
from autofarm.core.logging import bind_run, clear_run, get_logger
from autofarm.managers.event_log import EventLog
from autofarm.managers.report_manager import ReportManager
from autofarm.managers.run_modes import CYCLE_TIMER, ContinuousMode, RunMode, SingleCycleMode
from autofarm.managers.settings_manager import (
    EFFECT_ORDER,
    Effect,
    FarmSettings,
    SettingsChange,
    SettingsManager,
)
from autofarm.managers.target_catalog import TargetCatalog
from autofarm.managers.target_selector import TargetSelector
from autofarm.managers.village_pool import VillagePool
from autofarm.managers.watchdog import Watchdog
from autofarm.models import Preset, Target, Village

log = get_logger("engine")

ATTACK_TIMER = "attack"
RESUME_TIMER = "resume"
RECONNECT_TIMER = "reconnect"
RUN_TIMERS = (ATTACK_TIMER, CYCLE_TIMER, RESUME_TIMER)

LAST_ACTIVITY_KEY = "last_activity"
LAST_ATTACK_KEY = "last_attack"


@dataclass
class RunState:
    """State of one run. Created fresh on every start."""

    run_id: int
    mode: RunMode
    started_at: float
    village: Village | None = None
    target: Target | None = None
    attacks: int = 0


class FarmEngine:
    """Attack scheduler.

    The engine is paused until ``start`` succeeds. While running, one
    analysis step at a time picks the selected origin's next target and
    hands it to the commander; the step reschedules itself through the
    ``attack`` timer. Every timer callback carries the id of the run that
    scheduled it and does nothing once that run is over.
    """

    def __init__(self, ctx: FarmContext) -> None:
        self.ctx = ctx
        self.settings_manager = SettingsManager(ctx.store)
        self.pool = VillagePool(ctx.collaborators.player)
        self.catalog = TargetCatalog(ctx, self.pool, self.settings_manager)
        self.selector = TargetSelector(ctx, self.catalog, self.pool, self.settings_manager)
        self.reports = ReportManager(
            ctx,
            self.settings_manager,
            self.pool,
            self.catalog,
            self.selector,
            is_running=lambda: self.running,
        )
        self.watchdog = Watchdog(self)
        self.event_log = EventLog(ctx, self.settings_manager)
        self.humanizer = Humanizer(ctx.config.attack_delay_range)
        self.presets: list[Preset] = []
        self.state: RunState | None = None
        self.last_activity = 0.0
        self.last_attack: float | None = None
        self._run_counter = 0
        self._analysing_run: int | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def settings(self) -> FarmSettings:
        return self.settings_manager.settings

    @property
    def running(self) -> bool:
        return self.state is not None

    @property
    def run_id(self) -> int | None:
        return self.state.run_id if self.state else None

    @property
    def selected_village(self) -> Village | None:
        return self.state.village if self.state else None

    def is_current(self, run_id: int | None) -> bool:
        """Whether ``run_id`` identifies the run in progress."""
        return self.state is not None and self.state.run_id == run_id

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Load persisted state and the player's groups, villages and presets."""
        await self.settings_manager.load()
        await self.selector.load()
        await self.event_log.load()
        self.last_activity = await self.ctx.store.get(LAST_ACTIVITY_KEY, 0.0)
        self.last_attack = await self.ctx.store.get(LAST_ATTACK_KEY)

        await self.pool.refresh_groups(self.settings)
        await self.pool.refresh_exceptions()
        await self.refresh_villages()
        await self.refresh_presets()

        self.event_log.attach()
        bus = self.ctx.bus
        bus.subscribe(CommandReturned, self._on_command_returned)
        bus.subscribe(ReportReceived, self._on_report)
        bus.subscribe(WindowClosed, self._on_window_closed)
        bus.subscribe(GroupsUpdated, self._on_groups_updated)
        bus.subscribe(GroupVillageLinked, self._on_group_village_linked)
        bus.subscribe(PresetsUpdated, self._on_presets_updated)
        bus.subscribe(Reconnected, self._on_reconnected)
        log.info(
            "engine_initialized",
            villages=len(self.pool.villages),
            presets=len(self.presets),
        )

    def activate(self) -> None:
        """Start the background timers: watchdog and catalog expiry."""
        self.watchdog.start()
        self.catalog.start_expiry()

    async def shutdown(self) -> None:
        self.ctx.timers.cancel_all()
        self.state = None
        await self.ctx.bus.drain()
        self.event_log.detach()
        log.info("engine_shutdown")

    # ------------------------------------------------------------------
    # Run control
    # ------------------------------------------------------------------

    async def start(self, auto: bool = False) -> bool:
        """Start automation.

        Raises NoPresetError or NoVillageError when a precondition is not
        met. Returns False when the engine stays paused because no origin
        is free or the run mode ended the run right away. ``auto`` marks
        starts not requested by the user; they skip the start notifications.
        """
        if self.state is not None:
            log.debug("start_ignored_already_running")
            return True

        if not self.presets:
            if not auto:
                self.ctx.bus.notify("error", "No preset selected")
            raise NoPresetError("No preset matches the configured preset name")
        if not self.pool.villages:
            if not auto:
                self.ctx.bus.notify("error", "No villages available")
            raise NoVillageError("No origin village is available")

        if self._activity_expired():
            log.info("activity_expired", last_activity=self.last_activity)
            await self.selector.reset()

        self._run_counter += 1
        mode: RunMode = SingleCycleMode(self) if self.settings.single_cycle else ContinuousMode(self)
        self.state = RunState(run_id=self._run_counter, mode=mode, started_at=self.ctx.now())
        bind_run(self._run_counter, mode.name)

        if not await mode.start(auto):
            self.state = None
            log.info("start_aborted_no_free_villages")
            clear_run()
            return False
        if self.state is None:
            # The mode ended the run while entering it
            log.info("start_ended_immediately", mode=mode.name)
            return False

        await self.update_activity()
        log.info("farm_started", mode=mode.name, run=self._run_counter, auto=auto)
        return True

    async def stop(self) -> None:
        """Pause automation. Always succeeds."""
        self.ctx.timers.cancel(*RUN_TIMERS)
        run_id = self.run_id
        self.state = None
        self.ctx.bus.publish(Paused())
        self.ctx.bus.notify("success", "Farm paused")
        log.info("farm_stopped", run=run_id)
        clear_run()

    async def stop_silently(self) -> None:
        with self.ctx.bus.notifications_muted():
            await self.stop()

    async def switch(self) -> bool:
        """Toggle between running and paused. Returns the new running state."""
        if self.running:
            await self.stop()
            return False
        return await self.start()

    async def restart(self, reason: str, mute_events: bool = False) -> bool:
        """Stop and start again without notifying the user."""
        log.info("farm_restarting", reason=reason)
        with self.ctx.bus.notifications_muted():
            if mute_events:
                with self.ctx.bus.muted():
                    return await self._restart(reason)
            return await self._restart(reason)

    async def _restart(self, reason: str) -> bool:
        await self.stop()
        try:
            return await self.start(auto=True)
        except PreconditionError as e:
            log.warning("restart_failed", reason=reason, error=str(e))
            return False

    # ------------------------------------------------------------------
    # Origins
    # ------------------------------------------------------------------

    def free_villages(self) -> list[Village]:
        return self.pool.get_free_villages(self.settings.ignore_full_res)

    def is_free(self, village_id: int) -> bool:
        return any(v.id == village_id for v in self.free_villages())

    def report_no_villages(self) -> None:
        """Announce that no origin can attack: no units or no villages."""
        if self.pool.single_village:
            self.ctx.bus.publish(NoUnits())
        else:
            self.ctx.bus.publish(NoVillages())

    async def select_village(self, village: Village) -> None:
        if self.state is None:
            return
        self.state.village = village
        self.state.target = None
        self.ctx.bus.publish(VillageChanged(village=village))
        await self.update_activity()
        log.debug("village_selected", village=village.id)

    async def next_village(self) -> bool:
        """Advance to the next origin according to the run mode."""
        if self.state is None:
            return False
        return await self.state.mode.next_village()

    async def mark_waiting(self, village_id: int) -> None:
        """Park a village until its commands return."""
        self.pool.mark_waiting(village_id)
        log.info("village_waiting", village=village_id)
        if self.state is None or not self.state.mode.waits_globally:
            return
        if not self.pool.global_waiting and self.pool.all_waiting():
            self.pool.global_waiting = True
            log.info("all_villages_waiting")
            self.report_no_villages()

    async def command_returned(self, village_id: int) -> None:
        """Release a village whose commands came back."""
        if not self.pool.release(village_id):
            return
        log.debug("village_released", village=village_id)
        if not self.pool.global_waiting:
            return

        self.pool.global_waiting = False
        if self.settings.single_cycle or not self.running:
            return

        village = self.pool.get(village_id)
        if village:
            await self.select_village(village)
        run_id = self.run_id

        async def _resume() -> None:
            if self.is_current(run_id):
                await self.analyse()

        self.ctx.timers.schedule(RESUME_TIMER, self.ctx.config.resume_delay, _resume)
        log.info("resume_scheduled", village=village_id, delay=self.ctx.config.resume_delay)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def schedule_analyse(self, delay: float = 0.0) -> None:
        if self.state is None:
            return
        run_id = self.state.run_id

        async def _step() -> None:
            if self.is_current(run_id):
                await self.analyse()

        self.ctx.timers.schedule(ATTACK_TIMER, delay, _step)

    async def analyse(self) -> None:
        """One scheduling step: pick a target and dispatch an attack."""
        if self.state is None or self._analysing_run == self.state.run_id:
            return
        run_id = self._analysing_run = self.state.run_id
        try:
            await self._analyse(run_id)
        finally:
            if self._analysing_run == run_id:
                self._analysing_run = None

    async def _analyse(self, run_id: int) -> None:
        if not self.state.mode.can_continue():
            return

        village = await self._ensure_village()
        if village is None or not self.is_current(run_id):
            return

        if not await self._load_targets(run_id):
            return

        village = self.state.village
        if not await self.selector.has_target(village):
            self.schedule_analyse()
            return

        target = self.state.target or await self.selector.select_next(village, select_only=True)
        if target is None:
            self.schedule_analyse()
            return
        self.state.target = target

        log.debug("dispatching", village=village.id, target=target.id)
        dispatch = await self.ctx.collaborators.commander.send(village, target, self.presets)
        if not self.is_current(run_id):
            log.debug("dispatch_result_discarded", village=village.id, result=dispatch.result)
            return
        await self._handle_dispatch(village, target, dispatch)

    async def _ensure_village(self) -> Village | None:
        """The selected origin if it can attack, otherwise the next one."""
        village = self.state.village
        if village is not None and self.is_free(village.id):
            return village
        if self.state.mode.waits_globally and self.pool.all_waiting():
            return None
        if await self.next_village() and self.state is not None:
            return self.state.village
        return None

    async def _load_targets(self, run_id: int) -> bool:
        """Make sure the selected origin has targets, rotating origins if not.

        Every origin is tried at most once per call. Returns False when no
        origin has targets or the run ended meanwhile.
        """
        tried: set[int] = set()
        while self.is_current(run_id):
            village = self.state.village
            if village is None or village.id in tried:
                break
            tried.add(village.id)

            targets = await self.catalog.get_targets(village)
            if not self.is_current(run_id):
                return False
            if targets:
                return True

            log.info("no_targets_for_village", village=village.id)
            if not await self.next_village():
                break

        if self.is_current(run_id) and self.state.mode.can_continue():
            self.ctx.bus.publish(NoTargets())
            log.info("no_targets")
        return False

    async def _handle_dispatch(self, village: Village, target: Target, dispatch: Dispatch) -> None:
        state = self.state
        if dispatch.result == DispatchResult.SENT:
            state.attacks += 1
            self.ctx.bus.publish(CommandSent(origin=village, target=target))
            await self._record_attack()
            state.target = await self.selector.select_next(village)
            if self.state is not state:
                return
            self.schedule_analyse(self.humanizer.attack_delay(self.settings.random_base))
            return

        if dispatch.result == DispatchResult.COMMAND_LIMIT:
            self.ctx.bus.publish(CommandLimit(village=village))
        log.info("village_exhausted", village=village.id, result=dispatch.result, detail=dispatch.detail)
        state.target = None
        await self.mark_waiting(village.id)
        if self.pool.global_waiting or self.state is not state:
            return
        if await self.next_village() and self.state is state and state.mode.can_continue():
            self.schedule_analyse()

    # ------------------------------------------------------------------
    # Settings and refreshes
    # ------------------------------------------------------------------

    async def update_settings(self, changes: Mapping[str, Any]) -> SettingsChange:
        """Validate, persist and apply a settings update.

        An invalid value publishes SettingError and re-raises; nothing is
        changed in that case. A running farm is restarted silently so the
        new configuration takes effect at once.
        """
        try:
            change = await self.settings_manager.update(changes)
        except SettingValidationError as e:
            self.ctx.bus.publish(SettingError(key=e.key, bounds=e.bounds))
            raise

        if not change:
            return change

        await self._apply_effects(change.effects)
        if self.running:
            await self.restart("settings", mute_events=True)
        self.ctx.bus.publish(SettingsChanged(effects={e.value: True for e in change.effects}))
        return change

    async def _apply_effects(self, effects: set[Effect]) -> None:
        for effect in EFFECT_ORDER:
            if effect not in effects:
                continue
            if effect == Effect.GROUPS:
                await self.pool.refresh_groups(self.settings)
                await self.pool.refresh_exceptions()
            elif effect == Effect.VILLAGES:
                await self.refresh_villages()
            elif effect == Effect.PRESET:
                await self.refresh_presets()
                self.pool.reset_waiting()
            elif effect == Effect.TARGETS:
                self.catalog.clear()
            elif effect == Effect.CURSORS:
                await self.selector.reset()
            elif effect == Effect.EVENTS:
                self.ctx.bus.publish(EventsReset())
            log.debug("effect_applied", effect=effect.value)

    async def refresh_villages(self) -> list[Village]:
        """Recompute the pool; resumes a globally waiting run if possible."""
        villages = await self.pool.recompute()
        if self.state and self.state.village and not self.pool.get(self.state.village.id):
            self.state.village = None
            self.state.target = None

        if self.running and self.pool.global_waiting and self.pool.has_unwaiting():
            self.pool.global_waiting = False
            log.info("global_waiting_released")
            self.schedule_analyse()

        self.ctx.bus.publish(VillagesUpdated(village_ids=[v.id for v in villages]))
        return villages

    async def refresh_presets(self) -> list[Preset]:
        """Select the presets whose cleaned name matches the configured one."""
        name = self.settings.preset_name
        presets = await self.ctx.collaborators.presets.get_presets()
        self.presets = [p.without_empty_units() for p in presets if name and p.clean_name == name]
        log.debug("presets_refreshed", name=name, matched=len(self.presets))
        return self.presets

    # ------------------------------------------------------------------
    # Inbound triggers
    # ------------------------------------------------------------------

    async def _on_command_returned(self, event: CommandReturned) -> None:
        await self.command_returned(event.origin_id)

    async def _on_report(self, event: ReportReceived) -> None:
        await self.reports.handle(event.report)

    async def _on_window_closed(self, event: WindowClosed) -> None:
        await self.reports.window_closed(event.name)

    async def _on_groups_updated(self, _event: GroupsUpdated) -> None:
        await self.pool.refresh_groups(self.settings)
        await self.pool.refresh_exceptions()
        self.ctx.bus.publish(GroupsChanged())

    async def _on_group_village_linked(self, event: GroupVillageLinked) -> None:
        exception_groups = {g.id for g in (self.pool.group_ignore, self.pool.group_include) if g}
        if event.group_id in exception_groups:
            await self.pool.refresh_exceptions()
        await self.refresh_villages()
        if self.pool.group_include and event.group_id == self.pool.group_include.id:
            self.catalog.clear()

    async def _on_presets_updated(self, _event: PresetsUpdated) -> None:
        await self.refresh_presets()
        self.ctx.bus.publish(PresetsChanged())
        if not self.presets and self.running:
            self.ctx.bus.publish(NoPreset())
            await self.stop()

    async def _on_reconnected(self, _event: Reconnected) -> None:
        if not self.running:
            return
        run_id = self.run_id

        async def _reconnect() -> None:
            if self.is_current(run_id):
                await self.restart("reconnect")

        log.warning("reconnect_restart_scheduled", delay=self.ctx.config.reconnect_delay)
        self.ctx.timers.schedule(RECONNECT_TIMER, self.ctx.config.reconnect_delay, _reconnect)

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    async def update_activity(self) -> None:
        self.last_activity = self.ctx.now()
        await self.ctx.store.set(LAST_ACTIVITY_KEY, self.last_activity)

    async def _record_attack(self) -> None:
        self.last_attack = self.ctx.now()
        await self.ctx.store.set(LAST_ATTACK_KEY, self.last_attack)
        await self.update_activity()

    def _activity_expired(self) -> bool:
        """Whether the farm was idle long enough to drop cursors and priorities."""
        if not self.last_activity:
            return False
        settings = self.settings
        idle = self.ctx.now() - self.last_activity
        if settings.single_cycle and settings.cycle_interval:
            return idle > settings.cycle_interval + self.ctx.config.cycle_grace
        return idle > self.ctx.config.data_expire_time

    def status(self) -> dict[str, Any]:
        """Snapshot for the API and the CLI."""
        state = self.state
        return {
            "running": self.running,
            "status": self.event_log.status,
            "mode": state.mode.name if state else None,
            "selected_village": state.village.id if state and state.village else None,
            "selected_target": state.target.id if state and state.target else None,
            "attacks": state.attacks if state else 0,
            "villages": len(self.pool.villages),
            "waiting": sorted(self.pool.waiting),
            "global_waiting": self.pool.global_waiting,
            "presets": [p.name for p in self.presets],
            "last_attack": self.last_attack,
            "last_activity": self.last_activity,
            "next_cycle": self.ctx.timers.due_at(CYCLE_TIMER),
        }
