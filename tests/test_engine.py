"""Tests for the farm engine run state machine."""

from __future__ import annotations

import asyncio

import pytest

from fakes import Harness, barbarian, settle, village

from autofarm.core.collaborators import Dispatch, DispatchResult
from autofarm.core.config import EngineConfig
from autofarm.core.events import (
    CommandLimit,
    CommandReturned,
    CommandSent,
    GroupVillageLinked,
    NoPreset,
    NoTargets,
    NoVillages,
    Notification,
    Paused,
    PresetsUpdated,
    Reconnected,
    SettingError,
    SettingsChanged,
    SingleCycleEnd,
    SingleCycleEndNoVillages,
    SingleCycleNext,
    SingleCycleNextNoVillages,
    Started,
    VillageChanged,
)
from autofarm.core.exceptions import NoPresetError, NoVillageError, SettingValidationError
from autofarm.engine import LAST_ACTIVITY_KEY, RESUME_TIMER
from autofarm.managers.run_modes import CYCLE_TIMER

NO_UNITS = DispatchResult.NO_UNITS
COMMAND_LIMIT = DispatchResult.COMMAND_LIMIT


def _targets():
    return [barbarian(10, 501, 500), barbarian(11, 502, 500), barbarian(12, 503, 500)]


class TestStartPreconditions:
    def test_no_preset(self):
        h = Harness(villages=[village(1)], entries=_targets())

        async def scenario():
            await h.init(preset_name="Missing")
            with pytest.raises(NoPresetError):
                await h.engine.start()

        asyncio.run(scenario())
        assert not h.engine.running
        assert [e.level for e in h.of_type(Notification)] == ["error"]

    def test_no_villages(self):
        h = Harness(villages=[], entries=_targets())

        async def scenario():
            await h.init()
            with pytest.raises(NoVillageError):
                await h.engine.start()

        asyncio.run(scenario())
        assert not h.engine.running

    def test_auto_start_is_silent(self):
        h = Harness(villages=[], entries=_targets())

        async def scenario():
            await h.init()
            with pytest.raises(NoVillageError):
                await h.engine.start(auto=True)

        asyncio.run(scenario())
        assert h.of_type(Notification) == []

    def test_no_free_village_stays_paused(self):
        h = Harness(villages=[village(1), village(2)], entries=_targets())

        async def scenario():
            await h.init()
            h.engine.pool.mark_waiting(1)
            h.engine.pool.mark_waiting(2)
            return await h.engine.start()

        assert asyncio.run(scenario()) is False
        assert not h.engine.running
        assert h.topics() == ["noVillages"]


class TestContinuousRun:
    def setup_method(self):
        self.h = Harness(villages=[village(1), village(2, x=502)], entries=_targets())

    def test_start_selects_first_village_and_attacks(self):
        async def scenario():
            engine = await self.h.init()
            assert await engine.start()
            await settle()
            return engine

        engine = asyncio.run(scenario())
        assert engine.running
        assert isinstance(self.h.events[0], Started)
        assert self.h.of_type(VillageChanged)[0].village.id == 1
        assert self.h.commander.sent == [(1, 10)]
        sent = self.h.of_type(CommandSent)
        assert [(e.origin.id, e.target.id) for e in sent] == [(1, 10)]
        assert engine.last_attack == self.h.clock.now
        # cursor moved on to the next target
        assert engine.state.target.id == 11
        assert engine.selector.cursors[1] == 1

    def test_no_units_rotates_to_next_village(self):
        self.h.commander.results = [NO_UNITS]

        async def scenario():
            engine = await self.h.init()
            await engine.start()
            await settle()
            return engine

        engine = asyncio.run(scenario())
        assert engine.pool.is_waiting(1)
        assert engine.selected_village.id == 2
        assert self.h.commander.sent[0][0] == 2

    def test_command_limit_published(self):
        self.h.commander.results = [COMMAND_LIMIT]

        async def scenario():
            engine = await self.h.init()
            await engine.start()
            await settle()

        asyncio.run(scenario())
        assert self.h.of_type(CommandLimit)[0].village.id == 1

    def test_global_waiting_and_resume(self):
        self.h.commander.results = [NO_UNITS, NO_UNITS]

        async def scenario():
            engine = await self.h.init()
            await engine.start()
            await settle()
            assert engine.pool.global_waiting
            engine.ctx.bus.publish(CommandReturned(origin_id=2))
            await settle()
            return engine, engine.ctx.timers.is_pending(RESUME_TIMER)

        engine, resume_pending = asyncio.run(scenario())
        assert resume_pending
        assert not engine.pool.global_waiting
        assert engine.pool.waiting == {1}
        assert engine.selected_village.id == 2

    def test_global_waiting_reports_no_villages(self):
        self.h.commander.results = [NO_UNITS, NO_UNITS]

        async def scenario():
            engine = await self.h.init()
            await engine.start()
            await settle()
            return engine

        engine = asyncio.run(scenario())
        assert engine.pool.global_waiting
        assert len(self.h.of_type(NoVillages)) == 1
        assert engine.running

    def test_pool_change_releases_global_waiting(self):
        self.h.commander.results = [NO_UNITS, NO_UNITS]

        async def scenario():
            engine = await self.h.init()
            await engine.start()
            await settle()
            self.h.player.villages.append(village(3, x=503))
            await engine.refresh_villages()
            await settle()
            return engine

        engine = asyncio.run(scenario())
        assert not engine.pool.global_waiting
        assert (3, 12) in self.h.commander.sent

    def test_no_targets_anywhere(self):
        h = Harness(villages=[village(1), village(2, x=100, y=100)], entries=[])

        async def scenario():
            await h.init()
            await h.engine.start()
            await settle()

        asyncio.run(scenario())
        assert len(h.of_type(NoTargets)) == 1
        assert h.commander.sent == []

    def test_origin_without_targets_skipped(self):
        h = Harness(villages=[village(1, x=100, y=100), village(2)], entries=_targets())

        async def scenario():
            await h.init()
            await h.engine.start()
            await settle()

        asyncio.run(scenario())
        assert h.commander.sent == [(2, 10)]
        assert h.of_type(NoTargets) == []


class TestStopAndSwitch:
    def setup_method(self):
        self.h = Harness(villages=[village(1)], entries=_targets())

    def test_stop_cancels_pending_step(self):
        async def scenario():
            engine = await self.h.init()
            await engine.start()
            await engine.stop()
            await settle()
            return engine

        engine = asyncio.run(scenario())
        assert not engine.running
        assert self.h.commander.sent == []
        assert self.h.topics()[-2:] == ["pause", "notification"]

    def test_switch_toggles(self):
        async def scenario():
            engine = await self.h.init()
            first = await engine.switch()
            second = await engine.switch()
            return first, second

        assert asyncio.run(scenario()) == (True, False)

    def test_result_of_previous_run_discarded(self):
        class GatedCommander:
            def __init__(self):
                self.gate: asyncio.Event | None = None
                self.calls = 0

            async def send(self, origin, target, presets):
                self.calls += 1
                await self.gate.wait()
                return Dispatch(DispatchResult.SENT)

        commander = GatedCommander()
        self.h.ctx.collaborators.commander = commander

        async def scenario():
            commander.gate = asyncio.Event()
            engine = await self.h.init()
            await engine.start()
            await settle()
            await engine.stop()
            await engine.start()
            await settle()
            commander.gate.set()
            await settle()
            return engine

        engine = asyncio.run(scenario())
        assert commander.calls == 2
        assert len(self.h.of_type(CommandSent)) == 1

    def test_expired_activity_resets_cursors(self):
        async def scenario():
            engine = await self.h.init()
            engine.selector.cursors = {1: 2}
            engine.last_activity = self.h.clock.now - 31 * 60
            await engine.start()
            return engine

        engine = asyncio.run(scenario())
        assert engine.selector.cursors.get(1, 0) == 0
        assert asyncio.run(self.h.store.get(LAST_ACTIVITY_KEY)) == self.h.clock.now

    def test_recent_activity_keeps_cursors(self):
        async def scenario():
            engine = await self.h.init()
            engine.selector.cursors = {1: 2}
            engine.last_activity = self.h.clock.now - 60
            await engine.start()
            return engine

        engine = asyncio.run(scenario())
        assert engine.selector.cursors[1] == 2


class TestSingleCycle:
    def test_interval_schedules_next_cycle(self):
        h = Harness(villages=[village(1)], entries=_targets(), results=[NO_UNITS])

        async def scenario():
            engine = await h.init(single_cycle=True, single_cycle_interval="00:01:00")
            await engine.start()
            await settle()
            return engine, engine.ctx.timers.due_at(CYCLE_TIMER)

        engine, due = asyncio.run(scenario())
        expected = h.clock.now + 60
        assert due == pytest.approx(expected)
        assert [e.next_run for e in h.of_type(SingleCycleNext)] == [pytest.approx(expected)]
        assert engine.running
        assert not engine.pool.global_waiting

    def test_without_interval_stops_silently(self):
        h = Harness(villages=[village(1)], entries=_targets(), results=[NO_UNITS])

        async def scenario():
            engine = await h.init(single_cycle=True)
            await engine.start(auto=True)
            await settle()
            return engine

        engine = asyncio.run(scenario())
        assert not engine.running
        assert len(h.of_type(SingleCycleEnd)) == 1
        assert len(h.of_type(Paused)) == 1
        assert h.of_type(Notification) == []

    def test_each_village_visited_once(self):
        h = Harness(
            villages=[village(1), village(2, x=502)],
            entries=_targets(),
            results=[DispatchResult.SENT, NO_UNITS, NO_UNITS],
        )

        async def scenario():
            engine = await h.init(single_cycle=True, random_base=0)
            await engine.start()
            await settle(200)
            return engine

        engine = asyncio.run(scenario())
        assert [e.village.id for e in h.of_type(VillageChanged)] == [1, 2]
        assert not engine.running
        assert len(h.of_type(SingleCycleEnd)) == 1

    def test_empty_cycle_with_interval(self):
        h = Harness(villages=[village(1)], entries=_targets())

        async def scenario():
            engine = await h.init(single_cycle=True, single_cycle_interval="00:10:00")
            engine.pool.mark_waiting(1)
            await engine.start()
            return engine

        engine = asyncio.run(scenario())
        assert engine.running
        assert h.of_type(SingleCycleNextNoVillages)[0].next_run == h.clock.now + 600

    def test_empty_cycle_without_interval(self):
        h = Harness(villages=[village(1)], entries=_targets())

        async def scenario():
            engine = await h.init(single_cycle=True)
            engine.pool.mark_waiting(1)
            before = engine.last_activity
            started = await engine.start()
            return engine, started, before

        engine, started, before = asyncio.run(scenario())
        assert started is False
        assert not engine.running
        assert engine.last_activity == before
        assert len(h.of_type(SingleCycleEndNoVillages)) == 1


class TestSettingsWhileRunning:
    def setup_method(self):
        self.h = Harness(villages=[village(1)], entries=_targets())

    def test_invalid_setting_publishes_error(self):
        async def scenario():
            engine = await self.h.init()
            with pytest.raises(SettingValidationError):
                await engine.update_settings({"events_limit": 500})

        asyncio.run(scenario())
        errors = self.h.of_type(SettingError)
        assert errors[0].key == "events_limit"
        assert errors[0].bounds == {"min": 0, "max": 150}

    def test_running_farm_restarts_silently(self):
        async def scenario():
            engine = await self.h.init()
            await engine.start()
            run_id = engine.run_id
            self.h.events.clear()
            await engine.update_settings({"max_distance": 5})
            return engine, run_id

        engine, old_run = asyncio.run(scenario())
        assert engine.running
        assert engine.run_id != old_run
        assert self.h.topics() == ["settingsChange"]
        effects = self.h.of_type(SettingsChanged)[0].effects
        assert effects == {"targets": True, "cursors": True}

    def test_preset_removed_stops_farm(self):
        async def scenario():
            engine = await self.h.init()
            await engine.start()
            self.h.presets.presets = []
            engine.ctx.bus.publish(PresetsUpdated())
            await settle()
            return engine

        engine = asyncio.run(scenario())
        assert not engine.running
        assert len(self.h.of_type(NoPreset)) == 1

    def test_reconnect_schedules_restart(self):
        async def scenario():
            engine = await self.h.init()
            await engine.start()
            engine.ctx.bus.publish(Reconnected())
            await settle()
            return engine.ctx.timers.is_pending("reconnect")

        assert asyncio.run(scenario())

    def test_include_group_link_clears_catalog(self):
        self.h.player.add_group(7, "include")

        async def scenario():
            engine = await self.h.init(group_include=7)
            await engine.catalog.get_targets(engine.pool.get(1))
            assert engine.catalog.has(1)
            self.h.player.members[7].add(99)
            engine.ctx.bus.publish(GroupVillageLinked(group_id=7, village_id=99))
            await settle()
            return engine

        engine = asyncio.run(scenario())
        assert not engine.catalog.has(1)
        assert engine.pool.included_ids == {99}

    def test_status_snapshot(self):
        async def scenario():
            engine = await self.h.init()
            await engine.start()
            await settle()
            return engine.status()

        status = asyncio.run(scenario())
        assert status["running"]
        assert status["mode"] == "continuous"
        assert status["selected_village"] == 1
        assert status["attacks"] == 1
        assert status["status"] == "attacking"


class TestRestartWhileAllWaiting:
    def setup_method(self):
        self.h = Harness(
            villages=[village(1), village(2, x=502)],
            entries=_targets(),
            results=[NO_UNITS, NO_UNITS],
            config=EngineConfig(reconnect_delay=0),
        )

    def _release_after(self, restart):
        async def scenario():
            engine = await self.h.init()
            await engine.start()
            await settle()
            assert engine.pool.global_waiting
            run_id = engine.run_id
            await restart(engine)
            await settle()
            parked = (engine.running, engine.pool.global_waiting, engine.run_id != run_id)
            engine.ctx.bus.publish(CommandReturned(origin_id=2))
            await settle()
            return engine, parked, engine.ctx.timers.is_pending(RESUME_TIMER)

        return asyncio.run(scenario())

    def test_settings_change_keeps_run_parked(self):
        async def restart(engine):
            await engine.update_settings({"max_distance": 20})

        engine, parked, resume_pending = self._release_after(restart)
        assert parked == (True, True, True)
        assert resume_pending
        assert engine.selected_village.id == 2
        assert not engine.pool.global_waiting

    def test_reconnect_keeps_run_parked(self):
        async def restart(engine):
            engine.ctx.bus.publish(Reconnected())

        engine, parked, resume_pending = self._release_after(restart)
        assert parked == (True, True, True)
        assert resume_pending
        assert engine.running

    def test_auto_start_parks_instead_of_pausing(self):
        async def scenario():
            engine = await self.h.init()
            engine.pool.mark_waiting(1)
            engine.pool.mark_waiting(2)
            return engine, await engine.start(auto=True)

        engine, started = asyncio.run(scenario())
        assert started is True
        assert engine.running
        assert engine.pool.global_waiting
        assert self.h.topics() == ["start", "noVillages"]
        assert self.h.of_type(Notification) == []
