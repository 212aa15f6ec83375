"""Origin rotation strategies of a running farm.

Continuous mode rotates over the free villages forever. Single-cycle
mode walks each free village once and then either stops or waits for
the configured interval before starting another cycle.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from autofarm.core.events import (
    SingleCycleEnd,
    SingleCycleEndNoVillages,
    SingleCycleNext,
    SingleCycleNextNoVillages,
    Started,
)
from autofarm.core.logging import get_logger
from autofarm.models import Village

if TYPE_CHECKING:
    from autofarm.engine import FarmEngine

log = get_logger("manager.run_modes")

CYCLE_TIMER = "cycle"


class RunMode:
    """Base class: how the engine picks origins while running."""

    name = "base"
    # Whether an all-waiting pool parks the run until a command returns
    waits_globally = True

    def __init__(self, engine: FarmEngine) -> None:
        self.engine = engine

    async def start(self, auto: bool) -> bool:
        """Enter the mode. False leaves the engine paused."""
        raise NotImplementedError

    async def next_village(self) -> bool:
        """Select the next origin. False when none could be selected."""
        raise NotImplementedError

    def can_continue(self) -> bool:
        """Whether analysis steps may run right now."""
        return True

    async def _take_free(self, queue: deque[Village]) -> bool:
        """Select the first still-free village of ``queue``."""
        engine = self.engine
        while queue:
            candidate = engine.pool.get(queue.popleft().id)
            if candidate and engine.is_free(candidate.id):
                await engine.select_village(candidate)
                return True
        return False


class ContinuousMode(RunMode):
    name = "continuous"

    def __init__(self, engine: FarmEngine) -> None:
        super().__init__(engine)
        self.remaining: deque[Village] = deque()

    async def start(self, auto: bool) -> bool:
        engine = self.engine
        free = engine.free_villages()
        if not free:
            if auto and engine.pool.villages and engine.pool.all_waiting():
                # Restarted while every origin is away: stay parked until a command returns
                engine.ctx.bus.publish(Started())
                engine.pool.global_waiting = True
                log.info("start_parked_all_waiting")
                engine.report_no_villages()
                return True
            engine.report_no_villages()
            return False

        engine.ctx.bus.publish(Started())
        if not auto:
            engine.ctx.bus.notify("success", "Farm started")

        self.remaining = deque(free)
        await self._take_free(self.remaining)
        engine.schedule_analyse()
        return True

    async def next_village(self) -> bool:
        engine = self.engine
        if engine.pool.single_village:
            return False

        for _ in range(engine.ctx.config.max_rotation_attempts):
            if not self.remaining:
                self.remaining = deque(engine.free_villages())
                if not self.remaining:
                    engine.report_no_villages()
                    return False
            if await self._take_free(self.remaining):
                return True

        log.warning("rotation_attempts_exhausted")
        engine.report_no_villages()
        return False


class CyclePhase(StrEnum):
    IDLE = "idle"
    CYCLING = "cycling"
    WAITING = "waiting"  # between two cycles


class SingleCycleMode(RunMode):
    name = "single_cycle"
    waits_globally = False

    def __init__(self, engine: FarmEngine) -> None:
        super().__init__(engine)
        self.worklist: deque[Village] = deque()
        self.phase = CyclePhase.IDLE
        self.cycles = 0

    def can_continue(self) -> bool:
        return self.phase == CyclePhase.CYCLING

    async def start(self, auto: bool) -> bool:
        self.engine.ctx.bus.publish(Started())
        await self.begin_cycle(auto)
        return True

    async def begin_cycle(self, auto: bool = True) -> None:
        engine = self.engine
        bus = engine.ctx.bus
        interval = engine.settings.cycle_interval
        free = engine.free_villages()

        if not free:
            if interval:
                next_run = engine.ctx.now() + interval
                bus.publish(SingleCycleNextNoVillages(next_run=next_run))
                bus.notify("error", f"No villages available, next cycle at {_clock_time(next_run)}")
                self._schedule_next(interval)
            else:
                self.phase = CyclePhase.IDLE
                bus.publish(SingleCycleEndNoVillages())
                bus.notify("error", "No villages available, single cycle finished")
                await engine.stop_silently()
            return

        if not auto:
            bus.notify("success", "Farm started")

        self.cycles += 1
        self.phase = CyclePhase.CYCLING
        self.worklist = deque(free)
        log.info("cycle_started", cycle=self.cycles, villages=len(free))
        await self.next_village()
        if engine.running and self.can_continue():
            engine.schedule_analyse()

    async def next_village(self) -> bool:
        if await self._take_free(self.worklist):
            return True
        await self.end_cycle()
        return False

    async def end_cycle(self) -> None:
        engine = self.engine
        settings = engine.settings
        bus = engine.ctx.bus
        interval = settings.cycle_interval
        log.info("cycle_finished", cycle=self.cycles)

        if interval:
            next_run = engine.ctx.now() + interval
            bus.publish(SingleCycleNext(next_run=next_run))
            if settings.single_cycle_notifs:
                bus.notify("success", f"Next cycle at {_clock_time(next_run)}")
            self._schedule_next(interval)
        else:
            self.phase = CyclePhase.IDLE
            bus.publish(SingleCycleEnd())
            if settings.single_cycle_notifs:
                bus.notify("error", "Single cycle finished")
            await engine.stop_silently()

    def _schedule_next(self, interval: float) -> None:
        engine = self.engine
        run_id = engine.run_id
        self.phase = CyclePhase.WAITING

        async def _next_cycle() -> None:
            if engine.is_current(run_id):
                await self.begin_cycle()

        engine.ctx.timers.schedule(CYCLE_TIMER, interval, _next_cycle)


def _clock_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%H:%M:%S")
