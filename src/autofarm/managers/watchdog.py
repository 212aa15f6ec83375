"""Stall detection for a running farm."""

from __future__ import annotations

from typing import TYPE_CHECKING

from autofarm.core.events import StallRecovered
from autofarm.core.logging import get_logger

if TYPE_CHECKING:
    from autofarm.engine import FarmEngine

log = get_logger("manager.watchdog")

WATCHDOG_TIMER = "watchdog"


class Watchdog:
    """Restarts the run when no attack was sent for too long."""

    def __init__(self, engine: FarmEngine) -> None:
        self.engine = engine
        self.recoveries = 0

    def start(self) -> None:
        ctx = self.engine.ctx
        ctx.timers.schedule_periodic(WATCHDOG_TIMER, ctx.config.watchdog_interval, self.check)

    def tolerance(self) -> float:
        """Allowed idle time. Single-cycle runs also wait out their interval."""
        config = self.engine.ctx.config
        settings = self.engine.settings
        tolerance = config.watchdog_tolerance
        if settings.single_cycle and settings.cycle_interval:
            tolerance += settings.cycle_interval + config.cycle_grace
        return tolerance

    def idle_time(self) -> float:
        engine = self.engine
        if engine.state is None:
            return 0.0
        reference = max(engine.last_attack or 0.0, engine.state.started_at)
        return engine.ctx.now() - reference

    async def check(self) -> bool:
        """Restart a stalled run. True if a restart was issued."""
        if not self.engine.running:
            return False
        if self.engine.pool.global_waiting:
            log.debug("watchdog_skipped_global_waiting")
            return False

        idle = self.idle_time()
        tolerance = self.tolerance()
        if idle <= tolerance:
            return False

        self.recoveries += 1
        log.warning("farm_stalled", idle=round(idle), tolerance=round(tolerance))
        await self.engine.ctx.store.log_action("watchdog_restart", detail=f"idle for {round(idle)}s")
        await self.engine.restart("watchdog")
        self.engine.ctx.bus.publish(StallRecovered(idle_seconds=idle))
        return True
