"""Report feedback - ignore costly targets, prioritise full hauls."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from autofarm.core.events import VillageIgnored
from autofarm.core.logging import get_logger
from autofarm.models import AttackReport, Haul, ReportResult, Target

if TYPE_CHECKING:
    from autofarm.core.context import FarmContext
    from autofarm.managers.settings_manager import SettingsManager
    from autofarm.managers.target_catalog import TargetCatalog
    from autofarm.managers.target_selector import TargetSelector
    from autofarm.managers.village_pool import VillagePool

log = get_logger("manager.report")

REPORT_WINDOW = "report"


class ReportManager:
    """Turns attack reports into ignore-group links and priority entries."""

    def __init__(
        self,
        ctx: FarmContext,
        settings: SettingsManager,
        pool: VillagePool,
        catalog: TargetCatalog,
        selector: TargetSelector,
        is_running: Callable[[], bool],
    ) -> None:
        self.ctx = ctx
        self.settings = settings
        self.pool = pool
        self.catalog = catalog
        self.selector = selector
        self._is_running = is_running
        self._queue: list[AttackReport] = []

    async def handle(self, report: AttackReport) -> None:
        """Process a freshly arrived report."""
        if not self._is_running() or report.type != "attack":
            return

        s = self.settings.settings
        if s.ignore_on_loss and report.result != ReportResult.NO_CASUALTIES:
            target = self.catalog.find(report.target_village_id)
            if target:
                await self.ignore_target(target)

        if s.priority_targets and report.haul == Haul.FULL:
            # Opening a report replaces the one the player is reading.
            if self.ctx.collaborators.reports.is_report_window_open():
                self._queue.append(report)
                log.debug("report_deferred", report=report.id)
            else:
                await self._prioritise(report)

    async def window_closed(self, name: str) -> None:
        """Process reports deferred while the report window was open."""
        if name != REPORT_WINDOW:
            return
        queued, self._queue = self._queue, []
        for report in queued:
            await self._prioritise(report)

    @property
    def deferred(self) -> list[AttackReport]:
        return list(self._queue)

    async def ignore_target(self, target: Target) -> bool:
        """Link the target to the ignore group. False without an ignore group."""
        group = self.pool.group_ignore
        if not group:
            return False
        await self.ctx.collaborators.player.link_village(group.id, target.id)
        self.pool.ignored_ids.add(target.id)
        log.info("target_ignored_on_loss", target=target.id, group=group.id)
        self.ctx.bus.publish(VillageIgnored(target=target))
        return True

    async def _prioritise(self, report: AttackReport) -> None:
        detail = await self.ctx.collaborators.reports.get_report_detail(report.id)
        target = Target(
            id=detail.target_id,
            x=detail.target_x,
            y=detail.target_y,
            name=detail.target_name,
        )
        await self.selector.add_priority(detail.origin_id, target)
