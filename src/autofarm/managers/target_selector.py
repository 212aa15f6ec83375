"""Next-target selection: persisted cursors plus report-fed priority queues."""

from __future__ import annotations

from typing import TYPE_CHECKING

from autofarm.core.events import PriorityTargetAdded, TargetIgnored
from autofarm.core.logging import get_logger
from autofarm.models import Target, Village

if TYPE_CHECKING:
    from autofarm.core.context import FarmContext
    from autofarm.managers.settings_manager import SettingsManager
    from autofarm.managers.target_catalog import TargetCatalog
    from autofarm.managers.village_pool import VillagePool

log = get_logger("manager.selector")

CURSORS_KEY = "cursors"
PRIORITY_KEY = "priority"


class TargetSelector:
    """Chooses the target of the selected origin village.

    Priority entries, queued when an attack came back with a full haul,
    win over the cursor. The cursor is an index into the origin's sorted
    target list that advances once per sent attack and wraps to the
    first target when it runs off the end.
    """

    def __init__(
        self,
        ctx: FarmContext,
        catalog: TargetCatalog,
        pool: VillagePool,
        settings: SettingsManager,
    ) -> None:
        self.ctx = ctx
        self.catalog = catalog
        self.pool = pool
        self.settings = settings
        self.cursors: dict[int, int] = {}
        self.priority: dict[int, list[int]] = {}

    async def load(self) -> None:
        cursors = await self.ctx.store.get(CURSORS_KEY, {})
        priority = await self.ctx.store.get(PRIORITY_KEY, {})
        self.cursors = {int(vid): int(index) for vid, index in cursors.items()}
        self.priority = {int(vid): [int(t) for t in ids] for vid, ids in priority.items()}

    async def reset(self) -> None:
        """Forget every cursor and priority entry."""
        self.cursors = {}
        self.priority = {}
        await self._save_cursors()
        await self._save_priority()
        log.info("selection_state_reset")

    async def has_target(self, village: Village) -> bool:
        """Whether the origin has targets; repairs a stale cursor first."""
        targets = self.catalog.targets.get(village.id)
        if not targets:
            return False
        index = self.cursors.get(village.id)
        if index is None or index >= len(targets):
            self.cursors[village.id] = 0
            await self._save_cursors()
        return True

    async def select_next(self, village: Village, select_only: bool = False) -> Target | None:
        """Pick the next target for ``village``.

        Returns None when the origin has no built target list. With
        ``select_only`` the cursor target is re-selected instead of
        advancing.
        """
        targets = self.catalog.targets.get(village.id)
        if not targets:
            return None

        ignored = self.pool.ignored_ids

        if self.settings.settings.priority_targets and self.priority.get(village.id):
            target = await self._pop_priority(village.id, targets, ignored)
            if target:
                log.info("priority_target_selected", village=village.id, target=target.id)
                return target

        index = self.cursors.get(village.id, 0)
        if not select_only:
            index += 1

        selected = None
        for position in range(index, len(targets)):
            candidate = targets[position]
            if candidate.id in ignored:
                self.ctx.bus.publish(TargetIgnored(target=candidate))
                continue
            selected = candidate
            index = position
            break

        if selected is None:
            selected = targets[0]
            index = 0

        self.cursors[village.id] = index
        await self._save_cursors()
        log.debug("target_selected", village=village.id, target=selected.id, index=index)
        return selected

    async def add_priority(self, origin_id: int, target: Target) -> bool:
        """Queue a target ahead of the cursor. False if it is already queued."""
        queue = self.priority.setdefault(origin_id, [])
        if target.id in queue:
            return False
        queue.append(target.id)
        await self._save_priority()
        log.info("priority_target_added", village=origin_id, target=target.id)
        self.ctx.bus.publish(PriorityTargetAdded(target=target))
        return True

    async def _pop_priority(
        self, village_id: int, targets: list[Target], ignored: set[int]
    ) -> Target | None:
        queue = self.priority[village_id]
        found = None
        while queue and found is None:
            target_id = queue.pop(0)
            if target_id in ignored:
                continue
            found = next((t for t in targets if t.id == target_id), None)
        await self._save_priority()
        return found

    async def _save_cursors(self) -> None:
        await self.ctx.store.set(CURSORS_KEY, {str(k): v for k, v in self.cursors.items()})

    async def _save_priority(self) -> None:
        await self.ctx.store.set(PRIORITY_KEY, {str(k): v for k, v in self.priority.items()})
