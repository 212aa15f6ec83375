"""Per-origin target lists built from map data."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable

from autofarm.core.distance import Region, actual_distance
from autofarm.core.events import LoadingTargetsFinished, LoadingTargetsStarted
from autofarm.core.logging import get_logger
from autofarm.models import MapVillage, Target, Village

if TYPE_CHECKING:
    from autofarm.core.context import FarmContext
    from autofarm.managers.settings_manager import SettingsManager
    from autofarm.managers.village_pool import VillagePool

log = get_logger("manager.catalog")

EXPIRY_TIMER = "targets_expiry"

MapFilter = Callable[[MapVillage, float], bool]


class TargetCatalog:
    """Builds and caches the sorted target list of each origin village.

    Lists are rebuilt wholesale: the catalog is cleared on expiry, on
    target-affecting setting changes and on include-group edits. Origins
    without any candidate get no entry.
    """

    def __init__(
        self, ctx: FarmContext, pool: VillagePool, settings: SettingsManager
    ) -> None:
        self.ctx = ctx
        self.pool = pool
        self.settings = settings
        self.targets: dict[int, list[Target]] = {}
        self._builds: dict[int, asyncio.Task[list[Target]]] = {}
        # A candidate is rejected as soon as one filter matches.
        self.filters: list[MapFilter] = [
            self._is_reserved,
            self._is_own_village,
            self._is_protected,
            self._is_foreign_player,
            self._is_outside_points,
            self._is_outside_distance,
        ]

    def has(self, village_id: int) -> bool:
        return village_id in self.targets

    def clear(self) -> None:
        self.targets = {}
        log.debug("catalog_cleared")

    def find(self, target_id: int) -> Target | None:
        """Look a target up in any origin's list."""
        for targets in self.targets.values():
            for target in targets:
                if target.id == target_id:
                    return target
        return None

    def start_expiry(self) -> None:
        """Drop every list periodically so ownership changes are picked up."""
        self.ctx.timers.schedule_periodic(
            EXPIRY_TIMER, self.ctx.config.targets_reload_time, self._expire
        )

    async def _expire(self) -> None:
        log.info("catalog_expired", origins=len(self.targets))
        self.clear()

    async def get_targets(self, village: Village) -> list[Target]:
        """Targets of ``village`` sorted by distance, building them if needed.

        Concurrent calls for the same origin share one build.
        """
        cached = self.targets.get(village.id)
        if cached is not None:
            return cached

        task = self._builds.get(village.id)
        if task is None:
            task = asyncio.create_task(self._build(village))
            self._builds[village.id] = task
            task.add_done_callback(lambda t, vid=village.id: self._build_done(vid, t))
        return await asyncio.shield(task)

    def _build_done(self, village_id: int, task: asyncio.Task) -> None:
        if self._builds.get(village_id) is task:
            del self._builds[village_id]

    async def _build(self, village: Village) -> list[Target]:
        chunk_size = self.ctx.config.chunk_size
        map_data = self.ctx.collaborators.map_data
        region = Region.around(village.position, chunk_size)

        missing = [c for c in region.chunks(chunk_size) if not map_data.is_chunk_loaded(c)]
        if missing:
            self.ctx.bus.publish(LoadingTargetsStarted())
            log.debug("loading_chunks", village=village.id, chunks=len(missing))
            await asyncio.gather(*(map_data.load_chunk(chunk) for chunk in missing))
            self.ctx.bus.publish(LoadingTargetsFinished())

        targets = self.filter_targets(village, map_data.read_region(region))
        if targets:
            self.targets[village.id] = targets
        log.info("targets_loaded", village=village.id, targets=len(targets))
        return targets

    def filter_targets(self, origin: Village, entries: list[MapVillage]) -> list[Target]:
        """Apply every filter and sort the survivors by distance (stable)."""
        found: list[Target] = []
        for entry in entries:
            distance = actual_distance(origin.position, (entry.x, entry.y))
            if any(reject(entry, distance) for reject in self.filters):
                continue
            found.append(
                Target(
                    id=entry.id,
                    x=entry.x,
                    y=entry.y,
                    distance=distance,
                    name=entry.name,
                    owner_id=entry.owner_id,
                )
            )
        found.sort(key=lambda t: t.distance)
        return found

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def _is_reserved(self, entry: MapVillage, _distance: float) -> bool:
        # Negative ids are map features (construction slots, resource deposits)
        return entry.id < 0

    def _is_own_village(self, entry: MapVillage, _distance: float) -> bool:
        return entry.owner_id is not None and entry.owner_id == self.ctx.collaborators.player.player_id

    def _is_protected(self, entry: MapVillage, _distance: float) -> bool:
        return entry.attack_protection

    def _is_foreign_player(self, entry: MapVillage, _distance: float) -> bool:
        return bool(entry.owner_id) and entry.id not in self.pool.included_ids

    def _is_outside_points(self, entry: MapVillage, _distance: float) -> bool:
        s = self.settings.settings
        return entry.points < s.min_points or entry.points > s.max_points

    def _is_outside_distance(self, _entry: MapVillage, distance: float) -> bool:
        s = self.settings.settings
        return distance < s.min_distance or distance > s.max_distance
