"""Origin village pool: group exceptions, waiting set and free villages."""

from __future__ import annotations

from typing import TYPE_CHECKING

from autofarm.core.collaborators import PlayerProvider
from autofarm.core.logging import get_logger
from autofarm.models import Group, Village

if TYPE_CHECKING:
    from autofarm.managers.settings_manager import FarmSettings

log = get_logger("manager.pool")


class VillagePool:
    """Computes which player villages may be used as attack origins.

    The pool also tracks villages that are waiting for their troops to
    come back. Global waiting is raised by the engine when every pool
    member is waiting.
    """

    def __init__(self, player: PlayerProvider) -> None:
        self.player = player
        self.villages: list[Village] = []
        self.single_village = False
        self.group_ignore: Group | None = None
        self.group_include: Group | None = None
        self.group_only: Group | None = None
        self.ignored_ids: set[int] = set()
        self.included_ids: set[int] = set()
        self.waiting: set[int] = set()
        self.global_waiting = False

    # ------------------------------------------------------------------
    # Group exceptions
    # ------------------------------------------------------------------

    async def refresh_groups(self, settings: FarmSettings) -> None:
        """Resolve the configured group ids to existing groups."""
        groups = await self.player.get_groups()
        self.group_ignore = groups.get(settings.group_ignore)
        self.group_include = groups.get(settings.group_include)
        self.group_only = groups.get(settings.group_only)

    async def refresh_exceptions(self) -> None:
        """Reload ignored and included village ids from their groups."""
        self.ignored_ids = set()
        self.included_ids = set()
        if self.group_ignore:
            self.ignored_ids = await self.player.get_group_village_ids(self.group_ignore.id)
        if self.group_include:
            self.included_ids = await self.player.get_group_village_ids(self.group_include.id)
        log.debug(
            "exceptions_refreshed",
            ignored=len(self.ignored_ids),
            included=len(self.included_ids),
        )

    # ------------------------------------------------------------------
    # Pool
    # ------------------------------------------------------------------

    async def recompute(self) -> list[Village]:
        """Rebuild the pool from the player's current villages."""
        villages = [
            v for v in await self.player.get_villages() if v.id not in self.ignored_ids
        ]
        if self.group_only:
            only_ids = await self.player.get_group_village_ids(self.group_only.id)
            villages = [v for v in villages if v.id in only_ids]

        self.villages = villages
        self.single_village = len(villages) == 1
        log.info("pool_recomputed", villages=len(villages), single=self.single_village)
        return villages

    def get(self, village_id: int) -> Village | None:
        for village in self.villages:
            if village.id == village_id:
                return village
        return None

    def get_free_villages(self, ignore_full_res: bool) -> list[Village]:
        """Pool members able to attack right now.

        With ``ignore_full_res`` a village whose warehouse is full for every
        resource is skipped: a full warehouse means its army is not farming.
        """
        free = []
        for village in self.villages:
            if village.id in self.waiting:
                continue
            if ignore_full_res and village.is_storage_full():
                continue
            free.append(village)
        return free

    # ------------------------------------------------------------------
    # Waiting set
    # ------------------------------------------------------------------

    def mark_waiting(self, village_id: int) -> None:
        self.waiting.add(village_id)

    def release(self, village_id: int) -> bool:
        """Remove a village from the waiting set. True if it was waiting."""
        if village_id not in self.waiting:
            return False
        self.waiting.discard(village_id)
        return True

    def is_waiting(self, village_id: int) -> bool:
        return village_id in self.waiting

    def all_waiting(self) -> bool:
        return all(v.id in self.waiting for v in self.villages)

    def has_unwaiting(self) -> bool:
        return any(v.id not in self.waiting for v in self.villages)

    def reset_waiting(self) -> None:
        self.waiting.clear()
        self.global_waiting = False
