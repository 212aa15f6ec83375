"""Tests for the origin village pool."""

from __future__ import annotations

import asyncio

from fakes import FakePlayer, village

from autofarm.managers.settings_manager import FarmSettings
from autofarm.managers.village_pool import VillagePool
from autofarm.models import Resources


class TestVillagePoolRecompute:
    def setup_method(self):
        self.player = FakePlayer([village(1), village(2), village(3)])
        self.pool = VillagePool(self.player)

    def test_all_villages_by_default(self):
        villages = asyncio.run(self.pool.recompute())
        assert [v.id for v in villages] == [1, 2, 3]
        assert not self.pool.single_village

    def test_ignore_group_removes_villages(self):
        self.player.add_group(10, "ignore", 2)
        asyncio.run(self.pool.refresh_groups(FarmSettings(group_ignore=10)))
        asyncio.run(self.pool.refresh_exceptions())
        villages = asyncio.run(self.pool.recompute())
        assert [v.id for v in villages] == [1, 3]

    def test_only_group_intersects(self):
        self.player.add_group(20, "only", 3)
        asyncio.run(self.pool.refresh_groups(FarmSettings(group_only=20)))
        villages = asyncio.run(self.pool.recompute())
        assert [v.id for v in villages] == [3]
        assert self.pool.single_village

    def test_unknown_group_resolves_to_none(self):
        asyncio.run(self.pool.refresh_groups(FarmSettings(group_include=99)))
        assert self.pool.group_include is None


class TestFreeVillages:
    def setup_method(self):
        full = village(1, resources=Resources(wood=400, clay=400, iron=400), max_storage=400)
        self.player = FakePlayer([full, village(2, max_storage=400)])
        self.pool = VillagePool(self.player)
        asyncio.run(self.pool.recompute())

    def test_full_storage_skipped(self):
        assert [v.id for v in self.pool.get_free_villages(ignore_full_res=True)] == [2]

    def test_full_storage_kept_when_disabled(self):
        assert [v.id for v in self.pool.get_free_villages(ignore_full_res=False)] == [1, 2]

    def test_waiting_never_free(self):
        self.pool.mark_waiting(2)
        assert self.pool.get_free_villages(ignore_full_res=False) == [self.pool.get(1)]

    def test_waiting_set(self):
        self.pool.mark_waiting(1)
        assert not self.pool.all_waiting()
        self.pool.mark_waiting(2)
        assert self.pool.all_waiting()
        assert not self.pool.has_unwaiting()
        assert self.pool.release(1)
        assert not self.pool.release(1)
        assert self.pool.has_unwaiting()

    def test_reset_waiting_clears_global_flag(self):
        self.pool.mark_waiting(1)
        self.pool.global_waiting = True
        self.pool.reset_waiting()
        assert not self.pool.waiting
        assert not self.pool.global_waiting
