"""In-memory collaborators and helpers for engine tests."""

from __future__ import annotations

import asyncio

from autofarm.core.collaborators import (
    Collaborators,
    Commander,
    Dispatch,
    DispatchResult,
    MapDataProvider,
    PlayerProvider,
    PresetProvider,
    ReportProvider,
)
from autofarm.core.config import EngineConfig
from autofarm.core.context import FarmContext
from autofarm.core.distance import Chunk, Region
from autofarm.core.events import FarmEvent
from autofarm.core.storage import MemoryStore
from autofarm.engine import FarmEngine
from autofarm.models import Group, MapVillage, Preset, ReportDetail, Target, Village

PLAYER_ID = 1


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePlayer(PlayerProvider):
    def __init__(self, villages: list[Village] | None = None) -> None:
        self.villages = villages or []
        self.groups: dict[int, Group] = {}
        self.members: dict[int, set[int]] = {}
        self.links: list[tuple[int, int]] = []

    @property
    def player_id(self) -> int:
        return PLAYER_ID

    async def get_villages(self) -> list[Village]:
        return list(self.villages)

    async def get_groups(self) -> dict[int, Group]:
        return dict(self.groups)

    async def get_group_village_ids(self, group_id: int) -> set[int]:
        return set(self.members.get(group_id, set()))

    async def link_village(self, group_id: int, village_id: int) -> None:
        self.links.append((group_id, village_id))
        self.members.setdefault(group_id, set()).add(village_id)

    def add_group(self, group_id: int, name: str, *village_ids: int) -> Group:
        group = Group(id=group_id, name=name)
        self.groups[group_id] = group
        self.members[group_id] = set(village_ids)
        return group


class FakePresets(PresetProvider):
    def __init__(self, presets: list[Preset] | None = None) -> None:
        self.presets = presets or []

    async def get_presets(self) -> list[Preset]:
        return list(self.presets)


class FakeMap(MapDataProvider):
    def __init__(self, entries: list[MapVillage] | None = None) -> None:
        self.entries = entries or []
        self.loaded: set[Chunk] = set()
        self.load_calls: list[Chunk] = []

    def is_chunk_loaded(self, chunk: Chunk) -> bool:
        return chunk in self.loaded

    async def load_chunk(self, chunk: Chunk) -> None:
        self.load_calls.append(chunk)
        await asyncio.sleep(0)
        self.loaded.add(chunk)

    def read_region(self, region: Region) -> list[MapVillage]:
        return [
            e
            for e in self.entries
            if region.x <= e.x < region.x + region.width
            and region.y <= e.y < region.y + region.height
        ]


class FakeReports(ReportProvider):
    def __init__(self) -> None:
        self.details: dict[int, ReportDetail] = {}
        self.window_open = False

    async def get_report_detail(self, report_id: int) -> ReportDetail:
        return self.details[report_id]

    def is_report_window_open(self) -> bool:
        return self.window_open


class FakeCommander(Commander):
    """Answers from a queue of results; SENT once the queue is empty."""

    def __init__(self, results: list[DispatchResult] | None = None) -> None:
        self.results = list(results or [])
        self.sent: list[tuple[int, int]] = []

    async def send(self, origin: Village, target: Target, presets: list[Preset]) -> Dispatch:
        result = self.results.pop(0) if self.results else DispatchResult.SENT
        if result == DispatchResult.SENT:
            self.sent.append((origin.id, target.id))
        return Dispatch(result)


def village(vid: int, x: int = 500, y: int = 500, **kwargs) -> Village:
    return Village(id=vid, name=f"V{vid}", x=x, y=y, **kwargs)


def barbarian(vid: int, x: int, y: int, points: int = 50, **kwargs) -> MapVillage:
    return MapVillage(id=vid, name=f"B{vid}", x=x, y=y, points=points, **kwargs)


class Harness:
    """Engine wired to fakes, a memory store and a manual clock."""

    def __init__(
        self,
        villages: list[Village] | None = None,
        entries: list[MapVillage] | None = None,
        results: list[DispatchResult] | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.clock = FakeClock()
        self.store = MemoryStore()
        self.player = FakePlayer(villages)
        self.presets = FakePresets([Preset(id=1, name="Farm (lc)", units={"light": 5, "spear": 0})])
        self.map = FakeMap(entries)
        self.reports = FakeReports()
        self.commander = FakeCommander(results)
        self.ctx = FarmContext(
            config=config or EngineConfig(),
            store=self.store,
            collaborators=Collaborators(
                player=self.player,
                presets=self.presets,
                map_data=self.map,
                reports=self.reports,
                commander=self.commander,
            ),
            clock=self.clock,
        )
        self.events: list[FarmEvent] = []
        self.ctx.bus.subscribe_all(self.events.append)
        self.engine = FarmEngine(self.ctx)

    async def init(self, **settings) -> FarmEngine:
        await self.engine.init()
        # Large base so dispatch steps only run when a test drives them
        await self.engine.update_settings({"preset_name": "Farm", "random_base": 9999, **settings})
        self.events.clear()
        return self.engine

    def topics(self) -> list[str]:
        return [e.topic for e in self.events]

    def of_type(self, event_type: type[FarmEvent]) -> list[FarmEvent]:
        return [e for e in self.events if isinstance(e, event_type)]


async def settle(rounds: int = 100) -> None:
    """Let zero-delay timers and bus handler tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
