"""Abstract interfaces for the game-side collaborators.

The engine never talks to the game directly; the integration layer
implements these contracts on top of the game client.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum

from autofarm.core.distance import Chunk, Region
from autofarm.models import Group, MapVillage, Preset, ReportDetail, Target, Village


class PlayerProvider(ABC):
    """Player villages and village groups."""

    @property
    @abstractmethod
    def player_id(self) -> int:
        """ID of the playing character."""

    @abstractmethod
    async def get_villages(self) -> list[Village]:
        """Current snapshot of every village the player owns."""

    @abstractmethod
    async def get_groups(self) -> dict[int, Group]:
        """All village groups keyed by group id."""

    @abstractmethod
    async def get_group_village_ids(self, group_id: int) -> set[int]:
        """IDs of the villages linked to a group."""

    @abstractmethod
    async def link_village(self, group_id: int, village_id: int) -> None:
        """Add a village to a group."""


class PresetProvider(ABC):
    @abstractmethod
    async def get_presets(self) -> list[Preset]:
        """All army presets of the player."""


class MapDataProvider(ABC):
    """Chunked access to map data."""

    @abstractmethod
    def is_chunk_loaded(self, chunk: Chunk) -> bool:
        """Whether the chunk's village data is already cached."""

    @abstractmethod
    async def load_chunk(self, chunk: Chunk) -> None:
        """Request one chunk and return once its data arrived."""

    @abstractmethod
    def read_region(self, region: Region) -> list[MapVillage]:
        """Villages inside already-loaded chunks of the region."""


class ReportProvider(ABC):
    @abstractmethod
    async def get_report_detail(self, report_id: int) -> ReportDetail:
        """Full content of a report."""

    @abstractmethod
    def is_report_window_open(self) -> bool:
        """Whether the player is currently viewing a report."""


class DispatchResult(StrEnum):
    SENT = "sent"
    NO_UNITS = "no_units"
    COMMAND_LIMIT = "command_limit"


@dataclass
class Dispatch:
    """Outcome of one attack command."""

    result: DispatchResult
    detail: str = ""


class Commander(ABC):
    """Issues attack commands. At most one outstanding dispatch per origin."""

    @abstractmethod
    async def send(self, origin: Village, target: Target, presets: list[Preset]) -> Dispatch:
        """Send an attack and wait for the server acknowledgement."""


@dataclass
class Collaborators:
    """Bundle of every external dependency the engine needs."""

    player: PlayerProvider
    presets: PresetProvider
    map_data: MapDataProvider
    reports: ReportProvider
    commander: Commander
