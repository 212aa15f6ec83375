"""Player village and resource models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Resources(BaseModel):
    wood: int = 0
    clay: int = 0
    iron: int = 0

    def all_at(self, amount: int) -> bool:
        return self.wood == amount and self.clay == amount and self.iron == amount


class Village(BaseModel):
    """Snapshot of a player-owned village, used as an attack origin."""

    id: int
    name: str = ""
    x: int = 0
    y: int = 0
    resources: Resources = Field(default_factory=Resources)
    max_storage: int = 0

    @property
    def position(self) -> tuple[int, int]:
        return self.x, self.y

    def is_storage_full(self) -> bool:
        """True when every tracked resource sits at the warehouse cap."""
        return self.max_storage > 0 and self.resources.all_at(self.max_storage)
