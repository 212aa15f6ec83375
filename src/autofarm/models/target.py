"""Map entries and attack target models."""

from __future__ import annotations

from pydantic import BaseModel


class MapVillage(BaseModel):
    """A village as read from the map data chunks."""

    id: int
    name: str = ""
    x: int = 0
    y: int = 0
    points: int = 0
    owner_id: int | None = None  # None = barbarian
    attack_protection: bool = False


class Target(BaseModel):
    """A candidate village relative to one origin village."""

    id: int
    x: int = 0
    y: int = 0
    distance: float = 0.0
    name: str = ""
    owner_id: int | None = None
