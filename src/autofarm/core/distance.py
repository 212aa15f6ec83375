"""Map geometry: field distance and chunk regions."""

from __future__ import annotations

import math
from dataclasses import dataclass


def actual_distance(origin: tuple[int, int], target: tuple[int, int]) -> float:
    """Distance in fields on the hex map.

    Odd rows are shifted half a field to the right, so a row change
    contributes 0.75 of its squared length and rows of different parity
    shift the horizontal offset by half a field.
    """
    ox, oy = origin
    tx, ty = target
    dx = float(tx - ox)
    if oy % 2 != ty % 2:
        dx += 0.5 if ty % 2 else -0.5
    dy = ty - oy
    return math.sqrt(dx * dx + 0.75 * dy * dy)


@dataclass(frozen=True)
class Chunk:
    """A chunk_size x chunk_size block of map data, addressed by its corner."""

    x: int
    y: int


@dataclass(frozen=True)
class Region:
    x: int
    y: int
    width: int
    height: int

    @classmethod
    def around(cls, center: tuple[int, int], chunk_size: int) -> Region:
        """Square region centered on a field, padded by one chunk per side."""
        cx, cy = center
        return cls(cx - chunk_size, cy - chunk_size, chunk_size * 2, chunk_size * 2)

    def chunks(self, chunk_size: int) -> list[Chunk]:
        """All chunks the region touches, in row-major order."""
        first_x = (self.x // chunk_size) * chunk_size
        first_y = (self.y // chunk_size) * chunk_size
        last_x = self.x + self.width - 1
        last_y = self.y + self.height - 1
        return [
            Chunk(cx, cy)
            for cy in range(first_y, last_y + 1, chunk_size)
            for cx in range(first_x, last_x + 1, chunk_size)
        ]
