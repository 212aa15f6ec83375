"""Village groups and army presets."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

# First bracketed or quoted segment, e.g. "Farm (lc)" -> "Farm"
_PRESET_DECORATION = re.compile(r"""(\(|\{|\[|"|')[^)}\]"']+(\)|\}|\]|"|')""")


class Group(BaseModel):
    id: int
    name: str = ""


class Preset(BaseModel):
    id: int
    name: str
    units: dict[str, int] = Field(default_factory=dict)

    @property
    def clean_name(self) -> str:
        return _PRESET_DECORATION.sub("", self.name, count=1).strip()

    def without_empty_units(self) -> Preset:
        units = {unit: count for unit, count in self.units.items() if count > 0}
        return self.model_copy(update={"units": units})
