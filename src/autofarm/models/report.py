"""Battle report models."""

from __future__ import annotations

from enum import IntEnum, StrEnum

from pydantic import BaseModel


class ReportResult(IntEnum):
    NO_CASUALTIES = 1
    CASUALTIES = 2
    DEFEAT = 3


class Haul(StrEnum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


class AttackReport(BaseModel):
    """Summary delivered when a new report arrives."""

    id: int
    type: str = "attack"
    target_village_id: int
    result: ReportResult = ReportResult.NO_CASUALTIES
    haul: Haul = Haul.NONE


class ReportDetail(BaseModel):
    """Full report content, fetched by id."""

    origin_id: int
    target_id: int
    target_name: str = ""
    target_x: int = 0
    target_y: int = 0
