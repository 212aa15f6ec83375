"""Pydantic data models for the farm engine."""

from autofarm.models.group import Group, Preset
from autofarm.models.report import AttackReport, Haul, ReportDetail, ReportResult
from autofarm.models.target import MapVillage, Target
from autofarm.models.village import Resources, Village

__all__ = [
    "AttackReport",
    "Group",
    "Haul",
    "MapVillage",
    "Preset",
    "ReportDetail",
    "ReportResult",
    "Resources",
    "Target",
    "Village",
]
