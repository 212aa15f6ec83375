"""Farm settings: schema, validation, persistence and invalidation effects."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from autofarm.core.exceptions import SettingValidationError
from autofarm.core.logging import get_logger
from autofarm.core.storage import KeyValueStore

log = get_logger("manager.settings")

SETTINGS_KEY = "settings"
DURATION_PATTERN = r"^\d{1,2}:\d{2}:\d{2}$"


class Effect(StrEnum):
    """What must be recomputed when a setting changes."""

    GROUPS = "groups"
    VILLAGES = "villages"
    PRESET = "preset"
    TARGETS = "targets"
    CURSORS = "cursors"
    EVENTS = "events"


# Order in which effects are applied after an update
EFFECT_ORDER = [
    Effect.GROUPS,
    Effect.VILLAGES,
    Effect.PRESET,
    Effect.TARGETS,
    Effect.CURSORS,
    Effect.EVENTS,
]


def _updates(*effects: Effect) -> dict[str, Any]:
    return {"updates": [e.value for e in effects]}


class FarmSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    max_distance: float = Field(
        10, ge=0, le=50, json_schema_extra=_updates(Effect.TARGETS, Effect.CURSORS)
    )
    min_distance: float = Field(
        0, ge=0, le=50, json_schema_extra=_updates(Effect.TARGETS, Effect.CURSORS)
    )
    max_travel_time: str = Field("01:00:00", pattern=DURATION_PATTERN)
    random_base: int = Field(3, ge=0, le=9999)
    preset_name: str = Field("", json_schema_extra=_updates(Effect.PRESET))
    group_ignore: int | None = Field(None, json_schema_extra=_updates(Effect.GROUPS))
    group_include: int | None = Field(
        None, json_schema_extra=_updates(Effect.GROUPS, Effect.TARGETS)
    )
    group_only: int | None = Field(
        None, json_schema_extra=_updates(Effect.GROUPS, Effect.VILLAGES, Effect.TARGETS)
    )
    min_points: int = Field(
        0, ge=0, le=13000, json_schema_extra=_updates(Effect.TARGETS, Effect.CURSORS)
    )
    max_points: int = Field(
        12500, ge=0, le=13000, json_schema_extra=_updates(Effect.TARGETS, Effect.CURSORS)
    )
    events_limit: int = Field(20, ge=0, le=150, json_schema_extra=_updates(Effect.EVENTS))
    ignore_on_loss: bool = True
    priority_targets: bool = True
    event_attack: bool = Field(True, json_schema_extra=_updates(Effect.EVENTS))
    event_village_change: bool = Field(True, json_schema_extra=_updates(Effect.EVENTS))
    event_priority_add: bool = Field(True, json_schema_extra=_updates(Effect.EVENTS))
    event_ignored_village: bool = Field(True, json_schema_extra=_updates(Effect.EVENTS))
    single_cycle: bool = Field(False, json_schema_extra=_updates(Effect.VILLAGES))
    single_cycle_notifs: bool = False
    single_cycle_interval: str = Field("00:00:00", pattern=DURATION_PATTERN)
    max_attacks_per_village: int = Field(48, ge=1, le=50)
    ignore_full_res: bool = Field(True, json_schema_extra=_updates(Effect.VILLAGES))

    @field_validator("group_ignore", "group_include", "group_only", mode="before")
    @classmethod
    def _no_group(cls, value: Any) -> Any:
        return None if value == "" else value

    @property
    def cycle_interval(self) -> float:
        """Single-cycle interval in seconds; 0 disables repetition."""
        return parse_duration(self.single_cycle_interval)


def parse_duration(text: str) -> float:
    """Convert ``HH:MM:SS`` to seconds. Malformed input yields 0."""
    try:
        hours, minutes, seconds = (int(part) for part in text.split(":"))
    except ValueError:
        return 0
    return float(hours * 3600 + minutes * 60 + seconds)


def setting_effects(key: str) -> set[Effect]:
    extra = FarmSettings.model_fields[key].json_schema_extra or {}
    return {Effect(name) for name in extra.get("updates", [])}


def setting_bounds(key: str) -> dict[str, float] | None:
    """``{"min", "max"}`` of a numeric setting, None for other settings."""
    low = high = None
    for constraint in FarmSettings.model_fields[key].metadata:
        if getattr(constraint, "ge", None) is not None:
            low = constraint.ge
        if getattr(constraint, "le", None) is not None:
            high = constraint.le
    if low is None and high is None:
        return None
    return {"min": low, "max": high}


@dataclass
class SettingsChange:
    """Outcome of an accepted update."""

    changed: dict[str, Any] = field(default_factory=dict)
    effects: set[Effect] = field(default_factory=set)

    def __bool__(self) -> bool:
        return bool(self.changed)


class SettingsManager:
    """Holds the live settings and writes them through to the store."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self.settings = FarmSettings()

    async def load(self) -> FarmSettings:
        raw = await self.store.get(SETTINGS_KEY, {})
        known = {k: v for k, v in raw.items() if k in FarmSettings.model_fields}
        try:
            self.settings = FarmSettings(**known)
        except ValidationError as e:
            log.warning("stored_settings_invalid", errors=e.error_count())
            self.settings = FarmSettings()
        return self.settings

    async def update(self, changes: Mapping[str, Any]) -> SettingsChange:
        """Validate and apply ``changes``.

        Returns the changed values and the union of their effects. A
        single invalid key rejects the whole update; nothing is applied
        or persisted in that case.
        """
        candidate = self.settings.model_copy()
        changed: dict[str, Any] = {}
        effects: set[Effect] = set()

        for key, value in changes.items():
            if key not in FarmSettings.model_fields:
                log.debug("unknown_setting_ignored", key=key)
                continue
            try:
                setattr(candidate, key, value)
            except ValidationError:
                log.info("setting_rejected", key=key, value=value)
                raise SettingValidationError(key, setting_bounds(key)) from None
            new_value = getattr(candidate, key)
            if new_value == getattr(self.settings, key):
                continue
            changed[key] = new_value
            effects |= setting_effects(key)

        if not changed:
            return SettingsChange()

        self.settings = candidate
        await self.store.set(SETTINGS_KEY, candidate.model_dump(mode="json"))
        log.info("settings_updated", changed=changed, effects=sorted(effects))
        return SettingsChange(changed, effects)
