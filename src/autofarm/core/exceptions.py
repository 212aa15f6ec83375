"""Custom exceptions for the farm engine."""

from __future__ import annotations


class AutoFarmError(Exception):
    """Base exception for all engine errors."""


class SettingValidationError(AutoFarmError):
    """Raised when a settings update contains an invalid value.

    ``bounds`` is set for range failures as ``{"min": ..., "max": ...}``.
    """

    def __init__(self, key: str, bounds: dict[str, float] | None = None) -> None:
        self.key = key
        self.bounds = bounds
        if bounds:
            message = f"Invalid value for '{key}' (allowed {bounds['min']}..{bounds['max']})"
        else:
            message = f"Invalid value for '{key}'"
        super().__init__(message)


class PreconditionError(AutoFarmError):
    """Raised when automation cannot be started."""


class NoPresetError(PreconditionError):
    """Raised when no army preset matches the configured preset name."""


class NoVillageError(PreconditionError):
    """Raised when no origin village can be selected."""
