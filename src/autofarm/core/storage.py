"""Durable key/value storage contract.

Values are JSON documents. The engine persists settings, cursors,
priority queues, activity timestamps and the event log through it.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any


class KeyValueStore(ABC):
    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value for ``key`` or ``default``."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-serialisable value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    async def log_action(
        self, action: str, detail: str = "", village_id: int | None = None, success: bool = True
    ) -> None:
        """Record an operational action. Stores without an action log ignore it."""


class MemoryStore(KeyValueStore):
    """In-process store. Keeps encoded JSON so snapshots compare byte for byte."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.actions: list[dict[str, Any]] = []

    async def get(self, key: str, default: Any = None) -> Any:
        raw = self.data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value, separators=(",", ":"), sort_keys=True)

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def log_action(
        self, action: str, detail: str = "", village_id: int | None = None, success: bool = True
    ) -> None:
        self.actions.append(
            {"action": action, "detail": detail, "village_id": village_id, "success": success}
        )

    def snapshot(self) -> dict[str, str]:
        return dict(self.data)
