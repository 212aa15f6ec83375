"""WebSocket fan-out of farm events."""

from __future__ import annotations

import json

from fastapi import WebSocket

from autofarm.core.events import FarmEvent
from autofarm.core.logging import get_logger

log = get_logger("ws")


def _frame(topic: str, payload: dict) -> str:
    return json.dumps({"topic": topic, "payload": payload}, separators=(",", ":"))


class ConnectionManager:
    """Forwards every bus event to the connected clients as a topic frame."""

    def __init__(self) -> None:
        self._connections: list[WebSocket] = []

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self._connections.append(ws)
        log.info("ws_connected", total=len(self._connections))

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self._connections:
            self._connections.remove(ws)
        log.info("ws_disconnected", total=len(self._connections))

    async def broadcast(self, event: FarmEvent) -> None:
        """Bus handler: send ``event`` to all clients, dropping dead sockets."""
        if not self._connections:
            return
        message = _frame(event.topic, event.payload())
        for ws in list(self._connections):
            try:
                await ws.send_text(message)
            except Exception as e:
                log.debug("ws_send_failed", topic=event.topic, error=str(e))
                self.disconnect(ws)

    async def send_status(self, ws: WebSocket, status: dict) -> None:
        """Greet a newly connected client with the engine status."""
        try:
            await ws.send_text(_frame("status", status))
        except Exception as e:
            log.debug("ws_send_failed", topic="status", error=str(e))
            self.disconnect(ws)
