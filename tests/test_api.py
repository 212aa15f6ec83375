"""Tests for the REST control surface."""

from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from fakes import Harness, barbarian, village

from autofarm.api.server import create_app
from autofarm.api.websocket import ConnectionManager
from autofarm.app import Application


class TestRoutes:
    def setup_method(self):
        self.h = Harness(villages=[village(1)], entries=[barbarian(10, 501, 500)])
        asyncio.run(self.h.init())
        self.application = Application(self.h.ctx.collaborators)
        self.application.engine = self.h.engine
        self.ws_manager = ConnectionManager()
        self.api = create_app(self.application, self.ws_manager)

    def test_health(self):
        with TestClient(self.api) as client:
            body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert body["running"] is False
        assert body["villages"] == 1

    def test_get_settings(self):
        with TestClient(self.api) as client:
            body = client.get("/api/settings").json()
        assert body["preset_name"] == "Farm"
        assert body["max_distance"] == 10

    def test_put_settings(self):
        with TestClient(self.api) as client:
            response = client.put("/api/settings", json={"max_distance": 25})
        assert response.status_code == 200
        assert response.json()["effects"] == ["cursors", "targets"]
        assert self.h.engine.settings.max_distance == 25

    def test_put_invalid_setting(self):
        with TestClient(self.api) as client:
            response = client.put("/api/settings", json={"max_distance": 99})
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["key"] == "max_distance"
        assert detail["bounds"] == {"min": 0, "max": 50}
        assert self.h.engine.settings.max_distance == 10

    def test_start_and_stop(self):
        with TestClient(self.api) as client:
            started = client.post("/api/control/start").json()
            status = client.get("/api/status").json()
            stopped = client.post("/api/control/stop").json()
        assert started["running"] is True
        assert status["running"] is True
        assert status["mode"] == "continuous"
        assert stopped["running"] is False

    def test_start_without_preset_conflicts(self):
        self.h.engine.presets = []
        with TestClient(self.api) as client:
            response = client.post("/api/control/start")
        assert response.status_code == 409

    def test_unknown_action(self):
        with TestClient(self.api) as client:
            response = client.post("/api/control/explode")
        assert response.status_code == 400

    def test_events(self):
        with TestClient(self.api) as client:
            body = client.get("/api/events").json()
        assert body == {"status": "paused", "events": []}

    def test_websocket_sends_status(self):
        with TestClient(self.api) as client:
            with client.websocket_connect("/ws") as ws:
                message = ws.receive_json()
        assert message["topic"] == "status"
        assert message["payload"]["running"] is False

    def test_websocket_forwards_bus_events(self):
        self.h.ctx.bus.subscribe_all(self.ws_manager.broadcast)
        with TestClient(self.api) as client:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
                ws.send_json({"action": "stop"})
                message = ws.receive_json()
        assert message == {"topic": "pause", "payload": {}}
