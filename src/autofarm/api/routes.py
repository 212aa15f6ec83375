"""REST API routes for farm control, settings and status."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, HTTPException

from autofarm.core.exceptions import PreconditionError, SettingValidationError
from autofarm.engine import FarmEngine

if TYPE_CHECKING:
    from autofarm.app import Application

router = APIRouter(prefix="/api")

# Application reference -- set by server.py at startup
_app: Application | None = None


def set_app(app: Application) -> None:
    global _app
    _app = app


def _get_app() -> Application:
    if _app is None:
        raise HTTPException(503, "Farm not initialized")
    return _app


def _get_engine() -> FarmEngine:
    engine = _get_app().engine
    if engine is None:
        raise HTTPException(503, "Engine not initialized")
    return engine


# ------------------------------------------------------------------
# Health
# ------------------------------------------------------------------


@router.get("/health")
async def health() -> dict[str, Any]:
    app = _get_app()
    engine = _get_engine()
    return {
        "status": "ok",
        "running": engine.running,
        "profile": app.profile,
        "villages": len(engine.pool.villages),
        "uptime_seconds": round(app.uptime),
    }


# ------------------------------------------------------------------
# Status
# ------------------------------------------------------------------


@router.get("/status")
async def get_status() -> dict[str, Any]:
    return _get_engine().status()


@router.get("/events")
async def get_events() -> dict[str, Any]:
    engine = _get_engine()
    return {"status": engine.event_log.status, "events": engine.event_log.entries}


@router.get("/villages")
async def get_villages() -> dict[str, Any]:
    engine = _get_engine()
    return {
        "villages": [v.model_dump(mode="json") for v in engine.pool.villages],
        "waiting": sorted(engine.pool.waiting),
        "selected": engine.selected_village.id if engine.selected_village else None,
    }


# ------------------------------------------------------------------
# Control
# ------------------------------------------------------------------


@router.post("/control/{action}")
async def control(action: str) -> dict[str, Any]:
    engine = _get_engine()
    try:
        if action == "start":
            await engine.start()
        elif action == "stop":
            await engine.stop()
        elif action == "switch":
            await engine.switch()
        else:
            raise HTTPException(400, f"Unknown action: {action}")
    except PreconditionError as e:
        raise HTTPException(409, str(e)) from None
    return {"status": "ok", "running": engine.running}


# ------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------


@router.get("/settings")
async def get_settings() -> dict[str, Any]:
    return _get_engine().settings.model_dump(mode="json")


@router.put("/settings")
async def update_settings(changes: dict[str, Any]) -> dict[str, Any]:
    engine = _get_engine()
    try:
        change = await engine.update_settings(changes)
    except SettingValidationError as e:
        raise HTTPException(422, {"key": e.key, "bounds": e.bounds, "message": str(e)}) from None
    return {
        "changed": sorted(change.changed),
        "effects": sorted(e.value for e in change.effects),
        "settings": engine.settings.model_dump(mode="json"),
    }
