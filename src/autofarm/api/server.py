"""FastAPI application factory -- runs in the same asyncio loop as the engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from autofarm.api.routes import router, set_app
from autofarm.api.websocket import ConnectionManager
from autofarm.core.exceptions import PreconditionError
from autofarm.core.logging import get_logger

if TYPE_CHECKING:
    from autofarm.app import Application

log = get_logger("api_server")


def create_app(application: Application, ws_manager: ConnectionManager) -> FastAPI:
    """Create the FastAPI app and wire it to the farm Application."""
    api = FastAPI(title="AutoFarm API", version="1.0.0")

    api.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Inject application reference into routes
    set_app(application)

    api.include_router(router)

    @api.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None:
        await ws_manager.connect(ws)
        engine = application.engine
        await ws_manager.send_status(ws, engine.status())
        try:
            while True:
                # Clients may send {"action": "start" | "stop" | "switch"}
                data = await ws.receive_json()
                action = data.get("action", "")
                try:
                    if action == "start":
                        await engine.start()
                    elif action == "stop":
                        await engine.stop()
                    elif action == "switch":
                        await engine.switch()
                    elif action:
                        log.debug("ws_unknown_action", action=action)
                except PreconditionError as e:
                    log.info("ws_start_rejected", error=str(e))
        except WebSocketDisconnect:
            ws_manager.disconnect(ws)

    return api


async def run_api_server(
    application: Application,
    ws_manager: ConnectionManager,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    """Run the API server as an asyncio task (non-blocking)."""
    api = create_app(application, ws_manager)
    config = uvicorn.Config(
        app=api,
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(config)
    log.info("api_server_starting", host=host, port=port)
    await server.serve()
