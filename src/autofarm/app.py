"""Application orchestrator - farm engine, database and API server in one loop."""

from __future__ import annotations

import asyncio
import os
import signal
import time
from pathlib import Path

from autofarm.core.collaborators import Collaborators
from autofarm.core.config import AppConfig, load_config, resolve_database_path
from autofarm.core.context import FarmContext
from autofarm.core.database import Database
from autofarm.core.logging import get_logger, setup_logging
from autofarm.engine import FarmEngine

log = get_logger("app")

PROJECT_ROOT = Path(os.environ.get("AUTOFARM_ROOT", Path(__file__).resolve().parent.parent.parent))


def profile_paths(profile: str) -> tuple[Path, Path, Path]:
    """Config file, data dir and log dir of a profile."""
    config_dir = PROJECT_ROOT / "config"
    config_file = config_dir / f"{profile}.toml"
    if not config_file.exists():
        config_file = config_dir / "config.toml"
    return config_file, PROJECT_ROOT / "data" / profile, PROJECT_ROOT / "logs"


class Application:
    """Runs one farm engine on top of the given game collaborators."""

    def __init__(
        self,
        collaborators: Collaborators,
        profile: str = "default",
        api_port: int | None = None,
    ) -> None:
        self.collaborators = collaborators
        self.profile = profile
        self._api_port = api_port
        self.config_file, self.data_dir, self.log_dir = profile_paths(profile)

        self.config: AppConfig | None = None
        self.db: Database | None = None
        self.engine: FarmEngine | None = None
        self._stop_event = asyncio.Event()
        self._start_time: float = 0

    @property
    def uptime(self) -> float:
        return time.time() - self._start_time if self._start_time else 0.0

    async def run(self) -> int:
        """Entry point -- initialise, serve until a signal arrives, shut down."""
        self.config = load_config(self.config_file)
        log_file = setup_logging(
            self.log_dir,
            profile=self.profile,
            console_level=self.config.logging.console_level,
            file_level=self.config.logging.file_level,
        )
        log.info("application_starting", log_file=str(log_file))
        self._start_time = time.time()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_signal)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        try:
            await self.initialize()
            if self._use_api():
                from autofarm.api.server import run_api_server
                from autofarm.api.websocket import ConnectionManager

                ws_manager = ConnectionManager()
                self.engine.ctx.bus.subscribe_all(ws_manager.broadcast)
                port = self._api_port or self.config.api.port
                server = asyncio.create_task(
                    run_api_server(self, ws_manager, host=self.config.api.host, port=port)
                )
                await self._stop_event.wait()
                server.cancel()
            else:
                await self._stop_event.wait()
        except Exception as e:
            log.error("fatal_error", error=str(e))
            return 1
        finally:
            await self.shutdown()
        return 0

    async def initialize(self) -> None:
        """Open the database and bring the engine up."""
        if self.config is None:
            self.config = load_config(self.config_file)
        self.db = Database(resolve_database_path(self.config, self.data_dir))
        await self.db.init()

        ctx = FarmContext(config=self.config.engine, store=self.db, collaborators=self.collaborators)
        self.engine = FarmEngine(ctx)
        await self.engine.init()
        self.engine.activate()
        log.info("engine_ready", villages=len(self.engine.pool.villages))

    def _use_api(self) -> bool:
        if self._api_port:
            return True
        return bool(self.config and self.config.api.enabled)

    def _handle_signal(self) -> None:
        """Handle SIGTERM/SIGINT for graceful shutdown."""
        log.info("signal_received_shutting_down")
        self._stop_event.set()

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        if self.engine:
            await self.engine.shutdown()
        if self.db:
            await self.db.close()
        log.info("application_shutdown")
