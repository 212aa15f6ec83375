"""Configuration management with Pydantic models and TOML loading."""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Timing constants of the scheduling engine. All values in seconds."""

    data_expire_time: float = 60 * 30  # idle time before cursors/priorities are dropped
    watchdog_interval: float = 60
    watchdog_tolerance: float = 60 * 5
    cycle_grace: float = 60  # added to the single-cycle interval
    targets_reload_time: float = 60 * 5
    resume_delay: float = 10
    reconnect_delay: float = 5
    chunk_size: int = 25
    attack_delay_range: tuple[float, float] = (0.5, 2.0)  # multiplier of random_base
    max_rotation_attempts: int = 500


class DatabaseConfig(BaseModel):
    path: str = "autofarm.db"


class LoggingConfig(BaseModel):
    console_level: str = "INFO"
    file_level: str = "DEBUG"


class APIConfig(BaseModel):
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8000


class AppConfig(BaseModel):
    engine: EngineConfig = Field(default_factory=EngineConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: APIConfig = Field(default_factory=APIConfig)


def load_config(path: Path) -> AppConfig:
    """Load configuration from a TOML file, falling back to defaults."""
    if not path.exists():
        return AppConfig()
    with open(path, "rb") as f:
        data = tomllib.load(f)
    return AppConfig(**data)


def resolve_database_path(config: AppConfig, data_dir: Path) -> Path:
    """Relative database paths live under the profile data directory."""
    path = Path(config.database.path)
    if not path.is_absolute():
        path = data_dir / path
    return path
