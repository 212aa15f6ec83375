"""Structured logging for the farm engine.

Console output is rendered for humans, the per-profile log file gets one
JSON object per line. Both carry the profile and, while a run is active,
its id and mode.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]


def _handler(handler: logging.Handler, level: str, renderer: structlog.types.Processor) -> logging.Handler:
    handler.setLevel(getattr(logging, level.upper()))
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_SHARED_PROCESSORS,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    return handler


def setup_logging(
    log_dir: Path,
    profile: str = "default",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
) -> Path:
    """Route structlog through stdlib logging; returns the profile's log file."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{profile}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.addHandler(
        _handler(
            logging.FileHandler(log_file, encoding="utf-8"),
            file_level,
            structlog.processors.JSONRenderer(),
        )
    )
    root_logger.addHandler(
        _handler(
            logging.StreamHandler(sys.stdout),
            console_level,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        )
    )

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(profile=profile)
    return log_file


def bind_run(run_id: int, mode: str) -> None:
    """Tag every following log line with the active run."""
    structlog.contextvars.bind_contextvars(run=run_id, mode=mode)


def clear_run() -> None:
    structlog.contextvars.unbind_contextvars("run", "mode")


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a bound logger instance."""
    return structlog.get_logger(name)
