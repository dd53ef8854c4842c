"""Structured logging for the daemon.

Everything logs through structlog on top of the stdlib root logger, so uvicorn,
watchfiles and the daemon share one stream (and optional file). Background
operations bind their name with ``bound_contextvars`` and every line they
produce, including external command output, carries it.
"""

import sys
import logging
from pathlib import Path
from typing import List

import structlog
from structlog.contextvars import bound_contextvars, merge_contextvars

from core.config import Settings

__all__ = ["bound_contextvars", "configure_logging", "get_logger", "log_command"]


def _handlers(settings: Settings) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    return handlers


def _renderer(settings: Settings):
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    # Command output lines are long; keep the event column narrow
    return structlog.dev.ConsoleRenderer(
        colors=False,
        pad_event=35,
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(settings: Settings) -> None:
    """Configure structlog and the stdlib root logger from settings."""
    level = getattr(logging, settings.log_level.upper())

    logging.basicConfig(
        format="%(message)s",
        level=level,
        handlers=_handlers(settings),
        force=True,
    )

    timestamper = structlog.processors.TimeStamper(
        fmt="iso" if settings.log_format == "json" else "%H:%M:%S"
    )
    processors = [
        merge_contextvars,
        timestamper,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.log_format == "json":
        processors.insert(1, structlog.stdlib.add_logger_name)
    processors.append(_renderer(settings))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Suppress noisy loggers
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error", "watchfiles"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_command(logger: structlog.BoundLogger, argv, returncode: int, **kwargs) -> None:
    """Record a finished external command (program and leading arguments only)."""
    logger.debug(
        "Command finished",
        command=" ".join(str(a) for a in argv[:4]) + (" ..." if len(argv) > 4 else ""),
        returncode=returncode,
        **kwargs
    )
