"""
Logging utilities for the request pipeline.

This module provides:
- structlog configuration driven by ``LoggingConfig``
- the ``get_logger`` accessor used by every pipeline stage
- ``child_logger`` which mirrors the hierarchical ``logger.child(name)``
  convention on top of structlog's ``bind``
"""

from __future__ import annotations

import logging
import sys
from enum import Enum
from typing import Any

import structlog


class LogFormat(str, Enum):
    """Log format options."""

    JSON = "json"
    CONSOLE = "console"
    PLAIN = "plain"


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger.

    Args:
        name: Optional logger name

    Returns:
        A structured logger
    """
    return structlog.get_logger(name)  # type: ignore


def child_logger(
    logger: Any | None, component: str
) -> structlog.stdlib.BoundLogger:
    """Return a logger scoped to ``component``.

    Falls back to the module-level pipeline logger when ``logger`` is None.
    """
    base = logger if logger is not None else get_logger("request_pipeline")
    return base.bind(component=component)  # type: ignore[no-any-return]


def _renderer_for(log_format: LogFormat) -> Any:
    if log_format == LogFormat.JSON:
        return structlog.processors.JSONRenderer()
    if log_format == LogFormat.PLAIN:
        return structlog.processors.KeyValueRenderer(
            key_order=["timestamp", "level", "event"]
        )
    return structlog.dev.ConsoleRenderer(colors=False)


def configure_logging(
    level: str | int = logging.INFO,
    log_format: LogFormat | str = LogFormat.CONSOLE,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level, as a name (``"DEBUG"``) or a stdlib constant
        log_format: Output renderer
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    fmt = LogFormat(log_format)

    logging.basicConfig(stream=sys.stderr, level=level, format="%(message)s")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer_for(fmt),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def describe_exception(error: BaseException | Any) -> str:
    """Return a short, log-safe description of an error value."""
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return "Unknown error"
