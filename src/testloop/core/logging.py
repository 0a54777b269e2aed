"""
Logging configuration.

Provides a single entry point for configuring structured logging with
structlog. Configuration defaults come from ``TestLoopSettings``:

- TESTLOOP_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR (default: INFO)
- TESTLOOP_LOG_FORMAT: json | console (default: console)

Usage:
    from testloop.core.logging import configure_logging, get_logger

    configure_logging()
    log = get_logger(__name__)
    log.info("loop_started", markers=3)
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Literal

import structlog
from structlog.types import Processor

from testloop.core.settings import get_settings

_configured = False


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
    force: bool = False,
    cache_loggers: bool = True,
) -> None:
    """
    Configure structured logging for the test process.

    Subsequent calls are no-ops unless force=True.

    Args:
        level: Log level (overrides TESTLOOP_LOG_LEVEL)
        format: Output format (overrides TESTLOOP_LOG_FORMAT)
        force: Reconfigure even if already configured
        cache_loggers: Let loggers freeze their configuration on first use
    """
    global _configured

    if _configured and not force:
        return

    settings = get_settings()
    log_level = (level or settings.log_level).upper()
    log_format = (format or settings.log_format).lower()

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        structlog.processors.format_exc_info,
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=cache_loggers,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level),
        force=True,
    )
    logging.getLogger("testloop").setLevel(getattr(logging, log_level))

    _configured = True


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context (e.g. ``test="test one"``) to all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "is_configured",
]
