"""Shared primitives: clock, errors, settings and logging."""

from testloop.core.clock import apply_jitter, jitter_span, now_ms, sleep_ms
from testloop.core.errors import (
    AlreadyResolved,
    CallbackFailure,
    CheckFailed,
    DoneTimeout,
    ErrorCategory,
    ErrorContext,
    ExplicitFailure,
    OutOfOrder,
    TestFailure,
    TestLoopError,
    UsageError,
)
from testloop.core.logging import configure_logging, get_logger
from testloop.core.settings import TestLoopSettings, get_settings

__all__ = [
    # Clock
    "now_ms",
    "sleep_ms",
    "jitter_span",
    "apply_jitter",
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "TestLoopError",
    "UsageError",
    "TestFailure",
    "DoneTimeout",
    "OutOfOrder",
    "AlreadyResolved",
    "ExplicitFailure",
    "CallbackFailure",
    "CheckFailed",
    # Settings
    "TestLoopSettings",
    "get_settings",
    # Logging
    "configure_logging",
    "get_logger",
]
