"""
testloop - deterministic event loop for asserting on asynchronous behaviour.

Tests declare named done() items, schedule calls at (optionally jittered)
future timestamps, and run the loop. The run succeeds only if every done()
item is resolved, in its declared order, before its deadline.

Usage:
    from testloop import EventLoop, LoopState

    loop = EventLoop({"connected": {"order": 1}, "synced": {"order": 2}})
    loop.schedule(lambda: loop.done("connected"), -50)
    loop.schedule(lambda: loop.done("synced"), -100)
    outcome = loop.run()
    assert outcome.state is LoopState.SUCCESS, outcome.message
"""

from testloop.core.errors import (
    AlreadyResolved,
    CallbackFailure,
    CheckFailed,
    DoneTimeout,
    ErrorCategory,
    ExplicitFailure,
    OutOfOrder,
    TestFailure,
    TestLoopError,
    UsageError,
)
from testloop.core.logging import configure_logging, get_logger
from testloop.core.settings import TestLoopSettings, get_settings
from testloop.execution.loop import EventLoop
from testloop.execution.markers import DEFAULT_TAG, DoneItem, DoneOptions
from testloop.execution.models import LoopOutcome, LoopState, MarkerState
from testloop.execution.queue import ScheduledCallQueue
from testloop.framework.runner import GroupReport, RunReport, TestGroup, check, run_groups

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Loop
    "EventLoop",
    "LoopOutcome",
    "LoopState",
    "MarkerState",
    "ScheduledCallQueue",
    "DEFAULT_TAG",
    "DoneItem",
    "DoneOptions",
    # Errors
    "ErrorCategory",
    "TestLoopError",
    "UsageError",
    "TestFailure",
    "DoneTimeout",
    "OutOfOrder",
    "AlreadyResolved",
    "ExplicitFailure",
    "CallbackFailure",
    "CheckFailed",
    # Settings / logging
    "TestLoopSettings",
    "get_settings",
    "configure_logging",
    "get_logger",
    # Runner
    "TestGroup",
    "GroupReport",
    "RunReport",
    "check",
    "run_groups",
]
