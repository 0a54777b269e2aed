"""Loop runtime: scheduled-call queue, done() registry and the driver."""

from testloop.execution.loop import DoneSpec, EventLoop
from testloop.execution.markers import DEFAULT_TAG, DoneItem, DoneOptions, DoneTracker
from testloop.execution.models import (
    MARKER_VALID_TRANSITIONS,
    InvalidTransitionError,
    LoopOutcome,
    LoopState,
    MarkerState,
    ScheduledItem,
    validate_marker_transition,
)
from testloop.execution.queue import ScheduledCallQueue

__all__ = [
    # Driver
    "EventLoop",
    "DoneSpec",
    # Queue
    "ScheduledCallQueue",
    "ScheduledItem",
    # done() registry
    "DEFAULT_TAG",
    "DoneItem",
    "DoneOptions",
    "DoneTracker",
    # Models
    "LoopOutcome",
    "LoopState",
    "MarkerState",
    "MARKER_VALID_TRANSITIONS",
    "InvalidTransitionError",
    "validate_marker_transition",
]
