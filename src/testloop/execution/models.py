"""Loop domain models.

Defines the data structures shared by the queue, the done() registry and
the loop driver:
- LoopState / MarkerState: state enums with transition rules
- ScheduledItem: a pending zero-argument call at an absolute timestamp
- LoopOutcome: the single-run result exposed after ``run()``
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from testloop.core.errors import ErrorCategory, TestFailure, TestLoopError

Action = Callable[[], Any]


class InvalidTransitionError(TestLoopError, ValueError):
    """Raised when a done() item is moved out of a terminal state.

    The registry never attempts such a move on its own; seeing this error
    means loop bookkeeping is broken, not that a test failed.
    """

    default_category = ErrorCategory.INTERNAL

    def __init__(self, current: str, target: str, enum_name: str = "State") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid {enum_name} transition: {current} -> {target}")


class LoopState(str, Enum):
    """Overall completion state of an event loop.

    ``NOT_COMPLETE`` until ``run()`` finishes; every other state is terminal.
    """

    NOT_COMPLETE = "not_complete"
    SUCCESS = "success"
    ERROR = "error"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self is not LoopState.NOT_COMPLETE


class MarkerState(str, Enum):
    """State of one done() item.

    Valid transition graph::

        PENDING -> SUCCESS | ERROR
        SUCCESS -> (terminal)
        ERROR   -> (terminal)
    """

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


MARKER_VALID_TRANSITIONS: dict[MarkerState, frozenset[MarkerState]] = {
    MarkerState.PENDING: frozenset({MarkerState.SUCCESS, MarkerState.ERROR}),
    MarkerState.SUCCESS: frozenset(),  # terminal
    MarkerState.ERROR: frozenset(),  # terminal
}


def validate_marker_transition(current: MarkerState, target: MarkerState) -> None:
    """Raise :class:`InvalidTransitionError` if *current -> target* is illegal.

    Example:
        >>> validate_marker_transition(MarkerState.PENDING, MarkerState.SUCCESS)
        >>> validate_marker_transition(MarkerState.SUCCESS, MarkerState.ERROR)
        Traceback (most recent call last):
        ...
        testloop.execution.models.InvalidTransitionError: Invalid MarkerState transition: success -> error
    """
    if target not in MARKER_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value, "MarkerState")


@dataclass(order=True)
class ScheduledItem:
    """A zero-argument call due at ``timestamp_ms``.

    Items compare by ``(timestamp_ms, seq)`` so equal timestamps keep
    insertion order.
    """

    timestamp_ms: int
    seq: int
    handle: int = field(compare=False)
    action: Action = field(compare=False, repr=False)

    def __call__(self) -> Any:
        return self.action()


@dataclass(frozen=True)
class LoopOutcome:
    """Result of a single ``EventLoop.run()``.

    Attributes:
        state: Terminal loop state
        message: Human-readable error message (empty unless ERROR)
        tag: done() tag implicated in the failure, if any
        failure: The recorded TestFailure, if any
        elapsed_ms: Wall-clock duration of the run
    """

    state: LoopState
    message: str = ""
    tag: str | None = None
    failure: TestFailure | None = None
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.state is LoopState.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "state": self.state.value,
            "elapsed_ms": self.elapsed_ms,
        }
        if self.message:
            result["message"] = self.message
        if self.tag is not None:
            result["tag"] = self.tag
        if self.failure is not None:
            result["failure"] = self.failure.to_dict()
        return result


__all__ = [
    "Action",
    "InvalidTransitionError",
    "LoopState",
    "MarkerState",
    "MARKER_VALID_TRANSITIONS",
    "validate_marker_transition",
    "ScheduledItem",
    "LoopOutcome",
]
