"""
Structured error types for the test loop.

The loop distinguishes two very different kinds of trouble, and the error
hierarchy makes the distinction explicit:

- **Usage errors:** the test itself misuses the API (duplicate tag, unknown
  tag, unknown option, nothing scheduled). These are raised immediately from
  the call that detected them because the test is broken.
- **Test failures:** the condition the harness exists to detect (a done()
  timed out, resolved out of order, resolved twice, or was failed
  explicitly). These are *recorded* into the loop's terminal state and
  surfaced through ``LoopOutcome``, so a runner can report one failing test
  and move on to the next.

Manifesto:
    - **Typed hierarchy:** one class per failure kind, one base for all
    - **Tag-aware:** every failure knows which done() it implicates
    - **Serializable:** ``to_dict()`` for structured logging
    - **Chained:** the original exception of a failing callback is kept

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        TestLoopError                          │
        │              (category, tag, context, cause)                 │
        ├──────────────────────────────────────────────────────────────┤
        │                                                              │
        │   UsageError                 TestFailure                     │
        │   (USAGE, raised)            (recorded, never raised by run) │
        │                                  │                           │
        │              ┌─────────────┬─────┴──────┬──────────────┐     │
        │          DoneTimeout   OutOfOrder  AlreadyResolved  ...     │
        │          (TIMEOUT)     (ORDER)     (DUPLICATE)              │
        │                                                              │
        │              ExplicitFailure  CallbackFailure  CheckFailed  │
        │              (EXPLICIT)       (CALLBACK)       (EXPLICIT)   │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = OutOfOrder("b", expected=2, actual=1)
    >>> err.message
    "done('b'): Did not resolve in expected order. Expected: 2, actual: 1"
    >>> err.to_dict()["category"]
    'ORDER'

Tags:
    error-handling, exception-hierarchy, testloop

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Classification of loop errors for reporting."""

    USAGE = "USAGE"              # API misuse by the test itself
    TIMEOUT = "TIMEOUT"          # done() deadline elapsed
    ORDER = "ORDER"              # done() resolved out of declared order
    DUPLICATE = "DUPLICATE"      # done() resolved more than once
    EXPLICIT = "EXPLICIT"        # fail() or check() called by the test
    CALLBACK = "CALLBACK"        # scheduled call raised
    INTERNAL = "INTERNAL"        # unexpected loop state


@dataclass
class ErrorContext:
    """Extra metadata attached to an error for logging.

    Attributes:
        test: Name of the test the loop was running for, if known
        group: Name of the enclosing test group, if known
        elapsed_ms: Milliseconds since the run epoch when the error occurred
        metadata: Additional key-value pairs
    """

    test: str | None = None
    group: str | None = None
    elapsed_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ("test", "group", "elapsed_ms"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class TestLoopError(Exception):
    """Base class for every error the loop produces.

    Subclasses set ``default_category``. ``tag`` names the done() item the
    error implicates, or is None when no single item is involved.
    """

    __test__ = False  # not a pytest test class

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        tag: str | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.tag = tag
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TestLoopError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.tag is not None:
            result["tag"] = self.tag
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = repr(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# USAGE ERRORS (always raised)
# =============================================================================


class UsageError(TestLoopError):
    """The test misused the loop API. Always fatal for the enclosing test."""

    default_category = ErrorCategory.USAGE


# =============================================================================
# TEST FAILURES (recorded into the loop outcome)
# =============================================================================


def _done_message(tag: str, msg: str) -> str:
    return f"done('{tag}'): {msg}"


class TestFailure(TestLoopError):
    """A condition the test was written to detect.

    Failures tied to a done() item carry a message of the form
    ``done('<tag>'): <reason>``.
    """

    default_category = ErrorCategory.EXPLICIT


class DoneTimeout(TestFailure):
    """A done() item was still pending when its deadline elapsed."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, tag: str, timeout_ms: int | None = None, **kwargs: Any):
        super().__init__(_done_message(tag, "Timeout"), tag=tag, **kwargs)
        self.timeout_ms = timeout_ms


class OutOfOrder(TestFailure):
    """An ordered done() item resolved at the wrong position."""

    default_category = ErrorCategory.ORDER

    def __init__(self, tag: str, expected: int, actual: int, **kwargs: Any):
        super().__init__(
            _done_message(
                tag,
                f"Did not resolve in expected order. Expected: {expected}, actual: {actual}",
            ),
            tag=tag,
            **kwargs,
        )
        self.expected = expected
        self.actual = actual


class AlreadyResolved(TestFailure):
    """A done() item was resolved a second time."""

    default_category = ErrorCategory.DUPLICATE

    def __init__(self, tag: str, **kwargs: Any):
        super().__init__(
            _done_message(tag, "already resolved, can't resolve again"),
            tag=tag,
            **kwargs,
        )


class ExplicitFailure(TestFailure):
    """The test called ``fail()`` for a done() item."""

    def __init__(self, tag: str, reason: str, **kwargs: Any):
        super().__init__(_done_message(tag, reason), tag=tag, **kwargs)
        self.reason = reason


class CallbackFailure(TestFailure):
    """A scheduled call raised an exception other than a usage error."""

    default_category = ErrorCategory.CALLBACK

    def __init__(self, cause: BaseException, **kwargs: Any):
        super().__init__(
            f"Exception in scheduled call: {type(cause).__name__}: {cause}",
            cause=cause,
            **kwargs,
        )


class CheckFailed(TestFailure):
    """A synchronous ``check()`` evaluated false."""


__all__ = [
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
]
