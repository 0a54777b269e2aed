"""done() registry: named completion markers with deadlines and order.

Each done() item is a condition the test must see satisfied. It carries a
timeout (relative until the loop anchors it), an optional position in the
global resolution sequence, and the handle of the timeout call it owns in
the scheduled-call queue.

Lifecycle::

    register()            anchor_and_arm_all(now)        resolve() / fail()
    ──────────            ───────────────────────        ──────────────────
    PENDING, unarmed  ->  PENDING, timeout queued    ->  SUCCESS | ERROR
                                    │
                                    └── timeout fires while PENDING
                                        -> DoneTimeout, ERROR

Failures are handed to a ``report`` callback owned by the loop. The callback
returns False once the loop is already terminal, in which case the failure
is dropped and the item is left as it was (first error wins).
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from testloop.core.clock import Clock, now_ms
from testloop.core.errors import (
    AlreadyResolved,
    DoneTimeout,
    ExplicitFailure,
    OutOfOrder,
    TestFailure,
    UsageError,
)
from testloop.core.logging import get_logger
from testloop.execution.models import MarkerState, validate_marker_transition
from testloop.execution.queue import ScheduledCallQueue

logger = get_logger(__name__)

DEFAULT_TAG = "_default"

FailureReporter = Callable[[TestFailure], bool]


def usage_error(message: str, **context: Any) -> UsageError:
    """Log a usage error and return it for the caller to raise."""
    logger.error("usage_error", message=message, **context)
    return UsageError(message, tag=context.get("tag"))


class DoneOptions(BaseModel):
    """Options of a done() item.

    Attributes:
        timeout: Milliseconds to resolve within, counted from the run epoch.
            None means the loop default. ``tmo`` is accepted as an alias.
        order: Required position among ordered items (1-based), 0 if unordered.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    timeout: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("timeout", "tmo"),
    )
    order: int = Field(default=0, ge=0)

    @classmethod
    def parse(cls, tag: str, options: DoneOptions | Mapping[str, Any] | None) -> DoneOptions:
        """Build options for ``tag``, turning validation problems into usage
        errors that name the offending key and tag."""
        if options is None:
            return cls()
        if isinstance(options, DoneOptions):
            return options
        try:
            return cls.model_validate(dict(options))
        except ValidationError as exc:
            raise _options_error(tag, exc) from exc


def _options_error(tag: str, exc: ValidationError) -> UsageError:
    first = exc.errors()[0]
    key = ".".join(str(part) for part in first["loc"]) or "?"
    if first["type"] == "extra_forbidden":
        return usage_error(f"Unknown property '{key}' of done() with tag '{tag}'", tag=tag)
    return usage_error(
        f"Invalid value for property '{key}' of done() with tag '{tag}': {first['msg']}",
        tag=tag,
    )


@dataclass
class DoneItem:
    """One done() item.

    ``deadline_ms`` stays None until the item is armed; ``handle`` points at
    the pending timeout call and is cleared once it is cancelled or has run.
    """

    tag: str
    timeout_ms: int
    order: int = 0
    state: MarkerState = MarkerState.PENDING
    deadline_ms: int | None = None
    handle: int | None = None

    @property
    def is_pending(self) -> bool:
        return self.state is MarkerState.PENDING

    @property
    def armed(self) -> bool:
        return self.deadline_ms is not None

    def transition_to(self, target: MarkerState) -> None:
        validate_marker_transition(self.state, target)
        self.state = target


class DoneTracker:
    """Registry of done() items keyed by tag.

    Not thread-safe on its own; the loop calls it with its monitor held.
    """

    def __init__(
        self,
        queue: ScheduledCallQueue,
        *,
        default_timeout_ms: int,
        report: FailureReporter,
        clock: Clock = now_ms,
        late_warning_ms: int = 10,
        log_dones: bool = False,
    ) -> None:
        self._queue = queue
        self._default_timeout_ms = default_timeout_ms
        self._report = report
        self._clock = clock
        self._late_warning_ms = late_warning_ms
        self._log_dones = log_dones
        self._items: dict[str, DoneItem] = {}
        self._ordered_count = 0
        self._anchored_at: int | None = None

    def __contains__(self, tag: object) -> bool:
        return tag in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[DoneItem]:
        return iter(self._items.values())

    def get(self, tag: str) -> DoneItem | None:
        return self._items.get(tag)

    @property
    def has_default(self) -> bool:
        return DEFAULT_TAG in self._items

    @property
    def ordered_count(self) -> int:
        """How many ordered items have been resolved so far."""
        return self._ordered_count

    @property
    def anchored(self) -> bool:
        return self._anchored_at is not None

    def register(
        self,
        tag: str,
        options: DoneOptions | Mapping[str, Any] | None = None,
    ) -> DoneItem:
        """Add a done() item.

        Before anchoring the item is only stored. After anchoring (a done()
        added while the loop runs) it is armed at once, with its deadline
        counted from now.

        Raises:
            UsageError: On an empty or duplicate tag, or invalid options
        """
        if not isinstance(tag, str) or not tag:
            raise usage_error(f"done() tag must be a non-empty string, got {tag!r}")
        opts = DoneOptions.parse(tag, options)
        if tag in self._items:
            raise usage_error(f"Duplicate done() tag '{tag}'", tag=tag)

        timeout_ms = opts.timeout if opts.timeout is not None else self._default_timeout_ms
        item = DoneItem(tag=tag, timeout_ms=timeout_ms, order=opts.order)
        self._items[tag] = item
        if self._anchored_at is not None:
            self._arm(item, self._clock())
        return item

    def anchor_and_arm_all(self, now: int) -> None:
        """Turn every relative deadline into an absolute one and queue the
        timeout calls. Runs once, at the start of the run."""
        if self._anchored_at is not None:
            raise usage_error("done() deadlines are already anchored")
        self._anchored_at = now
        for item in self._items.values():
            if item.is_pending:
                self._arm(item, now)

    def _arm(self, item: DoneItem, now: int) -> None:
        item.deadline_ms = now + item.timeout_ms
        tag = item.tag
        item.handle = self._queue.insert(item.deadline_ms, lambda: self._on_timeout(tag))

    def _on_timeout(self, tag: str) -> None:
        item = self._items[tag]
        item.handle = None
        offset = abs(self._clock() - (item.deadline_ms or 0))
        if offset > self._late_warning_ms:
            logger.warning(
                "done_timeout_late",
                tag=tag,
                offset_ms=offset,
                note="normal if paused in a debugger",
            )
        # Resolution cancels this call, but it may already have been popped.
        if not item.is_pending:
            logger.debug("done_timeout_ignored", tag=tag, state=item.state.value)
            return
        self._fail_item(item, DoneTimeout(tag, timeout_ms=item.timeout_ms))

    def _lookup(self, tag: str, caller: str) -> DoneItem:
        item = self._items.get(tag)
        if item is None:
            raise usage_error(f"{caller} called with unknown done() tag '{tag}'", tag=tag)
        return item

    def resolve(self, tag: str = DEFAULT_TAG) -> bool:
        """Mark ``tag`` as satisfied.

        Returns True on success. A second resolution, or a resolution out of
        the declared order, is reported as a test failure and returns False.

        Raises:
            UsageError: If ``tag`` is unknown
        """
        item = self._lookup(tag, "done()")
        if not item.is_pending:
            self._report(AlreadyResolved(tag))
            return False

        self._queue.cancel(item.handle)
        item.handle = None

        if item.order:
            self._ordered_count += 1
            if item.order != self._ordered_count:
                self._fail_item(
                    item,
                    OutOfOrder(tag, expected=item.order, actual=self._ordered_count),
                )
                return False

        item.transition_to(MarkerState.SUCCESS)
        if self._log_dones:
            logger.info("done_resolved", tag=tag, order=item.order or None)
        else:
            logger.debug("done_resolved", tag=tag, order=item.order or None)
        return True

    def fail(self, tag: str, message: str) -> bool:
        """Fail ``tag`` explicitly. Returns False if an earlier error won.

        Raises:
            UsageError: If ``tag`` is unknown
        """
        item = self._lookup(tag, "fail()")
        return self._fail_item(item, ExplicitFailure(tag, message))

    def _fail_item(self, item: DoneItem, failure: TestFailure) -> bool:
        if not self._report(failure):
            return False
        if item.is_pending:
            self._queue.cancel(item.handle)
            item.handle = None
            item.transition_to(MarkerState.ERROR)
        return True


__all__ = [
    "DEFAULT_TAG",
    "DoneOptions",
    "DoneItem",
    "DoneTracker",
    "FailureReporter",
    "usage_error",
]
