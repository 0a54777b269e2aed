"""Event loop driver for asynchronous test assertions.

The loop runs scheduled calls at their (optionally jittered) wall-clock
timestamps and watches a set of done() items that the code under test must
resolve, in the declared order, before their deadlines.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────────┐
        │                           EventLoop                               │
        │                                                                   │
        │   schedule() ─────────────┐        done() / fail() / add_done()   │
        │                           ▼                     │                 │
        │               ┌──────────────────────┐          ▼                 │
        │               │  ScheduledCallQueue  │◄── DoneTracker             │
        │               │  (ts, seq) heap      │    (timeout call per item) │
        │               └──────────┬───────────┘                            │
        │                          │ peek / pop                             │
        │                          ▼                                        │
        │   run():  anchor dones ─► wait until due ─► pop ─► call ─► ...    │
        │                                                                   │
        │   Monitor: Condition(RLock), held by the loop thread for the      │
        │   whole run except inside wait(); every mutator notifies it.      │
        └──────────────────────────────────────────────────────────────────┘

Concurrency:
    One thread calls ``run()``. Worker threads may call ``schedule()``,
    ``done()``, ``fail()``, ``add_done()`` and ``abort()`` at any time; they
    block until the loop thread is idle inside ``wait()``, mutate state, and
    wake the loop. Callbacks run on the loop thread, one at a time, to
    completion.

Failure handling:
    ``UsageError`` is raised from the call that detected it, including from
    inside a callback, in which case it propagates out of ``run()``. Test
    failures (timeout, wrong order, double resolve, explicit fail, a callback
    raising) are recorded: the first one moves the loop to ``ERROR`` and ends
    the run, later ones are ignored. ``run()`` returns a ``LoopOutcome``.

Example:
    >>> loop = EventLoop(jitter_pct=0)
    >>> loop.schedule(loop.done, 100)
    1
    >>> outcome = loop.run()
    >>> outcome.state
    <LoopState.SUCCESS: 'success'>

Tags:
    event-loop, scheduler, deadlines, ordering, testloop
"""

from __future__ import annotations

import random
import threading
from collections.abc import Iterable, Mapping
from typing import Any, Union

from testloop.core.clock import Clock, now_ms
from testloop.core.errors import CallbackFailure, TestFailure, UsageError
from testloop.core.logging import get_logger
from testloop.core.settings import TestLoopSettings, get_settings
from testloop.execution.markers import (
    DEFAULT_TAG,
    DoneItem,
    DoneOptions,
    DoneTracker,
    usage_error,
)
from testloop.execution.models import Action, LoopOutcome, LoopState, ScheduledItem
from testloop.execution.queue import ScheduledCallQueue

logger = get_logger(__name__)

DoneSpec = Union[str, tuple[str, Union[DoneOptions, Mapping[str, Any], None]]]


def _iter_done_specs(
    dones: Iterable[DoneSpec] | Mapping[str, Any],
) -> Iterable[tuple[str, DoneOptions | Mapping[str, Any] | None]]:
    if isinstance(dones, str):
        yield dones, None
        return
    if isinstance(dones, Mapping):
        yield from dones.items()
        return
    for spec in dones:
        if isinstance(spec, str):
            yield spec, None
        elif isinstance(spec, tuple) and len(spec) == 2:
            yield spec[0], spec[1]
        else:
            raise usage_error(f"Invalid done() declaration: {spec!r}")


class EventLoop:
    """Single-use loop that drives scheduled calls and watches done() items.

    Args:
        dones: done() items to declare. None declares the single ``_default``
            item. Accepts a single tag, an iterable of tags and
            ``(tag, options)`` pairs, or a mapping of tag to options.
        default_timeout_ms: Timeout for items declared without one
        jitter_pct: Default schedule() jitter, percent of the delay
        settings: Settings to use instead of the process-wide ones
        clock: Millisecond wall-clock source
        rng: Random source for jitter
        name: Name used in logs (usually the test name)
    """

    def __init__(
        self,
        dones: Iterable[DoneSpec] | Mapping[str, Any] | None = None,
        *,
        default_timeout_ms: int | None = None,
        jitter_pct: int | None = None,
        settings: TestLoopSettings | None = None,
        clock: Clock = now_ms,
        rng: random.Random | None = None,
        name: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        self.name = name
        self._log = logger.bind(loop=name) if name else logger

        self._default_timeout_ms = (
            default_timeout_ms
            if default_timeout_ms is not None
            else self._settings.default_done_timeout_ms
        )
        self._jitter_pct = self._settings.jitter_pct
        if jitter_pct is not None:
            self.jitter_pct = jitter_pct

        self._cond = threading.Condition(threading.RLock())
        self._queue = ScheduledCallQueue(clock=clock, rng=rng)
        self._dones = DoneTracker(
            self._queue,
            default_timeout_ms=self._default_timeout_ms,
            report=self._record_failure,
            clock=clock,
            late_warning_ms=self._settings.late_timeout_warning_ms,
            log_dones=self._settings.log_dones,
        )

        self._state = LoopState.NOT_COMPLETE
        self._failure: TestFailure | None = None
        self._started_at: int | None = None
        self._finished_at: int | None = None
        self._running = False
        self._ran = False

        if dones is None:
            self._dones.register(DEFAULT_TAG)
        else:
            for tag, options in _iter_done_specs(dones):
                self._dones.register(tag, options)

    def __repr__(self) -> str:
        return (
            f"EventLoop(name={self.name!r}, state={self._state.value}, "
            f"dones={len(self._dones)}, pending={len(self._queue)})"
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def error_message(self) -> str:
        return self._failure.message if self._failure is not None else ""

    @property
    def error_tag(self) -> str | None:
        return self._failure.tag if self._failure is not None else None

    @property
    def failure(self) -> TestFailure | None:
        return self._failure

    @property
    def default_timeout_ms(self) -> int:
        return self._default_timeout_ms

    @property
    def jitter_pct(self) -> int:
        """Default jitter applied by ``schedule()``, in percent."""
        return self._jitter_pct

    @jitter_pct.setter
    def jitter_pct(self, value: int) -> None:
        if not 0 <= value <= 100:
            raise usage_error(f"jitter_pct must be between 0 and 100, got {value}")
        self._jitter_pct = value

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        """Number of calls still queued."""
        with self._cond:
            return len(self._queue)

    @property
    def ordered_count(self) -> int:
        return self._dones.ordered_count

    @property
    def outcome(self) -> LoopOutcome:
        """Snapshot of the current (or final) result."""
        with self._cond:
            if self._started_at is None:
                elapsed = 0
            else:
                end = self._finished_at if self._finished_at is not None else self._clock()
                elapsed = end - self._started_at
            return LoopOutcome(
                state=self._state,
                message=self.error_message,
                tag=self.error_tag,
                failure=self._failure,
                elapsed_ms=elapsed,
            )

    def get_done(self, tag: str) -> DoneItem | None:
        with self._cond:
            return self._dones.get(tag)

    # ------------------------------------------------------------------
    # Scheduling and done() API (any thread)
    # ------------------------------------------------------------------

    def schedule(
        self,
        action: Action,
        delay_ms: int | None = None,
        jitter_pct: int | None = None,
    ) -> int:
        """Queue ``action`` to run ``delay_ms`` from now.

        A negative ``delay_ms`` schedules relative to the previous chained
        call instead of now. ``jitter_pct`` defaults to ``self.jitter_pct``.

        Returns:
            Handle usable with ``cancel()``
        """
        if not callable(action):
            raise usage_error(f"schedule() needs a callable, got {action!r}")
        delay = self._settings.default_delay_ms if delay_ms is None else delay_ms
        jitter = self._jitter_pct if jitter_pct is None else jitter_pct
        if not 0 <= jitter <= 100:
            raise usage_error(f"jitter_pct must be between 0 and 100, got {jitter}")
        with self._cond:
            handle = self._queue.schedule(action, delay, jitter)
            self._log.debug("call_scheduled", handle=handle, delay_ms=delay, jitter_pct=jitter)
            self._cond.notify_all()
            return handle

    def cancel(self, handle: int) -> bool:
        """Cancel a scheduled call. Returns False if it already ran."""
        with self._cond:
            cancelled = self._queue.cancel(handle)
            if cancelled:
                self._cond.notify_all()
            return cancelled

    def add_done(
        self,
        tag: str,
        options: DoneOptions | Mapping[str, Any] | None = None,
        **fields: Any,
    ) -> DoneItem:
        """Declare a done() item. Added while running, it is armed at once.

        Example:
            >>> loop = EventLoop([])
            >>> loop.add_done("connected", timeout=500, order=1).order
            1
        """
        if fields:
            base = dict(options) if isinstance(options, Mapping) else (
                options.model_dump(exclude_none=True) if options is not None else {}
            )
            options = {**base, **fields}
        with self._cond:
            item = self._dones.register(tag, options)
            self._cond.notify_all()
            return item

    def done(self, tag: str = DEFAULT_TAG) -> bool:
        """Resolve a done() item. Returns False if the resolution failed the
        test (already resolved, or out of order)."""
        with self._cond:
            resolved = self._dones.resolve(tag)
            self._cond.notify_all()
            return resolved

    def fail(self, message: str, tag: str = DEFAULT_TAG) -> bool:
        """Fail the test through a done() item (``_default`` when untagged).

        Returns False if an earlier failure already ended the run.
        """
        with self._cond:
            if tag == DEFAULT_TAG and not self._dones.has_default:
                raise usage_error(
                    f"fail() without a tag needs the '{DEFAULT_TAG}' done() item"
                )
            if not tag:
                raise usage_error("fail() for a tagged done() item called with an empty tag")
            failed = self._dones.fail(tag, message)
            self._cond.notify_all()
            return failed

    def abort(self) -> None:
        """Stop the run early. Pending calls are dropped without running."""
        with self._cond:
            if self._state.is_terminal:
                return
            self._state = LoopState.ABORTED
            self._log.info("loop_aborted", pending=len(self._queue))
            self._cond.notify_all()

    # ------------------------------------------------------------------
    # Driver (loop thread)
    # ------------------------------------------------------------------

    def run(self) -> LoopOutcome:
        """Run until every call has executed or the loop reaches a terminal
        state.

        Raises:
            UsageError: If nothing is queued, the loop already ran, or a
                callback raised one
        """
        with self._cond:
            if self._ran:
                raise usage_error("run() called twice: an EventLoop is single-use")
            self._ran = True
            self._running = True
            self._started_at = self._clock()
            try:
                self._dones.anchor_and_arm_all(self._started_at)
                if not self._queue:
                    raise usage_error(
                        "Nothing to run: no call has been scheduled and no done() item is declared"
                    )
                self._log.debug(
                    "loop_started",
                    dones=len(self._dones),
                    pending=len(self._queue),
                )
                self._drive()
            finally:
                self._running = False
                self._finished_at = self._clock()
                dropped = self._queue.clear()
                if dropped:
                    self._log.debug("calls_dropped", count=dropped)

            if self._state is LoopState.NOT_COMPLETE:
                self._state = LoopState.SUCCESS
            outcome = self.outcome

        self._log.debug("loop_finished", **outcome.to_dict())
        return outcome

    def _drive(self) -> None:
        tolerance = self._settings.wake_tolerance_ms
        while self._queue and self._state is LoopState.NOT_COMPLETE:
            next_ts = self._queue.peek_next_timestamp()
            if next_ts is None:
                break
            to_sleep = next_ts - self._clock()
            if to_sleep > 0:
                self._cond.wait(to_sleep / 1000)
                # Woken by a worker or by the timer: the earliest item may
                # have changed, been cancelled, or the loop aborted.
                next_ts = self._queue.peek_next_timestamp()
                if next_ts is None or self._state.is_terminal:
                    continue
                if next_ts - self._clock() > tolerance:
                    continue

            self._execute(self._queue.pop_earliest())
            if self._failure is not None:
                break

    def _execute(self, item: ScheduledItem) -> None:
        try:
            item()
        except UsageError:
            raise
        except TestFailure as failure:
            self._record_failure(failure)
        except Exception as exc:
            self._log.exception("callback_raised", handle=item.handle)
            self._record_failure(CallbackFailure(exc))

    def _record_failure(self, failure: TestFailure) -> bool:
        if self._state.is_terminal:
            self._log.info(
                "failure_ignored",
                state=self._state.value,
                tag=failure.tag,
                reason=failure.message,
            )
            return False
        if self._started_at is not None:
            failure.with_context(elapsed_ms=self._clock() - self._started_at)
        if self.name is not None and failure.context.test is None:
            failure.with_context(test=self.name)
        self._state = LoopState.ERROR
        self._failure = failure
        self._log.error("done_failed", **failure.to_dict())
        self._cond.notify_all()
        return True


__all__ = ["EventLoop", "DoneSpec"]
