"""Scheduled-call queue.

A timestamp-ordered collection of pending zero-argument calls. Items are
kept in a binary heap keyed by ``(timestamp_ms, seq)`` so equal timestamps
run in insertion order.

Handles returned by ``schedule()`` / ``insert()`` are stable integers into an
arena of live items, never positions inside the heap. Cancelling a handle
removes it from the arena; the stale heap entry is discarded the next time
it reaches the top.

Chained scheduling:
    A negative delay means "this many ms after the previous chained call was
    *scheduled*". The queue keeps a cursor that starts at the current time on
    first use and advances to each chained item's (jittered) timestamp, so a
    chain of steps keeps its spacing no matter how late earlier steps run.

Example:
    >>> q = ScheduledCallQueue(clock=lambda: 1_000)
    >>> q.schedule(lambda: "a", 50)
    1
    >>> q.schedule(lambda: "b", -30)
    2
    >>> q.schedule(lambda: "c", -20)
    3
    >>> q.peek_next_timestamp()
    1030
    >>> [q.pop_earliest().timestamp_ms for _ in range(3)]
    [1030, 1050, 1050]
"""

from __future__ import annotations

import heapq
import itertools
import random
from typing import Any

from testloop.core.clock import Clock, apply_jitter, now_ms
from testloop.execution.models import Action, ScheduledItem


class ScheduledCallQueue:
    """Timestamp-ordered queue of pending calls. Not thread-safe on its own;
    the owning loop serializes access."""

    def __init__(self, clock: Clock = now_ms, rng: random.Random | None = None) -> None:
        self._clock = clock
        self._rng = rng if rng is not None else random.Random()
        self._heap: list[ScheduledItem] = []
        self._items: dict[int, ScheduledItem] = {}
        self._seq = itertools.count()
        self._handles = itertools.count(1)
        self._last_ordered_ts: int | None = None

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __contains__(self, handle: object) -> bool:
        return handle in self._items

    @property
    def last_ordered_ts(self) -> int | None:
        """Cursor of the chained-scheduling sequence, None until first used."""
        return self._last_ordered_ts

    def schedule(self, action: Action, delay_ms: int, jitter_pct: int = 0) -> int:
        """Schedule ``action`` relative to now, or to the chain cursor if
        ``delay_ms`` is negative. Returns a cancellation handle."""
        if delay_ms < 0:
            magnitude = -delay_ms
            if self._last_ordered_ts is None:
                self._last_ordered_ts = self._clock()
            ts = apply_jitter(
                self._last_ordered_ts + magnitude, magnitude, jitter_pct, self._rng
            )
            self._last_ordered_ts = ts
        else:
            ts = apply_jitter(self._clock() + delay_ms, delay_ms, jitter_pct, self._rng)
        return self.insert(ts, action)

    def insert(self, timestamp_ms: int, action: Action) -> int:
        """Queue ``action`` at an absolute timestamp. Returns its handle."""
        handle = next(self._handles)
        item = ScheduledItem(
            timestamp_ms=timestamp_ms,
            seq=next(self._seq),
            handle=handle,
            action=action,
        )
        self._items[handle] = item
        heapq.heappush(self._heap, item)
        return handle

    def cancel(self, handle: int | None) -> bool:
        """Remove a pending item. Returns False if it already ran or was
        cancelled."""
        if handle is None:
            return False
        return self._items.pop(handle, None) is not None

    def _discard_cancelled(self) -> None:
        while self._heap and self._heap[0].handle not in self._items:
            heapq.heappop(self._heap)

    def peek_next_timestamp(self) -> int | None:
        """Earliest pending timestamp, or None if the queue is empty."""
        self._discard_cancelled()
        return self._heap[0].timestamp_ms if self._heap else None

    def pop_earliest(self) -> ScheduledItem:
        """Remove and return the earliest pending item.

        Raises:
            IndexError: If the queue is empty
        """
        self._discard_cancelled()
        if not self._heap:
            raise IndexError("pop from an empty ScheduledCallQueue")
        item = heapq.heappop(self._heap)
        del self._items[item.handle]
        return item

    def pop_earliest_and_run(self) -> Any:
        """Remove the earliest pending item and call it."""
        return self.pop_earliest()()

    def clear(self) -> int:
        """Drop every pending item. Returns how many were dropped."""
        dropped = len(self._items)
        self._items.clear()
        self._heap.clear()
        return dropped


__all__ = ["ScheduledCallQueue"]
