"""Wall-clock millisecond timestamps and delay jitter.

Timestamps are integer milliseconds since the Unix epoch taken from the wall
clock. They are not monotonic: a system clock adjustment during a run shifts
every deadline with it.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


def sleep_ms(ms: int) -> None:
    """Block the calling thread for ``ms`` milliseconds (no-op if <= 0)."""
    if ms > 0:
        time.sleep(ms / 1000)


def jitter_span(delay_ms: int, jitter_pct: int) -> int:
    """Maximum absolute offset allowed for ``delay_ms`` at ``jitter_pct`` percent."""
    if delay_ms <= 0 or jitter_pct <= 0:
        return 0
    return (delay_ms * jitter_pct) // 100


def apply_jitter(
    timestamp_ms: int,
    delay_ms: int,
    jitter_pct: int,
    rng: random.Random | None = None,
) -> int:
    """Perturb ``timestamp_ms`` by a symmetric random offset.

    The offset is drawn uniformly from ``[-j, +j]`` where ``j`` is
    ``jitter_pct`` percent of ``delay_ms``. A zero percentage, or a delay too
    small to yield a whole millisecond of span, returns the timestamp as is.

    Example:
        >>> apply_jitter(1_000, 100, 0)
        1000
        >>> 950 <= apply_jitter(1_000, 100, 50, random.Random(7)) <= 1050
        True
    """
    span = jitter_span(delay_ms, jitter_pct)
    if span == 0:
        return timestamp_ms
    source = rng if rng is not None else random
    return timestamp_ms + source.randint(-span, span)


__all__ = ["Clock", "now_ms", "sleep_ms", "jitter_span", "apply_jitter"]
