"""Tests for testloop.core.clock module."""

import random
import time

import pytest

from testloop.core.clock import apply_jitter, jitter_span, now_ms, sleep_ms


class TestNowMs:
    """Test wall-clock millisecond timestamps."""

    def test_matches_time_time(self):
        """now_ms tracks time.time() in milliseconds."""
        before = int(time.time() * 1000)
        value = now_ms()
        after = int(time.time() * 1000)
        assert before <= value <= after

    def test_returns_int(self):
        assert isinstance(now_ms(), int)


class TestSleepMs:
    """Test sleep_ms helper."""

    def test_zero_and_negative_return_immediately(self):
        """Non-positive durations do not sleep."""
        start = time.monotonic()
        sleep_ms(0)
        sleep_ms(-50)
        assert time.monotonic() - start < 0.02

    def test_sleeps_roughly_requested_time(self):
        start = time.monotonic()
        sleep_ms(30)
        assert time.monotonic() - start >= 0.025


class TestJitterSpan:
    """Test jitter span computation."""

    @pytest.mark.parametrize(
        ("delay", "pct", "expected"),
        [
            (100, 50, 50),
            (100, 100, 100),
            (100, 0, 0),
            (250, 10, 25),
            (1, 50, 0),
            (0, 50, 0),
            (-40, 50, 0),
        ],
    )
    def test_span(self, delay, pct, expected):
        """Span is pct percent of delay, truncated to whole ms."""
        assert jitter_span(delay, pct) == expected


class TestApplyJitter:
    """Test symmetric jitter."""

    def test_zero_percent_is_exact(self):
        """No jitter leaves the timestamp untouched."""
        assert apply_jitter(5_000, 100, 0) == 5_000

    def test_tiny_delay_is_exact(self):
        """A delay too small for a whole-ms span is not perturbed."""
        assert apply_jitter(5_000, 1, 50, random.Random(1)) == 5_000

    def test_stays_within_bounds(self):
        """Every draw lands in [ts - j, ts + j]."""
        rng = random.Random(42)
        draws = [apply_jitter(10_000, 100, 50, rng) for _ in range(500)]
        assert all(9_950 <= d <= 10_050 for d in draws)

    def test_is_symmetric(self):
        """Draws fall on both sides of the nominal timestamp."""
        rng = random.Random(42)
        draws = [apply_jitter(10_000, 100, 50, rng) for _ in range(500)]
        assert min(draws) < 10_000 < max(draws)

    def test_seeded_rng_is_reproducible(self):
        a = [apply_jitter(0, 200, 25, random.Random(9)) for _ in range(3)]
        b = [apply_jitter(0, 200, 25, random.Random(9)) for _ in range(3)]
        assert a == b
