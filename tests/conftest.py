"""
Shared pytest fixtures for testloop tests.

This module provides:
- A controllable millisecond clock for queue and registry tests
- Seeded random sources for reproducible jitter
- Zero-jitter settings and a loop factory for wall-clock loop tests
"""

import random
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

# Ensure testloop package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import testloop.core.logging as tl_logging
from testloop.core.settings import TestLoopSettings, get_settings
from testloop.execution.loop import EventLoop


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


# =============================================================================
# Settings and loops
# =============================================================================


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    """Keep the cached process-wide settings from leaking between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _keep_structlog_defaults(monkeypatch):
    """Make in-process configure_logging() calls no-ops so capture_logs keeps
    working. Logging configuration itself is tested in a subprocess or with
    this flag reset."""
    monkeypatch.setattr(tl_logging, "_configured", True)


@pytest.fixture
def settings() -> TestLoopSettings:
    """Deterministic settings: no jitter, short default timeout."""
    return TestLoopSettings(jitter_pct=0, default_done_timeout_ms=2000)


@pytest.fixture
def make_loop(settings: TestLoopSettings) -> Callable[..., EventLoop]:
    """Factory for loops that use the deterministic settings."""

    def _make(*args: Any, **kwargs: Any) -> EventLoop:
        kwargs.setdefault("settings", settings)
        return EventLoop(*args, **kwargs)

    return _make
