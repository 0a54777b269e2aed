"""Loop settings.

Every tunable of the loop (default done() timeout, default jitter, wake
tolerance, logging) lives in one validated settings object that reads from
``TESTLOOP_*`` environment variables and an optional ``.env`` file.

Features:
    - **TestLoopSettings:** pydantic-settings model with validated ranges
    - **env_prefix:** ``TESTLOOP_`` (e.g. ``TESTLOOP_JITTER_PCT=0``)
    - **get_settings():** cached process-wide default instance

Examples:
    >>> from testloop.core.settings import TestLoopSettings
    >>> s = TestLoopSettings(jitter_pct=0)
    >>> s.default_done_timeout_ms
    2000

Tags:
    settings, configuration, pydantic, environment, testloop
"""

from __future__ import annotations

from functools import lru_cache
from typing import ClassVar, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TestLoopSettings(BaseSettings):
    """Settings shared by every loop in the process.

    Fields
    ──────
    default_done_timeout_ms : Timeout of a done() item declared without one
    jitter_pct              : Default schedule() jitter, percent of the delay
    default_delay_ms        : Default schedule() delay
    wake_tolerance_ms       : How early the loop may fire an item after waking
    late_timeout_warning_ms : Warn when a timeout fires further than this off
    log_level               : Structlog log level
    log_format              : ``console`` or ``json``
    log_dones               : Log every done() resolution at INFO
    """

    __test__: ClassVar[bool] = False

    model_config = SettingsConfigDict(
        env_prefix="TESTLOOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Timing ───────────────────────────────────────────────────
    default_done_timeout_ms: int = Field(default=2000, ge=0)
    jitter_pct: int = Field(default=50, ge=0, le=100)
    default_delay_ms: int = 100
    wake_tolerance_ms: int = Field(default=2, ge=0)
    late_timeout_warning_ms: int = Field(default=10, ge=0)

    # ── Observability ────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_dones: bool = False


@lru_cache(maxsize=1)
def get_settings() -> TestLoopSettings:
    """Return the process-wide settings, read once from the environment."""
    return TestLoopSettings()


__all__ = ["TestLoopSettings", "get_settings"]
