"""Tests for testloop.core.logging module."""

import json
import logging

import pytest
import structlog

import testloop.core.logging as tl_logging
from testloop.core.logging import (
    bind_context,
    configure_logging,
    get_logger,
    is_configured,
    unbind_context,
)


@pytest.fixture
def restore_logging(monkeypatch):
    """Undo global structlog/stdlib configuration after each test."""
    monkeypatch.setattr(tl_logging, "_configured", False)
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    logging.getLogger().handlers.clear()
    logging.getLogger("testloop").setLevel(logging.NOTSET)


def _json_lines(err: str) -> list[dict]:
    return [json.loads(line) for line in err.splitlines() if line.startswith("{")]


class TestConfigureLogging:
    """Test configure_logging."""

    def test_marks_configured(self, restore_logging):
        assert not is_configured()
        configure_logging(cache_loggers=False)
        assert is_configured()

    def test_second_call_is_noop(self, restore_logging, monkeypatch):
        configure_logging(cache_loggers=False)
        calls = []
        monkeypatch.setattr(structlog, "configure", lambda **kw: calls.append(kw))
        configure_logging()
        assert calls == []
        configure_logging(force=True)
        assert len(calls) == 1

    def test_json_output(self, restore_logging, capsys):
        """JSON format renders one object per event with level and logger."""
        configure_logging(level="INFO", format="json", force=True, cache_loggers=False)
        get_logger("testloop.tests").info("loop_started", dones=2)

        records = _json_lines(capsys.readouterr().err)
        assert len(records) == 1
        record = records[0]
        assert record["event"] == "loop_started"
        assert record["dones"] == 2
        assert record["level"] == "info"
        assert record["logger"] == "testloop.tests"
        assert "timestamp" in record

    def test_level_filters(self, restore_logging, capsys):
        configure_logging(level="WARNING", format="json", force=True, cache_loggers=False)
        log = get_logger("testloop.tests")
        log.info("quiet")
        log.warning("done_timeout_late", tag="x")

        events = [r["event"] for r in _json_lines(capsys.readouterr().err)]
        assert events == ["done_timeout_late"]


class TestContextBinding:
    """Test contextvars binding helpers."""

    def test_bind_and_unbind(self, restore_logging, capsys):
        configure_logging(level="INFO", format="json", force=True, cache_loggers=False)
        log = get_logger("testloop.tests")

        bind_context(group="net", test="connects")
        log.info("test_finished")
        unbind_context("group", "test")
        log.info("group_finished")

        first, second = _json_lines(capsys.readouterr().err)
        assert first["group"] == "net"
        assert first["test"] == "connects"
        assert "test" not in second
