"""Tests for loop state enums, transitions and value objects."""

import pytest

from testloop.core.errors import DoneTimeout, ErrorCategory
from testloop.execution.models import (
    MARKER_VALID_TRANSITIONS,
    InvalidTransitionError,
    LoopOutcome,
    LoopState,
    MarkerState,
    ScheduledItem,
    validate_marker_transition,
)


class TestLoopState:
    def test_only_not_complete_is_open(self):
        assert not LoopState.NOT_COMPLETE.is_terminal
        for state in (LoopState.SUCCESS, LoopState.ERROR, LoopState.ABORTED):
            assert state.is_terminal

    def test_values_are_strings(self):
        assert LoopState("aborted") is LoopState.ABORTED


class TestMarkerTransitions:
    """Validate the done() item state machine."""

    def test_every_state_has_an_entry(self):
        assert set(MARKER_VALID_TRANSITIONS) == set(MarkerState)

    @pytest.mark.parametrize("target", [MarkerState.SUCCESS, MarkerState.ERROR])
    def test_pending_can_settle(self, target):
        validate_marker_transition(MarkerState.PENDING, target)

    @pytest.mark.parametrize("current", [MarkerState.SUCCESS, MarkerState.ERROR])
    @pytest.mark.parametrize("target", list(MarkerState))
    def test_terminal_states_are_final(self, current, target):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_marker_transition(current, target)
        assert exc_info.value.current == current.value
        assert exc_info.value.target == target.value

    def test_error_is_internal_and_value_error(self):
        err = InvalidTransitionError("success", "error", "MarkerState")
        assert isinstance(err, ValueError)
        assert err.category == ErrorCategory.INTERNAL
        assert "success -> error" in err.message


class TestScheduledItem:
    """ScheduledItem ordering and invocation."""

    def test_orders_by_timestamp_then_seq(self):
        a = ScheduledItem(100, 1, handle=7, action=lambda: None)
        b = ScheduledItem(100, 0, handle=9, action=lambda: None)
        c = ScheduledItem(50, 5, handle=1, action=lambda: None)
        assert sorted([a, b, c]) == [c, b, a]

    def test_handle_and_action_do_not_compare(self):
        a = ScheduledItem(10, 0, handle=1, action=lambda: 1)
        b = ScheduledItem(10, 0, handle=2, action=lambda: 2)
        assert a == b

    def test_call_runs_action(self):
        assert ScheduledItem(0, 0, handle=1, action=lambda: "ran")() == "ran"


class TestLoopOutcome:
    def test_success(self):
        outcome = LoopOutcome(LoopState.SUCCESS, elapsed_ms=120)
        assert outcome.ok
        assert outcome.to_dict() == {"state": "success", "elapsed_ms": 120}

    def test_error_to_dict(self):
        failure = DoneTimeout("x", timeout_ms=500)
        outcome = LoopOutcome(
            LoopState.ERROR,
            message=failure.message,
            tag="x",
            failure=failure,
            elapsed_ms=501,
        )
        assert not outcome.ok
        d = outcome.to_dict()
        assert d["message"] == "done('x'): Timeout"
        assert d["tag"] == "x"
        assert d["failure"]["category"] == "TIMEOUT"

    def test_frozen(self):
        outcome = LoopOutcome(LoopState.ABORTED)
        with pytest.raises(AttributeError):
            outcome.state = LoopState.SUCCESS
