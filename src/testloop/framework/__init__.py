"""Test-group runner built on the event loop."""

from testloop.framework.runner import (
    GroupReport,
    RunReport,
    TestCase,
    TestGroup,
    TestKind,
    TestResult,
    TestStatus,
    check,
    run_groups,
)

__all__ = [
    "TestGroup",
    "TestCase",
    "TestKind",
    "TestStatus",
    "TestResult",
    "GroupReport",
    "RunReport",
    "check",
    "run_groups",
]
