"""Test groups built on ``EventLoop``.

A ``TestGroup`` collects named tests and runs them one after another. An
async test body receives a fresh ``EventLoop``, schedules work on it and
returns; the group then runs the loop and records its ``LoopOutcome``. A sync
test body just runs, using ``check()`` for its assertions.

Nothing here is process-global: every group returns a ``GroupReport`` and
``run_groups()`` folds them into a ``RunReport`` whose ``exit_code`` a
``__main__`` can hand to ``sys.exit``.

Example:
    >>> group = TestGroup("connection")
    >>> @group.async_test("connects then syncs", {"connected": {"order": 1},
    ...                                            "synced": {"order": 2}})
    ... def _(loop):
    ...     loop.schedule(lambda: loop.done("connected"), 10, jitter_pct=0)
    ...     loop.schedule(lambda: loop.done("synced"), 20, jitter_pct=0)
    >>> run_groups(group).exit_code
    0
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from testloop.core.clock import Clock, now_ms
from testloop.core.errors import CheckFailed, TestFailure, TestLoopError, UsageError
from testloop.core.logging import bind_context, configure_logging, get_logger, unbind_context
from testloop.core.settings import TestLoopSettings, get_settings
from testloop.execution.loop import DoneSpec, EventLoop
from testloop.execution.models import LoopOutcome, LoopState

logger = get_logger(__name__)

MAX_EXIT_CODE = 255


class TestKind(str, Enum):
    """How a registered test is executed."""

    __test__: ClassVar[bool] = False

    ASYNC = "async"
    SYNC = "sync"


class TestStatus(str, Enum):
    """Result of one test."""

    __test__: ClassVar[bool] = False

    PASSED = "passed"
    FAILED = "failed"      # a test failure was detected
    ABORTED = "aborted"    # the loop was aborted by the test
    BROKEN = "broken"      # the test misused the API or raised unexpectedly


@dataclass
class TestCase:
    """A registered test."""

    __test__: ClassVar[bool] = False

    name: str
    kind: TestKind
    body: Callable[..., Any]
    dones: Iterable[DoneSpec] | Mapping[str, Any] | None = None
    timeout_ms: int | None = None
    jitter_pct: int | None = None


@dataclass
class TestResult:
    """Outcome of one test within a group."""

    __test__: ClassVar[bool] = False

    name: str
    group: str
    kind: TestKind
    status: TestStatus
    message: str = ""
    tag: str | None = None
    outcome: LoopOutcome | None = None
    error: BaseException | None = None
    duration_ms: int = 0

    @property
    def passed(self) -> bool:
        return self.status is TestStatus.PASSED

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "group": self.group,
            "kind": self.kind.value,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
        }
        if self.message:
            result["message"] = self.message
        if self.tag is not None:
            result["tag"] = self.tag
        return result


@dataclass
class GroupReport:
    """Results of one group run."""

    name: str
    results: list[TestResult] = field(default_factory=list)

    @property
    def num_passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def num_failed(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def failures(self) -> list[TestResult]:
        return [r for r in self.results if not r.passed]


@dataclass
class RunReport:
    """Aggregate of several group runs."""

    groups: list[GroupReport] = field(default_factory=list)

    @property
    def num_passed(self) -> int:
        return sum(g.num_passed for g in self.groups)

    @property
    def num_failed(self) -> int:
        return sum(g.num_failed for g in self.groups)

    @property
    def exit_code(self) -> int:
        """Number of failed tests, capped to fit a process exit status."""
        return min(self.num_failed, MAX_EXIT_CODE)


def check(condition: Any, message: str = "check failed") -> None:
    """Fail the current test if ``condition`` is falsy.

    Raises:
        CheckFailed: If ``condition`` is falsy
    """
    if not condition:
        raise CheckFailed(message)


Hook = Callable[[TestCase], Any]


class TestGroup:
    """Named collection of async and sync tests.

    Attributes:
        before_each: Called with the TestCase before each test
        after_each: Called with the TestCase after each test, even on failure
    """

    __test__: ClassVar[bool] = False

    def __init__(
        self,
        name: str,
        *,
        settings: TestLoopSettings | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.name = name
        self.before_each: Hook | None = None
        self.after_each: Hook | None = None
        self._settings = settings
        self._clock = clock
        self._tests: list[TestCase] = []

    @property
    def tests(self) -> list[TestCase]:
        return list(self._tests)

    def _add(self, case: TestCase) -> None:
        if any(t.name == case.name for t in self._tests):
            raise UsageError(f"Duplicate test name '{case.name}' in group '{self.name}'")
        self._tests.append(case)

    def async_test(
        self,
        name: str,
        dones: Iterable[DoneSpec] | Mapping[str, Any] | None = None,
        *,
        timeout_ms: int | None = None,
        jitter_pct: int | None = None,
    ) -> Callable[[Callable[[EventLoop], Any]], Callable[[EventLoop], Any]]:
        """Register ``fn(loop)`` as an async test.

        Args:
            name: Test name, unique within the group
            dones: done() items to declare (None: the ``_default`` item)
            timeout_ms: Default timeout for the declared items
            jitter_pct: Default schedule() jitter for this test's loop
        """

        def decorator(fn: Callable[[EventLoop], Any]) -> Callable[[EventLoop], Any]:
            self._add(
                TestCase(
                    name=name,
                    kind=TestKind.ASYNC,
                    body=fn,
                    dones=dones,
                    timeout_ms=timeout_ms,
                    jitter_pct=jitter_pct,
                )
            )
            return fn

        return decorator

    def sync_test(self, name: str) -> Callable[[Callable[[], Any]], Callable[[], Any]]:
        """Register ``fn()`` as a sync test."""

        def decorator(fn: Callable[[], Any]) -> Callable[[], Any]:
            self._add(TestCase(name=name, kind=TestKind.SYNC, body=fn))
            return fn

        return decorator

    def run(self) -> GroupReport:
        """Run every test in registration order.

        Configures logging from the settings on first use.
        """
        settings = self._settings or get_settings()
        configure_logging(level=settings.log_level, format=settings.log_format)
        report = GroupReport(name=self.name)
        logger.info("group_started", group=self.name, tests=len(self._tests))
        for case in self._tests:
            bind_context(group=self.name, test=case.name)
            try:
                result = self._run_one(case)
            finally:
                unbind_context("group", "test")
            report.results.append(result)
            log = logger.info if result.passed else logger.error
            log("test_finished", **result.to_dict())
        logger.info(
            "group_finished",
            group=self.name,
            passed=report.num_passed,
            failed=report.num_failed,
        )
        return report

    def _run_one(self, case: TestCase) -> TestResult:
        started = self._clock()
        result = TestResult(
            name=case.name,
            group=self.name,
            kind=case.kind,
            status=TestStatus.PASSED,
        )
        try:
            if self.before_each is not None:
                self.before_each(case)
            if case.kind is TestKind.ASYNC:
                self._run_async(case, result)
            else:
                case.body()
        except UsageError as exc:
            self._mark(result, TestStatus.BROKEN, exc)
        except TestFailure as exc:
            self._mark(result, TestStatus.FAILED, exc)
            exc.with_context(group=self.name, test=case.name)
        except Exception as exc:
            logger.exception("test_raised", group=self.name, test=case.name)
            self._mark(result, TestStatus.BROKEN, exc)
        finally:
            if self.after_each is not None:
                try:
                    self.after_each(case)
                except Exception as exc:
                    logger.exception("after_each_raised", group=self.name, test=case.name)
                    if result.passed:
                        self._mark(result, TestStatus.BROKEN, exc)
            result.duration_ms = self._clock() - started
        return result

    def _run_async(self, case: TestCase, result: TestResult) -> None:
        loop = EventLoop(
            case.dones,
            default_timeout_ms=case.timeout_ms,
            jitter_pct=case.jitter_pct,
            settings=self._settings,
            name=case.name,
        )
        case.body(loop)
        outcome = loop.run()
        result.outcome = outcome
        if outcome.state is LoopState.SUCCESS:
            return
        if outcome.state is LoopState.ABORTED:
            result.status = TestStatus.ABORTED
            result.message = "aborted"
            return
        result.status = TestStatus.FAILED
        result.message = outcome.message
        result.tag = outcome.tag
        result.error = outcome.failure
        if outcome.failure is not None:
            outcome.failure.with_context(group=self.name)

    @staticmethod
    def _mark(result: TestResult, status: TestStatus, exc: BaseException) -> None:
        result.status = status
        result.error = exc
        if isinstance(exc, TestLoopError):
            result.message = exc.message
            result.tag = exc.tag
        else:
            result.message = f"{type(exc).__name__}: {exc}"


def run_groups(*groups: TestGroup) -> RunReport:
    """Run several groups and aggregate their results."""
    configure_logging()
    report = RunReport(groups=[group.run() for group in groups])
    logger.info(
        "run_finished",
        groups=len(report.groups),
        passed=report.num_passed,
        failed=report.num_failed,
    )
    return report


__all__ = [
    "TestKind",
    "TestStatus",
    "TestCase",
    "TestResult",
    "GroupReport",
    "RunReport",
    "TestGroup",
    "check",
    "run_groups",
]
