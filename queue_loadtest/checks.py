"""
Pass/fail assertions recorded during a journey.

A *check* is a named boolean about one call ("login succeeded", "queue
entry accepted").  Failing a check never raises: the journey records it
and moves on, and the run's exit code is derived later from the
aggregated failure rate.

Each journey owns one :class:`CheckRecorder`; the executor folds them
into a :class:`CheckSummary` once all journeys have finished, so no
recorder is ever shared between virtual users.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    detail: str = ""


CheckListener = Callable[[CheckResult], None]


class CheckRecorder:
    """
    Collect the checks made by a single virtual user.

    Args:
        owner: Label used in failure log lines (normally the username).
        listeners: Callables notified of every recorded check.  The
            Locust scenarios use this to surface checks in Locust's
            request statistics.
    """

    def __init__(self, owner: str = "", listeners: Iterable[CheckListener] = ()) -> None:
        self.owner = owner
        self.results: list[CheckResult] = []
        self._listeners = list(listeners)

    def add_listener(self, listener: CheckListener) -> None:
        self._listeners.append(listener)

    def check(self, name: str, passed: bool, detail: str = "") -> bool:
        """Record one assertion and return *passed* for inline use."""
        result = CheckResult(name=name, passed=bool(passed), detail=detail)
        self.results.append(result)
        if not result.passed:
            logger.warning("[%s] check failed: %s %s", self.owner, name, detail)
        for listener in self._listeners:
            listener(result)
        return result.passed

    @property
    def passed(self) -> int:
        return sum(1 for result in self.results if result.passed)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.passed)


@dataclass
class CheckSummary:
    """Per-name pass/fail counts aggregated across many recorders."""

    counts: dict[str, list[int]] = field(default_factory=dict)

    @classmethod
    def from_recorders(cls, recorders: Iterable[CheckRecorder]) -> CheckSummary:
        summary = cls()
        for recorder in recorders:
            for result in recorder.results:
                summary.add(result)
        return summary

    def add(self, result: CheckResult) -> None:
        passed_failed = self.counts.setdefault(result.name, [0, 0])
        passed_failed[0 if result.passed else 1] += 1

    @property
    def total(self) -> int:
        return sum(passed + failed for passed, failed in self.counts.values())

    @property
    def total_failed(self) -> int:
        return sum(failed for _, failed in self.counts.values())

    @property
    def failure_rate_percent(self) -> float:
        """Failed checks as a percentage of all checks (0 when none ran)."""
        if self.total == 0:
            return 0.0
        return self.total_failed / self.total * 100.0
