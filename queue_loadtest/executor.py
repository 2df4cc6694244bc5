"""
Virtual-user executors.

Both executors follow the "per-VU iterations" model: every worker runs
exactly one iteration, all workers start together as independent gevent
greenlets, and the run ends when they have all finished or when
``max_duration`` has elapsed, whichever is first.  Workers still running
at the deadline are killed and reported as ``DEADLINE_EXCEEDED``.

- :class:`VirtualUserExecutor` runs full :class:`~queue_loadtest.journey.QueueJourney`
  iterations, one per virtual user.
- :class:`RegistrationExecutor` is the one-phase variant: one registration
  POST per pre-defined account, no session and no queue.

Workers share nothing: each gets its own HTTP session, random source and
check recorder.  An exception escaping one worker is logged and turned
into an ``ERRORED`` result; the other workers never notice.
"""

from __future__ import annotations

import logging
import math
import random
import time
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

import gevent
import requests
from gevent.pool import Group

from queue_loadtest.admission import Connector
from queue_loadtest.checks import CheckListener, CheckRecorder, CheckSummary
from queue_loadtest.config import Settings
from queue_loadtest.errors import ConfigurationError
from queue_loadtest.journey import JourneyOutcome, JourneyResult, QueueJourney
from queue_loadtest.realtime import WebSocketConnector
from queue_loadtest.registration import RegistrationAccount, register_account, registration_accounts
from queue_loadtest.session import ApiClient, VirtualUser

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_workers(
    workers: Sequence[Callable[[], T]],
    max_duration: float,
    *,
    on_deadline: Callable[[int], T],
    on_error: Callable[[int], T],
    on_result: Callable[[T], Any] | None = None,
) -> list[T]:
    """
    Run *workers* concurrently, each once, bounded by *max_duration* seconds.

    Args:
        workers: Zero-argument callables, one per worker.
        max_duration: Seconds after which unfinished workers are killed.
        on_deadline: Builds the result of worker *i* when it was killed.
        on_error: Builds the result of worker *i* when it raised.
        on_result: Called with every result as soon as it is known.

    Returns:
        One result per worker, in worker order.
    """

    def _guarded(index: int, worker: Callable[[], T]) -> T:
        try:
            result = worker()
        except Exception:
            logger.exception("Worker %d crashed", index + 1)
            result = on_error(index)
        if on_result is not None:
            on_result(result)
        return result

    group = Group()
    greenlets = [group.spawn(_guarded, index, worker) for index, worker in enumerate(workers)]
    group.join(timeout=max_duration)

    pending = [index for index, greenlet in enumerate(greenlets) if not greenlet.ready()]
    if pending:
        logger.warning(
            "Max duration of %.1fs reached; abandoning %d unfinished worker(s)",
            max_duration,
            len(pending),
        )
        gevent.killall([greenlets[index] for index in pending], block=True)

    results: list[T] = []
    for index, greenlet in enumerate(greenlets):
        if index in pending:
            result = on_deadline(index)
            if on_result is not None:
                on_result(result)
            results.append(result)
        else:
            results.append(greenlet.value)
    return results


def _percentile(values: Sequence[float], percent: float) -> float:
    """Nearest-rank percentile; ``0.0`` for an empty sequence."""
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = max(1, math.ceil(percent / 100.0 * len(ordered)))
    return ordered[rank - 1]


def _resolve_max_duration(max_duration: float | None, settings: Settings) -> float:
    if max_duration is None:
        return settings.max_duration
    if max_duration <= 0:
        raise ConfigurationError("max_duration must be positive")
    return max_duration


@dataclass
class RunReport:
    """
    Aggregate of one executor run.

    ``results`` hold anything with ``outcome``, ``checks`` and
    ``elapsed`` attributes: journey results or registration results.
    """

    results: list[Any] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def outcome_counts(self) -> Counter:
        return Counter(result.outcome for result in self.results)

    @property
    def checks(self) -> CheckSummary:
        return CheckSummary.from_recorders(result.checks for result in self.results)

    @property
    def p95_elapsed(self) -> float:
        return _percentile([result.elapsed for result in self.results], 95)


# =====================================================================
# Full journeys
# =====================================================================


class VirtualUserExecutor:
    """
    Run one queue journey per virtual user.

    Args:
        settings: Resolved run settings.
        connector: Opens realtime connections; a
            :class:`~queue_loadtest.realtime.WebSocketConnector` by default.
        http_factory: Builds the private HTTP session of each journey.
        sleep: Cooperative sleep used for all simulated pauses.
        clock: Monotonic clock.
        check_listeners: Attached to every journey's check recorder.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        connector: Connector | None = None,
        http_factory: Callable[[], Any] = requests.Session,
        sleep: Callable[[float], Any] = gevent.sleep,
        clock: Callable[[], float] = time.monotonic,
        check_listeners: Sequence[CheckListener] = (),
    ) -> None:
        self.settings = settings
        self.connector = connector or WebSocketConnector()
        self.http_factory = http_factory
        self.sleep = sleep
        self.clock = clock
        self.check_listeners = list(check_listeners)

    def _rng_for(self, index: int) -> random.Random:
        if self.settings.seed is None:
            return random.Random()
        return random.Random(self.settings.seed + index)

    def journey_for(self, index: int) -> QueueJourney:
        """Build the journey of 1-based virtual user *index*."""
        user = VirtualUser.for_index(
            index, prefix=self.settings.username_prefix, password=self.settings.password
        )
        return QueueJourney(
            user,
            ApiClient(self.http_factory(), self.settings.base_url),
            settings=self.settings,
            connector=self.connector,
            rng=self._rng_for(index),
            sleep=self.sleep,
            clock=self.clock,
            checks=CheckRecorder(owner=user.username, listeners=self.check_listeners),
        )

    def run(
        self,
        user_count: int | None = None,
        max_duration: float | None = None,
        on_result: Callable[[JourneyResult], Any] | None = None,
    ) -> RunReport:
        """
        Run *user_count* journeys concurrently, bounded by *max_duration*.

        Both default to the configured values; an explicit zero
        *user_count* runs nobody.
        """
        if user_count is None:
            user_count = self.settings.virtual_users
        max_duration = _resolve_max_duration(max_duration, self.settings)
        journeys = [self.journey_for(index) for index in range(1, user_count + 1)]

        def _worker(journey: QueueJourney) -> Callable[[], JourneyResult]:
            def _run() -> JourneyResult:
                try:
                    return journey.run()
                finally:
                    journey.api.http.close()

            return _run

        logger.info("Starting %d virtual user(s), max duration %.1fs", user_count, max_duration)
        started = self.clock()
        results = run_workers(
            [_worker(journey) for journey in journeys],
            max_duration,
            on_deadline=lambda index: journeys[index].result(JourneyOutcome.DEADLINE_EXCEEDED),
            on_error=lambda index: journeys[index].result(JourneyOutcome.ERRORED),
            on_result=on_result,
        )
        report = RunReport(results=results, elapsed=self.clock() - started)
        logger.info("Run finished in %.1fs: %s", report.elapsed, dict(report.outcome_counts))
        return report


# =====================================================================
# Bulk registration
# =====================================================================


class RegistrationOutcome(str, Enum):
    REGISTERED = "REGISTERED"
    REJECTED = "REJECTED"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    ERRORED = "ERRORED"


@dataclass
class RegistrationResult:
    username: str
    outcome: RegistrationOutcome
    checks: CheckRecorder
    elapsed: float = 0.0


class RegistrationExecutor:
    """
    Register a fixed pool of accounts, one worker per account.

    Args:
        settings: Resolved run settings (base URL, prefix, password,
            pool size, encoding).
        http_factory: Builds the private HTTP session of each worker.
        clock: Monotonic clock.
        check_listeners: Attached to every worker's check recorder.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        http_factory: Callable[[], Any] = requests.Session,
        clock: Callable[[], float] = time.monotonic,
        check_listeners: Sequence[CheckListener] = (),
    ) -> None:
        self.settings = settings
        self.http_factory = http_factory
        self.clock = clock
        self.check_listeners = list(check_listeners)

    def run(
        self,
        accounts: Sequence[RegistrationAccount] | None = None,
        max_duration: float | None = None,
        on_result: Callable[[RegistrationResult], Any] | None = None,
    ) -> RunReport:
        if accounts is None:
            accounts = registration_accounts(
                self.settings.register_accounts,
                prefix=self.settings.username_prefix,
                password=self.settings.password,
            )
        max_duration = _resolve_max_duration(max_duration, self.settings)
        recorders = [
            CheckRecorder(owner=account.username, listeners=self.check_listeners)
            for account in accounts
        ]

        def _worker(index: int) -> Callable[[], RegistrationResult]:
            def _run() -> RegistrationResult:
                account = accounts[index]
                started = self.clock()
                api = ApiClient(self.http_factory(), self.settings.base_url)
                try:
                    ok = register_account(
                        api, account, recorders[index], encoding=self.settings.register_encoding
                    )
                finally:
                    api.http.close()
                return RegistrationResult(
                    username=account.username,
                    outcome=RegistrationOutcome.REGISTERED if ok else RegistrationOutcome.REJECTED,
                    checks=recorders[index],
                    elapsed=self.clock() - started,
                )

            return _run

        def _labelled(outcome: RegistrationOutcome) -> Callable[[int], RegistrationResult]:
            return lambda index: RegistrationResult(
                username=accounts[index].username, outcome=outcome, checks=recorders[index]
            )

        logger.info("Registering %d account(s)", len(accounts))
        started = self.clock()
        results = run_workers(
            [_worker(index) for index in range(len(accounts))],
            max_duration,
            on_deadline=_labelled(RegistrationOutcome.DEADLINE_EXCEEDED),
            on_error=_labelled(RegistrationOutcome.ERRORED),
            on_result=on_result,
        )
        return RunReport(results=results, elapsed=self.clock() - started)
