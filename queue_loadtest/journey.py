"""
One complete ticket-buying journey of a single virtual user.

Phases, in order::

    LOGIN -> BROWSE -> DETAIL -> DECIDE -> QUEUE -> ACCESS

A failed login ends the journey at once.  Choosing not to buy ends it
before any queue call.  The queue phase ends with or without an access
key; only with one is the gated seat-status page requested.  Failed
checks anywhere else are recorded and the journey keeps going, because
this is one honest attempt by one person, not a retrying client.

Every journey ends in exactly one :class:`JourneyOutcome`.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

import gevent

from queue_loadtest.admission import AdmissionState, Connector, QueueAdmissionClient
from queue_loadtest.behavior import BehaviorSimulator
from queue_loadtest.checks import CheckRecorder
from queue_loadtest.config import Settings
from queue_loadtest.errors import AuthenticationFailure
from queue_loadtest.protocol import ACCESS_KEY_HEADER
from queue_loadtest.session import ApiClient, Session, VirtualUser, login

logger = logging.getLogger(__name__)


class JourneyOutcome(str, Enum):
    LOGIN_FAILED = "LOGIN_FAILED"
    ABANDONED = "ABANDONED"
    TIMED_OUT = "TIMED_OUT"
    NOT_ADMITTED = "NOT_ADMITTED"
    RESOURCE_ACCESSED = "RESOURCE_ACCESSED"
    RESOURCE_ACCESS_FAILED = "RESOURCE_ACCESS_FAILED"
    # Assigned by the executor, never by a journey itself.
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    ERRORED = "ERRORED"


class Phase(str, Enum):
    LOGIN = "LOGIN"
    BROWSE = "BROWSE"
    DETAIL = "DETAIL"
    DECIDE = "DECIDE"
    QUEUE = "QUEUE"
    ACCESS = "ACCESS"


@dataclass
class JourneyResult:
    """What one virtual user went through."""

    username: str
    outcome: JourneyOutcome
    phases: list[Phase] = field(default_factory=list)
    rank: int | None = None
    access_key: str | None = None
    elapsed: float = 0.0
    checks: CheckRecorder = field(default_factory=CheckRecorder)
    detail: str = ""

    @property
    def last_phase(self) -> Phase | None:
        return self.phases[-1] if self.phases else None


class UserLogAdapter(logging.LoggerAdapter):
    """Prefix every log line with ``[username]``."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return f"[{self.extra['username']}] {msg}", kwargs


class QueueJourney:
    """
    Compose login, browsing, the purchase decision and queue admission.

    Args:
        user: Identity of this virtual user.
        api: Client bound to the service base URL; owned by this journey.
        settings: Resolved run settings.
        connector: Opens the realtime queue connection.
        rng: Private random source for every decision and delay.
        sleep: Cooperative sleep taking seconds.
        clock: Monotonic clock for elapsed time and the queue deadline.
        today: Date provider for the "next month" filter.
        checks: Recorder; a fresh one is created when omitted.
    """

    def __init__(
        self,
        user: VirtualUser,
        api: ApiClient,
        *,
        settings: Settings,
        connector: Connector,
        rng: random.Random | None = None,
        sleep: Callable[[float], Any] = gevent.sleep,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
        checks: CheckRecorder | None = None,
    ) -> None:
        self.user = user
        self.api = api
        self.settings = settings
        self.connector = connector
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.clock = clock
        self.today = today
        self.checks = checks or CheckRecorder(owner=user.username)
        self.log = UserLogAdapter(logger, {"username": user.username})

        self.phases: list[Phase] = []
        self.access_key: str | None = None
        self.admission: QueueAdmissionClient | None = None
        self.detail = ""
        self._started: float | None = None

    @property
    def rank(self) -> int | None:
        """Last queue rank seen, even if the journey was cut off while waiting."""
        return self.admission.rank if self.admission is not None else None

    def _enter(self, phase: Phase) -> None:
        self.phases.append(phase)
        self.log.info("phase %s", phase.value)

    def result(self, outcome: JourneyOutcome) -> JourneyResult:
        """Snapshot the journey as it stands, labelled with *outcome*."""
        elapsed = self.clock() - self._started if self._started is not None else 0.0
        return JourneyResult(
            username=self.user.username,
            outcome=outcome,
            phases=list(self.phases),
            rank=self.rank,
            access_key=self.access_key,
            elapsed=elapsed,
            checks=self.checks,
            detail=self.detail,
        )

    def run(self) -> JourneyResult:
        self._started = self.clock()
        self.log.info("journey started")
        outcome = self._run()
        self.log.info("journey finished: %s", outcome.value)
        return self.result(outcome)

    def _run(self) -> JourneyOutcome:
        self._enter(Phase.LOGIN)
        try:
            session = login(self.api, self.user, self.checks)
        except AuthenticationFailure as exc:
            self.detail = str(exc)
            self.log.error("%s; journey over", exc)
            return JourneyOutcome.LOGIN_FAILED

        behavior = BehaviorSimulator(
            self.api,
            session,
            self.checks,
            concert_id=self.settings.concert_id,
            profile=self.settings.behavior,
            rng=self.rng,
            sleep=self.sleep,
            time_unit=self.settings.time_unit,
            today=self.today,
            log=self.log,
        )

        self._enter(Phase.BROWSE)
        behavior.browse_list()
        behavior.maybe_search()
        behavior.maybe_filter()

        self._enter(Phase.DETAIL)
        behavior.view_detail()
        behavior.maybe_view_ai_summary()
        behavior.maybe_peek_seats()

        self._enter(Phase.DECIDE)
        if not behavior.decide():
            return JourneyOutcome.ABANDONED

        self._enter(Phase.QUEUE)
        self.admission = QueueAdmissionClient(
            self.api,
            self.connector,
            ws_url=self.settings.ws_url,
            concert_id=self.settings.concert_id,
            timeout=self.settings.realtime_timeout_seconds,
            checks=self.checks,
            clock=self.clock,
            log=self.log,
        )
        admission = self.admission.run(session)
        self.detail = admission.detail

        if not admission.admitted:
            self.log.info("missed the chance this time")
            behavior.cool_down()
            if admission.state is AdmissionState.TIMED_OUT:
                return JourneyOutcome.TIMED_OUT
            return JourneyOutcome.NOT_ADMITTED

        self.access_key = admission.access_key
        self._enter(Phase.ACCESS)
        accessed = self._open_reservation_page(session, admission.access_key)
        behavior.cool_down()
        if accessed:
            return JourneyOutcome.RESOURCE_ACCESSED
        return JourneyOutcome.RESOURCE_ACCESS_FAILED

    def _open_reservation_page(self, session: Session, access_key: str) -> bool:
        """Request the admission-gated seat status with the access key attached."""
        response = self.api.get(
            f"/seats/concerts/{self.settings.concert_id}/status",
            headers=session.headers({ACCESS_KEY_HEADER: access_key}),
            name="/seats/concerts/[id]/status",
        )
        accessed = self.checks.check(
            "seat status reachable with access key",
            response.status_code == 200,
            f"status={response.status_code}",
        )
        if accessed:
            self.log.info("reservation page open; seat selection can begin")
        return accessed
