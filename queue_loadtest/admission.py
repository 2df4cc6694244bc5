"""
Queue admission client: the protocol state machine of one virtual user.

::

    IDLE -> ENTERING -> IMMEDIATE -> ADMITTED
                     -> WAITING   -> ADMITTED | TIMED_OUT | CLOSED
                     -> FAILED

``ENTERING`` posts to ``/queue/enter``.  An ``IMMEDIATE_ENTRY`` answer
carries the access key and no realtime connection is ever opened.  A
``WAITING`` answer opens exactly one WebSocket to the waiting-queue
channel and races two things against each other:

- a reader greenlet that pumps every inbound frame into a channel
  (``gevent.queue.Queue``), followed by ``None`` on close or the
  :class:`~queue_loadtest.errors.RealtimeConnectionError` that ended it
- the timeout, expressed as the ``timeout=`` of each channel ``get``
  against a fixed deadline

Whichever resolves first decides the terminal state.  The connection is
closed and the reader killed on every exit path, including the journey
greenlet itself being killed by the executor's deadline.

Key Concepts Demonstrated:
- Explicit state table; an illegal transition is a programming error
- Select-style wait (message channel vs. timer) instead of callbacks
- Expected self-close kept apart from genuine connection errors
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import gevent
from gevent.queue import Empty, Queue

from queue_loadtest.checks import CheckRecorder
from queue_loadtest.errors import ProtocolViolation, RealtimeConnectionError
from queue_loadtest.protocol import (
    Admit,
    ImmediateEntry,
    QueueEntryResult,
    QueueNotice,
    RankUpdate,
    Rejected,
    Waiting,
    parse_admission_message,
    parse_queue_entry,
)
from queue_loadtest.realtime import SWITCHING_PROTOCOLS, queue_channel_url
from queue_loadtest.session import ApiClient, Session, safe_json

logger = logging.getLogger(__name__)

# Rank at or below which the waiting user gets visibly nervous.
NEAR_FRONT_RANK = 3


class AdmissionState(str, Enum):
    IDLE = "IDLE"
    ENTERING = "ENTERING"
    IMMEDIATE = "IMMEDIATE"
    WAITING = "WAITING"
    ADMITTED = "ADMITTED"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"
    FAILED = "FAILED"


_TRANSITIONS: dict[AdmissionState, frozenset[AdmissionState]] = {
    AdmissionState.IDLE: frozenset({AdmissionState.ENTERING}),
    AdmissionState.ENTERING: frozenset(
        {AdmissionState.IMMEDIATE, AdmissionState.WAITING, AdmissionState.FAILED}
    ),
    AdmissionState.IMMEDIATE: frozenset({AdmissionState.ADMITTED}),
    AdmissionState.WAITING: frozenset(
        {AdmissionState.ADMITTED, AdmissionState.TIMED_OUT, AdmissionState.CLOSED}
    ),
}

TERMINAL_STATES = frozenset(
    {
        AdmissionState.ADMITTED,
        AdmissionState.TIMED_OUT,
        AdmissionState.CLOSED,
        AdmissionState.FAILED,
    }
)


@dataclass(frozen=True)
class AdmissionResult:
    """
    Terminal result of the queue phase.

    Attributes:
        state: One of :data:`TERMINAL_STATES`.
        access_key: Set only when ``state`` is ``ADMITTED``.
        rank: Last rank observed (entry response or rank update).
        entry: The decoded queue-entry response, if one was decoded.
        detail: Human-readable reason for non-admitted endings.
    """

    state: AdmissionState
    access_key: str | None = None
    rank: int | None = None
    entry: QueueEntryResult | None = None
    detail: str = ""

    @property
    def admitted(self) -> bool:
        return self.state is AdmissionState.ADMITTED


Connector = Callable[[str, dict[str, str]], Any]


def _pump(connection: Any, channel: Queue) -> None:
    """Forward frames from *connection* to *channel* until it ends."""
    try:
        while True:
            frame = connection.receive()
            channel.put(frame)
            if frame is None:
                return
    except RealtimeConnectionError as exc:
        channel.put(exc)


class QueueAdmissionClient:
    """
    Drive one user through queue entry and, if needed, the realtime wait.

    A client is single-use: :meth:`run` may be called once.

    Args:
        api: Client bound to the service base URL.
        connector: ``connector(url, headers)`` returning an open realtime
            connection (see :class:`~queue_loadtest.realtime.WebSocketConnector`).
        ws_url: Base URL of the waiting-queue WebSocket endpoint.
        concert_id: Concert whose queue is entered.
        timeout: Seconds to wait on the realtime channel before giving up.
        checks: The journey's check recorder.
        clock: Monotonic clock used for the deadline.
        log: Logger or adapter carrying the username prefix.
    """

    def __init__(
        self,
        api: ApiClient,
        connector: Connector,
        *,
        ws_url: str,
        concert_id: int,
        timeout: float,
        checks: CheckRecorder,
        clock: Callable[[], float] = time.monotonic,
        log: logging.Logger | logging.LoggerAdapter = logger,
    ) -> None:
        self.api = api
        self.connector = connector
        self.ws_url = ws_url
        self.concert_id = concert_id
        self.timeout = timeout
        self.checks = checks
        self.clock = clock
        self.log = log

        self.state = AdmissionState.IDLE
        self.rank: int | None = None
        self.connections_opened = 0
        self._connection: Any = None

    def _transition(self, new_state: AdmissionState) -> None:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise RuntimeError(f"Illegal admission transition {self.state.value} -> {new_state.value}")
        self.log.debug("admission %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def _finish(
        self,
        state: AdmissionState,
        *,
        entry: QueueEntryResult | None = None,
        access_key: str | None = None,
        detail: str = "",
    ) -> AdmissionResult:
        self._transition(state)
        return AdmissionResult(
            state=state,
            access_key=access_key,
            rank=self.rank,
            entry=entry,
            detail=detail,
        )

    # ---- entering -----------------------------------------------------

    def enter(self, session: Session) -> QueueEntryResult:
        """
        POST the queue-entry request and decode its body.

        A non-200 status fails the ``queue entry accepted`` check but the
        body is still decoded, since the service may explain itself.

        Raises:
            ProtocolViolation: If the body is absent, not JSON, or does
                not match a known entry variant.
        """
        response = self.api.post(
            "/queue/enter",
            params={"concertId": self.concert_id},
            headers=session.headers(),
            name="/queue/enter",
        )
        self.checks.check(
            "queue entry accepted", response.status_code == 200, f"status={response.status_code}"
        )

        body = safe_json(response)
        if body is None:
            raise ProtocolViolation(
                f"Queue entry response (status {response.status_code}) is not JSON"
            )
        return parse_queue_entry(body)

    def run(self, session: Session) -> AdmissionResult:
        """Enter the queue and wait for admission; return the terminal result."""
        self._transition(AdmissionState.ENTERING)

        try:
            entry = self.enter(session)
        except ProtocolViolation as exc:
            self.log.error("queue entry protocol violation: %s", exc)
            return self._finish(AdmissionState.FAILED, detail=str(exc))

        if isinstance(entry, ImmediateEntry):
            self._transition(AdmissionState.IMMEDIATE)
            self.log.info("immediate entry granted")
            return self._finish(AdmissionState.ADMITTED, entry=entry, access_key=entry.access_key)

        if isinstance(entry, Waiting):
            self._transition(AdmissionState.WAITING)
            self.rank = entry.rank
            self.log.info("entered the waiting queue at rank %s", entry.rank)
            return self._wait(session, entry)

        if isinstance(entry, Rejected):
            self.log.warning("queue entry rejected: %s", entry.message)
            return self._finish(AdmissionState.FAILED, entry=entry, detail=entry.message)

        raise AssertionError(f"Unhandled queue entry result {entry!r}")

    # ---- waiting ------------------------------------------------------

    def _wait(self, session: Session, entry: Waiting) -> AdmissionResult:
        if self._connection is not None:
            raise RuntimeError("A realtime connection is already open for this user")

        url = queue_channel_url(self.ws_url, self.concert_id)
        try:
            connection = self.connector(url, {"Cookie": session.cookie_header})
        except RealtimeConnectionError as exc:
            self.checks.check("realtime connection established", False, str(exc))
            self.log.error("realtime connection failed: %s", exc)
            return self._finish(AdmissionState.CLOSED, entry=entry, detail=str(exc))

        self._connection = connection
        self.connections_opened += 1
        status = getattr(connection, "status", None)
        self.checks.check(
            "realtime connection established", status == SWITCHING_PROTOCOLS, f"status={status}"
        )
        self.log.info("realtime queue connection open")

        channel: Queue = Queue()
        reader = gevent.spawn(_pump, connection, channel)
        try:
            return self._receive_until_terminal(channel, entry)
        finally:
            reader.kill()
            connection.close()
            self._connection = None
            self.log.info("realtime queue connection closed")

    def _receive_until_terminal(self, channel: Queue, entry: Waiting) -> AdmissionResult:
        deadline = self.clock() + self.timeout
        while True:
            remaining = deadline - self.clock()
            try:
                if remaining <= 0:
                    raise Empty
                event = channel.get(timeout=remaining)
            except Empty:
                self.log.warning("no admission after %.1fs; giving up", self.timeout)
                return self._finish(AdmissionState.TIMED_OUT, entry=entry, detail="timed out")

            if isinstance(event, RealtimeConnectionError):
                self.log.error("realtime connection error: %s", event)
                return self._finish(AdmissionState.CLOSED, entry=entry, detail=str(event))

            if event is None:
                self.log.info("realtime connection closed by server before admission")
                return self._finish(AdmissionState.CLOSED, entry=entry, detail="closed by server")

            message = parse_admission_message(event)
            if isinstance(message, Admit):
                if message.redirected:
                    self.log.info("already admitted; redirected to reservation")
                else:
                    self.log.info("admitted")
                return self._finish(AdmissionState.ADMITTED, entry=entry, access_key=message.access_key)

            if isinstance(message, RankUpdate):
                self.rank = message.rank
                self.log.info("rank update: %s", message.rank)
                if message.rank <= NEAR_FRONT_RANK:
                    self.log.info("almost at the front")
            elif isinstance(message, QueueNotice):
                self.log.warning("queue notice: %s", message.message)
            else:
                self.log.debug("ignoring unrecognised frame: %r", event)
