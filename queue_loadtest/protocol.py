"""
Message vocabulary shared by the queue HTTP entry call and the realtime
waiting-queue channel.

The queue service answers ``POST /queue/enter`` with a
``{"data": {"status": ..., ...}}`` envelope and pushes JSON frames over
the ``/ws/waitqueue`` WebSocket.  Both are decoded here into small
frozen dataclasses so callers branch on *types*, never on raw strings:

- Queue entry: :class:`ImmediateEntry`, :class:`Waiting`, :class:`Rejected`
- Realtime frames: :class:`Admit`, :class:`RankUpdate`, :class:`QueueNotice`

An entry body that does not fit one of the entry variants is a
:class:`~queue_loadtest.errors.ProtocolViolation`.  A realtime frame that
does not fit is simply dropped (``None``) because the channel may carry
message types this harness does not care about.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from queue_loadtest.errors import ProtocolViolation

ACCESS_KEY_HEADER = "X-Access-Key"


class EntryStatus(str, Enum):
    """Status discriminator of the queue-entry response."""

    IMMEDIATE_ENTRY = "IMMEDIATE_ENTRY"
    WAITING = "WAITING"
    ERROR = "ERROR"


class MessageType(str, Enum):
    """``type`` discriminator of inbound realtime frames."""

    ADMIT = "ADMIT"
    RANK_UPDATE = "RANK_UPDATE"
    REDIRECT_TO_RESERVE = "REDIRECT_TO_RESERVE"
    ERROR = "ERROR"


# =====================================================================
# Queue entry
# =====================================================================


@dataclass(frozen=True)
class ImmediateEntry:
    access_key: str


@dataclass(frozen=True)
class Waiting:
    rank: int


@dataclass(frozen=True)
class Rejected:
    """The queue service refused entry with an ``ERROR`` status."""

    message: str


QueueEntryResult = Union[ImmediateEntry, Waiting, Rejected]


# =====================================================================
# Realtime frames
# =====================================================================


@dataclass(frozen=True)
class Admit:
    """
    Admission granted.

    ``redirected`` marks the ``REDIRECT_TO_RESERVE`` frame the service
    sends when an already-admitted user reconnects; it carries the same
    access key and is handled exactly like ``ADMIT``.
    """

    access_key: str
    redirected: bool = False


@dataclass(frozen=True)
class RankUpdate:
    rank: int


@dataclass(frozen=True)
class QueueNotice:
    """Informational ``ERROR`` frame; never changes control flow."""

    message: str


AdmissionMessage = Union[Admit, RankUpdate, QueueNotice]


def _as_rank(value: Any) -> int | None:
    # bool is an int subclass; a JSON ``true`` is not a rank.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _as_key(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def parse_queue_entry(body: Any) -> QueueEntryResult:
    """
    Decode the body of ``POST /queue/enter``.

    Args:
        body: The already-parsed JSON body (normally a dict with a
            ``data`` object).

    Returns:
        One of :class:`ImmediateEntry`, :class:`Waiting` or
        :class:`Rejected`.

    Raises:
        ProtocolViolation: If the envelope is missing, the status is
            unknown, or the field required by the status is absent.
    """
    if not isinstance(body, dict):
        raise ProtocolViolation("Queue entry response is not a JSON object")

    data = body.get("data")
    if not isinstance(data, dict):
        raise ProtocolViolation("Queue entry response missing data object")

    raw_status = data.get("status")
    try:
        status = EntryStatus(raw_status)
    except ValueError:
        raise ProtocolViolation(f"Unknown queue entry status: {raw_status!r}") from None

    if status is EntryStatus.IMMEDIATE_ENTRY:
        access_key = _as_key(data.get("accessKey"))
        if access_key is None:
            raise ProtocolViolation("IMMEDIATE_ENTRY response missing accessKey")
        return ImmediateEntry(access_key=access_key)

    if status is EntryStatus.WAITING:
        rank = _as_rank(data.get("rank"))
        if rank is None:
            raise ProtocolViolation("WAITING response missing numeric rank")
        return Waiting(rank=rank)

    if status is EntryStatus.ERROR:
        return Rejected(message=str(data.get("message") or body.get("message") or ""))

    raise AssertionError(f"Unhandled entry status {status}")


def parse_admission_message(frame: str | bytes) -> AdmissionMessage | None:
    """
    Decode one inbound realtime frame.

    Unknown types, malformed JSON and frames missing their payload field
    all decode to ``None`` so the receive loop can ignore them.
    """
    try:
        payload = json.loads(frame)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None

    try:
        message_type = MessageType(payload.get("type"))
    except ValueError:
        return None

    if message_type in (MessageType.ADMIT, MessageType.REDIRECT_TO_RESERVE):
        access_key = _as_key(payload.get("accessKey"))
        if access_key is None:
            return None
        return Admit(
            access_key=access_key,
            redirected=message_type is MessageType.REDIRECT_TO_RESERVE,
        )

    if message_type is MessageType.RANK_UPDATE:
        rank = _as_rank(payload.get("rank"))
        if rank is None:
            return None
        return RankUpdate(rank=rank)

    if message_type is MessageType.ERROR:
        return QueueNotice(message=str(payload.get("message") or ""))

    raise AssertionError(f"Unhandled message type {message_type}")
