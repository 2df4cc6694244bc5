"""
WebSocket transport for the waiting-queue channel.

Wraps ``websocket-client`` (which cooperates with gevent once the
process is monkey-patched, as Locust and ``python -m queue_loadtest`` both
do) behind the two-method interface the admission client uses:

- ``receive()`` returns the next text frame, or ``None`` once the
  connection is closed (by the server, or by us)
- ``close()`` is idempotent and never waits for the server's reply

A receive that fails *after* we sent the close frame is the normal end of
the connection and is swallowed here.  Every other transport failure
surfaces as :class:`~queue_loadtest.errors.RealtimeConnectionError`.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import websocket

from queue_loadtest.errors import RealtimeConnectionError

logger = logging.getLogger(__name__)

SWITCHING_PROTOCOLS = 101


def queue_channel_url(ws_url: str, concert_id: int) -> str:
    return f"{ws_url}?{urlencode({'concertId': concert_id})}"


class WebSocketConnection:
    """One open waiting-queue connection."""

    def __init__(self, socket: websocket.WebSocket) -> None:
        self._socket = socket
        self._close_sent = False

    @property
    def status(self) -> int | None:
        return self._socket.getstatus()

    @property
    def close_sent(self) -> bool:
        return self._close_sent

    def receive(self) -> str | None:
        try:
            opcode, data = self._socket.recv_data()
        except (websocket.WebSocketException, OSError) as exc:
            if self._close_sent:
                logger.debug("Receive ended after close was sent: %s", exc)
                return None
            raise RealtimeConnectionError(str(exc)) from exc

        if opcode == websocket.ABNF.OPCODE_CLOSE:
            return None
        if isinstance(data, bytes):
            return data.decode("utf-8", errors="replace")
        return data

    def close(self) -> None:
        if self._close_sent:
            return
        self._close_sent = True
        # WebSocket.close() reads the reply under the same lock a blocked
        # recv_data() holds; shutdown() drops the socket and wakes it instead.
        try:
            self._socket.send_close()
        except (websocket.WebSocketException, OSError) as exc:
            logger.debug("Ignoring error while sending close frame: %s", exc)
        finally:
            self._socket.shutdown()


class WebSocketConnector:
    """
    Open waiting-queue connections.

    Args:
        connect_timeout: Seconds allowed for the TCP connect and upgrade
            handshake.  Once open, receives block until a frame arrives
            or the connection is closed.
    """

    def __init__(self, connect_timeout: float = 10.0) -> None:
        self.connect_timeout = connect_timeout

    def __call__(self, url: str, headers: dict[str, str]) -> WebSocketConnection:
        try:
            socket = websocket.create_connection(
                url,
                header=[f"{name}: {value}" for name, value in headers.items()],
                timeout=self.connect_timeout,
            )
        except (websocket.WebSocketException, OSError) as exc:
            raise RealtimeConnectionError(f"WebSocket handshake failed: {exc}") from exc

        socket.settimeout(None)
        return WebSocketConnection(socket)
