"""
Unit tests for the WebSocket transport wrapper.

``websocket-client`` is patched out with ``unittest.mock``, or replaced by
:class:`tests.fakes.LockingWebSocket` where read-lock contention matters,
so these run without a server.
"""

from unittest.mock import MagicMock, patch

import gevent
import pytest
import websocket

from queue_loadtest.errors import RealtimeConnectionError
from queue_loadtest.realtime import WebSocketConnection, WebSocketConnector, queue_channel_url
from tests.fakes import LockingWebSocket


pytestmark = pytest.mark.unit


def make_socket(*frames):
    socket = MagicMock(spec=websocket.WebSocket)
    socket.getstatus.return_value = 101
    socket.recv_data.side_effect = list(frames)
    return socket


def test_queue_channel_url():
    assert queue_channel_url("ws://host/ws/waitqueue", 111) == "ws://host/ws/waitqueue?concertId=111"


def test_receive_returns_text_frames():
    connection = WebSocketConnection(
        make_socket(
            (websocket.ABNF.OPCODE_TEXT, '{"type": "RANK_UPDATE", "rank": 2}'),
            (websocket.ABNF.OPCODE_TEXT, b'{"type": "ADMIT", "accessKey": "K1"}'),
        )
    )

    assert connection.status == 101
    assert connection.receive() == '{"type": "RANK_UPDATE", "rank": 2}'
    assert connection.receive() == '{"type": "ADMIT", "accessKey": "K1"}'


def test_close_frame_ends_the_stream():
    connection = WebSocketConnection(make_socket((websocket.ABNF.OPCODE_CLOSE, b"")))

    assert connection.receive() is None


def test_error_before_close_is_a_connection_error():
    connection = WebSocketConnection(
        make_socket(websocket.WebSocketConnectionClosedException("reset by peer"))
    )

    with pytest.raises(RealtimeConnectionError, match="reset by peer"):
        connection.receive()


def test_error_after_our_close_is_swallowed():
    socket = make_socket(websocket.WebSocketConnectionClosedException("socket is already closed"))
    connection = WebSocketConnection(socket)

    connection.close()

    assert connection.receive() is None
    assert connection.close_sent


def test_close_is_idempotent():
    socket = make_socket()
    connection = WebSocketConnection(socket)

    connection.close()
    connection.close()

    socket.send_close.assert_called_once()
    socket.shutdown.assert_called_once()
    socket.close.assert_not_called()


def test_close_wakes_a_receive_blocked_on_the_read_lock():
    # Arrange
    socket = LockingWebSocket()
    connection = WebSocketConnection(socket)
    reader = gevent.spawn(connection.receive)
    gevent.sleep(0)

    # Act
    with gevent.Timeout(1):
        connection.close()
        frame = reader.get()

    # Assert
    assert frame is None
    assert socket.sent == ["close"]
    assert not socket.connected


def test_close_still_shuts_down_when_close_frame_fails():
    socket = make_socket()
    socket.send_close.side_effect = BrokenPipeError("broken pipe")
    connection = WebSocketConnection(socket)

    connection.close()

    socket.shutdown.assert_called_once()


def test_connector_sends_headers_and_clears_timeout():
    # Arrange
    socket = make_socket()
    connector = WebSocketConnector(connect_timeout=3)

    # Act
    with patch("queue_loadtest.realtime.websocket.create_connection", return_value=socket) as create:
        connection = connector("ws://host/ws/waitqueue?concertId=1", {"Cookie": "access=a; refresh=r"})

    # Assert
    create.assert_called_once_with(
        "ws://host/ws/waitqueue?concertId=1",
        header=["Cookie: access=a; refresh=r"],
        timeout=3,
    )
    socket.settimeout.assert_called_once_with(None)
    assert isinstance(connection, WebSocketConnection)


def test_connector_wraps_handshake_failure():
    connector = WebSocketConnector()

    with patch(
        "queue_loadtest.realtime.websocket.create_connection",
        side_effect=ConnectionRefusedError("connection refused"),
    ):
        with pytest.raises(RealtimeConnectionError, match="handshake failed"):
            connector("ws://host/ws/waitqueue", {})
