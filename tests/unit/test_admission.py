"""
Unit tests for the queue admission state machine.

The realtime side uses :class:`tests.fakes.FakeRealtimeConnection`, so
frames travel through a real reader greenlet and the timeout is a real
(if tiny) gevent wait.
"""

import gevent
import pytest

from queue_loadtest.admission import AdmissionState, QueueAdmissionClient
from queue_loadtest.checks import CheckRecorder
from queue_loadtest.errors import RealtimeConnectionError
from queue_loadtest.protocol import ImmediateEntry, Rejected, Waiting
from queue_loadtest.realtime import WebSocketConnection
from queue_loadtest.session import Session
from tests.fakes import (
    CONCERT_ID,
    WS_URL,
    FakeConnector,
    FakeRealtimeConnection,
    FakeResponse,
    LockingWebSocket,
    entry_response,
)


pytestmark = pytest.mark.unit


SESSION = Session(access_token="access-token", refresh_token="refresh-token")


@pytest.fixture
def make_client(api):
    def _make(connector=None, timeout=0.05):
        return QueueAdmissionClient(
            api,
            connector or FakeConnector(),
            ws_url=WS_URL,
            concert_id=CONCERT_ID,
            timeout=timeout,
            checks=CheckRecorder(owner="K6TESTUSER1"),
        )

    return _make


def check_names(client, passed=True):
    return [result.name for result in client.checks.results if result.passed is passed]


# =============================================================================
# Entering
# =============================================================================

def test_enter_posts_concert_id_with_session(make_client, http):
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=4))
    client = make_client()

    entry = client.enter(SESSION)

    assert entry == Waiting(rank=4)
    sent = http.requests_to("/queue/enter")[0]
    assert sent.params == {"concertId": CONCERT_ID}
    assert sent.headers["Cookie"] == SESSION.cookie_header


def test_immediate_entry_never_connects(make_client, http):
    # Arrange
    http.route("POST", "/queue/enter", entry_response("IMMEDIATE_ENTRY", accessKey="K1"))
    connector = FakeConnector()
    client = make_client(connector)

    # Act
    result = client.run(SESSION)

    # Assert
    assert result.state is AdmissionState.ADMITTED
    assert result.access_key == "K1"
    assert result.entry == ImmediateEntry("K1")
    assert connector.calls == []
    assert client.connections_opened == 0


def test_non_json_entry_is_failed(make_client, http):
    http.route("POST", "/queue/enter", FakeResponse(502))
    client = make_client()

    result = client.run(SESSION)

    assert result.state is AdmissionState.FAILED
    assert "not JSON" in result.detail
    assert check_names(client, passed=False) == ["queue entry accepted"]


def test_unknown_entry_status_is_failed(make_client, http):
    http.route("POST", "/queue/enter", entry_response("MAYBE_LATER"))
    connector = FakeConnector()
    client = make_client(connector)

    result = client.run(SESSION)

    assert result.state is AdmissionState.FAILED
    assert connector.calls == []


def test_rejected_entry_is_failed_with_message(make_client, http):
    http.route("POST", "/queue/enter", entry_response("ERROR", message="queue is closed"))
    client = make_client()

    result = client.run(SESSION)

    assert result.state is AdmissionState.FAILED
    assert result.entry == Rejected("queue is closed")
    assert result.detail == "queue is closed"


# =============================================================================
# Waiting
# =============================================================================

def test_waiting_then_rank_update_then_admit(make_client, http):
    # Arrange
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=7))
    connector = FakeConnector(
        lambda: FakeRealtimeConnection(
            frames=[{"type": "RANK_UPDATE", "rank": 3}, {"type": "ADMIT", "accessKey": "K2"}]
        )
    )
    client = make_client(connector, timeout=5)

    # Act
    result = client.run(SESSION)

    # Assert
    assert result.state is AdmissionState.ADMITTED
    assert result.access_key == "K2"
    assert result.rank == 3
    assert client.connections_opened == 1
    assert connector.connections[0].closed
    assert connector.open_count == 0


def test_realtime_connection_carries_session_cookie(make_client, http):
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=1))
    connector = FakeConnector(
        lambda: FakeRealtimeConnection(frames=[{"type": "ADMIT", "accessKey": "K9"}])
    )
    client = make_client(connector)

    client.run(SESSION)

    url, headers = connector.calls[0]
    assert url == f"{WS_URL}?concertId={CONCERT_ID}"
    assert headers == {"Cookie": SESSION.cookie_header}
    assert "realtime connection established" in check_names(client)


def test_redirect_to_reserve_admits(make_client, http):
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=2))
    connector = FakeConnector(
        lambda: FakeRealtimeConnection(frames=[{"type": "REDIRECT_TO_RESERVE", "accessKey": "K5"}])
    )

    result = make_client(connector).run(SESSION)

    assert result.admitted
    assert result.access_key == "K5"


def test_noise_frames_are_ignored_until_admit(make_client, http):
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=20))
    connector = FakeConnector(
        lambda: FakeRealtimeConnection(
            frames=[
                "garbage",
                {"type": "HEARTBEAT"},
                {"type": "ADMIT"},
                {"type": "ERROR", "message": "busy"},
                {"type": "RANK_UPDATE", "rank": 10},
                {"type": "ADMIT", "accessKey": "K7"},
            ]
        )
    )

    result = make_client(connector).run(SESSION)

    assert result.state is AdmissionState.ADMITTED
    assert result.access_key == "K7"
    assert result.rank == 10


def test_silent_queue_times_out_and_closes(make_client, http):
    # Arrange
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=50))
    connector = FakeConnector()
    client = make_client(connector, timeout=0.05)

    # Act
    result = client.run(SESSION)

    # Assert
    assert result.state is AdmissionState.TIMED_OUT
    assert result.access_key is None
    assert result.rank == 50
    assert connector.connections[0].closed


def test_server_close_before_admission_is_closed(make_client, http):
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=5))
    connector = FakeConnector(
        lambda: FakeRealtimeConnection(frames=[{"type": "RANK_UPDATE", "rank": 4}], close_after=True)
    )

    result = make_client(connector, timeout=5).run(SESSION)

    assert result.state is AdmissionState.CLOSED
    assert result.detail == "closed by server"
    assert result.rank == 4


def test_transport_error_while_waiting_is_closed(make_client, http):
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=5))
    connector = FakeConnector(
        lambda: FakeRealtimeConnection(frames=[RealtimeConnectionError("connection reset")])
    )

    result = make_client(connector, timeout=5).run(SESSION)

    assert result.state is AdmissionState.CLOSED
    assert result.detail == "connection reset"
    assert connector.connections[0].closed


def test_handshake_failure_is_closed_with_failed_check(make_client, http):
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=5))
    connector = FakeConnector(error=RealtimeConnectionError("handshake refused"))
    client = make_client(connector)

    result = client.run(SESSION)

    assert result.state is AdmissionState.CLOSED
    assert check_names(client, passed=False) == ["realtime connection established"]
    assert client.connections_opened == 0


def test_upgrade_status_other_than_101_fails_check(make_client, http):
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=5))
    connector = FakeConnector(
        lambda: FakeRealtimeConnection(frames=[{"type": "ADMIT", "accessKey": "K1"}], status=200)
    )
    client = make_client(connector)

    result = client.run(SESSION)

    assert result.admitted
    assert check_names(client, passed=False) == ["realtime connection established"]


def test_killed_wait_still_closes_connection(make_client, http):
    # Arrange
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=5))
    connector = FakeConnector()
    client = make_client(connector, timeout=60)

    # Act
    greenlet = gevent.spawn(client.run, SESSION)
    gevent.sleep(0.01)
    greenlet.kill(block=True)

    # Assert
    assert client.state is AdmissionState.WAITING
    assert connector.connections[0].closed



# -----------------------------------------------------------------------------
# Over the websocket-client wrapper
# -----------------------------------------------------------------------------

def connect_to(socket):
    return lambda _url, _headers: WebSocketConnection(socket)


def test_admit_over_locking_socket_closes_without_server_reply(make_client, http):
    """
    Test that admission returns even though the server never answers our close.

    Arrange: Socket whose reader holds the read lock while it waits
    Act: Run the queue phase under a hard gevent timeout
    Assert: Admitted, close frame sent once, socket shut down
    """
    # Arrange
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=7))
    socket = LockingWebSocket(
        frames=[{"type": "RANK_UPDATE", "rank": 3}, {"type": "ADMIT", "accessKey": "K2"}]
    )
    client = make_client(connect_to(socket), timeout=5)

    # Act
    with gevent.Timeout(2):
        result = client.run(SESSION)

    # Assert
    assert result.state is AdmissionState.ADMITTED
    assert result.access_key == "K2"
    assert socket.sent == ["close"]
    assert not socket.connected


def test_timeout_over_locking_socket_returns_within_ceiling(make_client, http):
    # Arrange
    http.route("POST", "/queue/enter", entry_response("WAITING", rank=50))
    socket = LockingWebSocket()
    client = make_client(connect_to(socket), timeout=0.05)

    # Act
    with gevent.Timeout(2):
        result = client.run(SESSION)

    # Assert
    assert result.state is AdmissionState.TIMED_OUT
    assert not socket.connected


# =============================================================================
# State machine
# =============================================================================

def test_client_is_single_use(make_client, http):
    http.route("POST", "/queue/enter", entry_response("IMMEDIATE_ENTRY", accessKey="K1"))
    client = make_client()
    client.run(SESSION)

    with pytest.raises(RuntimeError, match="Illegal admission transition"):
        client.run(SESSION)
