"""Tests for the WebSocket push channel."""

import json
import queue
import threading
import time
import unittest

from websockets.exceptions import ConnectionClosed

from traccarkit import PushConfig
from traccarkit._errors import AuthenticationError
from traccarkit.push import ChannelState, PushChannel, SessionBootstrapper

BASE_URL = "https://traccar.example.com"

# =============================================================================
# Fakes
# =============================================================================

_CLOSED = object()


class FakeConnection:
    """In-memory stand-in for a websockets ClientConnection."""

    def __init__(self, ping_error: Exception | None = None):
        self._frames: queue.Queue = queue.Queue()
        self._ping_error = ping_error
        self.closed = threading.Event()
        self.pings = 0

    def feed(self, payload: object) -> None:
        self._frames.put(payload if isinstance(payload, str) else json.dumps(payload))

    def drop(self) -> None:
        """Simulate the server closing the socket."""
        self._frames.put(_CLOSED)

    def recv(self) -> str:
        item = self._frames.get()
        if item is _CLOSED:
            raise ConnectionClosed(None, None)
        return item

    def ping(self) -> None:
        self.pings += 1
        if self._ping_error is not None:
            raise self._ping_error

    def close(self) -> None:
        self.closed.set()
        self._frames.put(_CLOSED)


class FakeConnector:
    """Replays scripted connection outcomes; the last outcome repeats."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []
        self._lock = threading.Lock()

    def __call__(self, url, additional_headers=None, open_timeout=None):
        with self._lock:
            self.calls.append({"url": url, "headers": additional_headers, "open_timeout": open_timeout})
            outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeBootstrapper(SessionBootstrapper):
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    def establish(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return f"JSESSIONID=session-{self.calls}"


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


# =============================================================================
# Tests
# =============================================================================


class PushChannelTestCase(unittest.TestCase):
    def make_channel(self, connector: FakeConnector, bootstrapper: SessionBootstrapper | None = None, **kwargs):
        kwargs.setdefault("reconnect_delay", 0.01)
        kwargs.setdefault("heartbeat_interval", 60.0)
        channel = PushChannel(bootstrapper or FakeBootstrapper(), BASE_URL, connect=connector, **kwargs)
        self.addCleanup(channel.close)
        self.statuses: list[ChannelState] = []
        channel.status.subscribe(self.statuses.append)
        return channel


class TestPushChannelConnect(PushChannelTestCase):
    """Tests for connecting and frame dispatch."""

    def test_derives_socket_url(self):
        """Should turn the REST base URL into the socket URL."""
        channel = self.make_channel(FakeConnector(FakeConnection()))

        self.assertEqual(channel.socket_url, "wss://traccar.example.com/api/socket")

    def test_connect_sends_session_cookie(self):
        """Should bootstrap a session and pass only its cookie to the handshake."""
        connector = FakeConnector(FakeConnection())
        channel = self.make_channel(connector, open_timeout=3.0)

        self.assertTrue(channel.connect())

        self.assertTrue(channel.is_connected)
        self.assertEqual(connector.calls[0]["url"], "wss://traccar.example.com/api/socket")
        self.assertEqual(connector.calls[0]["headers"], {"Cookie": "JSESSIONID=session-1"})
        self.assertEqual(connector.calls[0]["open_timeout"], 3.0)
        self.assertEqual(self.statuses, [ChannelState.CONNECTING, ChannelState.CONNECTED])

    def test_connect_when_connected_is_a_no_op(self):
        """Should not open a second socket."""
        connector = FakeConnector(FakeConnection())
        channel = self.make_channel(connector)
        channel.connect()

        self.assertTrue(channel.connect())
        self.assertEqual(len(connector.calls), 1)

    def test_publishes_frames_on_typed_streams(self):
        """Should decode frames and publish them on the matching stream."""
        connection = FakeConnection()
        channel = self.make_channel(FakeConnector(connection))
        devices, positions, events = [], [], []
        channel.devices.subscribe(devices.append)
        channel.positions.subscribe(positions.append)
        channel.events.subscribe(events.append)
        channel.connect()

        connection.feed({"devices": [{"id": 1, "name": "Truck", "uniqueId": "42"}]})
        connection.feed({"positions": [{"id": 9, "deviceId": 1, "latitude": 1.5, "longitude": 2.5}]})
        connection.feed({"events": [{"id": 3, "type": "ignitionOn", "deviceId": 1}]})

        self.assertTrue(wait_until(lambda: len(events) == 1))
        self.assertEqual(devices[0][0].name, "Truck")
        self.assertEqual(positions[0][0].latitude, 1.5)
        self.assertEqual(events[0][0].type, "ignitionOn")

    def test_keep_alive_and_unknown_frames_are_dropped(self):
        """Should ignore keep-alives and unrecognized frames without disconnecting."""
        connection = FakeConnection()
        channel = self.make_channel(FakeConnector(connection))
        positions = []
        channel.positions.subscribe(positions.append)
        channel.connect()

        connection.feed("{}")
        connection.feed("garbage")
        connection.feed({"positions": [{"id": 9, "deviceId": 1, "latitude": 1.5, "longitude": 2.5}]})

        self.assertTrue(wait_until(lambda: len(positions) == 1))
        self.assertTrue(channel.is_connected)

    def test_failing_listener_does_not_stop_the_reader(self):
        """Should keep delivering frames after a listener raised."""
        connection = FakeConnection()
        channel = self.make_channel(FakeConnector(connection))
        received = []

        def flaky(events):
            received.append(events)
            if len(received) == 1:
                raise RuntimeError("listener bug")

        channel.events.subscribe(flaky)
        channel.connect()

        connection.feed({"events": [{"id": 1, "type": "alarm"}]})
        connection.feed({"events": [{"id": 2, "type": "alarm"}]})

        self.assertTrue(wait_until(lambda: len(received) == 2))
        self.assertTrue(channel.is_connected)

    def test_heartbeat_pings_while_connected(self):
        """Should send a protocol ping every heartbeat interval."""
        connection = FakeConnection()
        channel = self.make_channel(FakeConnector(connection), heartbeat_interval=0.01)
        channel.connect()

        self.assertTrue(wait_until(lambda: connection.pings >= 2))

    def test_failed_heartbeat_is_only_logged(self):
        """Should stay connected when a ping fails."""
        connection = FakeConnection(ping_error=RuntimeError("ping failed"))
        channel = self.make_channel(FakeConnector(connection), heartbeat_interval=0.01)

        with self.assertLogs("traccarkit.push._channel", level="WARNING") as logs:
            channel.connect()
            self.assertTrue(wait_until(lambda: connection.pings >= 2))

        self.assertTrue(channel.is_connected)
        self.assertTrue(any("Heartbeat failed" in line for line in logs.output))

    def test_from_config(self):
        """Should copy every PushConfig field."""
        config = PushConfig(max_reconnect_attempts=2, reconnect_delay=0.5, heartbeat_interval=15, auto_reconnect=False)

        channel = PushChannel.from_config(config, FakeBootstrapper(), BASE_URL, connect=FakeConnector(FakeConnection()))
        self.addCleanup(channel.close)

        self.assertEqual(channel.max_reconnect_attempts, 2)
        self.assertEqual(channel.reconnect_delay, 0.5)
        self.assertEqual(channel.heartbeat_interval, 15)
        self.assertFalse(channel.auto_reconnect)


class TestPushChannelReconnect(PushChannelTestCase):
    """Tests for the reconnection state machine."""

    def test_reconnects_after_connection_loss(self):
        """Should open a new socket with a fresh session after the server dropped it."""
        first, second = FakeConnection(), FakeConnection()
        bootstrapper = FakeBootstrapper()
        connector = FakeConnector(first, second)
        channel = self.make_channel(connector, bootstrapper)
        channel.connect()

        first.drop()

        self.assertTrue(wait_until(lambda: len(self.statuses) == 5))
        self.assertEqual(connector.calls[1]["headers"], {"Cookie": "JSESSIONID=session-2"})
        self.assertEqual(
            self.statuses,
            [
                ChannelState.CONNECTING,
                ChannelState.CONNECTED,
                ChannelState.RECONNECTING,
                ChannelState.CONNECTING,
                ChannelState.CONNECTED,
            ],
        )
        self.assertEqual(channel.reconnect_attempts, 0)

    def test_connection_loss_without_auto_reconnect(self):
        """Should settle in DISCONNECTED when auto reconnect is off."""
        connection = FakeConnection()
        connector = FakeConnector(connection)
        channel = self.make_channel(connector, auto_reconnect=False)
        channel.connect()

        connection.drop()

        self.assertTrue(wait_until(lambda: channel.state == ChannelState.DISCONNECTED))
        self.assertEqual(len(connector.calls), 1)
        self.assertTrue(connection.closed.is_set())

    def test_gives_up_after_max_reconnect_attempts(self):
        """Should try 1 + max_reconnect_attempts times, then stay in ERROR."""
        connector = FakeConnector(ConnectionRefusedError("refused"))
        channel = self.make_channel(connector, max_reconnect_attempts=3)

        self.assertFalse(channel.connect())

        failure_cycle = [ChannelState.CONNECTING, ChannelState.ERROR, ChannelState.RECONNECTING]
        expected = failure_cycle * 3 + [ChannelState.CONNECTING, ChannelState.ERROR]
        self.assertTrue(wait_until(lambda: len(self.statuses) == len(expected)))
        time.sleep(0.05)
        self.assertEqual(self.statuses, expected)
        self.assertEqual(len(connector.calls), 4)
        self.assertEqual(channel.state, ChannelState.ERROR)

    def test_bootstrap_failure_counts_as_connection_failure(self):
        """Should move to ERROR when the session cannot be established."""
        connector = FakeConnector(FakeConnection())
        bootstrapper = FakeBootstrapper(error=AuthenticationError("bad credentials", status_code=401))
        channel = self.make_channel(connector, bootstrapper, auto_reconnect=False)

        self.assertFalse(channel.connect())

        self.assertEqual(channel.state, ChannelState.ERROR)
        self.assertEqual(self.statuses, [ChannelState.CONNECTING, ChannelState.ERROR])
        self.assertEqual(connector.calls, [])

    def test_connect_after_giving_up_starts_over(self):
        """Should reset the attempt counter on an explicit connect()."""
        connection = FakeConnection()
        connector = FakeConnector(ConnectionRefusedError("refused"), connection)
        channel = self.make_channel(connector, max_reconnect_attempts=0)

        self.assertFalse(channel.connect())
        self.assertEqual(channel.state, ChannelState.ERROR)

        self.assertTrue(channel.connect())
        self.assertTrue(channel.is_connected)

    def test_disconnect_cancels_pending_reconnect(self):
        """Should not reconnect after disconnect(), even with a timer pending."""
        connector = FakeConnector(ConnectionRefusedError("refused"))
        channel = self.make_channel(connector, reconnect_delay=0.2)
        channel.connect()
        self.assertEqual(channel.state, ChannelState.RECONNECTING)

        channel.disconnect()
        time.sleep(0.3)

        self.assertEqual(channel.state, ChannelState.DISCONNECTED)
        self.assertEqual(len(connector.calls), 1)

    def test_disconnect_closes_socket_without_reconnecting(self):
        """Should close the socket and stay DISCONNECTED."""
        connection = FakeConnection()
        connector = FakeConnector(connection)
        channel = self.make_channel(connector)
        channel.connect()

        channel.disconnect()
        time.sleep(0.05)

        self.assertTrue(connection.closed.is_set())
        self.assertEqual(channel.state, ChannelState.DISCONNECTED)
        self.assertEqual(len(connector.calls), 1)
        self.assertEqual(self.statuses[-1], ChannelState.DISCONNECTED)


class TestPushChannelClose(PushChannelTestCase):
    """Tests for close()."""

    def test_close_closes_streams_and_refuses_connect(self):
        """Should close every stream and reject later connect() calls."""
        connection = FakeConnection()
        channel = self.make_channel(FakeConnector(connection))
        channel.connect()

        channel.close()
        channel.close()

        self.assertTrue(connection.closed.is_set())
        for stream in (channel.devices, channel.positions, channel.events, channel.status):
            self.assertTrue(stream.closed)
        with self.assertRaises(RuntimeError):
            channel.connect()

    def test_context_manager(self):
        """Should close on exit."""
        connection = FakeConnection()
        with PushChannel(FakeBootstrapper(), BASE_URL, connect=FakeConnector(connection)) as channel:
            channel.connect()

        self.assertTrue(connection.closed.is_set())


if __name__ == "__main__":
    unittest.main()
