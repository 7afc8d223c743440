"""
Self-healing WebSocket push channel.

`PushChannel` keeps one duplex connection to the server's `/api/socket`
endpoint and republishes every decoded frame on typed broadcast streams:

    devices    -> Broadcast[list[Device]]
    positions  -> Broadcast[list[Position]]
    events     -> Broadcast[list[Event]]
    status     -> Broadcast[ChannelState]

Lifecycle:

    DISCONNECTED --connect()--> CONNECTING --ok--> CONNECTED
    CONNECTING --failure--> ERROR --auto reconnect--> RECONNECTING
    CONNECTED --connection lost--> RECONNECTING (or DISCONNECTED without auto reconnect)
    RECONNECTING --after reconnect_delay--> CONNECTING
    CONNECTED --disconnect()--> DISCONNECTED (no automatic reconnection follows)

The attempt counter resets on every successful connection. Once
`max_reconnect_attempts` is reached the channel stays in ERROR (or
DISCONNECTED after a lost connection) until `connect()` is called again.

Example:
    >>> channel = PushChannel.from_config(TRACCAR.config.push, bootstrapper, base_url)
    >>> channel.positions.subscribe(lambda positions: print(positions))
    >>> channel.connect()
    True
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from websockets.exceptions import ConnectionClosed
from websockets.sync.client import ClientConnection
from websockets.sync.client import connect as ws_connect

from traccarkit._models import Device, Event, Position
from traccarkit.push._broadcast import Broadcast
from traccarkit.push._frames import PushMessageKind, decode_frame
from traccarkit.push._session import SessionBootstrapper, build_socket_url

if TYPE_CHECKING:
    from traccarkit._config import PushConfig

logger = logging.getLogger(__name__)

# Seconds to wait for the reader and heartbeat threads when disconnecting
_JOIN_TIMEOUT = 5.0


class ChannelState(StrEnum):
    """Connection state of a PushChannel."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class PushChannel:
    """
    Duplex push connection with session bootstrap, heartbeat and reconnection.

    Before every connection attempt a fresh session is obtained from the
    `bootstrapper`; the socket handshake carries only the session cookie.
    While connected, a protocol-level ping is sent every `heartbeat_interval`
    seconds. A failed heartbeat is logged and nothing else; only the socket
    closing (or erroring) triggers a reconnection.

    Args:
        bootstrapper: Creates the session used by the socket handshake.
        base_url: REST base URL; the socket URL is derived from it.
        max_reconnect_attempts: Consecutive attempts before giving up.
        reconnect_delay: Fixed delay in seconds before each attempt.
        heartbeat_interval: Seconds between heartbeats.
        auto_reconnect: Reconnect automatically after failures.
        open_timeout: Seconds allowed for the socket handshake.
        connect: Factory opening the socket (defaults to the `websockets` sync client).
    """

    def __init__(
        self,
        bootstrapper: SessionBootstrapper,
        base_url: str,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 5.0,
        heartbeat_interval: float = 30.0,
        auto_reconnect: bool = True,
        open_timeout: float = 10.0,
        connect: Callable[..., ClientConnection] = ws_connect,
    ):
        assert bootstrapper is not None, "bootstrapper cannot be None."
        assert max_reconnect_attempts >= 0, "max_reconnect_attempts must be >= 0."
        assert reconnect_delay >= 0, "reconnect_delay must be >= 0."
        assert heartbeat_interval > 0, "heartbeat_interval must be greater than 0."
        assert open_timeout > 0, "open_timeout must be greater than 0."
        assert connect is not None, "connect cannot be None."

        self._bootstrapper = bootstrapper
        self.socket_url = build_socket_url(base_url)
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.heartbeat_interval = heartbeat_interval
        self.auto_reconnect = auto_reconnect
        self.open_timeout = open_timeout
        self._connect = connect

        self.devices: Broadcast[list[Device]] = Broadcast("devices")
        self.positions: Broadcast[list[Position]] = Broadcast("positions")
        self.events: Broadcast[list[Event]] = Broadcast("events")
        self.status: Broadcast[ChannelState] = Broadcast("status")

        self._lock = threading.RLock()
        self._state = ChannelState.DISCONNECTED
        self._connection: ClientConnection | None = None
        self._generation = 0
        self._reader: threading.Thread | None = None
        self._heartbeat: threading.Thread | None = None
        self._heartbeat_stop = threading.Event()
        self._reconnect_timer: threading.Timer | None = None
        self._reconnect_attempts = 0
        self._reconnect_enabled = False
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: PushConfig,
        bootstrapper: SessionBootstrapper,
        base_url: str,
        connect: Callable[..., ClientConnection] = ws_connect,
    ) -> PushChannel:
        """Build a channel from a PushConfig section."""
        return cls(
            bootstrapper=bootstrapper,
            base_url=base_url,
            max_reconnect_attempts=config.max_reconnect_attempts,
            reconnect_delay=config.reconnect_delay,
            heartbeat_interval=config.heartbeat_interval,
            auto_reconnect=config.auto_reconnect,
            open_timeout=config.open_timeout,
            connect=connect,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ChannelState.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        """Reconnection attempts made since the last successful connection."""
        return self._reconnect_attempts

    def connect(self) -> bool:
        """
        Open the channel.

        Returns:
            True if the channel is connected when the call returns. On failure
            the channel moves to ERROR and, with auto reconnect, schedules the
            next attempt in the background.

        Raises:
            RuntimeError: If the channel was closed.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("PushChannel is closed.")
            if self._state in (ChannelState.CONNECTED, ChannelState.CONNECTING):
                return self._state == ChannelState.CONNECTED
            self._cancel_reconnect_timer()
            self._reconnect_enabled = self.auto_reconnect
            self._reconnect_attempts = 0
        return self._open()

    def disconnect(self) -> None:
        """Close the connection and cancel any pending reconnection."""
        with self._lock:
            self._reconnect_enabled = False
            self._reconnect_attempts = 0
            self._cancel_reconnect_timer()
            self._generation += 1
            self._heartbeat_stop.set()
            connection, self._connection = self._connection, None
            threads = (self._reader, self._heartbeat)
            self._reader = self._heartbeat = None
            self._set_state(ChannelState.DISCONNECTED)

        _close_quietly(connection)
        for thread in threads:
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=_JOIN_TIMEOUT)

    def close(self) -> None:
        """Disconnect and close every broadcast stream. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.disconnect()
        for stream in (self.devices, self.positions, self.events, self.status):
            stream.close()
        logger.debug("PushChannel | Closed")

    def __enter__(self) -> PushChannel:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    def _open(self) -> bool:
        self._set_state(ChannelState.CONNECTING)
        try:
            cookie = self._bootstrapper.establish()
            connection = self._connect(
                self.socket_url,
                additional_headers={"Cookie": cookie},
                open_timeout=self.open_timeout,
            )
        except Exception as e:
            logger.error(f"PushChannel | ❌ Failed to connect to {self.socket_url}: {e}")
            with self._lock:
                if self._state != ChannelState.CONNECTING:
                    return False  # disconnected meanwhile
                self._set_state(ChannelState.ERROR)
                self._schedule_reconnect(terminal_state=ChannelState.ERROR)
            return False

        with self._lock:
            if self._closed or self._state != ChannelState.CONNECTING:
                abandoned = True
            else:
                abandoned = False
                self._generation += 1
                self._connection = connection
                self._reconnect_attempts = 0
                self._heartbeat_stop = threading.Event()
                self._reader = threading.Thread(
                    target=self._read_loop,
                    args=(connection, self._generation),
                    name="traccarkit-push-reader",
                    daemon=True,
                )
                self._heartbeat = threading.Thread(
                    target=self._heartbeat_loop,
                    args=(connection, self._heartbeat_stop),
                    name="traccarkit-push-heartbeat",
                    daemon=True,
                )
                self._reader.start()
                self._heartbeat.start()
                self._set_state(ChannelState.CONNECTED)

        if abandoned:
            _close_quietly(connection)
            return False
        logger.info(f"PushChannel | Connected to {self.socket_url}")
        return True

    def _schedule_reconnect(self, terminal_state: ChannelState) -> None:
        # Caller holds the lock
        if self._closed or not self._reconnect_enabled:
            self._set_state(terminal_state)
            return
        if self._reconnect_attempts >= self.max_reconnect_attempts:
            logger.error(
                f"PushChannel | ❌ Giving up after {self._reconnect_attempts} reconnection attempt(s)"
            )
            self._set_state(terminal_state)
            return

        self._reconnect_attempts += 1
        logger.warning(
            f"PushChannel | ⚠️ Reconnecting in {self.reconnect_delay:.1f}s "
            f"(attempt {self._reconnect_attempts}/{self.max_reconnect_attempts})"
        )
        self._set_state(ChannelState.RECONNECTING)
        timer = threading.Timer(self.reconnect_delay, self._reconnect)
        timer.daemon = True
        self._reconnect_timer = timer
        timer.start()

    def _reconnect(self) -> None:
        with self._lock:
            if self._reconnect_timer is not threading.current_thread():
                return  # cancelled or superseded
            self._reconnect_timer = None
            if self._closed or self._state != ChannelState.RECONNECTING:
                return
        self._open()

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _handle_connection_lost(self, generation: int, reason: str) -> None:
        with self._lock:
            if generation != self._generation or self._state != ChannelState.CONNECTED:
                return  # closed on purpose
            logger.warning(f"PushChannel | ⚠️ Connection lost: {reason}")
            self._heartbeat_stop.set()
            connection, self._connection = self._connection, None
            self._reader = self._heartbeat = None
            self._schedule_reconnect(terminal_state=ChannelState.DISCONNECTED)
        _close_quietly(connection)

    def _set_state(self, state: ChannelState) -> None:
        with self._lock:
            if self._state == state:
                return
            previous, self._state = self._state, state
            logger.debug(f"PushChannel | State {previous} -> {state}")
            self.status.publish(state)

    # -------------------------------------------------------------------------
    # Worker threads
    # -------------------------------------------------------------------------

    def _read_loop(self, connection: ClientConnection, generation: int) -> None:
        try:
            while True:
                self._dispatch(connection.recv())
        except ConnectionClosed as e:
            reason = f"socket closed ({e})"
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
        self._handle_connection_lost(generation, reason)

    def _heartbeat_loop(self, connection: ClientConnection, stop: threading.Event) -> None:
        while not stop.wait(self.heartbeat_interval):
            try:
                connection.ping()
            except Exception as e:
                logger.warning(f"PushChannel | ⚠️ Heartbeat failed: {e}")

    def _dispatch(self, frame: str | bytes) -> None:
        message = decode_frame(frame)
        if message.kind == PushMessageKind.DEVICES:
            self.devices.publish(message.devices)
        elif message.kind == PushMessageKind.POSITIONS:
            self.positions.publish(message.positions)
        elif message.kind == PushMessageKind.EVENTS:
            self.events.publish(message.events)
        elif message.raw == {}:
            logger.debug("PushChannel | Keep-alive frame received")
        else:
            logger.warning(f"PushChannel | ⚠️ Dropping unrecognized frame: {str(frame)[:100]!r}")


def _close_quietly(connection: ClientConnection | None) -> None:
    if connection is None:
        return
    try:
        connection.close()
    except Exception as e:
        logger.debug(f"PushChannel | Error while closing socket: {e}")
