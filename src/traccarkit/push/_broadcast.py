"""
Thread-safe fan-out of items to subscribed listeners.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class Broadcast(Generic[_T]):
    """
    A named stream that delivers every published item to all current listeners.

    Listeners are called synchronously, in subscription order, on the thread
    that publishes. Exceptions raised by a listener are logged and never reach
    the publisher or the other listeners.

    Example:
        >>> positions: Broadcast[list[Position]] = Broadcast("positions")
        >>> unsubscribe = positions.subscribe(lambda items: print(len(items)))
        >>> positions.publish([position])
        1
        >>> unsubscribe()
    """

    def __init__(self, name: str):
        assert name, "Broadcast name cannot be empty."
        self.name = name
        self._listeners: list[Callable[[_T], None]] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def subscribe(self, listener: Callable[[_T], None]) -> Callable[[], None]:
        """
        Register `listener` and return a function that unregisters it.

        Raises:
            RuntimeError: If the stream was already closed.
        """
        assert callable(listener), "listener must be callable."
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Broadcast `{self.name}` is closed.")
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, item: _T) -> int:
        """
        Deliver `item` to every listener.

        Returns:
            The number of listeners that handled the item without raising.
            Items published after `close()` are dropped and 0 is returned.
        """
        with self._lock:
            if self._closed:
                logger.debug(f"Broadcast `{self.name}` is closed, dropping item")
                return 0
            listeners = list(self._listeners)

        delivered = 0
        for listener in listeners:
            try:
                listener(item)
                delivered += 1
            except Exception as e:
                listener_name = getattr(listener, "__qualname__", listener.__class__.__name__)
                logger.warning(f"Broadcast `{self.name}` listener `{listener_name}` raised an exception: {e}")
        return delivered

    def close(self) -> bool:
        """
        Close the stream and drop every listener.

        Returns:
            True on the first call, False if the stream was already closed.
        """
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            self._listeners.clear()
        return True
