"""
Client-side admission control for the traccarkit client.

This module provides a sliding-window rate limiter with an optional FIFO wait
queue. A request is admissible when fewer than `max_requests` timestamps fall
inside the trailing `time_window`. When the window is full, requests either
fail fast with `RateLimitedError` or wait in a bounded FIFO queue that a
background worker drains every `retry_delay` seconds as slots free up.

Example:
    >>> from traccarkit._rate_limit import SlidingWindowRateLimiter
    >>> limiter = SlidingWindowRateLimiter(max_requests=60, time_window=60.0)
    >>> limiter.acquire()  # blocks while queued, raises RateLimitedError on rejection
    >>> limiter.status().remaining_requests
    59
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import TYPE_CHECKING

from traccarkit._errors import RateLimitedError, RequestCancelledError

if TYPE_CHECKING:
    from traccarkit._config import RateLimitConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitStatus:
    """
    Snapshot of a rate limiter.

    Attributes:
        requests_in_window: Admitted requests inside the trailing window.
        max_requests: Configured window capacity.
        time_window: Configured window length in seconds.
        queued_requests: Tickets waiting for a slot.
        can_make_request: Whether a new request would be admitted right now.
        time_until_reset: Seconds until the oldest timestamp leaves the window.
    """

    requests_in_window: int
    max_requests: int
    time_window: float
    queued_requests: int
    can_make_request: bool
    time_until_reset: float

    @property
    def remaining_requests(self) -> int:
        return max(0, self.max_requests - self.requests_in_window)

    @property
    def utilization(self) -> float:
        """Fraction of the window capacity in use (1.0 when max_requests is 0)."""
        if self.max_requests == 0:
            return 1.0
        return self.requests_in_window / self.max_requests


class SlidingWindowRateLimiter:
    """
    Sliding-window rate limiter with a FIFO admission queue.

    Thread-safe: the window and the queue are guarded by a single lock.
    Queued tickets are `concurrent.futures.Future` objects granted strictly in
    submission order, and a newcomer is never admitted ahead of a waiting ticket.

    Args:
        max_requests: Maximum requests inside the window. 0 rejects every request.
        time_window: Window length in seconds. Must be greater than 0.
        queue_requests: Queue requests that exceed the limit (True) or fail fast (False).
        max_queue_size: Maximum waiting tickets. 0 means unbounded.
        retry_delay: Interval in seconds between queue processing passes.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        max_requests: int = 100,
        time_window: float = 60.0,
        queue_requests: bool = True,
        max_queue_size: int = 50,
        retry_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        assert max_requests is not None, "max_requests cannot be None."
        assert max_requests >= 0, "max_requests must be >= 0."
        assert time_window is not None, "time_window cannot be None."
        assert time_window > 0, "time_window must be greater than 0."
        assert max_queue_size >= 0, "max_queue_size must be >= 0."
        assert retry_delay > 0, "retry_delay must be greater than 0."

        self.max_requests = max_requests
        self.time_window = time_window
        self.queue_requests = queue_requests
        self.max_queue_size = max_queue_size
        self.retry_delay = retry_delay
        self._clock = clock

        self._window: deque[float] = deque()
        self._queue: deque[Future[None]] = deque()
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._stopped = threading.Event()
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: "RateLimitConfig",
        clock: Callable[[], float] = time.monotonic,
    ) -> "SlidingWindowRateLimiter":
        """Build a limiter from a RateLimitConfig section."""
        return cls(
            max_requests=config.max_requests,
            time_window=config.time_window,
            queue_requests=config.queue_requests,
            max_queue_size=config.max_queue_size,
            retry_delay=config.retry_delay,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    def try_acquire(self) -> bool:
        """
        Non-blocking admission check.

        Returns:
            True if the request was admitted (and recorded), False otherwise.
        """
        with self._lock:
            if self._closed:
                return False
            now = self._clock()
            self._prune(now)
            if self._queue or not self._has_capacity():
                return False
            self._window.append(now)
            return True

    def acquire(self, timeout: float | None = None) -> None:
        """
        Wait for admission.

        Args:
            timeout: Maximum seconds to wait in the queue. None waits until the
                ticket is granted or rejected.

        Raises:
            RateLimitedError: The window is full and queueing is disabled, the
                queue is full, `max_requests` is 0, or `timeout` elapsed.
            RequestCancelledError: The limiter was reset or closed while waiting.
        """
        with self._lock:
            if self._closed:
                raise RequestCancelledError("Rate limiter is closed")

            now = self._clock()
            self._prune(now)
            if not self._queue and self._has_capacity():
                self._window.append(now)
                return

            if self.max_requests == 0:
                raise RateLimitedError(
                    "Rate limit exceeded: limiter admits no requests (max_requests=0)",
                    retryable=False,
                )

            retry_after = self._time_until_slot(now)
            if not self.queue_requests:
                raise RateLimitedError(
                    f"Rate limit exceeded: {self.max_requests} requests per {self.time_window:.0f}s",
                    retry_after=retry_after,
                )
            if self.max_queue_size and len(self._queue) >= self.max_queue_size:
                logger.warning(
                    f"⚠️ Rate limit queue is full ({self.max_queue_size} waiting). Rejecting request."
                )
                raise RateLimitedError(
                    f"Rate limit queue is full ({self.max_queue_size} requests waiting)",
                    retry_after=retry_after,
                )

            ticket: Future[None] = Future()
            self._queue.append(ticket)
            queued = len(self._queue)
            self._ensure_worker()

        logger.debug(f"Request queued by rate limiter (position {queued}, next slot in {retry_after:.2f}s)")
        self._wait_for(ticket, timeout)

    def _wait_for(self, ticket: Future[None], timeout: float | None) -> None:
        try:
            ticket.result(timeout=timeout)
            return
        except TimeoutError:
            with self._lock:
                withdrawn = ticket in self._queue
                if withdrawn:
                    self._queue.remove(ticket)
                    retry_after = self._time_until_slot(self._clock())
            if withdrawn:
                ticket.cancel()
                raise RateLimitedError(
                    f"Rate limit wait timed out after {timeout:.2f}s",
                    retry_after=retry_after,
                ) from None
        # Granted or rejected concurrently with the timeout
        ticket.result()

    def process_queue(self) -> int:
        """
        Grant waiting tickets, in FIFO order, while the window has room.

        Called periodically by the background worker; callable directly to
        force a pass.

        Returns:
            Number of tickets granted.
        """
        with self._lock:
            return self._grant_waiting()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """
        Clear the window and fail every waiting ticket.

        Intended for explicit operator resets, never for normal operation.
        """
        self._fail_waiting("Rate limiter was reset")
        logger.info("Rate limiter was reset")

    def close(self) -> None:
        """Fail waiting tickets, stop the queue worker and refuse further requests."""
        with self._lock:
            self._closed = True
            self._stopped.set()
            worker = self._worker
        self._fail_waiting("Rate limiter was closed")
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=self.retry_delay + 1.0)

    def status(self) -> RateLimitStatus:
        """Return a snapshot of the current window and queue."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            time_until_reset = (
                max(0.0, self._window[0] + self.time_window - now) if self._window else 0.0
            )
            return RateLimitStatus(
                requests_in_window=len(self._window),
                max_requests=self.max_requests,
                time_window=self.time_window,
                queued_requests=len(self._queue),
                can_make_request=not self._closed and not self._queue and self._has_capacity(),
                time_until_reset=time_until_reset,
            )

    # -------------------------------------------------------------------------
    # Internals (call with the lock held)
    # -------------------------------------------------------------------------

    def _prune(self, now: float) -> None:
        cutoff = now - self.time_window
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()

    def _has_capacity(self) -> bool:
        return len(self._window) < self.max_requests

    def _time_until_slot(self, now: float) -> float:
        if self._has_capacity() or not self._window:
            return 0.0
        return max(0.0, self._window[0] + self.time_window - now)

    def _grant_waiting(self) -> int:
        now = self._clock()
        self._prune(now)
        granted = 0
        while self._queue and self._has_capacity():
            ticket = self._queue.popleft()
            if ticket.done():
                continue
            self._window.append(now)
            ticket.set_result(None)
            granted += 1
        return granted

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(
            target=self._run_worker,
            name="traccarkit-rate-limiter",
            daemon=True,
        )
        self._worker.start()

    def _run_worker(self) -> None:
        while not self._stopped.wait(self.retry_delay):
            with self._lock:
                granted = self._grant_waiting()
                if granted:
                    logger.debug(f"Rate limiter granted {granted} queued request(s), {len(self._queue)} still waiting")
                if not self._queue:
                    self._worker = None
                    return

    def _fail_waiting(self, reason: str) -> None:
        with self._lock:
            self._window.clear()
            waiting = list(self._queue)
            self._queue.clear()
        for ticket in waiting:
            if not ticket.done():
                ticket.set_exception(RequestCancelledError(reason))
