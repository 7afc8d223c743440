"""
Retry utilities with linear backoff.

Inspired by Tenacity's Retrying class, this module provides a context manager
for replaying a single outbound attempt when it fails with a transient error.

Example:
    >>> from traccarkit._retry import Retrying
    >>> for attempt in Retrying(max_retries=3, retry_delay=1.0):
    ...     with attempt:
    ...         return transport.send(request)

The retry count lives in a `RetryState` object. Passing the same state to a
second `Retrying` loop continues the count instead of starting over, which is
how the request pipeline keeps a logical request from being retried more than
`max_retries` times in total.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from dataclasses import dataclass

import requests

from traccarkit._utils import sleep_with_jitter

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """
    Base class for exceptions that should trigger automatic retry.

    Exceptions extending this class are retried by `Retrying` without needing
    explicit configuration in `retry_on_exceptions`.

    Example:
        >>> class MyTransientError(RetryableError):
        ...     pass
    """

    pass


@dataclass
class RetryState:
    """
    Mutable retry bookkeeping that travels with a logical request.

    Attributes:
        attempt_number: How many retries were already consumed (0 = none yet).
    """

    attempt_number: int = 0


@dataclass(frozen=True)
class RetryAttempt:
    """
    Metadata about the current attempt within a retry loop.

    Attributes:
        attempt_number: Zero-based index of the current attempt (0 = first attempt).
        max_retries: Maximum number of retry attempts configured.
    """

    attempt_number: int
    max_retries: int

    @property
    def is_last_attempt(self) -> bool:
        """Return True if this is the last retry attempt."""
        return self.attempt_number >= self.max_retries


class Retrying:
    """
    Context manager for retry with linear backoff.

    Args:
        max_retries: Maximum number of retry attempts (default: 3).
            Use 0 to disable retries (single attempt only).
        retry_delay: Base delay in seconds. The n-th retry waits `retry_delay * n`.
        retry_on_status_codes: HTTP status codes that trigger retry. Checked
            against the `status_code` of classified errors and the response of
            `requests.HTTPError`. Defaults to 408, 429, 502, 503 and 504.
        retry_on_exceptions: Exception types that always trigger retry
            (default: requests Timeout and ConnectionError).
        skip_retry_on_exceptions: Exception types that never trigger retry.
            Takes precedence over every other rule.
        state: Shared retry state. A fresh one is created when omitted.
        logger_prefix: Prefix for log messages (e.g., a request id).
        jitter_factor: Random variation applied to every wait (default: 10%).

    Note:
        - Exceptions extending RetryableError are retried (opt-in via inheritance)
        - `RateLimitedError.retry_after` is honored, capped at MAX_RETRY_AFTER
        - When retries are exhausted the last error is re-raised unchanged
        - Exceptions not matching retry conditions are re-raised immediately
    """

    # Maximum server or limiter provided wait to respect (in seconds).
    MAX_RETRY_AFTER = 60.0

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        retry_on_status_codes: tuple[int, ...] = (408, 429, 502, 503, 504),
        retry_on_exceptions: tuple[type[Exception], ...] = (
            requests.Timeout,
            requests.ConnectionError,
        ),
        skip_retry_on_exceptions: tuple[type[Exception], ...] = (),
        state: RetryState | None = None,
        logger_prefix: str = "",
        jitter_factor: float = 0.1,
    ):
        assert max_retries >= 0, f"max_retries must be >= 0, got {max_retries}"
        assert retry_delay >= 0, f"retry_delay must be >= 0, got {retry_delay}"
        assert retry_on_status_codes is not None, "retry_on_status_codes cannot be None"
        assert retry_on_exceptions is not None, "retry_on_exceptions cannot be None"
        assert skip_retry_on_exceptions is not None, "skip_retry_on_exceptions cannot be None"

        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_on_status_codes = set(retry_on_status_codes)
        self.retry_on_exceptions = retry_on_exceptions
        self.skip_retry_on_exceptions = skip_retry_on_exceptions
        self.state = state if state is not None else RetryState()
        self.logger_prefix = logger_prefix
        self.jitter_factor = jitter_factor

        self._finished = False
        self._last_exception: Exception | None = None

    def __iter__(self) -> Generator[_RetryContext, None, None]:
        """
        Yield retry contexts until an attempt succeeds or fails for good.

        At least one attempt is always made, even when the shared state has
        no retries left; that attempt is simply not retried.
        """
        while not self._finished:
            yield _RetryContext(self, self.state.attempt_number)

    @property
    def last_exception(self) -> Exception | None:
        """The exception raised by the most recent failed attempt, if any."""
        return self._last_exception

    def _should_retry(self, exception: Exception) -> bool:
        """
        Determine if exception should trigger a retry.

        Logic:
            1. Never retry cancellations, skip_retry_on_exceptions or errors flagged `retryable=False`
            2. If the error carries an HTTP status: retry if it is in retry_on_status_codes
            3. Auto-retry if exception extends RetryableError
            4. Retry on configured exception types (Timeout, ConnectionError, etc.)
        """
        from traccarkit._errors import RequestCancelledError

        if isinstance(exception, (RequestCancelledError, *self.skip_retry_on_exceptions)):
            return False
        if getattr(exception, "retryable", True) is False:
            return False

        status_code = self._status_code_of(exception)
        if status_code is not None:
            return status_code in self.retry_on_status_codes

        if isinstance(exception, RetryableError):
            return True

        return isinstance(exception, self.retry_on_exceptions)

    @staticmethod
    def _status_code_of(exception: Exception) -> int | None:
        status_code = getattr(exception, "status_code", None)
        if isinstance(status_code, int):
            return status_code
        if isinstance(exception, requests.RequestException):
            response = getattr(exception, "response", None)
            if response is not None:
                return int(response.status_code)
        return None

    def _handle_retry(self, exception: Exception) -> None:
        """Log, advance the shared state and sleep before the next attempt."""
        self._last_exception = exception
        self.state.attempt_number += 1
        sleep_time = self._calculate_wait_time(exception)

        prefix = f"{self.logger_prefix} | " if self.logger_prefix else ""
        logger.warning(
            f"{prefix}⚠️ Attempt {self.state.attempt_number}/{self.max_retries + 1} failed: {exception}"
        )
        logger.warning(
            f"{prefix}Retrying in {sleep_time:.1f}s..."
        )
        sleep_with_jitter(sleep_time, jitter_factor=self.jitter_factor)

    def _calculate_wait_time(self, exception: Exception) -> float:
        """
        Calculate the wait before the next attempt.

        The base wait is linear in the retry count. When the error carries a
        `retry_after` hint (local limiter or HTTP 429), the larger of the hint
        and the linear wait is used.
        """
        base_wait = self.retry_delay * self.state.attempt_number

        retry_after = getattr(exception, "retry_after", None)
        if isinstance(retry_after, int | float) and retry_after > 0:
            if retry_after > self.MAX_RETRY_AFTER:
                prefix = f"{self.logger_prefix} | " if self.logger_prefix else ""
                logger.warning(
                    f"{prefix}Retry-After ({retry_after}s) exceeds MAX_RETRY_AFTER "
                    f"({self.MAX_RETRY_AFTER}s). Capping the wait."
                )
                retry_after = self.MAX_RETRY_AFTER
            return float(max(retry_after, base_wait))

        return base_wait

    def _handle_exhausted(self, exception: Exception) -> None:
        """Log exhaustion. The caller re-raises the original exception."""
        self._last_exception = exception
        self._finished = True
        if self.max_retries == 0:
            return
        prefix = f"{self.logger_prefix} | " if self.logger_prefix else ""
        logger.error(
            f"{prefix}❌ Max retries ({self.max_retries}) exceeded. Last error: {exception}"
        )


class _RetryContext:
    """
    Context for a single retry attempt (internal).

    On success: marks the loop as finished
    On retryable exception: suppresses exception, loop continues
    On non-retryable exception: re-raises exception, loop exits
    On exhausted retries: re-raises the last exception unchanged
    """

    def __init__(self, retrying: Retrying, attempt: int):
        self._retrying = retrying
        self.attempt = attempt

    def __enter__(self) -> RetryAttempt:
        return RetryAttempt(
            attempt_number=self.attempt,
            max_retries=self._retrying.max_retries,
        )

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> bool:
        """
        Handle exception (if any) and decide whether to retry.

        Returns:
            True to suppress exception and continue loop (retry)
            False to propagate exception (no retry)
        """
        if exc_val is None:
            self._retrying._finished = True
            return False

        # Only handle Exception, not BaseException (KeyboardInterrupt, etc.)
        if not isinstance(exc_val, Exception):
            return False

        if not self._retrying._should_retry(exc_val):
            self._retrying._finished = True
            return False

        if self._retrying.state.attempt_number >= self._retrying.max_retries:
            self._retrying._handle_exhausted(exc_val)
            return False

        self._retrying._handle_retry(exc_val)
        return True
