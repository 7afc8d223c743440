"""
Error taxonomy for the traccarkit client.

Every failure surfaced by the request pipeline is an instance of `TraccarError`.
The concrete subclass tells the caller what went wrong and, through the
`RetryableError` marker, whether the retry layer is allowed to replay it:

    ======================  ==========================================  ==========
    Class                   Meaning                                     Retryable
    ======================  ==========================================  ==========
    NetworkError            connectivity failure, timeout, HTTP 408     yes
    ServerError             HTTP 5xx                                    status set
    RateLimitedError        local limiter rejection or HTTP 429         yes
    AuthenticationError     HTTP 401 or failed session bootstrap        no
    AuthorizationError      HTTP 403                                    no
    ValidationError         HTTP 400                                    no
    NotFoundError           HTTP 404                                    no
    HttpStatusError         any other HTTP error status                 status set
    RequestCancelledError   limiter reset, batch cleared, client closed no
    ======================  ==========================================  ==========

Example:
    >>> from traccarkit import NotFoundError, TraccarError
    >>> try:
    ...     client.get("/api/devices/42")
    ... except NotFoundError:
    ...     print("No such device")
    ... except TraccarError as e:
    ...     print(f"Request failed (HTTP {e.status_code}): {e}")
"""

from __future__ import annotations

import json
import logging
from typing import Any

import requests

from traccarkit._retry import RetryableError

logger = logging.getLogger(__name__)


# =============================================================================
# Base Exception
# =============================================================================


class TraccarError(Exception):
    """
    Base class for every error raised by the traccarkit client.

    Attributes:
        message: Human-readable description of the failure.
        status_code: HTTP status code, when the failure came from a response.
        response: The raw HTTP response, when available.
        cause: The underlying exception, when the failure wraps another one.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: requests.Response | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response
        self.cause = cause


# =============================================================================
# Taxonomy
# =============================================================================


class NetworkError(TraccarError, RetryableError):
    """Connectivity or timeout failure. The request may never have reached the server."""

    pass


class ServerError(TraccarError):
    """
    The server answered with a 5xx status.

    Retried only when the status belongs to the configured retry set
    (502, 503 and 504 by default).
    """

    pass


class RateLimitedError(TraccarError, RetryableError):
    """
    The request was throttled, either by the local rate limiter or by the server (HTTP 429).

    Attributes:
        retry_after: Seconds the caller should wait before trying again, when known.
            For local rejections this is the time until the oldest request
            leaves the sliding window; for HTTP 429 it comes from `Retry-After`.
        retryable: False when waiting can never help (a limiter that admits
            nothing). `Retrying` surfaces such errors immediately.
    """

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        status_code: int | None = None,
        response: requests.Response | None = None,
        cause: BaseException | None = None,
        retryable: bool = True,
    ):
        super().__init__(message, status_code=status_code, response=response, cause=cause)
        self.retry_after = retry_after
        self.retryable = retryable

    @property
    def is_local(self) -> bool:
        """True when the rejection came from the client-side limiter."""
        return self.status_code is None


class AuthenticationError(TraccarError):
    """Credentials were rejected (HTTP 401) or no session could be established."""

    pass


class AuthorizationError(TraccarError):
    """The authenticated user may not access the resource (HTTP 403)."""

    pass


class ValidationError(TraccarError):
    """
    The server rejected the request input (HTTP 400).

    Attributes:
        field_errors: Per-field messages, when the server reported them.
    """

    def __init__(
        self,
        message: str,
        field_errors: dict[str, list[str]] | None = None,
        status_code: int | None = 400,
        response: requests.Response | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, status_code=status_code, response=response, cause=cause)
        self.field_errors = field_errors or {}


class NotFoundError(TraccarError):
    """The requested resource does not exist (HTTP 404)."""

    pass


class HttpStatusError(TraccarError):
    """Any other HTTP error status not covered by a more specific class."""

    pass


class RequestCancelledError(TraccarError):
    """
    The request was cancelled before completion.

    Raised for queued rate-limit tickets when the limiter is reset, for pending
    batch members when the batcher is cleared, and for any outstanding work
    when the pipeline is closed. Never retried.
    """

    pass


# =============================================================================
# Classification
# =============================================================================


def error_from_response(response: requests.Response) -> TraccarError:
    """
    Map an HTTP error response to the matching `TraccarError` subclass.

    Args:
        response: A response whose status code is >= 400.

    Returns:
        The classified error (not raised).
    """
    status = response.status_code
    body = _decode_body(response)
    server_message = _extract_error_message(body)

    if status == 400:
        return ValidationError(
            server_message or "Bad request. Please check your input.",
            field_errors=_extract_field_errors(body),
            status_code=status,
            response=response,
        )
    if status == 401:
        return AuthenticationError(
            server_message or "Authentication failed. Please check your credentials.",
            status_code=status,
            response=response,
        )
    if status == 403:
        return AuthorizationError(
            server_message or "Access denied. You do not have permission to access this resource.",
            status_code=status,
            response=response,
        )
    if status == 404:
        return NotFoundError(
            server_message or "Resource not found.",
            status_code=status,
            response=response,
        )
    if status == 408:
        return NetworkError(
            server_message or "Request timeout reported by the server.",
            status_code=status,
            response=response,
        )
    if status == 429:
        return RateLimitedError(
            server_message or "Rate limit exceeded. Please try again later.",
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
            status_code=status,
            response=response,
        )
    if status >= 500:
        return ServerError(
            server_message or f"Server error (HTTP {status}). Please try again later.",
            status_code=status,
            response=response,
        )
    return HttpStatusError(
        server_message or f"HTTP error {status}",
        status_code=status,
        response=response,
    )


def error_from_exception(exc: Exception) -> Exception:
    """
    Map a transport exception to the taxonomy.

    `TraccarError` instances pass through untouched. `requests` timeouts and
    connection failures become `NetworkError`. Anything else is returned
    unchanged: it is unclassifiable and will not be retried.
    """
    if isinstance(exc, TraccarError):
        return exc
    if isinstance(exc, requests.Timeout):
        return NetworkError(
            f"Connection timeout. Please check your internet connection: {exc}",
            cause=exc,
        )
    if isinstance(exc, (requests.ConnectionError, ConnectionError, TimeoutError)):
        return NetworkError(
            f"Connection error. Please check your internet connection: {exc}",
            cause=exc,
        )
    return exc


def parse_retry_after(header: str | None) -> float | None:
    """
    Parse a `Retry-After` header value expressed in seconds.

    HTTP-date values are not supported and yield None.
    """
    if not header:
        return None
    try:
        seconds = float(header)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unsupported Retry-After value: {header!r}")
        return None
    return seconds if seconds >= 0 else None


def _decode_body(response: requests.Response) -> Any:
    text = response.text or ""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def _extract_error_message(body: Any) -> str | None:
    if body is None:
        return None
    if isinstance(body, dict):
        for key in ("message", "error", "detail", "description"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        return None
    if isinstance(body, str):
        # Traccar reports most errors as plain text with a stack trace appended
        first_line = body.strip().splitlines()[0] if body.strip() else ""
        return first_line[:300] or None
    return None


def _extract_field_errors(body: Any) -> dict[str, list[str]] | None:
    if not isinstance(body, dict):
        return None
    errors = body.get("errors") or body.get("fieldErrors")
    if not isinstance(errors, dict):
        return None

    field_errors: dict[str, list[str]] = {}
    for key, value in errors.items():
        if isinstance(value, list):
            field_errors[key] = [str(v) for v in value]
        elif isinstance(value, str):
            field_errors[key] = [value]
    return field_errors or None
