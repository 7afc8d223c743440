"""
HTTP transport abstraction for the traccarkit client.

The request pipeline talks to the server exclusively through `HttpClient`,
so tests and alternative transports can be swapped in freely.

Available implementations:
    - RequestsHttpClient: `requests.Session` based transport that applies an AuthProvider.

Example:
    >>> from traccarkit._auth import TokenAuthProvider
    >>> from traccarkit._http import RequestsHttpClient
    >>> client = RequestsHttpClient(auth_provider=TokenAuthProvider("my-token"))
    >>> response = client.get("https://demo.traccar.org/api/devices")
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, override

import requests

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from traccarkit._auth import AuthProvider


# =============================================================================
# Abstract Base Class
# =============================================================================


class HttpClient(ABC):
    """
    Abstract base class for HTTP transports.

    Implementations are responsible for authentication and for enforcing the
    transport timeout. They must not retry, cache or throttle: the request
    pipeline owns those concerns.

    Example:
        >>> class MyHttpClient(HttpClient):
        ...     def request(self, method, url, params=None, data=None, headers=None, timeout=30, form=False):
        ...         return requests.request(method, url, params=params, json=data, timeout=timeout)
    """

    @abstractmethod
    def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        data: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
        form: bool = False,
    ) -> requests.Response:
        """
        Execute an authenticated HTTP request.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE).
            url: The full URL to request.
            params: Query string parameters.
            data: Body. JSON-encoded unless `form` is True.
            headers: Additional headers (merged over auth and default headers).
            timeout: Connect/read timeout in seconds.
            form: Send `data` as application/x-www-form-urlencoded.

        Returns:
            The HTTP response. Error statuses are returned, not raised.

        Raises:
            requests.RequestException: If the request could not be completed.
        """
        pass

    def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
    ) -> requests.Response:
        """Execute an authenticated GET request."""
        return self.request("GET", url, params=params, headers=headers, timeout=timeout)

    def post(
        self,
        url: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
        form: bool = False,
    ) -> requests.Response:
        """Execute an authenticated POST request."""
        return self.request("POST", url, data=data, headers=headers, timeout=timeout, form=form)

    def put(
        self,
        url: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
    ) -> requests.Response:
        """Execute an authenticated PUT request."""
        return self.request("PUT", url, data=data, headers=headers, timeout=timeout)

    def delete(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
    ) -> requests.Response:
        """Execute an authenticated DELETE request."""
        return self.request("DELETE", url, headers=headers, timeout=timeout)

    def close(self) -> None:
        """Release transport resources. No-op by default."""
        pass


# =============================================================================
# Requests Implementation
# =============================================================================


class RequestsHttpClient(HttpClient):
    """
    HTTP transport backed by a `requests.Session`.

    Applies the AuthProvider headers to every call and sends JSON by default.
    The session keeps connections alive across calls and is safe to share
    between the pipeline worker threads for independent requests.

    Args:
        auth_provider: Provider for authorization headers. None sends
            unauthenticated requests (e.g. the session bootstrap call).
        session: Optional pre-configured session (proxies, TLS settings, ...).
        default_headers: Headers sent on every request.
    """

    DEFAULT_HEADERS = {
        "Accept": "application/json",
    }

    def __init__(
        self,
        auth_provider: "AuthProvider | None" = None,
        session: requests.Session | None = None,
        default_headers: dict[str, str] | None = None,
    ):
        if auth_provider is not None:
            from traccarkit._auth import AuthProvider

            assert isinstance(auth_provider, AuthProvider), "auth_provider must be an AuthProvider instance"

        self._auth = auth_provider
        self._session = session or requests.Session()
        self._owns_session = session is None
        self._default_headers = {**self.DEFAULT_HEADERS, **(default_headers or {})}
        self._lock = threading.Lock()

    @property
    def auth_provider(self) -> "AuthProvider | None":
        return self._auth

    @override
    def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        data: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
        form: bool = False,
    ) -> requests.Response:
        assert method, "Method cannot be empty."
        assert url, "URL cannot be empty."
        assert timeout is not None, "Timeout cannot be None."
        assert timeout > 0, "Timeout must be greater than 0."

        auth_headers = self._auth.get_auth_headers() if self._auth else {}
        merged_headers = {**self._default_headers, **auth_headers, **(headers or {})}

        body_kwargs: dict[str, Any] = {}
        if data is not None:
            if form:
                body_kwargs["data"] = data
            else:
                body_kwargs["json"] = data

        logger.debug(f"{method} {url} params={params}")
        return self._session.request(
            method,
            url,
            params=params,
            headers=merged_headers,
            timeout=timeout,
            **body_kwargs,
        )

    @override
    def close(self) -> None:
        with self._lock:
            if self._owns_session:
                self._session.close()
