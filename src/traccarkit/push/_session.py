"""
Session bootstrap for the push channel.

The socket endpoint only accepts connections carrying a session cookie. Before
each connection attempt the channel exchanges the configured credentials for a
fresh session over the regular request pipeline; the socket handshake then
carries only that cookie.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, override
from urllib.parse import urlsplit, urlunsplit

from traccarkit._errors import AuthenticationError
from traccarkit._models import ApiRequest, ApiResponse

if TYPE_CHECKING:
    from traccarkit._auth import AuthProvider
    from traccarkit._pipeline import RequestPipeline

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "JSESSIONID"
SESSION_PATH = "/api/session"
SOCKET_PATH = "/api/socket"

_DEFAULT_PORTS = {"ws": 80, "wss": 443}


class SessionBootstrapper(ABC):
    """
    Abstract base class for session bootstrappers.

    Implementations return the value of the `Cookie` header to send with the
    socket handshake (e.g. "JSESSIONID=node0abc").
    """

    @abstractmethod
    def establish(self) -> str:
        """
        Establish an authenticated session.

        Returns:
            The cookie header value identifying the session.

        Raises:
            AuthenticationError: If the server rejected the credentials or no
                session cookie was returned.
        """
        pass


class PipelineSessionBootstrapper(SessionBootstrapper):
    """
    Creates a server session through the request pipeline.

    With a token, calls `GET /api/session?token=...`; otherwise posts the
    credentials form-encoded (`email`, `password`) to `POST /api/session`.

    Args:
        pipeline: The pipeline used for the credential exchange.
        auth_provider: Source of the token or the credentials.
    """

    def __init__(self, pipeline: RequestPipeline, auth_provider: AuthProvider):
        assert pipeline is not None, "pipeline cannot be None."
        assert auth_provider is not None, "auth_provider cannot be None."
        self._pipeline = pipeline
        self._auth_provider = auth_provider

    @override
    def establish(self) -> str:
        token = self._auth_provider.get_token()
        if token:
            request = ApiRequest("GET", SESSION_PATH, params={"token": token}, use_cache=False)
        else:
            credentials = self._auth_provider.get_credentials()
            if credentials is None:
                raise AuthenticationError("No credentials available to open a session.")
            request = ApiRequest(
                "POST",
                SESSION_PATH,
                data={"email": credentials.username, "password": credentials.password},
                form=True,
                use_cache=False,
            )

        response = self._pipeline.execute(request)
        cookie = extract_session_cookie(response)
        if cookie is None:
            raise AuthenticationError(
                f"Server did not return a `{SESSION_COOKIE_NAME}` session cookie.",
                status_code=response.status_code,
            )
        logger.debug(f"{request.id[:26]:<26} | PUSH | Session established")
        return cookie


def extract_session_cookie(response: ApiResponse) -> str | None:
    """
    Return "JSESSIONID=<value>" from a session response, or None if absent.

    The cookie jar is checked first; the raw `Set-Cookie` header is the fallback.
    """
    value = response.cookies.get(SESSION_COOKIE_NAME)
    if value:
        return f"{SESSION_COOKIE_NAME}={value}"

    set_cookie = response.headers.get("Set-Cookie") or ""
    for part in re.split(r"[;,]", set_cookie):
        name, _, cookie_value = part.strip().partition("=")
        if name == SESSION_COOKIE_NAME and cookie_value:
            return f"{SESSION_COOKIE_NAME}={cookie_value}"
    return None


def build_socket_url(base_url: str) -> str:
    """
    Derive the push socket URL from the REST base URL.

    Example:
        >>> build_socket_url("https://demo.traccar.org:443/")
        'wss://demo.traccar.org/api/socket'
    """
    assert base_url, "base_url cannot be empty."
    parts = urlsplit(base_url)
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
    assert scheme in ("ws", "wss"), f"Unsupported base URL scheme: {parts.scheme!r}"

    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"  # IPv6 literal
    if parts.port is not None and parts.port != _DEFAULT_PORTS[scheme]:
        host = f"{host}:{parts.port}"

    base_path = parts.path.rstrip("/")
    return urlunsplit((scheme, host, f"{base_path}{SOCKET_PATH}", "", ""))
