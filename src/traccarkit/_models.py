"""
Data models shared by the request pipeline and the push channel.

This module contains:
- ApiRequest: A logical request to the Traccar REST API (frozen/immutable)
- ApiResponse: The outcome of a request, live or served from cache (frozen/immutable)
- ResponseSource: Enum telling live data apart from cached data
- Device, Position, Event: Minimal typed records published by the push channel
"""
import enum
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import requests
from requests.structures import CaseInsensitiveDict
from ulid import ULID

from traccarkit._retry import RetryState

logger = logging.getLogger(__name__)


# =============================================================================
# Request / Response
# =============================================================================


@dataclass(frozen=True)
class ApiRequest:
    """
    Represents a single logical call to the Traccar REST API.

    Attributes:
        method: HTTP method in upper case (GET, POST, PUT, DELETE).
        path: Path relative to the server base URL (e.g. "/api/devices").
        params: Query parameters.
        data: Request body. Sent as JSON unless `form` is True.
        headers: Extra headers merged over the client defaults.
        form: Send `data` form-encoded instead of as JSON.
        ttl: Explicit cache TTL in seconds for this call. Wins over any configured TTL.
        use_cache: Set to False to bypass the cache for this call.
        id: Unique identifier used in logs. Auto-generated as ULID if not provided.
        metadata: Free-form data for the caller's own bookkeeping.
        retry_state: Retry bookkeeping shared by every attempt of this request,
            including copies made with `with_headers()`.

    Example:
        >>> request = ApiRequest("GET", "/api/positions", params={"deviceId": 12})
    """
    method: str
    path: str
    params: dict[str, Any] | None = None
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    form: bool = False
    ttl: float | None = None
    use_cache: bool = True
    id: str = field(default_factory=lambda: str(ULID()))
    metadata: dict[str, Any] = field(default_factory=dict)
    retry_state: RetryState = field(default_factory=RetryState, compare=False, repr=False)

    def __post_init__(self) -> None:
        assert self.id, "Request ID can not be empty."
        assert self.method, "Request method can not be empty."
        assert self.method == self.method.upper(), "Request method must be upper case."
        assert self.path and self.path.startswith("/"), "Request path must start with '/'."
        assert self.ttl is None or self.ttl > 0, "Request ttl must be greater than 0."

    @property
    def is_bodiless(self) -> bool:
        """Returns True if the request carries no body."""
        return self.data is None

    def with_headers(self, headers: dict[str, str]) -> "ApiRequest":
        """Returns a copy of this request with `headers` merged over the current ones."""
        return replace(self, headers={**self.headers, **headers})


class ResponseSource(enum.StrEnum):
    """
    Where a response came from.

    Attributes:
        NETWORK: Live response from the server.
        CACHE: Fresh cached entry served without a network call.
        OFFLINE_FALLBACK: Possibly stale cached entry served because the network failed.
    """
    NETWORK = "NETWORK"
    CACHE = "CACHE"
    OFFLINE_FALLBACK = "OFFLINE_FALLBACK"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ApiResponse:
    """
    Represents the outcome of an `ApiRequest`.

    Attributes:
        request: The originating request.
        status_code: HTTP status code (the original status for cached responses).
        data: Decoded JSON body, or None when the body is empty or not JSON.
        text: Raw body text.
        headers: Response headers (case-insensitive).
        cookies: Cookies set by the response.
        source: Whether the data is live or was served from the cache.
        cached_at: Epoch seconds when the cached entry was stored (None for live data).
    """
    request: ApiRequest
    status_code: int
    data: Any = None
    text: str = ""
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    cookies: dict[str, str] = field(default_factory=dict)
    source: ResponseSource = ResponseSource.NETWORK
    cached_at: float | None = None

    @classmethod
    def from_http_response(cls, request: ApiRequest, response: requests.Response) -> "ApiResponse":
        """Builds a live response from a `requests.Response`."""
        text = response.text or ""
        return cls(
            request=request,
            status_code=response.status_code,
            data=_decode_json(text),
            text=text,
            headers=CaseInsensitiveDict(response.headers or {}),
            cookies=dict(response.cookies.get_dict()) if response.cookies is not None else {},
            source=ResponseSource.NETWORK,
        )

    @classmethod
    def from_cached(
        cls,
        request: ApiRequest,
        payload: str,
        headers: dict[str, str] | None,
        cached_at: float,
        source: ResponseSource = ResponseSource.CACHE,
    ) -> "ApiResponse":
        """Builds a response from a cached payload, tagging it with its source."""
        response_headers = CaseInsensitiveDict(headers or {})
        response_headers["X-Cache"] = "HIT"
        response_headers["X-Cache-Timestamp"] = datetime.fromtimestamp(cached_at).isoformat()
        return cls(
            request=request,
            status_code=200,
            data=_decode_json(payload),
            text=payload,
            headers=response_headers,
            source=source,
            cached_at=cached_at,
        )

    def is_success(self) -> bool:
        """Returns True for 2xx status codes."""
        return 200 <= self.status_code < 300

    def is_from_cache(self) -> bool:
        """Returns True if the response was served from the cache (fresh or stale)."""
        return self.source != ResponseSource.NETWORK

    def json(self) -> Any:
        """Returns the decoded JSON body."""
        return self.data


def _decode_json(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


# =============================================================================
# Push Records
# =============================================================================


def _parse_datetime(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.debug(f"Unparseable timestamp ignored: {value!r}")
        return None


def _require_mapping(data: Any, kind: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise TypeError(f"{kind} payload must be a JSON object, got {type(data).__name__}")
    if not isinstance(data.get("id"), int):
        raise ValueError(f"{kind} payload is missing a numeric 'id'")
    return data


@dataclass(frozen=True)
class Device:
    """A tracked device as reported by the server. Only the commonly used fields are typed."""
    id: int
    name: str
    unique_id: str
    status: str | None = None
    last_update: datetime | None = None
    position_id: int | None = None
    group_id: int | None = None
    disabled: bool = False
    category: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_json(cls, data: Any) -> "Device":
        payload = _require_mapping(data, "Device")
        return cls(
            id=payload["id"],
            name=str(payload.get("name") or ""),
            unique_id=str(payload.get("uniqueId") or ""),
            status=payload.get("status"),
            last_update=_parse_datetime(payload.get("lastUpdate")),
            position_id=payload.get("positionId"),
            group_id=payload.get("groupId"),
            disabled=bool(payload.get("disabled", False)),
            category=payload.get("category"),
            attributes=dict(payload.get("attributes") or {}),
            raw=payload,
        )


@dataclass(frozen=True)
class Position:
    """A position fix reported by a device."""
    id: int
    device_id: int
    latitude: float
    longitude: float
    fix_time: datetime | None = None
    device_time: datetime | None = None
    server_time: datetime | None = None
    valid: bool = True
    altitude: float = 0.0
    speed: float = 0.0
    course: float = 0.0
    address: str | None = None
    accuracy: float = 0.0
    protocol: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_json(cls, data: Any) -> "Position":
        payload = _require_mapping(data, "Position")
        return cls(
            id=payload["id"],
            device_id=int(payload["deviceId"]),
            latitude=float(payload["latitude"]),
            longitude=float(payload["longitude"]),
            fix_time=_parse_datetime(payload.get("fixTime")),
            device_time=_parse_datetime(payload.get("deviceTime")),
            server_time=_parse_datetime(payload.get("serverTime")),
            valid=bool(payload.get("valid", True)),
            altitude=float(payload.get("altitude") or 0.0),
            speed=float(payload.get("speed") or 0.0),
            course=float(payload.get("course") or 0.0),
            address=payload.get("address"),
            accuracy=float(payload.get("accuracy") or 0.0),
            protocol=payload.get("protocol"),
            attributes=dict(payload.get("attributes") or {}),
            raw=payload,
        )


@dataclass(frozen=True)
class Event:
    """A server-side event (alarm, geofence enter/exit, ignition, ...)."""
    id: int
    type: str
    device_id: int | None = None
    event_time: datetime | None = None
    position_id: int | None = None
    geofence_id: int | None = None
    maintenance_id: int | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_json(cls, data: Any) -> "Event":
        payload = _require_mapping(data, "Event")
        event_type = payload.get("type")
        if not isinstance(event_type, str) or not event_type:
            raise ValueError("Event payload is missing 'type'")
        return cls(
            id=payload["id"],
            type=event_type,
            device_id=payload.get("deviceId"),
            event_time=_parse_datetime(payload.get("eventTime")),
            position_id=payload.get("positionId"),
            geofence_id=payload.get("geofenceId"),
            maintenance_id=payload.get("maintenanceId"),
            attributes=dict(payload.get("attributes") or {}),
            raw=payload,
        )
