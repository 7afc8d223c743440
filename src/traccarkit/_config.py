"""
Global configuration for the traccarkit client.

This module provides a simple configuration system following Convention over Configuration (CoC).
Users can optionally call TRACCAR.configure() at application startup to customize defaults.
If not called, sensible defaults are used.

Hierarchy of precedence (highest to lowest):
1. Options passed to component constructors
2. Values set via TRACCAR.configure()
3. Environment variables (TRACCAR_*) - when allow_env_override=True
4. Hardcoded defaults (in dataclass fields)

Example:
    >>> from traccarkit import TRACCAR
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> window = TRACCAR.config.rate_limit.time_window
    >>>
    >>> # Custom configuration
    >>> TRACCAR.configure(
    ...     http={"base_url": "https://demo.traccar.org"},
    ...     auth={"username": "admin", "password": "admin"},
    ...     cache={"default_ttl": 300},
    ... )
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from functools import wraps
from typing import Any, Self

# Configuration sections tracked by TraccarConfig (in display order)
_SECTIONS = ("http", "auth", "rate_limit", "batch", "cache", "retry", "push")

# Fields whose values are masked by ConfigEntry.formatted_value
_SENSITIVE_FIELDS = ("password", "token")


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        section: str | None = None,
    ):
        self.field = field
        self.value = value
        self.section = section
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


def parse_int_tuple(raw: str) -> tuple[int, ...]:
    """Parse "408,429,503" into (408, 429, 503)."""
    return tuple(int(part) for part in raw.split(",") if part.strip())


def parse_str_tuple(raw: str) -> tuple[str, ...]:
    """Parse "/api/devices,/api/events" into ("/api/devices", "/api/events")."""
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def parse_ttl_map(raw: str) -> dict[str, float]:
    """
    Parse per-endpoint TTLs.

    Accepts either a JSON object (`{"/api/devices": 300}`) or a comma separated
    list of `path=seconds` pairs (`/api/devices=300,/api/positions=30`).
    """
    raw = raw.strip()
    if raw.startswith("{"):
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            raise ValueError("expected a JSON object")
        return {str(k): float(v) for k, v in parsed.items()}

    result: dict[str, float] = {}
    for pair in raw.split(","):
        if not pair.strip():
            continue
        path, sep, seconds = pair.partition("=")
        if not sep:
            raise ValueError(f"missing '=' in {pair!r}")
        result[path.strip()] = float(seconds)
    return result


class EnvVars:
    """
    Utility class for reading environment variables with type conversion.

    Example:
        >>> EnvVars.get("TRACCAR_RATE_LIMIT_MAX_REQUESTS", type_hint=int)
        60
        >>> EnvVars.get("UNDEFINED_VAR")
        None
    """

    @staticmethod
    def get(
        var_name: str,
        type_hint: Any = str,
        converter: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Read an environment variable with optional type conversion.

        Args:
            var_name: The environment variable name.
            type_hint: Type hint used to infer the converter (ignored if converter is provided).
            converter: Custom converter function (takes precedence over type_hint).

        Returns:
            The converted value, or None if env var is not set/empty.

        Raises:
            ConfigEnvVarError: If the value cannot be converted.
        """
        raw_value = os.environ.get(var_name)
        if not raw_value:  # None or empty string
            return None

        actual_converter = converter or EnvVars._infer_converter(type_hint)
        try:
            return actual_converter(raw_value)
        except (ValueError, TypeError) as e:
            raise ConfigEnvVarError(
                env_var=var_name,
                value=raw_value,
                expected_type=type_hint.__name__ if hasattr(type_hint, "__name__") else str(type_hint),
                cause=e,
            ) from e

    @staticmethod
    def _infer_converter(type_hint: Any) -> Callable[[str], Any]:
        """
        Infer converter function from type hint.

        Handles both actual types and string annotations (PEP 563).
        """
        type_str = str(type_hint)

        if type_hint is int or type_str == "int":
            return int
        if type_hint is float or type_str == "float":
            return float
        if type_hint is bool or type_str == "bool":
            return lambda v: v.lower() in ("true", "1", "yes")
        return str


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Base class for immutable configuration dataclasses.

    Provides `.with_overrides()` method for creating new instances
    with partial field updates. Uses strict validation to catch
    typos and invalid field names early.

    Example:
        >>> config = RetryConfig()
        >>> custom = config.with_overrides({"max_retries": 5})
        >>> custom.max_retries
        5
    """

    def with_overrides(
        self,
        overrides: dict[str, Any],
        allow_none_fields: set[str] | None = None,
    ) -> Self:
        """
        Return a new instance with specified fields overridden.

        Args:
            overrides: Dict of field names to new values.
                       Only existing fields are allowed.
            allow_none_fields: Set of field names that accept None as a valid value.
                       By default, None values are filtered out.

        Raises:
            ValueError: If overrides contains unknown field names.
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        allow_none = allow_none_fields or set()
        filtered = {k: v for k, v in overrides.items() if v is not None or k in allow_none}
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Return new instance with environment variables applied.

        Reads env vars declared in field metadata and applies them as overrides.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        overrides: dict[str, Any] = {}
        for f in fields(self):
            env_var = f.metadata.get("env")
            if env_var:
                value = EnvVars.get(
                    var_name=env_var,
                    type_hint=f.type,
                    converter=f.metadata.get("converter"),
                )
                if value is not None:
                    overrides[f.name] = value
        return self.with_overrides(overrides)


def _require_positive(section: str, name: str, value: float) -> None:
    if value <= 0:
        raise ConfigValidationError(name, value, "Must be greater than 0.", section=section)


def _require_non_negative(section: str, name: str, value: float) -> None:
    if value < 0:
        raise ConfigValidationError(name, value, "Must be >= 0.", section=section)


def _require_http_url(section: str, name: str, value: str | None) -> None:
    if value and not (value.startswith("http://") or value.startswith("https://")):
        raise ConfigValidationError(
            name, value,
            "Must start with 'http://' or 'https://'.", section=section
        )


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class SdkConfig:
    """
    Client metadata (read-only, not configurable).

    Attributes:
        version: The installed traccarkit version.
    """

    version: str

    @classmethod
    def detect(cls) -> SdkConfig:
        from traccarkit import __version__

        return cls(version=__version__)


@dataclass(frozen=True)
class HttpConfig(OverridableConfig):
    """
    Transport configuration.

    Attributes:
        base_url: Root URL of the Traccar server (scheme, host and port).
            Env var: TRACCAR_BASE_URL

        request_timeout: Transport connect/read timeout in seconds. Timeouts are
            enforced by the transport only; retries start after a timeout failed.
            Env var: TRACCAR_HTTP_REQUEST_TIMEOUT
    """

    base_url: str = field(default="http://localhost:8082", metadata={"env": "TRACCAR_BASE_URL"})
    request_timeout: float = field(default=30.0, metadata={"env": "TRACCAR_HTTP_REQUEST_TIMEOUT"})

    def validate(self) -> Self:
        """Validate HTTP configuration fields."""
        if not self.base_url:
            raise ConfigValidationError("base_url", self.base_url, "Must not be empty.", section="http")
        _require_http_url("http", "base_url", self.base_url)
        _require_positive("http", "request_timeout", self.request_timeout)
        return self


@dataclass(frozen=True)
class AuthConfig(OverridableConfig):
    """
    Credentials used for the REST API and the push channel session.

    Either a token or a username/password pair is required. When both are set
    the token wins.

    Attributes:
        username: Traccar user e-mail.
            Env var: TRACCAR_AUTH_USERNAME

        password: Traccar user password.
            Env var: TRACCAR_AUTH_PASSWORD

        token: Traccar API token (sent as Bearer credential).
            Env var: TRACCAR_AUTH_TOKEN
    """

    username: str | None = field(default=None, metadata={"env": "TRACCAR_AUTH_USERNAME"})
    password: str | None = field(default=None, metadata={"env": "TRACCAR_AUTH_PASSWORD"})
    token: str | None = field(default=None, metadata={"env": "TRACCAR_AUTH_TOKEN"})

    def has_credentials(self) -> bool:
        """Check if a token or both username and password are set."""
        return bool(self.token or (self.username and self.password))

    def validate(self) -> Self:
        """Validate auth configuration fields."""
        for name in ("username", "password", "token"):
            value = getattr(self, name)
            if value is not None and value == "":
                raise ConfigValidationError(name, value, "Must not be empty string.", section="auth")
        return self


@dataclass(frozen=True)
class RateLimitConfig(OverridableConfig):
    """
    Sliding-window rate limiting applied to every outbound attempt.

    Attributes:
        enabled: Whether to enable rate limiting.
            Env var: TRACCAR_RATE_LIMIT_ENABLED

        max_requests: Maximum requests allowed within the trailing window.
            Zero rejects every request.
            Env var: TRACCAR_RATE_LIMIT_MAX_REQUESTS

        time_window: Length of the trailing window in seconds.
            Env var: TRACCAR_RATE_LIMIT_TIME_WINDOW

        queue_requests: Queue requests that exceed the limit instead of failing them.
            Env var: TRACCAR_RATE_LIMIT_QUEUE_REQUESTS

        max_queue_size: Maximum queued requests (0 = unbounded).
            Env var: TRACCAR_RATE_LIMIT_MAX_QUEUE_SIZE

        retry_delay: Interval in seconds between queue processing passes.
            Env var: TRACCAR_RATE_LIMIT_RETRY_DELAY

    Example:
        >>> TRACCAR.configure(rate_limit={"max_requests": 30, "time_window": 60})
    """

    enabled: bool = field(default=True, metadata={"env": "TRACCAR_RATE_LIMIT_ENABLED"})
    max_requests: int = field(default=100, metadata={"env": "TRACCAR_RATE_LIMIT_MAX_REQUESTS"})
    time_window: float = field(default=60.0, metadata={"env": "TRACCAR_RATE_LIMIT_TIME_WINDOW"})
    queue_requests: bool = field(default=True, metadata={"env": "TRACCAR_RATE_LIMIT_QUEUE_REQUESTS"})
    max_queue_size: int = field(default=50, metadata={"env": "TRACCAR_RATE_LIMIT_MAX_QUEUE_SIZE"})
    retry_delay: float = field(default=1.0, metadata={"env": "TRACCAR_RATE_LIMIT_RETRY_DELAY"})

    def validate(self) -> Self:
        """Validate rate limit configuration fields."""
        _require_non_negative("rate_limit", "max_requests", self.max_requests)
        _require_positive("rate_limit", "time_window", self.time_window)
        _require_non_negative("rate_limit", "max_queue_size", self.max_queue_size)
        _require_positive("rate_limit", "retry_delay", self.retry_delay)
        return self

    # -------------------------------------------------------------------------
    # Presets
    # -------------------------------------------------------------------------

    @classmethod
    def traccar_default_preset(cls) -> RateLimitConfig:
        """
        Limits tuned for a stock Traccar installation.

        60 requests per minute, up to 30 queued requests, queue checked every 0.5s.
        """
        return cls(
            enabled=True,
            max_requests=60,
            time_window=60.0,
            queue_requests=True,
            max_queue_size=30,
            retry_delay=0.5,
        )

    @classmethod
    def conservative_preset(cls) -> RateLimitConfig:
        """
        Limits for slow or shared servers.

        30 requests per minute, up to 20 queued requests, queue checked every 2s.
        """
        return cls(
            enabled=True,
            max_requests=30,
            time_window=60.0,
            queue_requests=True,
            max_queue_size=20,
            retry_delay=2.0,
        )

    @classmethod
    def aggressive_preset(cls) -> RateLimitConfig:
        """
        Limits for dedicated high-capacity servers.

        200 requests per minute, no queue: excess requests fail fast with RateLimitedError.
        """
        return cls(
            enabled=True,
            max_requests=200,
            time_window=60.0,
            queue_requests=False,
            max_queue_size=0,
            retry_delay=0.1,
        )


@dataclass(frozen=True)
class BatchConfig(OverridableConfig):
    """
    Coalescing of concurrent same-shape reads.

    Batching is bounded concurrent fan-out: every member still performs its
    own upstream call, scheduled together on a bounded worker pool.

    Attributes:
        enabled: Whether to batch eligible requests.
            Env var: TRACCAR_BATCH_ENABLED

        max_batch_size: Group size that triggers an immediate flush.
            Env var: TRACCAR_BATCH_MAX_BATCH_SIZE

        max_wait_time: Seconds a group waits for more members before flushing.
            Env var: TRACCAR_BATCH_MAX_WAIT_TIME

        batchable_endpoints: Paths eligible for batching (GET, no body).
            Env var: TRACCAR_BATCH_BATCHABLE_ENDPOINTS (comma separated)

        max_workers: Size of the worker pool used for fan-out.
            Env var: TRACCAR_BATCH_MAX_WORKERS
    """

    enabled: bool = field(default=True, metadata={"env": "TRACCAR_BATCH_ENABLED"})
    max_batch_size: int = field(default=10, metadata={"env": "TRACCAR_BATCH_MAX_BATCH_SIZE"})
    max_wait_time: float = field(default=0.1, metadata={"env": "TRACCAR_BATCH_MAX_WAIT_TIME"})
    batchable_endpoints: tuple[str, ...] = field(
        default=("/api/devices", "/api/positions", "/api/events", "/api/geofences"),
        metadata={"env": "TRACCAR_BATCH_BATCHABLE_ENDPOINTS", "converter": parse_str_tuple},
    )
    max_workers: int = field(default=8, metadata={"env": "TRACCAR_BATCH_MAX_WORKERS"})

    def validate(self) -> Self:
        """Validate batch configuration fields."""
        _require_positive("batch", "max_batch_size", self.max_batch_size)
        _require_non_negative("batch", "max_wait_time", self.max_wait_time)
        _require_positive("batch", "max_workers", self.max_workers)
        return self

    @classmethod
    def traccar_default_preset(cls) -> BatchConfig:
        """Small, fast batches over the hot read endpoints."""
        return cls(
            enabled=True,
            max_batch_size=5,
            max_wait_time=0.05,
            batchable_endpoints=("/api/devices", "/api/positions", "/api/events"),
        )


@dataclass(frozen=True)
class CacheConfig(OverridableConfig):
    """
    Read-through response cache with offline fallback.

    Attributes:
        enabled: Whether to cache responses.
            Env var: TRACCAR_CACHE_ENABLED

        default_ttl: Default time-to-live of an entry in seconds.
            Env var: TRACCAR_CACHE_DEFAULT_TTL

        max_cache_size: Maximum total payload size in bytes before eviction.
            Env var: TRACCAR_CACHE_MAX_CACHE_SIZE

        enable_offline_mode: Serve fresh entries without calling the network and
            fall back to stale entries when the network fails.
            Env var: TRACCAR_CACHE_ENABLE_OFFLINE_MODE

        endpoint_ttls: Per-endpoint TTLs keyed by path prefix (longest prefix wins).
            Env var: TRACCAR_CACHE_ENDPOINT_TTLS ("/api/devices=300,/api/positions=30")

        non_cacheable_endpoints: Paths never cached (session management).
            Env var: TRACCAR_CACHE_NON_CACHEABLE_ENDPOINTS (comma separated)

        respect_cache_headers: Honor Cache-Control directives from the server.
            Env var: TRACCAR_CACHE_RESPECT_CACHE_HEADERS

        cleanup_interval: Seconds between background expiry passes (0 disables).
            Env var: TRACCAR_CACHE_CLEANUP_INTERVAL

        max_stale_age: How long, past expiry, an entry is kept as an offline
            fallback before cleanup removes it.
            Env var: TRACCAR_CACHE_MAX_STALE_AGE

        directory: Directory for the persistent cache file. None keeps the cache in memory.
            Env var: TRACCAR_CACHE_DIRECTORY
    """

    enabled: bool = field(default=True, metadata={"env": "TRACCAR_CACHE_ENABLED"})
    default_ttl: float = field(default=900.0, metadata={"env": "TRACCAR_CACHE_DEFAULT_TTL"})
    max_cache_size: int = field(default=50 * 1024 * 1024, metadata={"env": "TRACCAR_CACHE_MAX_CACHE_SIZE"})
    enable_offline_mode: bool = field(default=True, metadata={"env": "TRACCAR_CACHE_ENABLE_OFFLINE_MODE"})
    endpoint_ttls: dict[str, float] = field(
        default_factory=dict,
        metadata={"env": "TRACCAR_CACHE_ENDPOINT_TTLS", "converter": parse_ttl_map},
    )
    non_cacheable_endpoints: tuple[str, ...] = field(
        default=("/api/session", "/login", "/logout"),
        metadata={"env": "TRACCAR_CACHE_NON_CACHEABLE_ENDPOINTS", "converter": parse_str_tuple},
    )
    respect_cache_headers: bool = field(default=True, metadata={"env": "TRACCAR_CACHE_RESPECT_CACHE_HEADERS"})
    cleanup_interval: float = field(default=300.0, metadata={"env": "TRACCAR_CACHE_CLEANUP_INTERVAL"})
    max_stale_age: float = field(default=7 * 24 * 3600.0, metadata={"env": "TRACCAR_CACHE_MAX_STALE_AGE"})
    directory: str | None = field(default=None, metadata={"env": "TRACCAR_CACHE_DIRECTORY"})

    def validate(self) -> Self:
        """Validate cache configuration fields."""
        _require_positive("cache", "default_ttl", self.default_ttl)
        _require_positive("cache", "max_cache_size", self.max_cache_size)
        _require_non_negative("cache", "cleanup_interval", self.cleanup_interval)
        _require_non_negative("cache", "max_stale_age", self.max_stale_age)
        for path, ttl in self.endpoint_ttls.items():
            if ttl <= 0:
                raise ConfigValidationError(
                    "endpoint_ttls", {path: ttl},
                    "TTLs must be greater than 0.", section="cache"
                )
        return self


@dataclass(frozen=True)
class RetryConfig(OverridableConfig):
    """
    Retry policy for transient failures.

    Attributes:
        max_retries: Maximum retry attempts (0 disables retries).
            Use 3 for 4 total attempts (1 original + 3 retries).
            Env var: TRACCAR_RETRY_MAX_RETRIES

        retry_delay: Base delay in seconds; the n-th retry waits `retry_delay * n`.
            Env var: TRACCAR_RETRY_RETRY_DELAY

        retry_status_codes: HTTP statuses considered transient.
            Env var: TRACCAR_RETRY_RETRY_STATUS_CODES (comma separated)
    """

    max_retries: int = field(default=3, metadata={"env": "TRACCAR_RETRY_MAX_RETRIES"})
    retry_delay: float = field(default=1.0, metadata={"env": "TRACCAR_RETRY_RETRY_DELAY"})
    retry_status_codes: tuple[int, ...] = field(
        default=(408, 429, 502, 503, 504),
        metadata={"env": "TRACCAR_RETRY_RETRY_STATUS_CODES", "converter": parse_int_tuple},
    )

    def validate(self) -> Self:
        """Validate retry configuration fields."""
        _require_non_negative("retry", "max_retries", self.max_retries)
        _require_non_negative("retry", "retry_delay", self.retry_delay)
        for code in self.retry_status_codes:
            if not 100 <= code <= 599:
                raise ConfigValidationError(
                    "retry_status_codes", self.retry_status_codes,
                    f"{code} is not a valid HTTP status code.", section="retry"
                )
        return self


@dataclass(frozen=True)
class PushConfig(OverridableConfig):
    """
    Push channel (WebSocket) behavior.

    Attributes:
        max_reconnect_attempts: Reconnection attempts before giving up.
            Env var: TRACCAR_PUSH_MAX_RECONNECT_ATTEMPTS

        reconnect_delay: Fixed delay in seconds between reconnection attempts.
            Env var: TRACCAR_PUSH_RECONNECT_DELAY

        heartbeat_interval: Seconds between heartbeats while connected.
            Env var: TRACCAR_PUSH_HEARTBEAT_INTERVAL

        auto_reconnect: Reconnect automatically after failures.
            Env var: TRACCAR_PUSH_AUTO_RECONNECT

        open_timeout: Seconds allowed for the WebSocket handshake.
            Env var: TRACCAR_PUSH_OPEN_TIMEOUT
    """

    max_reconnect_attempts: int = field(default=5, metadata={"env": "TRACCAR_PUSH_MAX_RECONNECT_ATTEMPTS"})
    reconnect_delay: float = field(default=5.0, metadata={"env": "TRACCAR_PUSH_RECONNECT_DELAY"})
    heartbeat_interval: float = field(default=30.0, metadata={"env": "TRACCAR_PUSH_HEARTBEAT_INTERVAL"})
    auto_reconnect: bool = field(default=True, metadata={"env": "TRACCAR_PUSH_AUTO_RECONNECT"})
    open_timeout: float = field(default=10.0, metadata={"env": "TRACCAR_PUSH_OPEN_TIMEOUT"})

    def validate(self) -> Self:
        """Validate push channel configuration fields."""
        _require_non_negative("push", "max_reconnect_attempts", self.max_reconnect_attempts)
        _require_non_negative("push", "reconnect_delay", self.reconnect_delay)
        _require_positive("push", "heartbeat_interval", self.heartbeat_interval)
        _require_positive("push", "open_timeout", self.open_timeout)
        return self


@dataclass(frozen=True)
class ConfigEntry:
    """
    A configuration field with its resolved value and source.

    Attributes:
        name: The field name (e.g., "max_requests").
        value: The resolved value.
        source: Where the value came from:
            - "default": Hardcoded default value
            - "env:VAR_NAME": Environment variable
            - "user": Set via TRACCAR.configure()

    Example:
        >>> entry = ConfigEntry("max_requests", 60, "user")
        >>> entry.formatted_value
        '60'
    """

    name: str
    value: Any
    source: str

    @property
    def formatted_value(self) -> str:
        """
        Return value formatted for display.

        Masks sensitive fields (password, token) and truncates long strings.

        Examples:
            >>> ConfigEntry("token", "abcd-secret-efgh", "user").formatted_value
            'abcd********efgh'
            >>> ConfigEntry("password", "short", "user").formatted_value
            '********t'
        """
        if self.name in _SENSITIVE_FIELDS and self.value is not None:
            secret = str(self.value)
            if len(secret) >= 12:
                return f"{secret[:4]}********{secret[-4:]}"
            if len(secret) >= 3:
                visible = max(1, len(secret) // 3)
                return f"********{secret[-visible:]}"
            return "********"

        if self.value is None:
            return "None"

        str_value = str(self.value)
        max_length = 50
        if len(str_value) > max_length:
            return str_value[: max_length - 3] + "..."

        return str_value


@dataclass(frozen=True)
class TraccarConfigTracker:
    """
    Tracks the source of config field values.

    An immutable tracker that records where each configuration value came from
    (default, env var, or configure()). Used by TRACCAR.explain().

    Attributes:
        sources: {"section": {"field": "source"}}
    """

    sources: dict[str, dict[str, str]] = field(default_factory=dict)

    @staticmethod
    def track_changes(
        source_type: str,
    ) -> Callable[[Callable[..., TraccarConfig]], Callable[..., TraccarConfig]]:
        """
        Decorator that records which fields the decorated method touched.

        Args:
            source_type: Source label for tracking ("env" or "user").
        """

        def decorator(
            method: Callable[..., TraccarConfig],
        ) -> Callable[..., TraccarConfig]:
            @wraps(method)
            def wrapper(self: TraccarConfig, *args: Any, **kwargs: Any) -> TraccarConfig:
                new_config = method(self, *args, **kwargs)
                new_tracker = self._tracker.with_changes_tracked(
                    new_config, source_type, overrides=kwargs
                )
                return replace(new_config, _tracker=new_tracker)

            return wrapper

        return decorator

    def with_changes_tracked(
        self,
        new_config: TraccarConfig,
        source_type: str,
        overrides: dict[str, Any] | None = None,
    ) -> TraccarConfigTracker:
        """Return a new tracker with the fields touched by `source_type` recorded."""
        new_sources = self._copy_sources()

        for section_name in _SECTIONS:
            section_config = getattr(new_config, section_name)
            section_sources = new_sources.setdefault(section_name, {})

            for f in fields(section_config):
                if source_type == "env":
                    # Consistent with EnvVars.get, which treats empty as unset
                    env_var = f.metadata.get("env")
                    if env_var and os.environ.get(env_var):
                        section_sources[f.name] = f"env:{env_var}"

                elif source_type == "user" and overrides:
                    section_overrides = overrides.get(section_name) or {}
                    if f.name in section_overrides:
                        section_sources[f.name] = source_type

            if not section_sources:
                del new_sources[section_name]

        return TraccarConfigTracker(sources=new_sources)

    def _copy_sources(self) -> dict[str, dict[str, str]]:
        """Create a deep copy of current sources."""
        return {section: dict(flds) for section, flds in self.sources.items()}


@dataclass(frozen=True)
class TraccarConfig:
    """
    Global configuration for the traccarkit client.

    Aggregates all configuration sections. Access via the global `TRACCAR.config` property.

    Example:
        >>> from traccarkit import TRACCAR
        >>> TRACCAR.config.http.base_url
        'http://localhost:8082'
        >>> TRACCAR.config.retry.retry_status_codes
        (408, 429, 502, 503, 504)
    """

    sdk: SdkConfig = field(default_factory=SdkConfig.detect)
    http: HttpConfig = field(default_factory=HttpConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    push: PushConfig = field(default_factory=PushConfig)
    _tracker: TraccarConfigTracker = field(default_factory=TraccarConfigTracker, repr=False)

    @TraccarConfigTracker.track_changes("env")
    def with_env_vars(self) -> TraccarConfig:
        """Return a new config with TRACCAR_* environment variables applied on top."""
        return TraccarConfig(
            sdk=self.sdk,
            **{name: getattr(self, name).with_env_vars() for name in _SECTIONS},
        )

    @TraccarConfigTracker.track_changes("user")
    def with_section_overrides(
        self,
        *,
        http: dict[str, Any] | None = None,
        auth: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        batch: dict[str, Any] | None = None,
        cache: dict[str, Any] | None = None,
        retry: dict[str, Any] | None = None,
        push: dict[str, Any] | None = None,
    ) -> TraccarConfig:
        """
        Return a new config with overrides applied to nested sections.

        Each section dict is merged with the existing section config,
        only overriding the specified fields.

        Example:
            >>> custom = TraccarConfig().with_section_overrides(
            ...     retry={"max_retries": 5},
            ...     push={"auto_reconnect": False},
            ... )
        """
        return TraccarConfig(
            sdk=self.sdk,
            http=self.http.with_overrides(http or {}),
            auth=self.auth.with_overrides(auth or {}),
            rate_limit=self.rate_limit.with_overrides(rate_limit or {}),
            batch=self.batch.with_overrides(batch or {}),
            cache=self.cache.with_overrides(cache or {}, allow_none_fields={"directory"}),
            retry=self.retry.with_overrides(retry or {}),
            push=self.push.with_overrides(push or {}),
        )

    def explain_data(self) -> dict[str, list[ConfigEntry]]:
        """
        Return config data structured for explain output.

        Returns:
            Dict mapping section names to list of ConfigEntry objects.
        """
        result: dict[str, list[ConfigEntry]] = {}

        result["sdk"] = [
            ConfigEntry(name=f.name, value=getattr(self.sdk, f.name), source="-")
            for f in fields(self.sdk)
        ]

        for section_name in _SECTIONS:
            section_config = getattr(self, section_name)
            section_sources = self._tracker.sources.get(section_name, {})
            result[section_name] = [
                ConfigEntry(
                    name=f.name,
                    value=getattr(section_config, f.name),
                    source=section_sources.get(f.name, "default"),
                )
                for f in fields(section_config)
            ]

        return result


# =============================================================================
# Global Configuration Singleton
# =============================================================================


class _Traccar:
    """
    Singleton for client configuration.

    Use `TRACCAR.configure()` to customize settings and `TRACCAR.config`
    to access current configuration.

    Example:
        >>> from traccarkit import TRACCAR
        >>> TRACCAR.configure(auth={"token": "..."})
        >>> print(TRACCAR.config.cache.default_ttl)
    """

    def __init__(self) -> None:
        """Initialize with defaults and environment variables."""
        self._config: TraccarConfig = TraccarConfig().with_env_vars()

    def configure(
        self,
        *,
        http: dict[str, Any] | None = None,
        auth: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        batch: dict[str, Any] | None = None,
        cache: dict[str, Any] | None = None,
        retry: dict[str, Any] | None = None,
        push: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> TraccarConfig:
        """
        Configure client settings.

        Call at application startup to customize defaults.

        Args:
            http: Transport overrides (base_url, request_timeout).
            auth: Credential overrides (username, password, token).
            rate_limit: Rate limiter overrides.
            batch: Batcher overrides.
            cache: Cache overrides.
            retry: Retry policy overrides.
            push: Push channel overrides.
            allow_env_override: If True (default), env vars are used as fallback
                for fields NOT provided. If False, ignores env vars entirely.

        Returns:
            The configured TraccarConfig instance.

        Raises:
            ValueError: If any dict contains unknown field names.
            ConfigValidationError: If any config value fails validation.
        """
        base = TraccarConfig()
        if allow_env_override:
            base = base.with_env_vars()

        self._config = base.with_section_overrides(
            http=http,
            auth=auth,
            rate_limit=rate_limit,
            batch=batch,
            cache=cache,
            retry=retry,
            push=push,
        )

        return self.validate()

    @property
    def config(self) -> TraccarConfig:
        """Access current configuration (read-only)."""
        return self._config

    def reset(self) -> TraccarConfig:
        """
        Reset configuration to defaults + env vars.

        Useful for testing to ensure clean state between tests.
        """
        self._config = TraccarConfig().with_env_vars()
        return self.validate()

    def validate(self) -> TraccarConfig:
        """
        Validate current configuration.

        Raises:
            ConfigValidationError: If any config value is invalid.
        """
        for section_name in _SECTIONS:
            getattr(self._config, section_name).validate()
        return self._config

    def explain(
        self,
        output: Callable[[str], None] = print,
    ) -> None:
        """
        Print current configuration with sources.

        Args:
            output: Callable to output each line. Defaults to print.
                    Can be used with logging: `TRACCAR.explain(logger.info)`
        """
        name_width = 25
        value_width = 50
        total_width = 2 + name_width + 2 + (value_width + 2) + 1 + 8

        output("Traccar Client Configuration:")
        output("=" * total_width)

        output(f"  {'Field':<{name_width}} │ {'Value':<{value_width}} │ Source")
        output(f"--{'-' * name_width}-+{'-' * (value_width + 2)}+--------")

        for section_name, entries in self._config.explain_data().items():
            output(f"[{section_name}]")
            for entry in entries:
                dots = "." * (name_width - len(entry.name))
                value_padded = entry.formatted_value.ljust(value_width)
                marker = "✎" if entry.source not in ("default", "-") else " "
                output(f"  {entry.name} {dots} {value_padded} {marker} {entry.source}")

        output("=" * total_width)

    def __repr__(self) -> str:
        return f"TRACCAR(config={self._config!r})"


# Global singleton instance - always reflects current configuration
TRACCAR: _Traccar = _Traccar()
TRACCAR.validate()  # Validate defaults + env vars on module load
