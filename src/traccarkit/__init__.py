"""
traccarkit: a resilient Python client for the Traccar tracking server.

Sits between application code and the Traccar REST API and push socket,
adding rate limiting, request batching, read-through/offline caching, retries
with backoff and a self-healing WebSocket channel.

Quick Start:
    >>> from traccarkit import TRACCAR, create_pipeline
    >>> TRACCAR.configure(
    ...     http={"base_url": "https://demo.traccar.org"},
    ...     auth={"username": "admin@example.com", "password": "secret"},
    ... )
    >>> with create_pipeline() as client:
    ...     response = client.get("/api/devices")
    ...     print(response.json(), response.source)

Global Configuration:
    >>> from traccarkit import TRACCAR
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> ttl = TRACCAR.config.cache.default_ttl
    >>>
    >>> # Custom configuration
    >>> TRACCAR.configure(
    ...     rate_limit={"max_requests": 60, "time_window": 60},
    ...     cache={"endpoint_ttls": {"/api/positions": 30}},
    ...     retry={"max_retries": 5},
    ... )

Main Classes:
    - RequestPipeline: Cache -> batch -> rate limit -> retry around every call.
    - ApiRequest: A logical request to the REST API.
    - ApiResponse: A live or cached response, tagged with its ResponseSource.
    - PushChannel: WebSocket channel with typed broadcast streams (see traccarkit.push).

Building Blocks:
    - SlidingWindowRateLimiter: Sliding-window admission control with a FIFO queue.
    - RequestBatcher: Bounded concurrent fan-out of same-endpoint reads.
    - CacheStore / CachePolicy: Durable response cache and its read-through rules.
    - Retrying: Context manager for retry with linear backoff.

Configuration:
    - TRACCAR: Global singleton for configuration.
    - TraccarConfig: Root configuration dataclass.
    - HttpConfig, AuthConfig, RateLimitConfig, BatchConfig, CacheConfig,
      RetryConfig, PushConfig: Configuration sections.
    - ConfigEnvVarError / ConfigValidationError: Configuration errors.

Authentication:
    - AuthProvider: Abstract base class for authentication providers.
    - BasicAuthProvider / TokenAuthProvider / StoredCredentialsAuthProvider.
    - SecretStore / InMemorySecretStore: Credential persistence.
    - create_auth_provider: Helper to create an auth provider from config.

Errors:
    - TraccarError and its subclasses (NetworkError, ServerError, RateLimitedError,
      AuthenticationError, AuthorizationError, ValidationError, NotFoundError,
      HttpStatusError, RequestCancelledError).
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("traccarkit")

from traccarkit._auth import (
    AuthProvider,
    BasicAuthProvider,
    Credentials,
    InMemorySecretStore,
    SecretStore,
    StoredCredentialsAuthProvider,
    TokenAuthProvider,
    create_auth_provider,
)
from traccarkit._batch import BatchStats, RequestBatcher
from traccarkit._cache import (
    CacheBackend,
    CacheEntry,
    CachePolicy,
    CacheStats,
    CacheStore,
    FileCacheBackend,
    InMemoryCacheBackend,
    make_cache_key,
)
from traccarkit._config import (
    TRACCAR,
    AuthConfig,
    BatchConfig,
    CacheConfig,
    ConfigEntry,
    ConfigEnvVarError,
    ConfigValidationError,
    HttpConfig,
    PushConfig,
    RateLimitConfig,
    RetryConfig,
    SdkConfig,
    TraccarConfig,
)
from traccarkit._errors import (
    AuthenticationError,
    AuthorizationError,
    HttpStatusError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    RequestCancelledError,
    ServerError,
    TraccarError,
    ValidationError,
)
from traccarkit._http import HttpClient, RequestsHttpClient
from traccarkit._models import (
    ApiRequest,
    ApiResponse,
    Device,
    Event,
    Position,
    ResponseSource,
)
from traccarkit._pipeline import RequestPipeline, create_pipeline
from traccarkit._rate_limit import RateLimitStatus, SlidingWindowRateLimiter
from traccarkit._retry import RetryableError, RetryState, Retrying
from traccarkit.push import ChannelState, PushChannel

__all__ = [
    "__version__",
    # Configuration
    "TRACCAR",
    "TraccarConfig",
    "SdkConfig",
    "ConfigEntry",
    "ConfigEnvVarError",
    "ConfigValidationError",
    "HttpConfig",
    "AuthConfig",
    "RateLimitConfig",
    "BatchConfig",
    "CacheConfig",
    "RetryConfig",
    "PushConfig",
    # Pipeline
    "RequestPipeline",
    "create_pipeline",
    "ApiRequest",
    "ApiResponse",
    "ResponseSource",
    # Authentication
    "AuthProvider",
    "BasicAuthProvider",
    "TokenAuthProvider",
    "StoredCredentialsAuthProvider",
    "Credentials",
    "SecretStore",
    "InMemorySecretStore",
    "create_auth_provider",
    # HTTP Client
    "HttpClient",
    "RequestsHttpClient",
    # Rate limiting
    "SlidingWindowRateLimiter",
    "RateLimitStatus",
    # Batching
    "RequestBatcher",
    "BatchStats",
    # Cache
    "CacheStore",
    "CachePolicy",
    "CacheEntry",
    "CacheStats",
    "CacheBackend",
    "InMemoryCacheBackend",
    "FileCacheBackend",
    "make_cache_key",
    # Retry
    "Retrying",
    "RetryableError",
    "RetryState",
    # Errors
    "TraccarError",
    "NetworkError",
    "ServerError",
    "RateLimitedError",
    "AuthenticationError",
    "AuthorizationError",
    "ValidationError",
    "NotFoundError",
    "HttpStatusError",
    "RequestCancelledError",
    # Push
    "PushChannel",
    "ChannelState",
    # Models
    "Device",
    "Position",
    "Event",
]
