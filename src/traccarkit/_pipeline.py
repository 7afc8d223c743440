"""
Resilient request pipeline for the Traccar REST API.

`RequestPipeline` composes the cache policy, the batcher, the rate limiter and
the retry layer around a single outbound call, always in the same order:

    1. consult the cache (a fresh entry may replace the network call)
    2. hand batchable reads to the batcher, send everything else directly
    3. per attempt: acquire a rate-limit permit, send, classify the status
    4. retry transient failures (the count travels with the request)
    5. on a connectivity failure, fall back to cached data in offline mode
    6. on success, update the cache (a 304 is answered from the cache)

Every dependency is passed in explicitly; `create_pipeline()` wires one
pipeline per logical client from the global configuration.

Example:
    >>> from traccarkit import TRACCAR, create_pipeline
    >>> TRACCAR.configure(
    ...     http={"base_url": "https://demo.traccar.org"},
    ...     auth={"username": "admin@example.com", "password": "secret"},
    ... )
    >>> with create_pipeline() as client:
    ...     devices = client.get("/api/devices").json()
"""

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from traccarkit._batch import BatchStats, RequestBatcher
from traccarkit._cache import CacheLookup, CachePolicy, CacheStats, CacheStore
from traccarkit._errors import (
    AuthenticationError,
    RequestCancelledError,
    error_from_exception,
    error_from_response,
)
from traccarkit._http import HttpClient, RequestsHttpClient
from traccarkit._models import ApiRequest, ApiResponse
from traccarkit._rate_limit import RateLimitStatus, SlidingWindowRateLimiter
from traccarkit._retry import Retrying

if TYPE_CHECKING:
    from traccarkit._auth import AuthProvider, SecretStore
    from traccarkit._config import BatchConfig, TraccarConfig

logger = logging.getLogger(__name__)


class RequestPipeline:
    """
    Client-side pipeline between application code and the Traccar REST API.

    Args:
        http_client: Authenticated transport.
        base_url: Server root URL (e.g. "https://demo.traccar.org").
        rate_limiter: Admission control applied to every upstream attempt.
        batch_config: Enables request coalescing with the given settings.
        cache_policy: Read-through cache rules (and the store behind them).
        max_retries: Retries per logical request (0 disables retries).
        retry_delay: Base delay of the linear backoff, in seconds.
        retry_status_codes: HTTP statuses considered transient.
        request_timeout: Transport timeout in seconds.
    """

    def __init__(
        self,
        http_client: HttpClient,
        base_url: str,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        batch_config: "BatchConfig | None" = None,
        cache_policy: CachePolicy | None = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        retry_status_codes: tuple[int, ...] = (408, 429, 502, 503, 504),
        request_timeout: float = 30.0,
    ):
        assert http_client is not None, "http_client cannot be None."
        assert base_url, "base_url cannot be empty."
        assert max_retries >= 0, "max_retries must be >= 0."
        assert request_timeout > 0, "request_timeout must be greater than 0."

        self._http = http_client
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.cache_policy = cache_policy
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_status_codes = tuple(retry_status_codes)
        self.request_timeout = request_timeout

        self.batcher: RequestBatcher | None = None
        if batch_config is not None and batch_config.enabled:
            self.batcher = RequestBatcher.from_config(batch_config, execute=self.send)

        self._closed = False
        self._close_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def execute(self, request: ApiRequest) -> ApiResponse:
        """
        Run `request` through the pipeline.

        Returns:
            The live response, or a cached one tagged with its source.

        Raises:
            TraccarError: The classified failure, unchanged after retries.
            RequestCancelledError: The pipeline was closed.
        """
        if self._closed:
            raise RequestCancelledError("Request pipeline is closed")

        lookup = self.cache_policy.lookup(request) if self.cache_policy else CacheLookup()
        if lookup.response is not None:
            return lookup.response

        outbound = request.with_headers(lookup.conditional_headers) if lookup.conditional_headers else request
        try:
            if self.batcher is not None and self.batcher.is_batchable(outbound):
                response = self.batcher.submit(outbound).result()
            else:
                response = self.send(outbound)
        except Exception as e:
            fallback = self.cache_policy.fallback(request, e) if self.cache_policy else None
            if fallback is not None:
                return fallback
            raise

        if self.cache_policy is not None:
            if response.status_code == 304 and lookup.entry is not None:
                logger.debug(f"{request.id[:26]:<26} | HTTP | 304 Not Modified, serving cached {request.path}")
                return self.cache_policy.revalidated(request, lookup.entry)
            if response.is_success():
                if self.cache_policy.is_cacheable(request):
                    self.cache_policy.store_response(request, response)
                elif request.method in ("POST", "PUT", "DELETE"):
                    self.cache_policy.invalidate(self._collection_path(request.path))

        return response

    def send(self, request: ApiRequest) -> ApiResponse:
        """
        Send `request` upstream with rate limiting and retries, bypassing cache and batching.

        The retry count is kept in `request.retry_state`, so sending the same
        request again continues the count instead of restarting it.
        """
        for attempt in Retrying(
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            retry_on_status_codes=self.retry_status_codes,
            state=request.retry_state,
            logger_prefix=f"{request.id[:26]:<26} | HTTP",
        ):
            with attempt:
                return self._send_once(request)

        # It should never happen
        raise RuntimeError(
            "Unexpected error while sending request: "
            "reached end of `send` method without returning a response."
        )

    def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        ttl: float | None = None,
        use_cache: bool = True,
    ) -> ApiResponse:
        return self.execute(ApiRequest("GET", path, params=params, ttl=ttl, use_cache=use_cache))

    def post(
        self,
        path: str,
        data: Any = None,
        params: dict[str, Any] | None = None,
        form: bool = False,
    ) -> ApiResponse:
        return self.execute(ApiRequest("POST", path, params=params, data=data, form=form))

    def put(self, path: str, data: Any = None, params: dict[str, Any] | None = None) -> ApiResponse:
        return self.execute(ApiRequest("PUT", path, params=params, data=data))

    def delete(self, path: str, params: dict[str, Any] | None = None) -> ApiResponse:
        return self.execute(ApiRequest("DELETE", path, params=params))

    def invalidate(self, path: str) -> int:
        """Drop cached responses for `path` and everything below it."""
        return self.cache_policy.invalidate(path) if self.cache_policy else 0

    def flush(self) -> None:
        """Flush pending batch groups and wait for their results."""
        if self.batcher is not None:
            self.batcher.flush_all()

    def rate_limit_status(self) -> RateLimitStatus | None:
        return self.rate_limiter.status() if self.rate_limiter else None

    def batch_stats(self) -> BatchStats | None:
        return self.batcher.stats() if self.batcher else None

    def cache_stats(self) -> CacheStats | None:
        return self.cache_policy.store.stats() if self.cache_policy else None

    def close(self) -> None:
        """
        Release every resource.

        Pending batch members and queued rate-limit tickets are rejected with
        RequestCancelledError; timers and background threads are stopped.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        if self.batcher is not None:
            self.batcher.clear()
        if self.rate_limiter is not None:
            self.rate_limiter.close()
        if self.batcher is not None:
            self.batcher.close()
        if self.cache_policy is not None:
            self.cache_policy.store.close()
        self._http.close()
        logger.debug("Request pipeline closed")

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "RequestPipeline":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _send_once(self, request: ApiRequest) -> ApiResponse:
        if self._closed:
            raise RequestCancelledError("Request pipeline is closed")
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()

        url = f"{self.base_url}{request.path}"
        logger.debug(f"{request.id[:26]:<26} | HTTP | {request.method} {request.path} (attempt {request.retry_state.attempt_number + 1})")
        try:
            http_response = self._http.request(
                request.method,
                url,
                params=request.params,
                data=request.data,
                headers=request.headers,
                timeout=self.request_timeout,
                form=request.form,
            )
        except Exception as e:
            classified = error_from_exception(e)
            if classified is e:
                raise
            raise classified from e

        if http_response.status_code >= 400:
            error = error_from_response(http_response)
            if isinstance(error, AuthenticationError):
                logger.warning(f"{request.id[:26]:<26} | HTTP | ⚠️ Credentials rejected for {request.path}")
            raise error

        logger.debug(f"{request.id[:26]:<26} | HTTP | {request.method} {request.path} -> {http_response.status_code}")
        return ApiResponse.from_http_response(request, http_response)

    @staticmethod
    def _collection_path(path: str) -> str:
        """'/api/devices/12' -> '/api/devices'."""
        segments = [s for s in path.split("/") if s]
        return "/" + "/".join(segments[:2]) if segments else "/"


def create_pipeline(
    config: "TraccarConfig | None" = None,
    auth_provider: "AuthProvider | None" = None,
    secret_store: "SecretStore | None" = None,
    http_client: HttpClient | None = None,
    network_available: Callable[[], bool] | None = None,
) -> RequestPipeline:
    """
    Build a RequestPipeline from configuration.

    Args:
        config: Configuration to use. Defaults to TRACCAR.config.
        auth_provider: Explicit credentials. Defaults to `create_auth_provider()`.
        secret_store: Store consulted for credentials when none are configured.
        http_client: Explicit transport. Defaults to RequestsHttpClient.
        network_available: Connectivity probe for the cache policy.

    Returns:
        A pipeline owning its own limiter, batcher and cache.
    """
    if config is None:
        from traccarkit._config import TRACCAR

        config = TRACCAR.config

    if http_client is None:
        if auth_provider is None:
            from traccarkit._auth import create_auth_provider

            auth_provider = create_auth_provider(config.auth, secret_store=secret_store)
        http_client = RequestsHttpClient(auth_provider=auth_provider)

    rate_limiter = None
    if config.rate_limit.enabled:
        rate_limiter = SlidingWindowRateLimiter.from_config(config.rate_limit)

    cache_policy = None
    if config.cache.enabled:
        store = CacheStore.from_config(config.cache)
        if config.cache.cleanup_interval > 0:
            store.start_background_cleanup(config.cache.cleanup_interval)
        if network_available is not None:
            cache_policy = CachePolicy.from_config(config.cache, store, network_available=network_available)
        else:
            cache_policy = CachePolicy.from_config(config.cache, store)

    return RequestPipeline(
        http_client=http_client,
        base_url=config.http.base_url,
        rate_limiter=rate_limiter,
        batch_config=config.batch if config.batch.enabled else None,
        cache_policy=cache_policy,
        max_retries=config.retry.max_retries,
        retry_delay=config.retry.retry_delay,
        retry_status_codes=config.retry.retry_status_codes,
        request_timeout=config.http.request_timeout,
    )
