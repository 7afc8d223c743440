"""
Response cache for the traccarkit client.

Two layers live here:

- `CacheStore`: a durable key/value store of response snapshots with TTLs,
  an in-memory layer in front of a pluggable `CacheBackend`, background expiry
  and oldest-first size eviction.
- `CachePolicy`: the read-through rules applied by the request pipeline
  (which requests and responses are cacheable, when a cached entry may replace
  a network call, conditional requests with ETags, and the offline fallback).

Persisted layout (inside any backend), all keys sharing one stable prefix:

    <prefix><cache key>  -> serialized CacheEntry (JSON)
    <prefix>keys         -> JSON list of live cache keys
    <prefix>size         -> running total payload size in bytes

Example:
    >>> store = CacheStore(default_ttl=300)
    >>> store.put(make_cache_key("GET", "/api/devices", {}), '[{"id": 1}]')
    >>> store.stats().valid_entries
    1
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, override

from traccarkit._models import ApiRequest, ApiResponse, ResponseSource
from traccarkit._utils import is_network_exception, load_json_file, save_json_file

if TYPE_CHECKING:
    from traccarkit._config import CacheConfig

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "traccar_cache_"

# Response headers kept alongside a cached payload
_EXTRACTED_HEADERS = ("Content-Type", "ETag", "Last-Modified", "Cache-Control")

_MAX_AGE_PATTERN = re.compile(r"max-age=(\d+)", re.IGNORECASE)


def make_cache_key(method: str, path: str, params: dict[str, Any] | None = None) -> str:
    """
    Derive a deterministic cache key.

    Query parameters are serialized with sorted keys, so their order never
    causes a cache miss.

    Example:
        >>> make_cache_key("get", "/api/positions", {"to": "b", "from": "a"})
        'GET|/api/positions|{"from":"a","to":"b"}'
    """
    serialized = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    return f"{method.upper()}|{path}|{serialized}"


def _path_of(key: str) -> str:
    parts = key.split("|", 2)
    return parts[1] if len(parts) == 3 else ""


def _path_matches(path: str, prefix: str) -> bool:
    """True if `prefix` equals `path` or is one of its parent segments."""
    prefix = prefix.rstrip("/") or "/"
    if prefix == "/":
        return True
    return path == prefix or path.startswith(prefix + "/")


# =============================================================================
# Entries
# =============================================================================


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached response snapshot.

    Attributes:
        key: The cache key.
        payload: Serialized response body.
        created_at: Epoch seconds when the entry was stored.
        ttl: Time-to-live in seconds.
        etag: ETag returned by the server, if any.
        headers: Selected response headers.
    """

    key: str
    payload: str
    created_at: float
    ttl: float
    etag: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def size(self) -> int:
        """Payload size in bytes (UTF-8)."""
        return len(self.payload.encode("utf-8"))

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "payload": self.payload,
            "created_at": self.created_at,
            "ttl": self.ttl,
            "etag": self.etag,
            "headers": dict(self.headers),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        """
        Rebuild an entry from `to_dict()` output.

        Raises:
            ValueError: If the data is not a well-formed entry.
        """
        if not isinstance(data, dict):
            raise ValueError("cache entry must be a JSON object")
        try:
            payload = data["payload"]
            if not isinstance(payload, str):
                raise ValueError("payload must be a string")
            headers = data.get("headers") or {}
            if not isinstance(headers, dict):
                raise ValueError("headers must be an object")
            return cls(
                key=str(data["key"]),
                payload=payload,
                created_at=float(data["created_at"]),
                ttl=float(data["ttl"]),
                etag=data.get("etag"),
                headers={str(k): str(v) for k, v in headers.items()},
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed cache entry: {e}") from e


@dataclass(frozen=True)
class CacheStats:
    """
    Snapshot of a cache store.

    Attributes:
        entries: Entries currently stored.
        valid_entries: Entries not yet expired.
        expired_entries: Expired entries still kept (offline fallback).
        size: Total payload size in bytes.
        memory_entries: Entries held in the in-memory layer.
        hits: Lookups answered by the cache.
        misses: Lookups that found nothing usable.
    """

    entries: int
    valid_entries: int
    expired_entries: int
    size: int
    memory_entries: int
    hits: int
    misses: int

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    @property
    def formatted_size(self) -> str:
        if self.size < 1024:
            return f"{self.size} B"
        if self.size < 1024 * 1024:
            return f"{self.size / 1024:.1f} KB"
        return f"{self.size / (1024 * 1024):.1f} MB"


# =============================================================================
# Backends
# =============================================================================


class CacheBackend(ABC):
    """
    Flat string key/value storage used by CacheStore for persistence.

    Implementations must be thread-safe. Failures may be raised freely: the
    store degrades them to cache misses.
    """

    @abstractmethod
    def read(self, key: str) -> str | None:
        pass

    @abstractmethod
    def write(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    def write_many(self, items: dict[str, str]) -> None:
        """Write several keys at once. Backends with costly writes should override this."""
        for key, value in items.items():
            self.write(key, value)


class InMemoryCacheBackend(CacheBackend):
    """Non-persistent backend. Data lives as long as the process."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    @override
    def read(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    @override
    def write(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    @override
    def write_many(self, items: dict[str, str]) -> None:
        with self._lock:
            self._data.update(items)

    @override
    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class FileCacheBackend(CacheBackend):
    """
    Backend persisting every key into a single JSON document on disk.

    The document is loaded once and rewritten after every change. A missing or
    unreadable file starts an empty cache.
    """

    DEFAULT_FILE_NAME = "traccar_cache.json"

    def __init__(self, file_path: Path):
        self._file_path = Path(file_path)
        self._lock = threading.Lock()
        try:
            loaded = load_json_file(self._file_path)
        except RuntimeError as e:
            logger.warning(f"⚠️ Cache file is unreadable, starting with an empty cache: {e}")
            loaded = {}
        self._data: dict[str, str] = {str(k): v for k, v in loaded.items() if isinstance(v, str)}

    @classmethod
    def in_directory(cls, directory: str | Path) -> FileCacheBackend:
        return cls(Path(directory) / cls.DEFAULT_FILE_NAME)

    @property
    def file_path(self) -> Path:
        return self._file_path

    @override
    def read(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    @override
    def write(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            save_json_file(self._data, self._file_path)

    @override
    def write_many(self, items: dict[str, str]) -> None:
        with self._lock:
            self._data.update(items)
            save_json_file(self._data, self._file_path)

    @override
    def delete(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                save_json_file(self._data, self._file_path)


# =============================================================================
# Store
# =============================================================================


@dataclass
class _EntryMeta:
    created_at: float
    ttl: float
    size: int

    def is_expired(self, now: float) -> bool:
        return now > self.created_at + self.ttl


class CacheStore:
    """
    Durable plus in-memory store of response snapshots.

    Callers always receive copies of entries, never the stored objects.
    Corrupted persisted entries are removed and treated as absent, and backend
    failures degrade to cache misses.

    Args:
        backend: Persistent storage. Defaults to an in-memory backend.
        default_ttl: TTL in seconds used when nothing more specific applies.
        max_cache_size: Total payload size in bytes before eviction kicks in.
        endpoint_ttls: TTLs keyed by path prefix; the longest matching prefix wins.
        enable_offline_mode: Keep expired entries as offline fallbacks.
        max_stale_age: Seconds past expiry an entry is kept in offline mode.
        key_prefix: Prefix for every key written to the backend.
        clock: Wall-clock time source (epoch seconds), injectable for tests.
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        default_ttl: float = 900.0,
        max_cache_size: int = 50 * 1024 * 1024,
        endpoint_ttls: dict[str, float] | None = None,
        enable_offline_mode: bool = True,
        max_stale_age: float = 7 * 24 * 3600.0,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        assert default_ttl > 0, "default_ttl must be greater than 0."
        assert max_cache_size > 0, "max_cache_size must be greater than 0."
        assert max_stale_age >= 0, "max_stale_age must be >= 0."
        assert key_prefix, "key_prefix cannot be empty."

        self._backend = backend or InMemoryCacheBackend()
        self.default_ttl = default_ttl
        self.max_cache_size = max_cache_size
        self.endpoint_ttls = dict(endpoint_ttls or {})
        self.enable_offline_mode = enable_offline_mode
        self.max_stale_age = max_stale_age
        self._prefix = key_prefix
        self._clock = clock

        self._memory: dict[str, CacheEntry] = {}
        self._meta: dict[str, _EntryMeta] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.RLock()
        self._cleanup_stop = threading.Event()
        self._cleanup_thread: threading.Thread | None = None

        self._load_index()

    @classmethod
    def from_config(
        cls,
        config: CacheConfig,
        backend: CacheBackend | None = None,
        clock: Callable[[], float] = time.time,
    ) -> CacheStore:
        """Build a store from a CacheConfig section, persisting to `config.directory` when set."""
        if backend is None and config.directory:
            backend = FileCacheBackend.in_directory(config.directory)
        return cls(
            backend=backend,
            default_ttl=config.default_ttl,
            max_cache_size=config.max_cache_size,
            endpoint_ttls=config.endpoint_ttls,
            enable_offline_mode=config.enable_offline_mode,
            max_stale_age=config.max_stale_age,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def get(self, key: str, allow_stale: bool = False, record_stats: bool = True) -> CacheEntry | None:
        """
        Look up an entry.

        Args:
            key: The cache key.
            allow_stale: Also return expired entries (offline last resort).
            record_stats: Count this lookup in the hit/miss statistics.

        Returns:
            A copy of the entry, or None if absent, corrupted or expired.
        """
        with self._lock:
            entry = self._memory.get(key)
            if entry is None and key in self._meta:
                entry = self._read_entry(key)
                if entry is not None:
                    self._memory[key] = entry

            if entry is None or (entry.is_expired(self._clock()) and not allow_stale):
                if entry is not None and not self.enable_offline_mode:
                    self._remove_locked(key)
                    self._persist_index()
                if record_stats:
                    self._misses += 1
                return None

            if record_stats:
                self._hits += 1
            return replace(entry, headers=dict(entry.headers))

    def put(
        self,
        key: str,
        payload: str,
        ttl: float | None = None,
        etag: str | None = None,
        headers: dict[str, str] | None = None,
        path: str | None = None,
    ) -> CacheEntry:
        """
        Store (or overwrite) an entry, then enforce the size limit.

        Args:
            key: The cache key.
            payload: Serialized body.
            ttl: Explicit TTL; wins over endpoint and default TTLs.
            etag: Server ETag for conditional requests.
            headers: Response headers to keep.
            path: Request path used for endpoint TTL lookup. Derived from the
                key when omitted.

        Returns:
            A copy of the stored entry.
        """
        resolved_ttl = self.resolve_ttl(path if path is not None else _path_of(key), ttl)
        entry = CacheEntry(
            key=key,
            payload=payload,
            created_at=self._clock(),
            ttl=resolved_ttl,
            etag=etag,
            headers=dict(headers or {}),
        )
        with self._lock:
            self._memory[key] = entry
            self._meta[key] = _EntryMeta(created_at=entry.created_at, ttl=entry.ttl, size=entry.size)
            self._backend_write_many({self._prefix + key: json.dumps(entry.to_dict()), **self._index_items()})
            self._enforce_size(keep=key)
        return replace(entry, headers=dict(entry.headers))

    def remove(self, key: str) -> bool:
        """Remove an entry. Returns True if it existed."""
        with self._lock:
            existed = key in self._meta
            self._remove_locked(key)
            if existed:
                self._persist_index()
            return existed

    def remove_prefix(self, path: str) -> int:
        """Remove every entry whose request path is `path` or lies below it."""
        with self._lock:
            doomed = [k for k in self._meta if _path_matches(_path_of(k), path)]
            for key in doomed:
                self._remove_locked(key)
            if doomed:
                self._persist_index()
            return len(doomed)

    def clear(self) -> None:
        """Remove every entry and reset the hit/miss counters."""
        with self._lock:
            for key in list(self._meta):
                self._remove_locked(key)
            self._memory.clear()
            self._hits = 0
            self._misses = 0
            self._persist_index()

    def record_lookup(self, hit: bool) -> None:
        """Count a lookup whose outcome was decided outside `get()`."""
        with self._lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    def stats(self) -> CacheStats:
        with self._lock:
            now = self._clock()
            expired = sum(1 for m in self._meta.values() if m.is_expired(now))
            return CacheStats(
                entries=len(self._meta),
                valid_entries=len(self._meta) - expired,
                expired_entries=expired,
                size=self.total_size,
                memory_entries=len(self._memory),
                hits=self._hits,
                misses=self._misses,
            )

    @property
    def total_size(self) -> int:
        with self._lock:
            return sum(m.size for m in self._meta.values())

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._meta)

    def resolve_ttl(self, path: str | None, ttl: float | None = None) -> float:
        """
        Resolve the TTL for a path.

        Order: explicit `ttl` > longest matching endpoint prefix > default TTL.
        """
        if ttl is not None:
            return ttl
        endpoint_ttl = self.endpoint_ttl(path)
        return endpoint_ttl if endpoint_ttl is not None else self.default_ttl

    def endpoint_ttl(self, path: str | None) -> float | None:
        """Return the TTL of the longest configured prefix matching `path`, if any."""
        if not path:
            return None
        matches = [prefix for prefix in self.endpoint_ttls if _path_matches(path, prefix)]
        if not matches:
            return None
        return self.endpoint_ttls[max(matches, key=len)]

    def cleanup_expired(self) -> int:
        """
        Remove expired entries.

        In offline mode expired entries are kept for `max_stale_age` seconds
        past their expiry so they remain usable as a fallback.

        Returns:
            Number of removed entries.
        """
        with self._lock:
            now = self._clock()
            grace = self.max_stale_age if self.enable_offline_mode else 0.0
            doomed = [
                key for key, meta in self._meta.items()
                if now > meta.created_at + meta.ttl + grace
            ]
            for key in doomed:
                self._remove_locked(key)
            if doomed:
                self._persist_index()
                logger.debug(f"Cache cleanup removed {len(doomed)} expired entries")
            return len(doomed)

    def start_background_cleanup(self, interval: float) -> None:
        """Run `cleanup_expired()` every `interval` seconds on a daemon thread."""
        assert interval > 0, "interval must be greater than 0."
        with self._lock:
            if self._cleanup_thread is not None and self._cleanup_thread.is_alive():
                return
            self._cleanup_stop.clear()
            self._cleanup_thread = threading.Thread(
                target=self._run_cleanup,
                args=(interval,),
                name="traccarkit-cache-cleanup",
                daemon=True,
            )
            self._cleanup_thread.start()

    def close(self) -> None:
        """Stop the background cleanup thread."""
        self._cleanup_stop.set()
        thread = self._cleanup_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        self._cleanup_thread = None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _run_cleanup(self, interval: float) -> None:
        while not self._cleanup_stop.wait(interval):
            try:
                self.cleanup_expired()
            except Exception as e:
                logger.warning(f"⚠️ Cache cleanup failed: {e}", exc_info=logger.isEnabledFor(logging.DEBUG))

    def _load_index(self) -> None:
        raw_keys = self._backend_read(self._prefix + "keys")
        if not raw_keys:
            return
        try:
            keys = json.loads(raw_keys)
            if not isinstance(keys, list):
                raise ValueError("keys index must be a list")
        except ValueError as e:
            logger.warning(f"⚠️ Cache key index is corrupted, starting with an empty cache: {e}")
            self._backend_delete(self._prefix + "keys")
            self._backend_delete(self._prefix + "size")
            return

        for key in keys:
            entry = self._read_entry(str(key), known=False)
            if entry is not None:
                self._meta[entry.key] = _EntryMeta(created_at=entry.created_at, ttl=entry.ttl, size=entry.size)
        self._persist_index()

    def _read_entry(self, key: str, known: bool = True) -> CacheEntry | None:
        raw = self._backend_read(self._prefix + key)
        if raw is None:
            if known:
                self._meta.pop(key, None)
                self._persist_index()
            return None
        try:
            entry = CacheEntry.from_dict(json.loads(raw))
            if entry.key != key:
                raise ValueError(f"entry key mismatch ({entry.key!r})")
            return entry
        except ValueError as e:
            logger.warning(f"⚠️ Removing corrupted cache entry {key!r}: {e}")
            self._backend_delete(self._prefix + key)
            if known:
                self._meta.pop(key, None)
                self._persist_index()
            return None

    def _remove_locked(self, key: str) -> None:
        self._memory.pop(key, None)
        self._meta.pop(key, None)
        self._backend_delete(self._prefix + key)

    def _enforce_size(self, keep: str) -> None:
        evicted = 0
        while self.total_size > self.max_cache_size:
            candidates = [k for k in self._meta if k != keep]
            if not candidates:
                break
            oldest = min(candidates, key=lambda k: self._meta[k].created_at)
            self._remove_locked(oldest)
            evicted += 1
        if evicted:
            self._persist_index()
            logger.debug(f"Cache size limit reached, evicted {evicted} oldest entries")

    def _index_items(self) -> dict[str, str]:
        return {
            self._prefix + "keys": json.dumps(list(self._meta)),
            self._prefix + "size": str(sum(m.size for m in self._meta.values())),
        }

    def _persist_index(self) -> None:
        self._backend_write_many(self._index_items())

    def _backend_read(self, key: str) -> str | None:
        try:
            return self._backend.read(key)
        except Exception as e:
            logger.warning(f"⚠️ Cache backend read failed for {key!r}: {e}")
            return None

    def _backend_write(self, key: str, value: str) -> None:
        try:
            self._backend.write(key, value)
        except Exception as e:
            logger.warning(f"⚠️ Cache backend write failed for {key!r}: {e}")

    def _backend_write_many(self, items: dict[str, str]) -> None:
        try:
            self._backend.write_many(items)
        except Exception as e:
            logger.warning(f"⚠️ Cache backend write failed for {len(items)} keys: {e}")

    def _backend_delete(self, key: str) -> None:
        try:
            self._backend.delete(key)
        except Exception as e:
            logger.warning(f"⚠️ Cache backend delete failed for {key!r}: {e}")


# =============================================================================
# Read-through Policy
# =============================================================================


@dataclass(frozen=True)
class CacheLookup:
    """
    Result of consulting the cache before a network call.

    Attributes:
        response: A cached response that replaces the network call, if any.
        entry: The entry found (fresh or stale), used for ETags and 304 handling.
    """

    response: ApiResponse | None = None
    entry: CacheEntry | None = None

    @property
    def conditional_headers(self) -> dict[str, str]:
        """`If-None-Match` header when the cached entry carries an ETag."""
        if self.entry is not None and self.entry.etag:
            return {"If-None-Match": self.entry.etag}
        return {}


def _always_available() -> bool:
    return True


class CachePolicy:
    """
    Read-through caching rules applied by the request pipeline.

    - Only cacheable methods (GET) on endpoints outside `non_cacheable_endpoints`
      are looked up and stored.
    - A fresh entry replaces the network call when offline mode is enabled or
      the `network_available` hook reports the network as down.
    - Only 2xx responses are stored, and never when Cache-Control carries
      no-cache, no-store or private. `max-age` sets the TTL when no per-call or
      endpoint TTL applies.
    - A 304 Not Modified is answered from the cached entry.
    - A connectivity failure is answered from the cached entry, even expired,
      when offline mode is enabled.

    Args:
        store: The backing CacheStore.
        enabled: Master switch.
        cacheable_methods: Methods eligible for caching.
        non_cacheable_endpoints: Path fragments never cached.
        respect_cache_headers: Honor Cache-Control directives.
        enable_offline_mode: Serve cache first and fall back to stale data.
        network_available: Connectivity probe. Defaults to always available.
    """

    def __init__(
        self,
        store: CacheStore,
        enabled: bool = True,
        cacheable_methods: Iterable[str] = ("GET",),
        non_cacheable_endpoints: Iterable[str] = ("/api/session", "/login", "/logout"),
        respect_cache_headers: bool = True,
        enable_offline_mode: bool = True,
        network_available: Callable[[], bool] = _always_available,
    ):
        assert store is not None, "store cannot be None."
        self.store = store
        self.enabled = enabled
        self.cacheable_methods = frozenset(m.upper() for m in cacheable_methods)
        self.non_cacheable_endpoints = tuple(non_cacheable_endpoints)
        self.respect_cache_headers = respect_cache_headers
        self.enable_offline_mode = enable_offline_mode
        self.network_available = network_available

    @classmethod
    def from_config(
        cls,
        config: CacheConfig,
        store: CacheStore,
        network_available: Callable[[], bool] = _always_available,
    ) -> CachePolicy:
        return cls(
            store=store,
            enabled=config.enabled,
            non_cacheable_endpoints=config.non_cacheable_endpoints,
            respect_cache_headers=config.respect_cache_headers,
            enable_offline_mode=config.enable_offline_mode,
            network_available=network_available,
        )

    def key_for(self, request: ApiRequest) -> str:
        return make_cache_key(request.method, request.path, request.params)

    def is_cacheable(self, request: ApiRequest) -> bool:
        return (
            self.enabled
            and request.use_cache
            and request.method in self.cacheable_methods
            and not any(fragment in request.path for fragment in self.non_cacheable_endpoints)
        )

    def lookup(self, request: ApiRequest) -> CacheLookup:
        """Consult the cache before the network call."""
        if not self.is_cacheable(request):
            return CacheLookup()

        key = self.key_for(request)
        fresh = self.store.get(key, record_stats=False)
        network_up = self._is_network_available()

        # A fresh entry that is revalidated online still costs a network call
        served_fresh = fresh is not None and (self.enable_offline_mode or not network_up)
        self.store.record_lookup(served_fresh)
        if fresh is not None:
            if served_fresh:
                logger.debug(f"{request.id[:26]:<26} | CACHE | HIT {request.method} {request.path}")
                return CacheLookup(response=self._to_response(request, fresh, ResponseSource.CACHE), entry=fresh)
            return CacheLookup(entry=fresh)

        stale = self.store.get(key, allow_stale=True, record_stats=False) if self.enable_offline_mode else None
        if stale is not None and not network_up:
            logger.info(f"{request.id[:26]:<26} | CACHE | Network unavailable, serving stale {request.path}")
            return CacheLookup(response=self._to_response(request, stale, ResponseSource.OFFLINE_FALLBACK), entry=stale)
        return CacheLookup(entry=stale)

    def store_response(self, request: ApiRequest, response: ApiResponse) -> bool:
        """
        Store a live response when it is cache-eligible.

        Returns:
            True if the response was stored.
        """
        if not self.is_cacheable(request) or not response.is_success():
            return False

        cache_control = (response.headers.get("Cache-Control") or "").lower()
        if self.respect_cache_headers and any(
            directive in cache_control for directive in ("no-cache", "no-store", "private")
        ):
            return False

        ttl = request.ttl
        if ttl is None and self.respect_cache_headers and self.store.endpoint_ttl(request.path) is None:
            match = _MAX_AGE_PATTERN.search(cache_control)
            if match and int(match.group(1)) > 0:
                ttl = float(match.group(1))

        headers = {name: response.headers[name] for name in _EXTRACTED_HEADERS if name in response.headers}
        self.store.put(
            self.key_for(request),
            response.text,
            ttl=ttl,
            etag=response.headers.get("ETag"),
            headers=headers,
            path=request.path,
        )
        return True

    def revalidated(self, request: ApiRequest, entry: CacheEntry) -> ApiResponse:
        """Answer a 304 Not Modified from `entry`, refreshing its lifetime."""
        refreshed = self.store.put(
            entry.key,
            entry.payload,
            ttl=request.ttl,
            etag=entry.etag,
            headers=entry.headers,
            path=request.path,
        )
        return self._to_response(request, refreshed, ResponseSource.CACHE)

    def fallback(self, request: ApiRequest, error: BaseException) -> ApiResponse | None:
        """
        Offline last resort: serve the cached entry (even expired) after a connectivity failure.

        Returns:
            The fallback response, or None if offline mode is disabled, the
            error is not a connectivity failure, or nothing is cached.
        """
        if not self.enable_offline_mode or not self.is_cacheable(request) or not is_network_exception(error):
            return None
        entry = self.store.get(self.key_for(request), allow_stale=True)
        if entry is None:
            return None
        logger.warning(
            f"{request.id[:26]:<26} | CACHE | ⚠️ Network error, serving cached {request.path} "
            f"from {entry.created_at:.0f}: {error}"
        )
        return self._to_response(request, entry, ResponseSource.OFFLINE_FALLBACK)

    def invalidate(self, path: str) -> int:
        """Drop every cached entry for `path` and the paths below it."""
        return self.store.remove_prefix(path)

    def _is_network_available(self) -> bool:
        try:
            return bool(self.network_available())
        except Exception as e:
            logger.warning(f"⚠️ Network availability probe failed, assuming available: {e}")
            return True

    @staticmethod
    def _to_response(request: ApiRequest, entry: CacheEntry, source: ResponseSource) -> ApiResponse:
        return ApiResponse.from_cached(
            request,
            payload=entry.payload,
            headers=entry.headers,
            cached_at=entry.created_at,
            source=source,
        )
