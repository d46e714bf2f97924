"""TTL memoization over a pluggable key-value backend.

``CacheStore.memoize`` wraps an async function so that its results are kept
in a backend as ``CachedEntry`` records and served again while they are
younger than a caller-supplied max age.
"""

import gzip
import inspect
import logging
import pickle
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..config import CacheBackendType, MirrorSettings, get_settings
from ..observability.metrics import record_cache_event

logger = logging.getLogger(__name__)


class CacheEvent(str, Enum):
    """Events emitted by a memoized function."""
    HIT = "hit"
    MISS = "miss"
    STALE = "stale"
    STORE = "store"
    SKIP_STORE = "skip-store"


class CacheBackendError(Exception):
    """Raised when the cache backend cannot be read or written."""


@dataclass
class CachedEntry:
    """A stored value and the epoch second it was stored at."""
    value: Any
    stored_at: float


class CacheBackend(ABC):
    """Async key-value backend."""

    @abstractmethod
    async def get(self, key: str) -> Optional[CachedEntry]:
        ...

    @abstractmethod
    async def set(self, key: str, value: CachedEntry) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


class MemoryBackend(CacheBackend):
    """In-process dictionary backend, used locally and in tests."""

    def __init__(self):
        self.cache: Dict[str, CachedEntry] = {}

    async def get(self, key: str) -> Optional[CachedEntry]:
        return self.cache.get(key)

    async def set(self, key: str, value: CachedEntry) -> None:
        self.cache[key] = value

    async def delete(self, key: str) -> None:
        self.cache.pop(key, None)

    def size(self) -> int:
        """Get current cache size."""
        return len(self.cache)

    def clear(self) -> None:
        """Clear all cache entries."""
        self.cache.clear()


class RedisBackend(CacheBackend):
    """Redis backend storing pickled entries, gzip-compressed when large."""

    def __init__(self, redis_url: str, compression_threshold: int = 1024,
                 client: Optional[aioredis.Redis] = None):
        self.redis_url = redis_url
        self.compression_threshold = compression_threshold
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=False,  # We handle encoding ourselves
            socket_connect_timeout=5,
            socket_timeout=5
        )

    def _serialize_value(self, value: CachedEntry) -> bytes:
        """Serialize value for storage."""
        data = pickle.dumps(value)

        if len(data) > self.compression_threshold:
            return b'compressed:' + gzip.compress(data)

        return b'raw:' + data

    def _deserialize_value(self, data: bytes) -> CachedEntry:
        """Deserialize value from storage."""
        if data.startswith(b'compressed:'):
            data = gzip.decompress(data[11:])
        elif data.startswith(b'raw:'):
            data = data[4:]

        return pickle.loads(data)

    async def get(self, key: str) -> Optional[CachedEntry]:
        try:
            data = await self.client.get(key)
        except RedisError as e:
            raise CacheBackendError(f"Redis get failed for key {key}: {e}") from e

        if data is None:
            return None
        try:
            return self._deserialize_value(data)
        except (pickle.UnpicklingError, OSError, EOFError, AttributeError) as e:
            raise CacheBackendError(f"Corrupt cache entry for key {key}: {e}") from e

    async def set(self, key: str, value: CachedEntry) -> None:
        try:
            await self.client.set(key, self._serialize_value(value))
        except RedisError as e:
            raise CacheBackendError(f"Redis set failed for key {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            raise CacheBackendError(f"Redis delete failed for key {key}: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()


KeySpec = Union[str, Callable[..., Union[str, Awaitable[str]]]]
MaxAgeSpec = Union[float, Callable[..., float]]
EventHook = Callable[..., None]


class CacheStore:
    """Memoizes async functions against a ``CacheBackend``."""

    def __init__(self, backend: CacheBackend, clock: Callable[[], float] = time.time):
        self.backend = backend
        self.clock = clock

    def memoize(self,
                fn: Callable[..., Awaitable[Any]],
                key: KeySpec,
                max_age: MaxAgeSpec,
                should_cache: Optional[Callable[..., bool]] = None,
                on_event: Optional[EventHook] = None) -> Callable[..., Awaitable[Any]]:
        """Wrap ``fn`` with max-age based caching.

        Args:
            fn: The async function to cache
            key: Cache key, or a callable computing it from the call arguments
            max_age: Max age in seconds, or a callable computing it from the call arguments
            should_cache: Optional predicate ``(value, *args)``; False skips storing
            on_event: Optional hook ``(event, {"key", "max_age"}, *args)``

        Returns:
            An async function returning cached or fresh values

        Backend failures surface as ``CacheBackendError``.
        """

        async def resolve_key(*args) -> str:
            if not callable(key):
                return key
            result = key(*args)
            if inspect.isawaitable(result):
                result = await result
            return result

        def resolve_max_age(*args) -> float:
            return max_age(*args) if callable(max_age) else max_age

        def emit(event: CacheEvent, details: Dict[str, Any], *args) -> None:
            record_cache_event(event.value)
            logger.debug(f"Cache {event.value} for {details['key']}")
            if on_event:
                on_event(event, details, *args)

        @wraps(fn)
        async def memoized(*args):
            cache_key = await resolve_key(*args)
            ttl = resolve_max_age(*args)
            details = {'key': cache_key, 'max_age': ttl}

            entry = await self.backend.get(cache_key)

            if entry is not None:
                age = self.clock() - entry.stored_at
                if age < ttl:
                    emit(CacheEvent.HIT, details, *args)
                    return entry.value

                emit(CacheEvent.STALE, details, *args)
                await self.backend.delete(cache_key)
            else:
                emit(CacheEvent.MISS, details, *args)

            value = await fn(*args)

            if should_cache is not None and not should_cache(value, *args):
                emit(CacheEvent.SKIP_STORE, details, *args)
                return value

            await self.backend.set(cache_key, CachedEntry(value=value, stored_at=self.clock()))
            emit(CacheEvent.STORE, details, *args)

            return value

        return memoized


def create_cache_backend(settings: MirrorSettings) -> CacheBackend:
    """Build the backend named by the settings."""
    if settings.cache_backend == CacheBackendType.REDIS:
        logger.info(f"Using Redis cache backend at {settings.redis_url}")
        return RedisBackend(settings.redis_url, settings.compression_threshold)

    logger.info("Using in-memory cache backend")
    return MemoryBackend()


# Process-wide store, built once from the settings
_cache_store: Optional[CacheStore] = None


def get_cache_store(settings: Optional[MirrorSettings] = None) -> CacheStore:
    """Get the process-wide cache store, creating it on first use."""
    global _cache_store
    if _cache_store is None:
        _cache_store = CacheStore(create_cache_backend(settings or get_settings()))
    return _cache_store


def reset_cache_store():
    """Drop the process-wide cache store."""
    global _cache_store
    _cache_store = None
