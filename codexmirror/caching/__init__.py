"""Caching package for codexmirror."""

from .store import (
    CacheEvent,
    CacheBackendError,
    CachedEntry,
    CacheBackend,
    MemoryBackend,
    RedisBackend,
    CacheStore,
    create_cache_backend,
    get_cache_store,
    reset_cache_store
)

__all__ = [
    'CacheEvent',
    'CacheBackendError',
    'CachedEntry',
    'CacheBackend',
    'MemoryBackend',
    'RedisBackend',
    'CacheStore',
    'create_cache_backend',
    'get_cache_store',
    'reset_cache_store'
]
