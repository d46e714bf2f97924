"""Runtime settings for codexmirror.

Settings are resolved once from the environment at startup and handed to the
cache store, render pool registry and document resolver.
"""

import os
import logging
from typing import Optional
from enum import Enum
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


DEFAULT_CODEX_ROOT_URL = "https://cumulocity.com/codex/"
DEFAULT_LLMS_URL = "https://cumulocity.com/codex/llms.txt"


class CacheBackendType(str, Enum):
    """Supported cache backends."""
    MEMORY = "memory"
    REDIS = "redis"


class MirrorSettings(BaseModel):
    """Settings for the resolution pipeline and cache."""

    # Cache configuration
    cache_backend: CacheBackendType = Field(default=CacheBackendType.MEMORY, description="Cache backend type")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    compression_threshold: int = Field(default=1024, description="Pickled size in bytes above which values are gzipped")

    # Cache TTL settings (in seconds)
    document_cache_ttl: int = Field(default=60 * 60 * 24, description="Rendered document TTL")
    raw_cache_ttl: int = Field(default=60 * 60 * 2, description="Raw fetch TTL")
    structure_cache_ttl: int = Field(default=60 * 10, description="Parsed structure TTL")

    # Resolver settings
    resolve_concurrency: int = Field(default=2, ge=1, description="Workers per resolution batch")
    request_timeout: int = Field(default=30, description="Raw fetch timeout in seconds")
    user_agent: str = Field(default="codexmirror/0.1", description="User agent for raw fetches")
    max_linked_documents: int = Field(default=200, ge=1, description="One-hop linked documents resolved per snapshot")

    # Render pool settings
    browser_count: int = Field(default=2, ge=1, description="Browser sessions in the render pool")
    pages_per_browser: int = Field(default=6, ge=1, description="Concurrent pages per browser session")
    browser_endpoint: Optional[str] = Field(default=None, description="Remote browser CDP endpoint")
    content_selector: str = Field(default="div#codex-content", description="Selector of the rendered content root")

    # Source settings
    codex_root_url: str = Field(default=DEFAULT_CODEX_ROOT_URL, description="Root of the documentation tree")
    llms_url: str = Field(default=DEFAULT_LLMS_URL, description="Index document describing the tree")

    @classmethod
    def from_env(cls) -> 'MirrorSettings':
        """Create settings from environment variables."""
        backend = os.getenv('CODEXMIRROR_CACHE_BACKEND', 'memory').lower()

        return cls(
            cache_backend=CacheBackendType.REDIS if backend == 'redis' else CacheBackendType.MEMORY,
            redis_url=os.getenv('CODEXMIRROR_REDIS_URL', 'redis://localhost:6379/0'),
            compression_threshold=int(os.getenv('CODEXMIRROR_COMPRESSION_THRESHOLD', '1024')),
            document_cache_ttl=int(os.getenv('CODEXMIRROR_DOCUMENT_CACHE_TTL', str(60 * 60 * 24))),
            raw_cache_ttl=int(os.getenv('CODEXMIRROR_RAW_CACHE_TTL', str(60 * 60 * 2))),
            structure_cache_ttl=int(os.getenv('CODEXMIRROR_STRUCTURE_CACHE_TTL', str(60 * 10))),
            resolve_concurrency=int(os.getenv('CODEXMIRROR_RESOLVE_CONCURRENCY', '2')),
            request_timeout=int(os.getenv('CODEXMIRROR_REQUEST_TIMEOUT', '30')),
            user_agent=os.getenv('CODEXMIRROR_USER_AGENT', 'codexmirror/0.1'),
            max_linked_documents=int(os.getenv('CODEXMIRROR_MAX_LINKED_DOCUMENTS', '200')),
            browser_count=int(os.getenv('CODEXMIRROR_BROWSER_COUNT', '2')),
            pages_per_browser=int(os.getenv('CODEXMIRROR_PAGES_PER_BROWSER', '6')),
            browser_endpoint=os.getenv('CODEXMIRROR_BROWSER_ENDPOINT') or None,
            content_selector=os.getenv('CODEXMIRROR_CONTENT_SELECTOR', 'div#codex-content'),
            codex_root_url=os.getenv('CODEXMIRROR_CODEX_ROOT_URL', DEFAULT_CODEX_ROOT_URL),
            llms_url=os.getenv('CODEXMIRROR_LLMS_URL', DEFAULT_LLMS_URL),
        )


_settings: Optional[MirrorSettings] = None


def get_settings() -> MirrorSettings:
    """Get the process-wide settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = MirrorSettings.from_env()
        logger.info(f"Settings loaded: cache backend={_settings.cache_backend.value}, "
                    f"browsers={_settings.browser_count}x{_settings.pages_per_browser}")
    return _settings


def configure(settings: MirrorSettings) -> MirrorSettings:
    """Install explicit settings, replacing anything read from the environment."""
    global _settings
    _settings = settings
    return _settings


def reset_settings():
    """Forget the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
