"""Document resolution pipeline for codexmirror.

Resolves documentation URLs to markdown ``DocumentEntry`` records. A URL is
served from the rendered-document cache when fresh, otherwise rendered in a
browser session, and as a last resort fetched directly over HTTP.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from urllib.parse import quote

import aiohttp

from ..caching import CacheBackendError, CacheStore, get_cache_store
from ..config import MirrorSettings, get_settings
from ..observability.metrics import record_document_resolution, resolve_batch_duration
from .html_convert import html_to_markdown
from .links import dedupe_urls
from .render_pool import RenderPoolRegistry, create_render_pool_registry

logger = logging.getLogger(__name__)

RENDERED_CACHE_KEY_PREFIX = "codex:doc:v1:"
RAW_CACHE_KEY_PREFIX = "codex:raw:v1:"

RenderHtml = Callable[[str], Awaitable[Optional[str]]]
T = TypeVar("T")
R = TypeVar("R")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class DocumentEntry:
    """Resolved outcome for one URL."""
    ok: bool
    content: Optional[str]
    status_code: Optional[int]
    status_text: Optional[str]
    fetched_at: str
    error: Optional[str] = None
    source: Optional[str] = None  # "browser" or "fetch"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DocumentEntry':
        return cls(
            ok=data['ok'],
            content=data.get('content'),
            status_code=data.get('status_code'),
            status_text=data.get('status_text'),
            fetched_at=data.get('fetched_at') or _utc_now_iso(),
            error=data.get('error'),
            source=data.get('source'),
        )


async def map_with_concurrency(items: List[T], concurrency: int,
                               mapper: Callable[[T], Awaitable[R]]) -> List[R]:
    """Map ``items`` through ``mapper`` with at most ``concurrency`` calls in flight.

    Workers claim the next unclaimed index from a shared cursor; results keep
    the input order whatever the completion order.
    """
    if not items:
        return []

    output: List[Any] = [None] * len(items)
    cursor = 0

    async def worker():
        nonlocal cursor
        while cursor < len(items):
            current = cursor
            cursor += 1
            output[current] = await mapper(items[current])

    await asyncio.gather(*(worker() for _ in range(min(max(1, concurrency), len(items)))))
    return output


class DocumentResolver:
    """Resolves URLs through the render cache, the render pool and raw HTTP."""

    def __init__(self,
                 cache_store: CacheStore,
                 pool_registry: RenderPoolRegistry,
                 settings: Optional[MirrorSettings] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 to_markdown: Callable[[str], str] = html_to_markdown):
        """Initialize resolver.

        Args:
            cache_store: Store used for rendered and raw document caching
            pool_registry: Source of the shared render pool and one-shot renders
            settings: Resolver settings (defaults to process settings)
            session: HTTP session for raw fetches; created lazily when omitted
            to_markdown: HTML to markdown converter
        """
        self.settings = settings or get_settings()
        self.cache_store = cache_store
        self.pool_registry = pool_registry
        self.to_markdown = to_markdown
        self.session = session
        self._owns_session = session is None

        self._render_cached = cache_store.memoize(
            self._render_document,
            key=lambda url, *_: f"{RENDERED_CACHE_KEY_PREFIX}{quote(url, safe='')}",
            max_age=lambda _url, cache_ttl_seconds, _render_html: cache_ttl_seconds,
            should_cache=lambda value, *_: value is not None,
        )
        self._fetch_cached = cache_store.memoize(
            self.fetch_raw,
            key=lambda url: f"{RAW_CACHE_KEY_PREFIX}{quote(url, safe='')}",
            max_age=self.settings.raw_cache_ttl,
            should_cache=lambda value, *_: value.ok and bool(value.content),
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the HTTP session if this resolver created it."""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    def get_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers={'User-Agent': self.settings.user_agent}
            )
            self._owns_session = True
        return self.session

    async def _render_document(self, url: str, cache_ttl_seconds: int,
                               render_html: RenderHtml) -> Optional[DocumentEntry]:
        fetched_at = _utc_now_iso()
        html = await render_html(url)
        if not html:
            return None

        try:
            content = self.to_markdown(html)
        except Exception as e:
            logger.warning(f"Could not convert rendered page for {url}: {e}")
            return None

        if not content or not content.strip():
            logger.warning(f"Rendered page for {url} converted to an empty document")
            return None

        return DocumentEntry(
            ok=True,
            content=content,
            status_code=200,
            status_text="OK",
            fetched_at=fetched_at,
            error=None,
            source="browser",
        )

    async def fetch_raw(self, url: str) -> DocumentEntry:
        """Fetch ``url`` over HTTP without rendering; failures become ``ok=False`` entries."""
        fetched_at = _utc_now_iso()
        start_time = time.time()

        try:
            async with self.get_session().get(url, allow_redirects=True) as response:
                status_text = response.reason or None

                if not 200 <= response.status < 300:
                    logger.info(f"Fetch of {url} returned {response.status} {status_text}")
                    return DocumentEntry(
                        ok=False,
                        content=None,
                        status_code=response.status,
                        status_text=status_text,
                        fetched_at=fetched_at,
                        error=None,
                        source="fetch",
                    )

                body = await response.text()
                content = self.to_markdown(body)

                if not content or not content.strip():
                    return DocumentEntry(
                        ok=False,
                        content=None,
                        status_code=response.status,
                        status_text=status_text,
                        fetched_at=fetched_at,
                        error="Empty document body",
                        source="fetch",
                    )

                logger.debug(f"Fetched {url} in {time.time() - start_time:.2f}s")
                return DocumentEntry(
                    ok=True,
                    content=content,
                    status_code=response.status,
                    status_text=status_text,
                    fetched_at=fetched_at,
                    error=None,
                    source="fetch",
                )

        except Exception as e:
            logger.warning(f"Error fetching {url}: {e}")
            return DocumentEntry(
                ok=False,
                content=None,
                status_code=None,
                status_text=None,
                fetched_at=fetched_at,
                error=str(e) or type(e).__name__,
                source="fetch",
            )

    async def _resolve_rendered(self, url: str, cache_ttl_seconds: int,
                                render_html: RenderHtml) -> Optional[DocumentEntry]:
        try:
            return await self._render_cached(url, cache_ttl_seconds, render_html)
        except CacheBackendError as e:
            logger.warning(f"Render cache unavailable for {url}, rendering uncached: {e}")
            return await self._render_document(url, cache_ttl_seconds, render_html)

    async def _resolve_fetched(self, url: str) -> DocumentEntry:
        try:
            return await self._fetch_cached(url)
        except CacheBackendError as e:
            logger.warning(f"Raw cache unavailable for {url}, fetching uncached: {e}")
            return await self.fetch_raw(url)

    async def resolve(self, url: str, cache_ttl_seconds: Optional[int] = None,
                      render_html: Optional[RenderHtml] = None) -> DocumentEntry:
        """Resolve one URL.

        Args:
            url: Markdown document URL
            cache_ttl_seconds: Max age of a cached render (defaults to settings)
            render_html: Render function; defaults to a one-shot, non-pooled render

        Returns:
            DocumentEntry for the URL
        """
        ttl = cache_ttl_seconds if cache_ttl_seconds is not None else self.settings.document_cache_ttl
        renderer = render_html or self.pool_registry.render_page_once

        entry = await self._resolve_rendered(url, ttl, renderer)
        if entry is None:
            entry = await self._resolve_fetched(url)

        record_document_resolution(entry.source or "unknown", entry.ok)
        return entry

    async def resolve_many(self, urls: List[str], concurrency: Optional[int] = None,
                           cache_ttl_seconds: Optional[int] = None) -> Dict[str, DocumentEntry]:
        """Resolve a batch of URLs on the shared render pool.

        Args:
            urls: URLs to resolve; duplicates are resolved once
            concurrency: Number of concurrent workers (defaults to settings)
            cache_ttl_seconds: Max age of cached renders

        Returns:
            Mapping of URL to DocumentEntry in first-occurrence order
        """
        deduped_urls = dedupe_urls(urls)
        workers = concurrency or self.settings.resolve_concurrency
        pool = self.pool_registry.get_pool(self.settings.browser_count, self.settings.pages_per_browser)
        in_flight: Dict[str, "asyncio.Future[DocumentEntry]"] = {}
        start_time = time.time()

        async def resolve_one(url: str):
            existing = in_flight.get(url)
            if existing is not None:
                return url, await existing

            task = asyncio.ensure_future(self.resolve(url, cache_ttl_seconds, pool.render))
            in_flight[url] = task
            try:
                return url, await task
            finally:
                in_flight.pop(url, None)

        logger.info(f"Resolving {len(deduped_urls)} documents with {workers} workers")

        try:
            entries = await map_with_concurrency(deduped_urls, workers, resolve_one)
        finally:
            await pool.close()

        duration = time.time() - start_time
        resolve_batch_duration.observe(duration)
        failed = sum(1 for _, entry in entries if not entry.ok)
        logger.info(f"Resolved {len(entries)} documents in {duration:.2f}s ({failed} failed)")

        return dict(entries)


# Global resolver instance, built on first use
_document_resolver: Optional[DocumentResolver] = None


def get_document_resolver() -> DocumentResolver:
    """Get the process-wide resolver built from the process settings."""
    global _document_resolver
    if _document_resolver is None:
        settings = get_settings()
        _document_resolver = DocumentResolver(
            get_cache_store(settings),
            create_render_pool_registry(settings),
            settings,
        )
    return _document_resolver


def set_document_resolver(resolver: Optional[DocumentResolver]):
    """Install (or clear, with None) the process-wide resolver."""
    global _document_resolver
    _document_resolver = resolver


# Convenience functions
async def resolve_document(url: str, cache_ttl_seconds: Optional[int] = None,
                           render_html: Optional[RenderHtml] = None) -> DocumentEntry:
    """Resolve one URL with the process-wide resolver."""
    return await get_document_resolver().resolve(url, cache_ttl_seconds, render_html)


async def resolve_documents(urls: List[str], concurrency: Optional[int] = None,
                            cache_ttl_seconds: Optional[int] = None) -> Dict[str, DocumentEntry]:
    """Resolve a batch of URLs with the process-wide resolver."""
    return await get_document_resolver().resolve_many(urls, concurrency, cache_ttl_seconds)
