"""Browser rendering pool for codexmirror.

Documentation pages only carry their content after client-side rendering, so
pages are opened in remote browser sessions and the content root's markup is
extracted. A pool keeps a fixed number of sessions warm, each limited to a
number of concurrently open pages.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse, urlunparse

from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import MirrorSettings, get_settings
from ..observability.logging import log_slow_call
from ..observability.metrics import record_render_outcome

logger = logging.getLogger(__name__)

MAIN_CONTENT_SELECTOR = "div#codex-content"
CONTENT_SELECTOR_TIMEOUT_MS = 30_000
SLOW_RENDER_MS = 10_000

BrowserFactory = Callable[[], Awaitable[Browser]]


class RenderConnectionError(Exception):
    """Raised when no browser session can be acquired."""


def to_rendered_page_url(markdown_url: str) -> str:
    """Map a markdown document URL to the page that renders it."""
    parsed = urlparse(markdown_url)
    if parsed.path.endswith(".md"):
        parsed = parsed._replace(path=parsed.path[:-3])
    return urlunparse(parsed)


class RemoteBrowserConnector:
    """Connects to a remote Chromium over CDP.

    Without a configured endpoint every connection attempt fails, which the
    pool turns into a ``None`` render.
    """

    def __init__(self, endpoint: Optional[str], connect_timeout_ms: int = 30_000):
        self.endpoint = endpoint
        self.connect_timeout_ms = connect_timeout_ms
        self._playwright: Optional[Playwright] = None
        self._lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def _get_playwright(self) -> Playwright:
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            # A driver started on another event loop cannot be driven from this one
            if self._playwright is not None:
                logger.info("Event loop changed, starting a new playwright driver")
            self._loop = loop
            self._lock = asyncio.Lock()
            self._playwright = None

        async with self._lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            return self._playwright

    async def __call__(self) -> Browser:
        if not self.endpoint:
            raise RenderConnectionError("Remote browser endpoint is not configured")

        playwright = await self._get_playwright()
        return await playwright.chromium.connect_over_cdp(self.endpoint, timeout=self.connect_timeout_ms)

    async def close(self):
        """Stop the playwright driver."""
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


async def _close_quietly(resource: Any, what: str, url: Optional[str] = None):
    try:
        await resource.close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing {what}: {e}", extra={"url": url})


@log_slow_call(SLOW_RENDER_MS)
async def extract_main_content_html(url: str, browser: Browser,
                                    selector: str = MAIN_CONTENT_SELECTOR,
                                    timeout_ms: int = CONTENT_SELECTOR_TIMEOUT_MS) -> Optional[str]:
    """Open the rendered page for ``url`` and return the content root's outer HTML.

    Args:
        url: Markdown document URL
        browser: Connected browser session
        selector: CSS selector of the content root
        timeout_ms: How long to wait for the content root

    Returns:
        The serialized markup, or None when the page could not be rendered
    """
    rendered_page_url = to_rendered_page_url(url)
    page = None

    try:
        page = await browser.new_page()
        await page.goto(rendered_page_url, wait_until="domcontentloaded")

        try:
            await page.wait_for_selector(selector, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            logger.warning(
                f"Timeout waiting for content selector on {rendered_page_url}",
                extra={
                    "url": url,
                    "rendered_page_url": rendered_page_url,
                    "selector": selector,
                    "timeout_ms": timeout_ms,
                    "error": str(e),
                }
            )
            return None

        html = await page.eval_on_selector(selector, "element => element.outerHTML")
        return html or None

    except Exception as e:
        logger.warning(
            f"Failed to render {rendered_page_url}: {e}",
            extra={"url": url, "rendered_page_url": rendered_page_url, "selector": selector}
        )
        return None

    finally:
        if page is not None:
            await _close_quietly(page, "page", url)


@dataclass
class RenderSlot:
    """One pooled browser session and its page-concurrency limit."""
    semaphore: asyncio.Semaphore
    browser: Optional[Browser] = None
    connect_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    connect_task: Optional["asyncio.Task[None]"] = None


class RenderPool:
    """Fixed-size pool of lazily connected browser sessions."""

    def __init__(self,
                 browser_count: int,
                 pages_per_browser: int,
                 connect: BrowserFactory,
                 selector: str = MAIN_CONTENT_SELECTOR,
                 timeout_ms: int = CONTENT_SELECTOR_TIMEOUT_MS):
        """Initialize pool.

        Args:
            browser_count: Number of browser sessions
            pages_per_browser: Maximum concurrently open pages per session
            connect: Coroutine factory returning a connected browser
            selector: CSS selector of the content root
            timeout_ms: Content selector timeout
        """
        if browser_count < 1 or pages_per_browser < 1:
            raise ValueError("Render pool needs at least one browser and one page per browser")

        self.browser_count = browser_count
        self.pages_per_browser = pages_per_browser
        self.connect = connect
        self.selector = selector
        self.timeout_ms = timeout_ms
        self.slots: List[RenderSlot] = [
            RenderSlot(semaphore=asyncio.Semaphore(pages_per_browser))
            for _ in range(browser_count)
        ]
        self.next_index = 0

    async def _connect_slot(self, slot: RenderSlot, index: int):
        try:
            slot.browser = await self.connect()
            logger.info(f"Render slot {index} connected")
        except Exception as e:
            logger.error(
                f"Failed to acquire browser session for render slot {index}: {e}",
                extra={"phase": "connect", "slot": index}
            )
            slot.browser = None
        finally:
            slot.connect_task = None

    async def _ensure_browser(self, slot: RenderSlot, index: int) -> Optional[Browser]:
        if slot.browser is not None:
            return slot.browser

        # Concurrent callers on the same slot share one connection attempt
        async with slot.connect_lock:
            if slot.browser is not None:
                return slot.browser
            if slot.connect_task is None:
                slot.connect_task = asyncio.ensure_future(self._connect_slot(slot, index))
            task = slot.connect_task

        await task
        return slot.browser

    async def _discard_browser(self, slot: RenderSlot, index: int):
        browser, slot.browser = slot.browser, None
        if browser is not None:
            logger.info(f"Discarding browser session of render slot {index}")
            await _close_quietly(browser, "browser")

    async def render(self, url: str) -> Optional[str]:
        """Render ``url`` on the next slot, retrying once with a fresh session."""
        index = self.next_index
        self.next_index = (self.next_index + 1) % len(self.slots)
        slot = self.slots[index]

        async with slot.semaphore:
            browser = await self._ensure_browser(slot, index)
            if browser is None:
                record_render_outcome("unavailable")
                return None

            html = await extract_main_content_html(url, browser, self.selector, self.timeout_ms)
            if html is not None:
                record_render_outcome("success")
                return html

            if slot.browser is browser:
                await self._discard_browser(slot, index)

            browser = await self._ensure_browser(slot, index)
            if browser is None:
                record_render_outcome("unavailable")
                return None

            html = await extract_main_content_html(url, browser, self.selector, self.timeout_ms)
            record_render_outcome("retried" if html is not None else "failed")
            return html

    async def close(self):
        """Intentionally a no-op: sessions stay connected for reuse across calls."""

    async def shutdown(self):
        """Disconnect every slot's browser session."""
        for index, slot in enumerate(self.slots):
            await self._discard_browser(slot, index)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class RenderPoolRegistry:
    """Hands out render pools, reusing one pool per (browser_count, pages_per_browser).

    Pools hold asyncio primitives and browser sessions bound to the event loop
    that first used them. When the registry is used from a different running
    loop (a host calling ``asyncio.run`` more than once), the previous loop's
    pools are forgotten and fresh ones are built.
    """

    def __init__(self, connect: BrowserFactory,
                 selector: str = MAIN_CONTENT_SELECTOR,
                 timeout_ms: int = CONTENT_SELECTOR_TIMEOUT_MS):
        self.connect = connect
        self.selector = selector
        self.timeout_ms = timeout_ms
        self._pools: Dict[Tuple[int, int], RenderPool] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def get_pool(self, browser_count: int, pages_per_browser: int) -> RenderPool:
        loop = _running_loop()
        if loop is not None and loop is not self._loop:
            if self._loop is not None and self._pools:
                logger.info(f"Event loop changed, dropping {len(self._pools)} render pool(s)")
                self._pools.clear()
            self._loop = loop

        key = (browser_count, pages_per_browser)
        pool = self._pools.get(key)
        if pool is None:
            logger.debug(f"Creating render pool {browser_count}x{pages_per_browser}")
            pool = RenderPool(browser_count, pages_per_browser, self.connect,
                              self.selector, self.timeout_ms)
            self._pools[key] = pool
        return pool

    async def render_page_once(self, url: str) -> Optional[str]:
        """Render ``url`` on a dedicated session that is closed afterwards."""
        started_at = time.time()
        rendered_page_url = to_rendered_page_url(url)

        try:
            browser = await self.connect()
        except Exception as e:
            logger.error(
                f"Failed to launch browser for {rendered_page_url}: {e}",
                extra={
                    "url": url,
                    "rendered_page_url": rendered_page_url,
                    "phase": "launch",
                    "elapsed_ms": int((time.time() - started_at) * 1000),
                }
            )
            record_render_outcome("unavailable")
            return None

        try:
            html = await extract_main_content_html(url, browser, self.selector, self.timeout_ms)
            record_render_outcome("success" if html is not None else "failed")
            return html
        finally:
            await _close_quietly(browser, "browser", url)

    async def shutdown(self):
        """Tear down every pooled session; for process shutdown."""
        for pool in self._pools.values():
            await pool.shutdown()
        self._pools.clear()
        if isinstance(self.connect, RemoteBrowserConnector):
            await self.connect.close()


def create_render_pool_registry(settings: Optional[MirrorSettings] = None) -> RenderPoolRegistry:
    """Build a registry connecting to the browser endpoint named by the settings."""
    settings = settings or get_settings()
    return RenderPoolRegistry(
        RemoteBrowserConnector(settings.browser_endpoint),
        selector=settings.content_selector,
    )
