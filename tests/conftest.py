"""Shared fixtures: fake browser sessions, a fake HTTP session and a memory cache store."""

import asyncio
from typing import Dict, List, Optional

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from codexmirror.caching import CacheStore, MemoryBackend, reset_cache_store
from codexmirror.config import MirrorSettings, reset_settings
from codexmirror.pipelines import set_document_resolver


class FakeClock:
    """Controllable epoch clock."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakePage:
    def __init__(self, browser: "FakeBrowser"):
        self.browser = browser
        self.url: Optional[str] = None
        self.closed = False

    async def goto(self, url: str, wait_until: str = "load"):
        self.url = url
        self.browser.visited.append(url)
        if self.browser.fail_navigation:
            raise RuntimeError("net::ERR_CONNECTION_RESET")

    async def wait_for_selector(self, selector: str, timeout: int = 30_000):
        if self.browser.selector_timeout:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def eval_on_selector(self, selector: str, expression: str):
        if self.browser.delay:
            await asyncio.sleep(self.browser.delay)
        return self.browser.pages.get(self.url, self.browser.default_html)

    async def close(self):
        self.closed = True


class FakeBrowser:
    """Browser double serving canned markup keyed by rendered page URL."""

    def __init__(self, pages: Optional[Dict[str, str]] = None, default_html: Optional[str] = None,
                 fail_navigation: bool = False, selector_timeout: bool = False, delay: float = 0):
        self.pages = pages or {}
        self.default_html = default_html
        self.fail_navigation = fail_navigation
        self.selector_timeout = selector_timeout
        self.delay = delay
        self.visited: List[str] = []
        self.opened_pages: List[FakePage] = []
        self.closed = False

    async def new_page(self) -> FakePage:
        page = FakePage(self)
        self.opened_pages.append(page)
        return page

    async def close(self):
        self.closed = True


class BrowserFactory:
    """Connect callable handing out prepared browsers in order.

    Once the prepared browsers run out, ``default`` builds new ones; with no
    default further connections fail.
    """

    def __init__(self, *browsers: FakeBrowser, default=None, fail: bool = False):
        self.browsers = list(browsers)
        self.default = default
        self.fail = fail
        self.connected: List[FakeBrowser] = []

    @property
    def connect_count(self) -> int:
        return len(self.connected)

    async def __call__(self) -> FakeBrowser:
        await asyncio.sleep(0)
        if self.fail:
            raise ConnectionError("Remote browser endpoint is not configured")
        if self.browsers:
            browser = self.browsers.pop(0)
        elif self.default is not None:
            browser = self.default()
        else:
            raise ConnectionError("No browser available")
        self.connected.append(browser)
        return browser


class FakeResponse:
    def __init__(self, status: int = 200, reason: str = "OK", body: str = ""):
        self.status = status
        self.reason = reason
        self.body = body

    async def text(self) -> str:
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """Stand-in for ``aiohttp.ClientSession`` with canned responses per URL."""

    def __init__(self, responses: Optional[Dict[str, object]] = None):
        self.responses = responses or {}
        self.requested: List[str] = []
        self.closed = False

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.requested.append(url)
        response = self.responses.get(url, FakeResponse(404, "Not Found"))
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def reset_process_state():
    """Isolate tests from process-wide settings, stores and resolvers."""
    reset_settings()
    reset_cache_store()
    set_document_resolver(None)
    yield
    reset_settings()
    reset_cache_store()
    set_document_resolver(None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_backend():
    return MemoryBackend()


@pytest.fixture
def cache_store(memory_backend, clock):
    return CacheStore(memory_backend, clock=clock)


@pytest.fixture
def settings():
    return MirrorSettings(
        browser_count=1,
        pages_per_browser=2,
        resolve_concurrency=2,
        codex_root_url="https://cumulocity.com/codex/",
    )


def identity_markdown(html: str) -> str:
    return html
