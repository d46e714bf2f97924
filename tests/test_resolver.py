"""Tests for the document resolver."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from codexmirror.caching import CacheBackendError, CacheStore
from codexmirror.indexer.formatting import document_unavailable_message
from codexmirror.pipelines.render_pool import RenderPoolRegistry
from codexmirror.pipelines.resolver import (
    RAW_CACHE_KEY_PREFIX,
    RENDERED_CACHE_KEY_PREFIX,
    DocumentEntry,
    DocumentResolver,
    map_with_concurrency,
    resolve_document,
    set_document_resolver,
)

from conftest import BrowserFactory, FakeBrowser, FakeResponse, FakeSession, identity_markdown

ROOT = "https://cumulocity.com/codex/"
ICONS_URL = ROOT + "design/icons.md"
MISSING_URL = ROOT + "design/missing.md"


def render_nothing():
    async def render(url):
        return None
    return render


def counting_renderer(html="# Rendered"):
    calls = []

    async def render(url):
        calls.append(url)
        return html

    render.calls = calls
    return render


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def make_resolver(cache_store, settings, session):
    def build(connect=None, store=None, to_markdown=identity_markdown):
        registry = RenderPoolRegistry(connect or BrowserFactory(fail=True))
        return DocumentResolver(store or cache_store, registry, settings, session=session, to_markdown=to_markdown)
    return build


class TestMapWithConcurrency:
    """Test suite for the bounded worker pool"""

    @pytest.mark.asyncio
    async def test_preserves_input_order(self):
        async def mapper(delay):
            await asyncio.sleep(delay)
            return delay

        delays = [0.03, 0.0, 0.02, 0.01]
        assert await map_with_concurrency(delays, 2, mapper) == delays

    @pytest.mark.asyncio
    async def test_bounds_concurrency(self):
        active = 0
        peak = 0

        async def mapper(item):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return item

        await map_with_concurrency(list(range(10)), 3, mapper)

        assert peak == 3

    @pytest.mark.asyncio
    async def test_empty_input(self):
        assert await map_with_concurrency([], 4, AsyncMock()) == []


class TestResolve:
    """Test suite for single URL resolution"""

    @pytest.mark.asyncio
    async def test_not_found_yields_failed_entry(self, make_resolver, session):
        """Test that a 404 raw fetch becomes a failed entry, not an exception"""
        resolver = make_resolver()

        entry = await resolver.resolve(MISSING_URL, render_html=render_nothing())

        assert entry.ok is False
        assert entry.status_code == 404
        assert entry.status_text == "Not Found"
        assert entry.content is None
        assert entry.error is None
        assert entry.source == "fetch"
        assert session.requested == [MISSING_URL]
        assert document_unavailable_message(entry, MISSING_URL) == (
            f"Documentation unavailable for {MISSING_URL}. Fetch returned 404 Not Found."
        )

    @pytest.mark.asyncio
    async def test_network_error_yields_error_entry(self, make_resolver, session):
        session.responses[ICONS_URL] = ConnectionResetError("connection reset by peer")
        resolver = make_resolver()

        entry = await resolver.resolve(ICONS_URL, render_html=render_nothing())

        assert entry.ok is False
        assert entry.status_code is None
        assert entry.status_text is None
        assert entry.error == "connection reset by peer"

    @pytest.mark.asyncio
    async def test_empty_body_is_not_a_success(self, make_resolver, session):
        session.responses[ICONS_URL] = FakeResponse(200, "OK", "   \n")
        resolver = make_resolver()

        entry = await resolver.resolve(ICONS_URL, render_html=render_nothing())

        assert entry.ok is False
        assert entry.status_code == 200
        assert entry.error == "Empty document body"

    @pytest.mark.asyncio
    async def test_rendered_document_entry(self, make_resolver, session):
        render = counting_renderer("# Icons")
        resolver = make_resolver()

        entry = await resolver.resolve(ICONS_URL, render_html=render)

        assert entry.ok is True
        assert entry.content == "# Icons"
        assert entry.status_code == 200
        assert entry.status_text == "OK"
        assert entry.source == "browser"
        assert entry.fetched_at.endswith("Z")
        assert session.requested == []

    @pytest.mark.asyncio
    async def test_render_cached_until_ttl(self, make_resolver, clock, memory_backend):
        """Test that a render is reused within the TTL and repeated after it"""
        render = counting_renderer()
        resolver = make_resolver()

        await resolver.resolve(ICONS_URL, cache_ttl_seconds=100, render_html=render)
        clock.advance(99)
        await resolver.resolve(ICONS_URL, cache_ttl_seconds=100, render_html=render)
        assert len(render.calls) == 1

        clock.advance(1)
        await resolver.resolve(ICONS_URL, cache_ttl_seconds=100, render_html=render)
        assert len(render.calls) == 2
        assert any(key.startswith(RENDERED_CACHE_KEY_PREFIX) for key in memory_backend.cache)

    @pytest.mark.asyncio
    async def test_successful_raw_fetch_cached(self, make_resolver, session, memory_backend):
        session.responses[ICONS_URL] = FakeResponse(200, "OK", "# Icons")
        resolver = make_resolver()

        first = await resolver.resolve(ICONS_URL, render_html=render_nothing())
        second = await resolver.resolve(ICONS_URL, render_html=render_nothing())

        assert first.ok and second.ok
        assert session.requested == [ICONS_URL]
        assert any(key.startswith(RAW_CACHE_KEY_PREFIX) for key in memory_backend.cache)

    @pytest.mark.asyncio
    async def test_failed_raw_fetch_not_cached(self, make_resolver, session):
        resolver = make_resolver()

        await resolver.resolve(MISSING_URL, render_html=render_nothing())
        await resolver.resolve(MISSING_URL, render_html=render_nothing())

        assert session.requested == [MISSING_URL, MISSING_URL]

    @pytest.mark.asyncio
    async def test_cache_failure_fails_open(self, clock, settings, session):
        """Test that an unavailable cache backend does not fail resolution"""
        backend = MagicMock()
        backend.get = AsyncMock(side_effect=CacheBackendError("redis down"))
        store = CacheStore(backend, clock=clock)
        resolver = DocumentResolver(store, RenderPoolRegistry(BrowserFactory(fail=True)), settings,
                                    session=session, to_markdown=identity_markdown)

        entry = await resolver.resolve(ICONS_URL, render_html=counting_renderer("# Icons"))

        assert entry.ok is True
        assert entry.content == "# Icons"

    @pytest.mark.asyncio
    async def test_converter_failure_on_fetch(self, make_resolver, session):
        def broken_converter(html):
            raise ValueError("bad markup")

        session.responses[ICONS_URL] = FakeResponse(200, "OK", "<html><body>x</body></html>")
        resolver = make_resolver(to_markdown=broken_converter)

        entry = await resolver.resolve(ICONS_URL, render_html=counting_renderer("<div>x</div>"))

        assert entry.ok is False
        assert entry.error == "bad markup"

    @pytest.mark.asyncio
    async def test_default_renderer_is_one_shot(self, make_resolver):
        factory = BrowserFactory(FakeBrowser(default_html="# Icons"))
        resolver = make_resolver(connect=factory)

        entry = await resolver.resolve(ICONS_URL)

        assert entry.source == "browser"
        assert factory.connected[0].closed

    @pytest.mark.asyncio
    async def test_module_level_resolve_document(self, make_resolver):
        set_document_resolver(make_resolver())

        entry = await resolve_document(MISSING_URL)

        assert isinstance(entry, DocumentEntry)
        assert entry.status_code == 404


class TestResolveMany:
    """Test suite for batch resolution"""

    @pytest.mark.asyncio
    async def test_duplicates_resolved_once(self, make_resolver):
        """Test that a URL repeated in the input is rendered once"""
        browser = FakeBrowser(default_html="# Doc")
        resolver = make_resolver(connect=BrowserFactory(browser))
        other_url = ROOT + "design/colors.md"

        documents = await resolver.resolve_many([ICONS_URL, other_url, ICONS_URL])

        assert list(documents) == [ICONS_URL, other_url]
        assert browser.visited.count(ROOT + "design/icons") == 1
        assert all(entry.ok for entry in documents.values())

    @pytest.mark.asyncio
    async def test_output_keeps_input_order(self, make_resolver):
        class SlowFirstBrowser(FakeBrowser):
            async def new_page(self):
                page = await super().new_page()
                if len(self.opened_pages) == 1:
                    await asyncio.sleep(0.02)
                return page

        urls = [ROOT + f"doc-{index}.md" for index in range(5)]
        resolver = make_resolver(connect=BrowserFactory(SlowFirstBrowser(default_html="# Doc")))

        documents = await resolver.resolve_many(urls, concurrency=3)

        assert list(documents) == urls

    @pytest.mark.asyncio
    async def test_falls_back_to_fetch_without_browser(self, make_resolver, session):
        session.responses[ICONS_URL] = FakeResponse(200, "OK", "# Icons")
        resolver = make_resolver()

        documents = await resolver.resolve_many([ICONS_URL, MISSING_URL])

        assert documents[ICONS_URL].ok is True
        assert documents[ICONS_URL].source == "fetch"
        assert documents[MISSING_URL].status_code == 404

    @pytest.mark.asyncio
    async def test_pool_survives_batch(self, make_resolver, settings):
        """Test that the pooled sessions stay connected after a batch"""
        factory = BrowserFactory(FakeBrowser(default_html="# Doc"))
        resolver = make_resolver(connect=factory)

        await resolver.resolve_many([ICONS_URL])
        await resolver.resolve_many([ROOT + "design/colors.md"])

        pool = resolver.pool_registry.get_pool(settings.browser_count, settings.pages_per_browser)
        assert factory.connect_count == 1
        assert pool.slots[0].browser is factory.connected[0]
        assert not factory.connected[0].closed


class TestDocumentEntry:
    def test_dict_round_trip(self):
        entry = DocumentEntry(ok=False, content=None, status_code=404, status_text="Not Found",
                              fetched_at="2024-01-01T00:00:00Z", source="fetch")

        assert DocumentEntry.from_dict(entry.to_dict()) == entry
