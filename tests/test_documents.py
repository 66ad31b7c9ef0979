"""Tests for HTTP fetching and the single-flight document cache."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from kpi_official.scraper.documents import DocumentCache, build_document, is_pdf_url
from kpi_official.scraper.downloader import HttpSettings, create_client, fetch_bytes
from tests.conftest import Routes, make_pdf

NO_WAIT = HttpSettings(max_attempts=2, base_delay_seconds=0, max_delay_seconds=0)


class TestBuildDocument:
    """Tests for classification and text extraction."""

    def test_pdf_classified_by_url(self) -> None:
        """The ``.pdf`` marker decides, including query strings and case."""
        assert is_pdf_url("https://x.vn/files/BCTC_Q4.PDF")
        assert is_pdf_url("https://x.vn/file.pdf?download=1")
        assert not is_pdf_url("https://x.vn/bao-cao.html")

    def test_html_document(self) -> None:
        """HTML keeps its markup and exposes folded visible text."""
        markup = "<html><body><script>var n = 5;</script><p>Tổng số cửa hàng 412</p></body></html>"
        document = build_document("https://x.vn/ir.html", markup.encode("utf-8"))
        assert not document.is_pdf
        assert document.folded == "tong so cua hang 412"
        assert "<p>" in document.html

    def test_pdf_document(self) -> None:
        """PDF text comes from the text layer with line breaks preserved."""
        data = make_pdf("Doanh thu thuan 12.345.678\nQuy 4 nam 2024")
        document = build_document("https://x.vn/bctc-2024q4.pdf", data)
        assert document.is_pdf
        assert document.html == ""
        assert "doanh thu thuan 12.345.678" in document.folded
        assert "\n" in document.text

    def test_corrupt_pdf_raises(self) -> None:
        """Parser errors propagate to the caller."""
        with pytest.raises(Exception):  # noqa: B017, PT011
            build_document("https://x.vn/broken.pdf", b"not a pdf at all")


class TestFetchBytes:
    """Tests for retry behaviour."""

    def test_retries_server_errors(self) -> None:
        """A 5xx response is retried and the next success returned."""
        routes = Routes({"https://x.vn/a": [(503, b"busy"), (200, b"ok")]})

        async def run() -> bytes:
            async with routes.client() as client:
                return await fetch_bytes(client, "https://x.vn/a", NO_WAIT)

        assert asyncio.run(run()) == b"ok"
        assert routes.calls["https://x.vn/a"] == 2

    def test_client_errors_fail_fast(self) -> None:
        """A 404 is raised without retrying."""
        routes = Routes()

        async def run() -> None:
            async with routes.client() as client:
                await fetch_bytes(client, "https://x.vn/missing", NO_WAIT)

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(run())
        assert routes.calls["https://x.vn/missing"] == 1

    def test_create_client_sets_user_agent(self) -> None:
        """The configured User-Agent is sent with every request."""
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["User-Agent"])
            return httpx.Response(200, content=b"")

        async def run() -> None:
            settings = HttpSettings.from_config({"user_agent": "test-agent", "retry": {"max_attempts": 1}})
            async with create_client(settings, transport=httpx.MockTransport(handler)) as client:
                await fetch_bytes(client, "https://x.vn/", settings)

        asyncio.run(run())
        assert seen == ["test-agent"]


class TestDocumentCache:
    """Tests for memoization and single-flight loading."""

    def test_concurrent_requests_share_one_fetch(self) -> None:
        """Two simultaneous gets for one URL trigger a single download."""
        routes = Routes({"https://x.vn/ir.html": "<p>so cua hang 412</p>"})

        async def run() -> tuple:
            async with routes.client() as client:
                cache = DocumentCache(client, NO_WAIT)
                first, second = await asyncio.gather(
                    cache.get("https://x.vn/ir.html"),
                    cache.get("https://x.vn/ir.html"),
                )
                third = await cache.get("https://x.vn/ir.html")
                return first, second, third, cache.fetch_count

        first, second, third, fetch_count = asyncio.run(run())
        assert first is second is third
        assert fetch_count == 1
        assert routes.calls["https://x.vn/ir.html"] == 1

    def test_failures_are_not_cached(self) -> None:
        """A failed load propagates and a later get retries the URL."""
        routes = Routes({"https://x.vn/ir.html": [(404, b""), (200, b"<p>412</p>")]})

        async def run() -> str:
            async with routes.client() as client:
                cache = DocumentCache(client, NO_WAIT)
                with pytest.raises(httpx.HTTPStatusError):
                    await cache.get("https://x.vn/ir.html")
                assert "https://x.vn/ir.html" not in cache
                document = await cache.get("https://x.vn/ir.html")
                return document.folded

        assert asyncio.run(run()) == "412"
        assert routes.calls["https://x.vn/ir.html"] == 2

    def test_parser_errors_propagate(self) -> None:
        """A document that cannot be parsed is reported, not cached."""
        routes = Routes({"https://x.vn/broken.pdf": b"garbage"})

        async def run() -> int:
            async with routes.client() as client:
                cache = DocumentCache(client, NO_WAIT)
                with pytest.raises(Exception):  # noqa: B017, PT011
                    await cache.get("https://x.vn/broken.pdf")
                return len(cache)

        assert asyncio.run(run()) == 0

    def test_fetch_raw_bypasses_cache(self) -> None:
        """Sitemaps and listings are downloaded without being cached."""
        routes = Routes({"https://x.vn/sitemap.xml": "<urlset/>"})

        async def run() -> int:
            async with routes.client() as client:
                cache = DocumentCache(client, NO_WAIT)
                await cache.fetch_raw("https://x.vn/sitemap.xml")
                await cache.fetch_raw("https://x.vn/sitemap.xml")
                return len(cache)

        assert asyncio.run(run()) == 0
        assert routes.calls["https://x.vn/sitemap.xml"] == 2
