"""Document acquisition and the per-run document cache.

A :class:`Document` is fetched and parsed at most once per URL per run and is
shared read-only by every KPI that references the URL. Concurrent requests
for the same URL await a single in-flight load. Failures propagate to the
caller and are never cached, so a later request retries the URL.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from kpi_official.config import setup_logging
from kpi_official.extractor.pdf_parser import extract_text_from_pdf_bytes
from kpi_official.scraper.downloader import HttpSettings, fetch_bytes
from kpi_official.utils.parsing import fold_text, strip_html

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

logger = setup_logging(__name__)


@dataclass(frozen=True)
class Document:
    """Fetched document with its extracted and folded text.

    Attributes
    ----------
    url : str
        Source URL (cache key).
    raw_bytes : bytes
        Response body as downloaded.
    is_pdf : bool
        ``True`` when the URL names a PDF.
    text : str
        Text layer (PDF) or visible text (HTML), line breaks preserved for PDFs.
    folded : str
        :func:`~kpi_official.utils.parsing.fold_text` of ``text``.
    html : str
        Decoded markup for HTML documents, empty for PDFs.
    """

    url: str
    raw_bytes: bytes = field(repr=False)
    is_pdf: bool
    text: str = field(repr=False)
    folded: str = field(repr=False)
    html: str = field(default="", repr=False)


def is_pdf_url(url: str) -> bool:
    """Classify a URL as PDF by its ``.pdf`` marker."""
    return ".pdf" in url.lower()


def decode_markup(data: bytes) -> str:
    """Decode an HTML/XML body, assuming UTF-8 as Vietnamese IR sites do."""
    return data.decode("utf-8", errors="replace")


def build_document(url: str, data: bytes) -> Document:
    """Parse raw bytes into a :class:`Document`.

    Raises
    ------
    Exception
        Any PDF/HTML parser error; the caller treats it as a skipped URL.
    """
    if is_pdf_url(url):
        text = extract_text_from_pdf_bytes(data)
        html = ""
    else:
        html = decode_markup(data)
        text = strip_html(html)
    return Document(url=url, raw_bytes=data, is_pdf=is_pdf_url(url), text=text, folded=fold_text(text), html=html)


class DocumentCache:
    """Memoizing, single-flight document loader owned by one session.

    Parameters
    ----------
    client : httpx.AsyncClient
        Session HTTP client.
    settings : HttpSettings, optional
        Retry policy passed to :func:`fetch_bytes`.
    parser : Callable[[str, bytes], Document], optional
        Parser run in a worker thread; defaults to :func:`build_document`.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: HttpSettings | None = None,
        parser: Callable[[str, bytes], Document] = build_document,
    ) -> None:
        self._client = client
        self._settings = settings or HttpSettings()
        self._parser = parser
        self._documents: dict[str, Document] = {}
        self._inflight: dict[str, asyncio.Task[Document]] = {}
        self.fetch_count = 0

    def __contains__(self, url: object) -> bool:
        return url in self._documents

    def __len__(self) -> int:
        return len(self._documents)

    async def get(self, url: str) -> Document:
        """Return the cached document for ``url``, loading it on first use.

        Raises
        ------
        httpx.HTTPError
            When the download fails.
        """
        cached = self._documents.get(url)
        if cached is not None:
            return cached

        task = self._inflight.get(url)
        if task is None:
            task = asyncio.create_task(self._load(url))
            self._inflight[url] = task
        # Cancelling one waiter must not cancel the shared load
        return await asyncio.shield(task)

    async def fetch_raw(self, url: str) -> bytes:
        """Download ``url`` without parsing or caching (sitemaps, listings)."""
        return await fetch_bytes(self._client, url, self._settings)

    async def _load(self, url: str) -> Document:
        try:
            self.fetch_count += 1
            data = await fetch_bytes(self._client, url, self._settings)
            document = await asyncio.to_thread(self._parser, url, data)
            self._documents[url] = document
            logger.debug("Cached %s (%s, %d chars)", url, "pdf" if document.is_pdf else "html", len(document.text))
            return document
        finally:
            self._inflight.pop(url, None)
