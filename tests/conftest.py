"""Pytest configuration for kpi_official tests.

This module provides:
- An HTTP route table served through ``httpx.MockTransport`` (no live network)
- In-memory PDF generation with PyMuPDF
- A copy of ``config.json`` with retry delays and crawl seeds disabled
- A one-company display catalog
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import fitz  # PyMuPDF
import httpx
import pytest
from dotenv import load_dotenv

from kpi_official.config import get_config
from kpi_official.kpis import KpiDefinition, load_kpi_definitions

PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(PROJECT_ROOT / ".env")


class Routes:
    """URL -> (status, body) table that also counts requests per URL."""

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes: dict[str, Any] = dict(routes or {})
        self.calls: dict[str, int] = {}

    def __setitem__(self, url: str, value: Any) -> None:
        self.routes[url] = value

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls[url] = self.calls.get(url, 0) + 1
        value = self.routes.get(url)
        if value is None:
            return httpx.Response(404, content=b"not found")
        if isinstance(value, list):
            # Sequence of responses, the last one repeats
            value = value.pop(0) if len(value) > 1 else value[0]
        status, body = value if isinstance(value, tuple) else (200, value)
        if isinstance(body, str):
            body = body.encode("utf-8")
        return httpx.Response(status, content=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, follow_redirects=True)


def make_pdf(*pages: str) -> bytes:
    """Build a PDF with one text page per argument (ASCII text only)."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        y = 72
        for line in text.splitlines() or [""]:
            page.insert_text((72, y), line, fontsize=11)
            y += 16
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def routes() -> Routes:
    """Empty route table; tests register URLs on it."""
    return Routes()


@pytest.fixture
def test_config() -> dict[str, Any]:
    """``config.json`` with instant, single-attempt HTTP and no seed URLs."""
    config = copy.deepcopy(get_config())
    config["http"]["retry"] = {"max_attempts": 1, "base_delay_seconds": 0, "max_delay_seconds": 0}
    config["seeds"] = {}
    config["auto"]["ocr"] = False
    return config


@pytest.fixture
def kpis() -> dict[str, KpiDefinition]:
    """KPI definitions from ``config/kpis.json``."""
    return load_kpi_definitions()


@pytest.fixture
def stores_catalog() -> dict[str, Any]:
    """Catalog with a single company tracking store counts."""
    return {
        "companies": [
            {
                "ticker": "PNJ",
                "name": "Vang bac Da quy Phu Nhuan",
                "kpis": [
                    {
                        "key": "stores",
                        "label": "So cua hang",
                        "unit": "cua hang",
                        "isRate": False,
                        "agg": "last",
                        "desc": "Tong so cua hang cuoi ky.",
                        "sources": [{"title": "PNJ BCTC/IR"}],
                    },
                ],
            },
        ],
    }


@pytest.fixture
def pdf_factory():
    """Expose :func:`make_pdf` to tests."""
    return make_pdf
