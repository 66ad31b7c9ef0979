"""Scraper module: HTTP fetching, the per-run document cache, and discovery."""

from kpi_official.scraper.discovery import (
    AutoSettings,
    Candidate,
    ScoringSettings,
    discover_candidates,
    discover_entries,
    rank_candidates,
    score_candidate,
)
from kpi_official.scraper.documents import Document, DocumentCache, build_document, is_pdf_url
from kpi_official.scraper.downloader import HttpSettings, create_client, fetch_bytes

__all__ = [
    "AutoSettings",
    "Candidate",
    "Document",
    "DocumentCache",
    "HttpSettings",
    "ScoringSettings",
    "build_document",
    "create_client",
    "discover_candidates",
    "discover_entries",
    "fetch_bytes",
    "is_pdf_url",
    "rank_candidates",
    "score_candidate",
]
