"""Candidate discovery for the automatic search.

Candidate URLs come from two crawls that feed a shared pool:

* Sitemap crawl: breadth-first over sitemap XML from the seed URLs; nested
  ``.xml`` locations are enqueued, anything else becomes a candidate.
* Listing-page crawl: anchors ``(url, anchor_text)`` of configured HTML pages,
  optionally expanded one level by following non-PDF links and collecting
  the PDF links found there.

The pool is then filtered (each stage only when it leaves something), scored
against report and KPI keyword sets, deduplicated, sorted and truncated.

Explicit ``discover`` blocks of the sources file are handled separately by
:func:`discover_entries`, which turns a listing page plus a link regex into
explicit-shaped ``{period, url, pattern}`` entries.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

import httpx
from lxml import etree
from lxml import html as lxml_html

from kpi_official.config import setup_logging
from kpi_official.periods import PERIOD_SET, infer_period_from_string
from kpi_official.scraper.documents import decode_markup, is_pdf_url
from kpi_official.utils.parsing import fold_text

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from kpi_official.kpis import KpiDefinition
    from kpi_official.scraper.documents import DocumentCache

logger = setup_logging(__name__)

DEFAULT_BASE_KEYWORDS = (
    "bao-cao",
    "bctc",
    "financial",
    "report",
    "kqkd",
    "ket-qua-kinh-doanh",
    "quan-he-co-dong",
    "investor",
    "ir",
    "quarter",
    "quy",
)

_YEAR_TOKEN = re.compile(r"20(?:21|22|23|24|25)")
_QUARTER_TOKEN = re.compile(r"q[1-4]")
_LOC_FALLBACK = re.compile(r"<loc>([^<]+)</loc>", re.IGNORECASE)


@dataclass
class Candidate:
    """Discovered document link awaiting extraction attempts."""

    url: str
    anchor_text: str = ""
    score: int = 0

    @property
    def is_pdf(self) -> bool:
        return is_pdf_url(self.url)


@dataclass(frozen=True)
class ScoringSettings:
    """Weights and keyword sets used by :func:`score_candidate`."""

    min_score: int = 3
    pdf_weight: int = 4
    year_weight: int = 2
    quarter_weight: int = 2
    base_keyword_weight: int = 2
    kpi_keyword_weight: int = 2
    base_keywords: tuple[str, ...] = DEFAULT_BASE_KEYWORDS
    kpi_keywords: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, scoring: dict[str, Any] | None) -> ScoringSettings:
        """Build settings from the ``scoring`` block of ``config.json``."""
        block = scoring or {}
        weights = block.get("weights", {})
        defaults = cls()
        return cls(
            min_score=int(block.get("min_score", defaults.min_score)),
            pdf_weight=int(weights.get("pdf", defaults.pdf_weight)),
            year_weight=int(weights.get("year", defaults.year_weight)),
            quarter_weight=int(weights.get("quarter", defaults.quarter_weight)),
            base_keyword_weight=int(weights.get("base_keyword", defaults.base_keyword_weight)),
            kpi_keyword_weight=int(weights.get("kpi_keyword", defaults.kpi_keyword_weight)),
            base_keywords=tuple(block.get("base_keywords", defaults.base_keywords)),
            kpi_keywords={k: tuple(v) for k, v in block.get("kpi_keywords", {}).items()},
        )


@dataclass(frozen=True)
class AutoSettings:
    """Merged ``auto`` block for one (company, KPI) pair.

    ``raw`` keeps the merged mapping so OCR options can be read from it.
    """

    enabled: bool = True
    max_docs: int = 80
    max_sitemap_urls: int = 2500
    max_list_links: int = 400
    sitemaps: tuple[str, ...] = ()
    list_pages: tuple[str, ...] = ()
    expand_pdf_from_html: bool = True
    expand_from_first: int = 120
    expand_max: int = 240
    ocr: bool = False
    ocr_max_docs: int = 8
    debug: bool = False
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, block: dict[str, Any], seeds: dict[str, Any] | None = None) -> AutoSettings:
        """Build settings from a merged ``auto`` block plus per-ticker seed URLs.

        Configured sitemaps and listing pages come first, the seeds follow.
        """
        seeds = seeds or {}
        defaults = cls()
        ocr_max_docs = block.get("ocrMaxDocs")
        return cls(
            enabled=block.get("enabled", True) is not False,
            max_docs=int(block.get("maxDocs") or defaults.max_docs),
            max_sitemap_urls=int(block.get("maxSitemapUrls") or defaults.max_sitemap_urls),
            max_list_links=int(block.get("maxListLinks") or defaults.max_list_links),
            sitemaps=tuple(dedupe([*block.get("sitemaps", []), *seeds.get("sitemaps", [])])),
            list_pages=tuple(dedupe([*block.get("listPages", []), *seeds.get("listPages", [])])),
            expand_pdf_from_html=block.get("expandPdfFromHtml", True) is not False,
            expand_from_first=int(block.get("expandFromFirst") or defaults.expand_from_first),
            expand_max=int(block.get("expandMax") or defaults.expand_max),
            ocr=block.get("ocr") is True or block.get("ocrEnabled") is True,
            ocr_max_docs=int(ocr_max_docs) if isinstance(ocr_max_docs, int | float) else defaults.ocr_max_docs,
            debug=bool(block.get("debug", False)),
            raw=dict(block),
        )

    @property
    def log_level(self) -> int:
        """Level for candidate-level diagnostics."""
        return logging.INFO if self.debug else logging.DEBUG


def dedupe(items: Iterable[str]) -> list[str]:
    """Drop empty and repeated items, keeping first-seen order."""
    seen: set[str] = set()
    out = []
    for item in items:
        if not item or item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


# =============================================================================
# Link extraction
# =============================================================================


def parse_sitemap_locs(data: bytes) -> list[str]:
    """Return the ``<loc>`` values of a sitemap or sitemap index.

    Malformed XML falls back to a plain ``<loc>`` scan, since some IR sites
    serve sitemaps with stray markup.
    """
    try:
        root = etree.fromstring(data, parser=etree.XMLParser(recover=False, resolve_entities=False))
    except etree.XMLSyntaxError as e:
        logger.debug("Sitemap is not well-formed XML, scanning for <loc>: %s", e)
        return [loc.strip() for loc in _LOC_FALLBACK.findall(decode_markup(data)) if loc.strip()]

    locs = []
    for element in root.iter():
        if isinstance(element.tag, str) and etree.QName(element).localname == "loc" and element.text:
            loc = element.text.strip()
            if loc:
                locs.append(loc)
    return locs


def extract_links(markup: str, base_url: str, max_links: int = 400) -> list[tuple[str, str]]:
    """Extract ``(absolute_url, anchor_text)`` pairs from an HTML page.

    PDF links are always kept; other links are capped at ``max_links``.
    """
    if not markup or not markup.strip():
        return []
    try:
        root = lxml_html.fromstring(markup)
    except (etree.ParserError, ValueError) as e:
        logger.debug("No links extracted from %s: %s", base_url, e)
        return []

    links: list[tuple[str, str]] = []
    non_pdf = 0
    for anchor in root.iter("a"):
        href = (anchor.get("href") or "").strip()
        if not href or href.startswith(("#", "javascript:", "mailto:")):
            continue
        try:
            url = urljoin(base_url, href)
        except ValueError as e:
            logger.debug("Skipping malformed link %r on %s: %s", href, base_url, e)
            continue
        text = " ".join(anchor.text_content().split())
        if is_pdf_url(url):
            links.append((url, text))
        elif non_pdf < max_links:
            links.append((url, text))
            non_pdf += 1
    return links


async def crawl_sitemaps(cache: DocumentCache, seeds: Sequence[str], max_urls: int = 2500) -> list[Candidate]:
    """Breadth-first sitemap crawl bounded by ``max_urls`` candidates."""
    queue = list(seeds)
    visited: set[str] = set()
    found: list[Candidate] = []

    while queue and len(found) < max_urls:
        url = queue.pop(0)
        if not url or url in visited:
            continue
        visited.add(url)
        try:
            locs = parse_sitemap_locs(await cache.fetch_raw(url))
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.warning("Sitemap failed %s: %s", url, e)
            continue

        for loc in locs:
            if loc.lower().endswith(".xml"):
                if loc not in visited:
                    queue.append(loc)
                continue
            found.append(Candidate(url=loc))
            if len(found) >= max_urls:
                break

    logger.debug("Sitemap crawl visited %d sitemaps, found %d URLs", len(visited), len(found))
    return found


async def crawl_list_pages(cache: DocumentCache, pages: Sequence[str], max_links: int = 400) -> list[Candidate]:
    """Collect anchors from every listing page; failing pages are skipped."""
    found: list[Candidate] = []
    for page in pages:
        try:
            markup = decode_markup(await cache.fetch_raw(page))
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.warning("List page failed %s: %s", page, e)
            continue
        found.extend(Candidate(url=url, anchor_text=text) for url, text in extract_links(markup, page, max_links))
    return found


async def expand_pdf_links(
    cache: DocumentCache,
    candidates: Sequence[Candidate],
    expand_from_first: int = 120,
    expand_max: int = 240,
    log_level: int = logging.DEBUG,
) -> list[Candidate]:
    """Follow the first non-PDF candidates and collect the PDF links they hold."""
    html_candidates = [c for c in candidates if not c.is_pdf][:expand_from_first]
    extra: list[Candidate] = []

    for candidate in html_candidates:
        try:
            document = await cache.get(candidate.url)
        except Exception as e:  # noqa: BLE001
            logger.log(log_level, "Expand links failed %s: %s", candidate.url, e)
            continue
        if document.is_pdf or not document.html:
            continue
        for url, text in extract_links(document.html, candidate.url, expand_max):
            if is_pdf_url(url):
                extra.append(Candidate(url=url, anchor_text=text or candidate.anchor_text))
        if len(extra) >= expand_max:
            break
    return extra[:expand_max]


# =============================================================================
# Filtering and scoring
# =============================================================================


def _keyword_present(keyword: str, url: str, anchor: str) -> bool:
    key = keyword.lower()
    return key in url or fold_text(key.replace("-", " ")) in anchor


def _keep_if_nonempty(candidates: list[Candidate], kept: list[Candidate]) -> list[Candidate]:
    return kept or candidates


def filter_candidates(candidates: list[Candidate], kpi: KpiDefinition) -> list[Candidate]:
    """Apply the keyword, PDF and period filters, each only when non-emptying."""
    keywords = [fold_text(k) for k in kpi.url_keywords if k]
    if keywords:
        candidates = _keep_if_nonempty(
            candidates,
            [c for c in candidates if any(_keyword_present(k, fold_text(c.url), fold_text(c.anchor_text)) for k in keywords)],
        )
    if kpi.requires_pdf:
        candidates = _keep_if_nonempty(candidates, [c for c in candidates if c.is_pdf])
    return _keep_if_nonempty(
        candidates,
        [c for c in candidates if infer_period_from_string(c.url) or infer_period_from_string(c.anchor_text)],
    )


def score_candidate(candidate: Candidate, kpi_key: str, scoring: ScoringSettings) -> int:
    """Score a candidate on its URL and folded anchor text.

    ``pdf * 4 + year * 2 + quarter * 2 + 2 per base keyword + 2 per KPI keyword``
    with the default weights.
    """
    url = candidate.url.lower()
    anchor = fold_text(candidate.anchor_text)
    haystack = f"{url} {anchor}"

    score = 0
    if candidate.is_pdf:
        score += scoring.pdf_weight
    if _YEAR_TOKEN.search(haystack):
        score += scoring.year_weight
    if _QUARTER_TOKEN.search(haystack):
        score += scoring.quarter_weight
    score += scoring.base_keyword_weight * sum(_keyword_present(k, url, anchor) for k in scoring.base_keywords)
    score += scoring.kpi_keyword_weight * sum(
        _keyword_present(k, url, anchor) for k in scoring.kpi_keywords.get(kpi_key, ())
    )
    return score


def rank_candidates(
    candidates: Iterable[Candidate],
    kpi: KpiDefinition,
    scoring: ScoringSettings,
    max_docs: int = 80,
) -> list[Candidate]:
    """Filter, dedupe, score, sort (stable, descending) and truncate."""
    by_url: dict[str, Candidate] = {}
    for candidate in candidates:
        if not candidate.url:
            continue
        existing = by_url.get(candidate.url)
        if existing is None:
            by_url[candidate.url] = Candidate(candidate.url, candidate.anchor_text)
        elif not existing.anchor_text and candidate.anchor_text:
            existing.anchor_text = candidate.anchor_text

    pool = filter_candidates(list(by_url.values()), kpi)
    for candidate in pool:
        candidate.score = score_candidate(candidate, kpi.key, scoring)

    ranked = sorted((c for c in pool if c.score >= scoring.min_score), key=lambda c: c.score, reverse=True)
    return ranked[:max_docs]


async def discover_candidates(
    cache: DocumentCache,
    kpi: KpiDefinition,
    auto: AutoSettings,
    scoring: ScoringSettings,
) -> list[Candidate]:
    """Run both crawls, the optional expansion, and the ranking for one KPI."""
    pool: list[Candidate] = []
    if auto.sitemaps:
        pool.extend(await crawl_sitemaps(cache, auto.sitemaps, auto.max_sitemap_urls))
    pool.extend(await crawl_list_pages(cache, auto.list_pages, auto.max_list_links))

    if auto.expand_pdf_from_html and pool:
        extra = await expand_pdf_links(cache, pool, auto.expand_from_first, auto.expand_max, auto.log_level)
        pool.extend(extra)

    logger.log(auto.log_level, "%s raw candidates=%d", kpi.key, len(pool))
    ranked = rank_candidates(pool, kpi, scoring, auto.max_docs)
    logger.log(auto.log_level, "%s ranked candidates=%d", kpi.key, len(ranked))
    return ranked


# =============================================================================
# Explicit discover blocks
# =============================================================================


async def discover_entries(cache: DocumentCache, blocks: Sequence[dict[str, Any]]) -> list[dict[str, str]]:
    """Turn ``discover`` blocks into ``{period, url, pattern}`` entries.

    Each block names a ``listUrl``, a ``linkPattern`` regex run over the raw
    page markup, the ``periodGroup`` holding the period token, the
    ``valuePattern`` used later for extraction, and a ``max`` entry count.
    At most one entry is produced per period within a block.
    """
    entries: list[dict[str, str]] = []
    for block in blocks:
        list_url = block.get("listUrl")
        link_pattern = block.get("linkPattern")
        value_pattern = block.get("valuePattern")
        if not list_url or not link_pattern or not value_pattern:
            continue
        period_group = int(block.get("periodGroup", 1))
        limit = int(block.get("max", 6))

        try:
            markup = decode_markup(await cache.fetch_raw(list_url))
            link_regex = re.compile(link_pattern, re.IGNORECASE)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, re.error) as e:
            logger.warning("Discover failed %s: %s", list_url, e)
            continue

        seen: set[str] = set()
        produced = 0
        for match in link_regex.finditer(markup):
            token = match.group(period_group) if period_group <= link_regex.groups else ""
            period = re.sub(r"[^0-9Q]", "", (token or "").upper())
            if period in PERIOD_SET and period not in seen:
                try:
                    url = urljoin(list_url, match.group(0))
                except ValueError as e:
                    logger.debug("Skipping malformed link %r on %s: %s", match.group(0), list_url, e)
                    continue
                entries.append({"period": period, "url": url, "pattern": value_pattern})
                seen.add(period)
                produced += 1
            if produced >= limit:
                break
    return entries
