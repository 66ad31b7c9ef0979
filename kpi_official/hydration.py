"""Hydration orchestrator.

For every (company, KPI) pair the series is filled in three stages:

1. Explicit ``{period, url, pattern}`` entries from the sources file, matched
   without the period proximity check.
2. When no explicit entries exist, ``discover`` blocks are crawled into
   explicit-shaped entries and applied the same way.
3. Periods still missing are searched automatically over ranked candidates:
   text layer (strict, then relaxed when the period came from the URL or
   anchor text), then OCR under a per-KPI budget, then the row-anchored
   extractor on the OCR text.

A period is never overwritten once filled; periods left ``None`` are the
normal outcome for data that could not be found. Errors on one entry or
candidate are logged and the loop moves on.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from kpi_official.config import get_config, setup_logging
from kpi_official.dataset import assign_value, dataset_template, missing_periods
from kpi_official.extractor.extraction import ExtractionSettings, extract_for_kpi, extract_from_lines, extract_value
from kpi_official.extractor.ocr_fallback import (
    MistralStrategy,
    OcrSettings,
    OcrUnavailableError,
    TesseractStrategy,
    build_ocr_chain,
)
from kpi_official.extractor.ocr_tesseract import WINDOWS_FALLBACK_PATHS, find_tesseract_binary
from kpi_official.kpis import KpiDefinition, load_kpi_definitions
from kpi_official.periods import PERIOD_SET, infer_period_from_string, infer_period_from_text
from kpi_official.scraper.discovery import AutoSettings, ScoringSettings, discover_candidates, discover_entries
from kpi_official.scraper.documents import DocumentCache
from kpi_official.scraper.downloader import HttpSettings, create_client
from kpi_official.transformer.normalizer import UnitKind
from kpi_official.transformer.source_tracker import ExtractionOutcome
from kpi_official.utils.parsing import fold_text

if TYPE_CHECKING:
    from pathlib import Path

    import httpx

    from kpi_official.extractor.ocr_fallback import OcrStrategy
    from kpi_official.scraper.discovery import Candidate
    from kpi_official.scraper.documents import Document
    from kpi_official.transformer.source_tracker import SourceTracker

logger = setup_logging(__name__)

_UNRESOLVED = object()


@dataclass
class KpiJob:
    """Mutable hydration state for one (company, KPI) pair."""

    ticker: str
    kpi: dict[str, Any]
    definition: KpiDefinition | None
    entries: list[dict[str, Any]] = field(default_factory=list)
    discover: list[dict[str, Any]] = field(default_factory=list)
    auto: AutoSettings = field(default_factory=AutoSettings)

    @property
    def key(self) -> str:
        return self.kpi["key"]

    @property
    def series(self) -> list[dict[str, Any]]:
        return self.kpi["series"]

    @property
    def label(self) -> str:
        return f"{self.ticker} {self.key}"


def fallback_definition(kpi: dict[str, Any]) -> KpiDefinition:
    """Minimal definition for catalog KPIs that have no pattern banks.

    Only explicit entries can fill such a KPI; the unit kind follows ``isRate``.
    """
    unit_kind = UnitKind.PERCENT if kpi.get("isRate") else UnitKind.COUNT
    return KpiDefinition(key=kpi["key"], unit_kind=unit_kind, primary=())


def merge_auto(*blocks: dict[str, Any] | None) -> dict[str, Any]:
    """Shallow-merge ``auto`` blocks, later blocks winning."""
    merged: dict[str, Any] = {}
    for block in blocks:
        merged.update(block or {})
    return merged


class HydrationSession:
    """Per-run state shared by every (company, KPI) pipeline.

    Owns the document cache, the resolved tesseract binary, and the OCR
    strategies, so nothing lives in module-level globals.

    Parameters
    ----------
    client : httpx.AsyncClient
        HTTP client used for every fetch.
    config : dict[str, Any], optional
        Parsed ``config.json``; loaded from disk when omitted.
    kpis : dict[str, KpiDefinition], optional
        KPI definitions; loaded from ``kpis.json`` when omitted.
    tracker : SourceTracker, optional
        Receives one outcome per filled period.
    ocr_strategies : dict[str, OcrStrategy], optional
        ``{"cli": ..., "embedded": ...}`` overrides (tests inject fakes here).
    ocr_audit_dir : Path, optional
        Where the remote OCR engine saves its responses; nothing is saved when omitted.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: dict[str, Any] | None = None,
        kpis: dict[str, KpiDefinition] | None = None,
        tracker: SourceTracker | None = None,
        ocr_strategies: dict[str, OcrStrategy] | None = None,
        ocr_audit_dir: Path | None = None,
    ) -> None:
        self.config = config if config is not None else get_config()
        self.http_settings = HttpSettings.from_config(self.config.get("http"))
        self.cache = DocumentCache(client, self.http_settings)
        self.kpis = kpis if kpis is not None else load_kpi_definitions()
        self.scoring = ScoringSettings.from_config(self.config.get("scoring"))
        self.extraction = ExtractionSettings.from_config(self.config.get("extraction"))
        self.tracker = tracker
        self._ocr_strategies = ocr_strategies
        self.ocr_audit_dir = ocr_audit_dir
        self._tesseract_binary: Any = _UNRESOLVED

    # =========================================================================
    # OCR resources
    # =========================================================================

    @property
    def ocr_config(self) -> dict[str, Any]:
        return self.config.get("ocr", {})

    @property
    def tesseract_binary(self) -> str | None:
        """Tesseract path, resolved on first use and reused for the run."""
        if self._tesseract_binary is _UNRESOLVED:
            self._tesseract_binary = find_tesseract_binary(
                config_path=self.ocr_config.get("tesseract_path"),
                fallback_paths=self.ocr_config.get("windows_fallback_paths", WINDOWS_FALLBACK_PATHS),
            )
            logger.debug("OCR cli bin=%s", self._tesseract_binary or "none")
        return self._tesseract_binary

    @property
    def ocr_strategies(self) -> dict[str, OcrStrategy]:
        if self._ocr_strategies is None:
            self._ocr_strategies = {
                "cli": TesseractStrategy(self.tesseract_binary),
                "embedded": MistralStrategy(audit_dir=self.ocr_audit_dir),
            }
        return self._ocr_strategies

    # =========================================================================
    # Job construction
    # =========================================================================

    def build_jobs(
        self,
        dataset: dict[str, Any],
        sources: dict[str, Any],
        auto_enabled: bool = True,
    ) -> list[KpiJob]:
        """Attach sources-file configuration to every dataset KPI.

        The effective ``auto`` block is ``config.json`` defaults, then the
        top-level, per-ticker and per-KPI blocks of the sources file.
        """
        jobs = []
        seeds = self.config.get("seeds", {})
        for company in dataset["companies"]:
            ticker = company["ticker"]
            ticker_cfg = sources.get(ticker) or {}
            for kpi in company["kpis"]:
                block = ticker_cfg.get(kpi["key"]) or {}
                merged = merge_auto(self.config.get("auto"), sources.get("auto"), ticker_cfg.get("auto"), block.get("auto"))
                if not auto_enabled:
                    merged["enabled"] = False
                jobs.append(
                    KpiJob(
                        ticker=ticker,
                        kpi=kpi,
                        definition=self.kpis.get(kpi["key"]),
                        entries=list(block.get("entries") or []),
                        discover=list(block.get("discover") or []),
                        auto=AutoSettings.from_dict(merged, seeds.get(ticker)),
                    )
                )
        return jobs

    # =========================================================================
    # State machine
    # =========================================================================

    async def hydrate(self, job: KpiJob) -> None:
        """Run explicit, discovered, then automatic stages for one KPI."""
        entries = job.entries
        if not entries and job.discover:
            entries = await discover_entries(self.cache, job.discover)
            logger.info("[discover] %s produced %d entries", job.label, len(entries))

        await self.apply_entries(job, entries)

        if not missing_periods(job.series):
            return
        if not job.auto.enabled:
            return
        if job.definition is None:
            logger.debug("No pattern banks for %s, skipping auto-search", job.label)
            return
        await self.auto_fill(job)

    async def apply_entries(self, job: KpiJob, entries: list[dict[str, Any]]) -> None:
        """Fetch each explicit entry and extract with its own pattern."""
        definition = job.definition or fallback_definition(job.kpi)
        for entry in entries:
            period = entry.get("period")
            url = entry.get("url")
            pattern = entry.get("pattern")
            if period not in PERIOD_SET or not url or not pattern:
                continue
            if period not in missing_periods(job.series):
                logger.debug("%s %s already filled, skipping %s", job.label, period, url)
                continue
            try:
                document = await self.cache.get(url)
                value = extract_value(
                    document.folded,
                    [pattern],
                    definition.unit_kind,
                    definition.min_value,
                    definition.max_value,
                    None,
                    strict_period=False,
                    settings=self.extraction,
                )
            except Exception as e:  # noqa: BLE001
                logger.warning("[warn] %s %s failed: %s", job.label, period, e)
                continue

            logger.info("[ok] %s %s <- %s from %s", job.label, period, "null" if value is None else value, url)
            self._record(job, period, value, url, "explicit")

    async def auto_fill(self, job: KpiJob) -> None:
        """Walk ranked candidates until every period is filled or none remain."""
        kpi = job.definition
        missing = set(missing_periods(job.series))
        try:
            candidates = await discover_candidates(self.cache, kpi, job.auto, self.scoring)
        except Exception as e:  # noqa: BLE001
            logger.warning("[warn] auto %s discovery failed: %s", job.label, e)
            return

        ocr_settings = OcrSettings.from_config(job.auto.raw, self.ocr_config, kpi.ocr_keywords)
        ocr_budget = job.auto.ocr_max_docs
        logger.log(
            job.auto.log_level,
            "%s candidates=%d ocr=%s engine=%s",
            job.label,
            len(candidates),
            job.auto.ocr,
            ocr_settings.engine,
        )

        for candidate in candidates:
            if not missing:
                break
            try:
                result = await self._try_candidate(job, candidate, missing, ocr_settings, ocr_budget > 0)
            except Exception as e:  # noqa: BLE001
                logger.warning("[warn] auto %s failed %s: %s", job.label, candidate.url, e)
                continue

            period, value, method, used_ocr = result
            if used_ocr:
                ocr_budget -= 1
            if period is None or value is None:
                continue
            if self._record(job, period, value, candidate.url, method):
                missing.discard(period)
                logger.info("[auto] %s %s <- %s from %s", job.label, period, value, candidate.url)

    async def _try_candidate(
        self,
        job: KpiJob,
        candidate: Candidate,
        missing: set[str],
        ocr_settings: OcrSettings,
        ocr_allowed: bool,
    ) -> tuple[str | None, float | None, str, bool]:
        """Return ``(period, value, method, used_ocr)`` for one candidate."""
        kpi = job.definition
        hinted = infer_period_from_string(candidate.url) or infer_period_from_string(candidate.anchor_text)
        if hinted and hinted not in missing:
            return None, None, "", False

        document = await self.cache.get(candidate.url)
        period = hinted or infer_period_from_text(document.folded)
        if not period or period not in missing:
            return None, None, "", False

        relaxed = hinted is not None
        value, mode = extract_for_kpi(document.folded, kpi, period, relaxed, self.extraction)
        if value is not None:
            return period, value, "text" if mode == "strict" else "text_relaxed", False

        if not (job.auto.ocr and document.is_pdf and ocr_allowed):
            return period, None, "", False

        value, method = await self._extract_with_ocr(job, document, period, relaxed, ocr_settings)
        return period, value, method, True

    async def _extract_with_ocr(
        self,
        job: KpiJob,
        document: Document,
        period: str,
        relaxed: bool,
        ocr_settings: OcrSettings,
    ) -> tuple[float | None, str]:
        kpi = job.definition
        chain = build_ocr_chain(ocr_settings.engine, self.ocr_strategies)
        logger.info("[ocr] %s %s from %s", job.label, period, document.url)
        try:
            text = await asyncio.to_thread(chain.run, document.raw_bytes, ocr_settings)
        except OcrUnavailableError as e:
            logger.warning("[warn] ocr unavailable for %s: %s", job.label, e)
            return None, ""
        except Exception as e:  # noqa: BLE001
            logger.warning("[warn] ocr %s failed %s: %s", job.label, document.url, e)
            return None, ""

        value, _ = extract_for_kpi(fold_text(text), kpi, period, relaxed, self.extraction)
        if value is not None:
            return value, "ocr"

        value = extract_from_lines(text, kpi.row_patterns, kpi.unit_kind, kpi.min_value, kpi.max_value)
        return value, "ocr_lines"

    def _record(self, job: KpiJob, period: str, value: float | None, url: str, method: str) -> bool:
        if not assign_value(job.series, period, value):
            return False
        if self.tracker is not None:
            self.tracker.add_outcome(job.ticker, job.key, ExtractionOutcome(value, period, url, method))
        return True

    async def hydrate_all(self, jobs: list[KpiJob], concurrency: int = 1) -> None:
        """Hydrate jobs in order, or with bounded fan-out when ``concurrency > 1``."""
        if concurrency <= 1:
            for job in jobs:
                await self._hydrate_contained(job)
            return

        semaphore = asyncio.Semaphore(concurrency)

        async def bounded(job: KpiJob) -> None:
            async with semaphore:
                await self._hydrate_contained(job)

        await asyncio.gather(*(bounded(job) for job in jobs))

    async def _hydrate_contained(self, job: KpiJob) -> None:
        try:
            await self.hydrate(job)
        except Exception:
            logger.exception("Hydration failed for %s", job.label)


async def run_hydration(
    sources: dict[str, Any],
    config: dict[str, Any] | None = None,
    kpis: dict[str, KpiDefinition] | None = None,
    catalog: dict[str, Any] | None = None,
    tracker: SourceTracker | None = None,
    concurrency: int | None = None,
    auto_enabled: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
    ocr_strategies: dict[str, OcrStrategy] | None = None,
    ocr_audit_dir: Path | None = None,
) -> dict[str, Any]:
    """Build the dataset for ``sources`` and hydrate every series.

    Parameters
    ----------
    sources : dict[str, Any]
        Parsed sources file (``asOf``, ``auto`` and per-ticker blocks).
    config, kpis, catalog : dict, optional
        Overrides for the files under ``config/``.
    tracker : SourceTracker, optional
        Provenance recorder.
    concurrency : int, optional
        Parallel (company, KPI) pipelines; defaults to ``config["concurrency"]`` or 1.
    auto_enabled : bool, optional
        ``False`` disables the automatic search for every KPI.
    transport : httpx.AsyncBaseTransport, optional
        Alternate HTTP transport (tests).
    ocr_strategies : dict[str, OcrStrategy], optional
        OCR engine overrides.
    ocr_audit_dir : Path, optional
        Directory for remote OCR responses.

    Returns
    -------
    dict[str, Any]
        Dataset with 20-point series for every catalog KPI.
    """
    cfg = config if config is not None else get_config()
    dataset = dataset_template(sources.get("asOf", ""), catalog)
    workers = concurrency if concurrency is not None else int(cfg.get("concurrency", 1))

    async with create_client(HttpSettings.from_config(cfg.get("http")), transport=transport) as client:
        session = HydrationSession(client, cfg, kpis, tracker, ocr_strategies, ocr_audit_dir)
        jobs = session.build_jobs(dataset, sources, auto_enabled)
        await session.hydrate_all(jobs, workers)
        logger.info("Fetched %d documents", session.cache.fetch_count)

    return dataset
