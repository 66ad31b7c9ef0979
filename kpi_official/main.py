#!/usr/bin/env python3
"""Hydrate the KPI dataset from official sources and write it to disk.

Usage (from project root):
    python -m kpi_official.main
    python -m kpi_official.main config/official_sources.json --out public/data.json
    python -m kpi_official.main sources.json --csv data/series.csv --concurrency 4
    python -m kpi_official.main sources.json --no-auto --no-audit

CLI Flags:
    sources             Sources file (default: config/official_sources.json)
    --out, -o           Dataset JSON path (default: public/data.json)
    --csv               Also write a long-format CSV of every series
    --no-audit          Don't save audit/<asOf>/source_mapping.json or OCR responses
    --concurrency, -c   Parallel (company, KPI) pipelines (default: from config, else 1)
    --no-auto           Only use explicit and discover entries
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from kpi_official.config import AUDIT_DIR, CONFIG_DIR, ConfigError, get_config, load_sources, setup_logging
from kpi_official.hydration import run_hydration
from kpi_official.kpis import load_kpi_definitions
from kpi_official.transformer.source_tracker import SourceTracker
from kpi_official.writer.dataset_writer import DEFAULT_OUTPUT, save_dataset, save_series_csv

logger = setup_logging(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Extract quarterly KPIs from official filings into a dataset.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m kpi_official.main                                   # Example sources file
  python -m kpi_official.main sources.json -o public/data.json
  python -m kpi_official.main sources.json --csv data/series.csv
        """,
    )
    parser.add_argument(
        "sources",
        nargs="?",
        type=Path,
        default=CONFIG_DIR / "official_sources.json",
        help="Sources file with explicit entries and discovery settings",
    )
    parser.add_argument("--out", "-o", type=Path, default=DEFAULT_OUTPUT, help="Dataset JSON output path")
    parser.add_argument("--csv", type=Path, default=None, help="Also write a long-format CSV")
    parser.add_argument("--no-audit", action="store_true", help="Don't save the source mapping or OCR responses")
    parser.add_argument("--concurrency", "-c", type=int, default=None, help="Parallel (company, KPI) pipelines")
    parser.add_argument("--no-auto", action="store_true", help="Disable the automatic candidate search")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the pipeline.

    Returns
    -------
    int
        ``0`` on success; ``1`` when configuration or the sources file is
        missing or malformed.
    """
    args = build_parser().parse_args(argv)

    try:
        sources = load_sources(args.sources)
        config = get_config()
        kpis = load_kpi_definitions()
    except ConfigError as e:
        logger.error("%s", e)  # noqa: TRY400
        return 1

    as_of = str(sources.get("asOf", ""))
    tracker = None if args.no_audit else SourceTracker(as_of=as_of)
    ocr_audit_dir = None if args.no_audit else AUDIT_DIR / (as_of or "latest") / "ocr"
    try:
        dataset = asyncio.run(
            run_hydration(
                sources,
                config=config,
                kpis=kpis,
                tracker=tracker,
                ocr_audit_dir=ocr_audit_dir,
                concurrency=args.concurrency,
                auto_enabled=not args.no_auto,
            )
        )
    except ConfigError as e:
        logger.error("%s", e)  # noqa: TRY400
        return 1

    save_dataset(dataset, args.out)
    if args.csv is not None:
        save_series_csv(dataset, args.csv)
    if tracker is not None:
        tracker.save()
    return 0


if __name__ == "__main__":
    sys.exit(main())
