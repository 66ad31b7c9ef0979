"""Dataset writers for the presentation layer.

The JSON file is the contract with the dashboard; the long-format CSV is a
convenience export with one row per (ticker, KPI, period).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd

from kpi_official.config import PROJECT_ROOT, setup_logging

logger = setup_logging(__name__)

DEFAULT_OUTPUT = PROJECT_ROOT / "public" / "data.json"
CSV_COLUMNS = ["ticker", "kpi", "period", "value"]


def save_dataset(dataset: dict[str, Any], output_path: Path | None = None) -> Path:
    """Write the dataset as indented UTF-8 JSON.

    Parameters
    ----------
    dataset
        Output of :func:`kpi_official.hydration.run_hydration`.
    output_path
        Destination file; defaults to ``public/data.json`` under the project root.

    Returns
    -------
    Path
        Location of the written file.
    """
    filepath = Path(output_path) if output_path is not None else DEFAULT_OUTPUT
    filepath.parent.mkdir(parents=True, exist_ok=True)

    with filepath.open("w", encoding="utf-8") as f:
        json.dump(dataset, f, indent=2, ensure_ascii=False)

    logger.info("Saved dataset -> %s", filepath)
    return filepath


def dataset_to_frame(dataset: dict[str, Any]) -> pd.DataFrame:
    """Flatten every series into a long-format DataFrame."""
    rows = [
        {"ticker": company["ticker"], "kpi": kpi["key"], "period": point["period"], "value": point["value"]}
        for company in dataset.get("companies", [])
        for kpi in company.get("kpis", [])
        for point in kpi.get("series", [])
    ]
    return pd.DataFrame(rows, columns=CSV_COLUMNS)


def save_series_csv(dataset: dict[str, Any], output_path: Path) -> Path:
    """Write the long-format series table to CSV; missing values stay empty."""
    filepath = Path(output_path)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    dataset_to_frame(dataset).to_csv(filepath, index=False, encoding="utf-8")

    logger.info("Saved series CSV: %s", filepath)
    return filepath
