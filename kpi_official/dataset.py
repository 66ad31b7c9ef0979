"""Output dataset and per-KPI series.

A series always holds exactly one point per fixed period, in chronological
order, and each point is filled at most once: the first accepted value for a
period wins and later values for it are ignored.
"""

from __future__ import annotations

import copy
from typing import Any

from kpi_official.config import get_catalog
from kpi_official.periods import PERIOD_SET, PERIODS

Series = list[dict[str, Any]]


def build_series() -> Series:
    """Return a blank series: ``[{"period": "2021Q1", "value": None}, ...]``."""
    return [{"period": period, "value": None} for period in PERIODS]


def missing_periods(series: Series) -> list[str]:
    """Periods whose value is still ``None``, in series order."""
    return [point["period"] for point in series if point["value"] is None]


def assign_value(series: Series, period: str, value: float | None) -> bool:
    """Fill ``period`` with ``value`` unless it is already filled.

    Returns
    -------
    bool
        ``True`` when the value was stored.
    """
    if value is None or period not in PERIOD_SET:
        return False
    for point in series:
        if point["period"] == period:
            if point["value"] is not None:
                return False
            point["value"] = value
            return True
    return False


def dataset_template(as_of: str = "", catalog: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build the output skeleton with blank series for every catalog KPI.

    Parameters
    ----------
    as_of : str, optional
        ``asOf`` label copied from the sources file.
    catalog : dict[str, Any], optional
        Display catalog; defaults to ``config/catalog.json``.

    Returns
    -------
    dict[str, Any]
        ``{"asOf": ..., "companies": [{ticker, name, kpis: [{..., series}]}]}``
    """
    source = catalog if catalog is not None else get_catalog()
    companies = []
    for company in source.get("companies", []):
        kpis = []
        for kpi in company.get("kpis", []):
            entry = copy.deepcopy(kpi)
            entry["series"] = build_series()
            kpis.append(entry)
        companies.append({"ticker": company["ticker"], "name": company.get("name", ""), "kpis": kpis})
    return {"asOf": as_of or "", "companies": companies}
