"""Tests for the dataset skeleton and first-value-wins series updates."""

from __future__ import annotations

from kpi_official.config import get_catalog
from kpi_official.dataset import assign_value, build_series, dataset_template, missing_periods
from kpi_official.periods import PERIODS


class TestSeries:
    """Tests for series construction and assignment."""

    def test_build_series(self) -> None:
        """Twenty ordered, unique, empty points."""
        series = build_series()
        assert [p["period"] for p in series] == list(PERIODS)
        assert all(p["value"] is None for p in series)
        assert missing_periods(series) == list(PERIODS)

    def test_first_value_wins(self) -> None:
        """A filled period rejects later values."""
        series = build_series()
        assert assign_value(series, "2024Q4", 412)
        assert not assign_value(series, "2024Q4", 999)
        assert series[-5] == {"period": "2024Q4", "value": 412}
        assert "2024Q4" not in missing_periods(series)

    def test_none_and_unknown_periods_rejected(self) -> None:
        """Neither a null value nor a foreign period changes the series."""
        series = build_series()
        assert not assign_value(series, "2024Q4", None)
        assert not assign_value(series, "2026Q1", 1)
        assert series == build_series()

    def test_zero_is_a_value(self) -> None:
        """Zero fills a period; only ``None`` means missing."""
        series = build_series()
        assert assign_value(series, "2021Q1", 0.0)
        assert missing_periods(series)[0] == "2021Q2"


class TestDatasetTemplate:
    """Tests for :func:`dataset_template`."""

    def test_catalog_copied_with_series(self) -> None:
        """Display fields are copied; the catalog itself is not mutated."""
        catalog = get_catalog()
        dataset = dataset_template("2025Q4", catalog)

        assert dataset["asOf"] == "2025Q4"
        assert [c["ticker"] for c in dataset["companies"]] == ["PNJ", "MWG", "HPG", "TCB"]
        tcb_credit = dataset["companies"][3]["kpis"][0]
        assert tcb_credit["key"] == "credit_yoy"
        assert tcb_credit["isRate"] is True
        assert len(tcb_credit["series"]) == 20
        assert "series" not in catalog["companies"][3]["kpis"][0]

    def test_series_are_independent(self) -> None:
        """Filling one KPI leaves the others untouched."""
        dataset = dataset_template()
        first, second = dataset["companies"][0]["kpis"][:2]
        assign_value(first["series"], "2021Q1", 1)
        assert second["series"][0]["value"] is None
