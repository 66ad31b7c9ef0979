"""Tests for the pattern-bank extraction engine and the row-anchored fallback."""

from __future__ import annotations

import pytest

from kpi_official.extractor.extraction import (
    ExtractionSettings,
    extract_for_kpi,
    extract_from_lines,
    extract_value,
    has_period_near_match,
    within_bounds,
)
from kpi_official.kpis import KpiDefinition
from kpi_official.transformer.normalizer import UnitKind
from kpi_official.utils.parsing import fold_text

FAR_FILLER = " x" * 300


# =============================================================================
# Period proximity
# =============================================================================


class TestPeriodProximity:
    """Tests for the quarter/year window check."""

    def test_vietnamese_marker_next_to_match(self) -> None:
        """'quý 4 năm 2024' right before the match passes for 2024Q4."""
        text = fold_text("Kết quả quý 4 năm 2024: tổng số cửa hàng 412")
        assert has_period_near_match(text, text.index("tong"), "2024Q4")

    def test_marker_far_away_fails(self) -> None:
        """The same marker 500+ characters away fails."""
        text = "quy 4 nam 2024" + FAR_FILLER + " tong so cua hang 412"
        assert not has_period_near_match(text, text.index("tong"), "2024Q4")

    def test_marker_after_match_within_window(self) -> None:
        """Markers up to 260 characters after the match count."""
        text = "tong so cua hang 412 tinh den het q4 2024"
        assert has_period_near_match(text, 0, "2024Q4")

    def test_roman_numeral_does_not_alias(self) -> None:
        """'quy iv' is not a match for quarter i."""
        text = "quy iv nam 2024 tong so cua hang 412"
        assert has_period_near_match(text, text.index("tong"), "2024Q4")
        assert not has_period_near_match(text, text.index("tong"), "2024Q1")

    def test_year_required(self) -> None:
        """A quarter marker alone is not enough."""
        text = "quy 4 nam 2023 tong so cua hang 412"
        assert not has_period_near_match(text, text.index("tong"), "2024Q4")

    def test_missing_period_always_passes(self) -> None:
        """Without an expected period there is nothing to check."""
        assert has_period_near_match("tong so cua hang 412", 0, None)

    def test_window_is_configurable(self) -> None:
        """A narrower window rejects markers the default accepts."""
        text = "quy 4 nam 2024" + " x" * 50 + " tong so cua hang 412"
        index = text.index("tong")
        assert has_period_near_match(text, index, "2024Q4")
        assert not has_period_near_match(text, index, "2024Q4", window_before=20, window_after=20)


# =============================================================================
# Pattern banks
# =============================================================================


class TestExtractValue:
    """Tests for :func:`extract_value`."""

    def test_store_count_without_period(self, kpis: dict[str, KpiDefinition]) -> None:
        """Relaxed matching reads the count; strict matching without markers does not."""
        stores = kpis["stores"]
        folded = fold_text("<p>Tổng số cửa hàng 412 cửa hàng</p>")
        assert "tong so cua hang 412 cua hang" in folded

        relaxed = extract_value(folded, stores.primary, stores.unit_kind, 50, None, "2024Q4", strict_period=False)
        strict = extract_value(folded, stores.primary, stores.unit_kind, 50, None, "2024Q4", strict_period=True)
        assert relaxed == 412
        assert strict is None

    def test_revenue_with_adjacent_numbers(self, kpis: dict[str, KpiDefinition]) -> None:
        """The six-digit figure is picked over the quarter and year tokens."""
        rev = kpis["rev"]
        folded = "doanh thu thuan q3 2025 8.235.606 trieu dong"
        value = extract_value(folded, rev.primary, rev.unit_kind, rev.min_value, rev.max_value, "2025Q3")
        assert value == pytest.approx(8235.606)

    def test_bounds_reject_implausible_values(self, kpis: dict[str, KpiDefinition]) -> None:
        """A figure left in billions above the maximum is discarded."""
        rev = kpis["rev"]
        folded = "doanh thu thuan q3 2025 8.235.606 ty dong"
        assert extract_value(folded, rev.primary, rev.unit_kind, rev.min_value, rev.max_value, "2025Q3") is None

    def test_scans_every_occurrence(self) -> None:
        """A later occurrence near the right period wins over an earlier one."""
        text = "so cua hang 300 quy 1 nam 2023" + FAR_FILLER + " quy 2 nam 2024 so cua hang 350"
        value = extract_value(text, [r"so\s*cua\s*hang\s*([0-9]+)"], "count", 50, None, "2024Q2")
        assert value == 350

    def test_earlier_pattern_takes_precedence(self) -> None:
        """Bank order matters more than position in the text."""
        text = "mang luoi 200 cua hang. tong so cua hang 412"
        patterns = [r"tong\s*so\s*cua\s*hang\s*([0-9]+)", r"mang\s*luoi\s*([0-9]+)"]
        assert extract_value(text, patterns, "count", 50, None, None, strict_period=False) == 412

    def test_percent_sign_from_unit_group(self, kpis: dict[str, KpiDefinition]) -> None:
        """Credit growth '18,5%' becomes 0.185."""
        credit = kpis["credit_yoy"]
        folded = fold_text("Tăng trưởng tín dụng 18,5% so với cùng kỳ, quý 4 năm 2024")
        value = extract_value(
            folded, credit.primary, credit.unit_kind, credit.min_value, credit.max_value, "2024Q4"
        )
        assert value == pytest.approx(0.185)

    def test_invalid_pattern_is_skipped(self) -> None:
        """A broken regex in a bank does not stop later patterns."""
        value = extract_value("so cua hang 412", ["(unclosed", r"cua\s*hang\s*([0-9]+)"], "count", strict_period=False)
        assert value == 412

    def test_pattern_without_group_uses_whole_match(self) -> None:
        """Patterns with no capture group read the number from the match."""
        assert extract_value("co 412 cua hang", [r"[0-9]+"], "count", strict_period=False) == 412


class TestExtractForKpi:
    """Tests for primary/fallback banks under strict then relaxed matching."""

    def test_relaxed_pass_only_when_allowed(self, kpis: dict[str, KpiDefinition]) -> None:
        """Without markers the value is found only in relaxed mode."""
        folded = "tong so cua hang 412 cua hang"
        assert extract_for_kpi(folded, kpis["stores"], "2024Q4", relaxed=True) == (412, "relaxed")
        assert extract_for_kpi(folded, kpis["stores"], "2024Q4", relaxed=False) == (None, None)

    def test_fallback_bank(self, kpis: dict[str, KpiDefinition]) -> None:
        """English phrasing is caught by the fallback bank."""
        folded = "number of stores 412 at the end of q4 2024"
        assert extract_for_kpi(folded, kpis["stores"], "2024Q4") == (412, "strict")

    def test_strict_across_banks_before_relaxed(self) -> None:
        """A strict fallback hit beats a relaxed primary hit."""
        kpi = KpiDefinition(
            key="stores",
            unit_kind=UnitKind.COUNT,
            primary=(r"alpha\s*([0-9]+)",),
            fallback=(r"beta\s*([0-9]+)",),
            min_value=1,
        )
        text = "alpha 100" + FAR_FILLER + " q4 2024 beta 200"
        assert extract_for_kpi(text, kpi, "2024Q4", relaxed=True) == (200, "strict")


# =============================================================================
# Row-anchored fallback
# =============================================================================


class TestExtractFromLines:
    """Tests for :func:`extract_from_lines`."""

    def test_reads_number_after_label(self, kpis: dict[str, KpiDefinition]) -> None:
        """The unit in the row label scales the first plausible figure."""
        rev = kpis["rev"]
        text = "BÁO CÁO KẾT QUẢ\nDoanh thu thuần (triệu đồng)   15.234.567   12.000.000\nLợi nhuận 123"
        value = extract_from_lines(text, rev.row_patterns, rev.unit_kind, rev.min_value, rev.max_value)
        assert value == pytest.approx(15234.567)

    def test_skips_years_and_implausible_tokens(self, kpis: dict[str, KpiDefinition]) -> None:
        """Year columns and note numbers are passed over."""
        stores = kpis["stores"]
        text = "Chỉ tiêu 2024\nTổng số cửa hàng | 5 | 2024 | 412"
        assert extract_from_lines(text, stores.row_patterns, stores.unit_kind, stores.min_value) == 412

    def test_repairs_ocr_separators(self) -> None:
        """'1 .234' on an OCR line is read as one token."""
        text = "So cua hang 1 .234.567"
        assert extract_from_lines(text, [r"so\s*cua\s*hang"], "count", 50) == 1234567

    def test_no_label(self) -> None:
        """Lines without any row label yield None."""
        assert extract_from_lines("nothing here 412", [r"so\s*cua\s*hang"], "count") is None
        assert extract_from_lines("so cua hang 412", [], "count") is None


def test_settings_from_config() -> None:
    """Configured windows and digit minimums override the defaults."""
    settings = ExtractionSettings.from_config({"window_before": 50, "min_digits": {"currency": 4}})
    assert settings.window_before == 50
    assert settings.window_after == 260
    assert settings.min_digits["currency"] == 4
    assert settings.min_digits["volume"] == 2


@pytest.mark.parametrize(
    ("value", "min_value", "max_value", "expected"),
    [
        (50, 50, None, True),
        (49, 50, None, False),
        (1.0, -0.2, 1.0, True),
        (1.01, -0.2, 1.0, False),
        (-5, None, None, True),
    ],
)
def test_within_bounds(value: float, min_value: float | None, max_value: float | None, expected: bool) -> None:
    """Bounds are inclusive and either side may be open."""
    assert within_bounds(value, min_value, max_value) is expected
