"""Pattern-bank extraction of KPI values from folded document text.

Two extractors are provided:

* :func:`extract_value` scans every occurrence of every pattern of a bank,
  in bank order, and returns the first number that survives unit
  normalization, the plausibility bounds, and (when ``strict_period`` is
  set) the quarter/year proximity check.
* :func:`extract_from_lines` is the last resort for noisy OCR output: it reads
  the first plausible number that follows a row label on the same line.

:func:`extract_for_kpi` chains both banks of a :class:`KpiDefinition` under
strict then relaxed period matching.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from kpi_official.config import setup_logging
from kpi_official.periods import QUARTER_TO_ROMAN
from kpi_official.transformer.normalizer import normalize_by_unit
from kpi_official.utils.parsing import (
    DEFAULT_MIN_DIGITS,
    fold_text,
    get_number_tokens,
    normalize_ocr_line,
    parse_number,
    pick_number_token,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from kpi_official.kpis import KpiDefinition
    from kpi_official.transformer.normalizer import UnitKind

logger = setup_logging(__name__)

_PERIOD_KEY = re.compile(r"(\d{4})Q([1-4])", re.IGNORECASE)
_BARE_YEAR = re.compile(r"-?20\d{2}")


@dataclass(frozen=True)
class ExtractionSettings:
    """Proximity window and digit minimums used by the pattern engine."""

    window_before: int = 180
    window_after: int = 260
    min_digits: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_MIN_DIGITS))

    @classmethod
    def from_config(cls, extraction_config: dict[str, Any] | None) -> ExtractionSettings:
        """Build settings from the ``extraction`` block of ``config.json``."""
        block = extraction_config or {}
        defaults = cls()
        return cls(
            window_before=int(block.get("window_before", defaults.window_before)),
            window_after=int(block.get("window_after", defaults.window_after)),
            min_digits={**defaults.min_digits, **block.get("min_digits", {})},
        )


DEFAULT_SETTINGS = ExtractionSettings()


# =============================================================================
# Period proximity
# =============================================================================


def has_period_near_match(
    text: str,
    index: int,
    period: str | None,
    window_before: int = 180,
    window_after: int = 260,
) -> bool:
    """Check that the year and a quarter marker sit near ``index``.

    The window ``text[index - window_before : index + window_after]`` must
    contain the 4-digit year and one of ``q<n>``, ``quy <n>`` or
    ``quy <roman>``. A missing ``period`` always passes.
    """
    if not period:
        return True
    match = _PERIOD_KEY.fullmatch(period.strip())
    if not match:
        return False
    year, quarter = match.group(1), match.group(2)
    roman = QUARTER_TO_ROMAN[int(quarter)]

    window = text[max(0, index - window_before) : index + window_after]
    quarter_re = re.compile(rf"(q\s*{quarter}|quy\s*{quarter}|quy\s*{roman})(?![0-9a-z])", re.IGNORECASE)
    return bool(quarter_re.search(window)) and year in window


# =============================================================================
# Pattern banks
# =============================================================================


def within_bounds(value: float, min_value: float | None = None, max_value: float | None = None) -> bool:
    """Check ``value`` against optional inclusive plausibility bounds."""
    if min_value is not None and value < min_value:
        return False
    return not (max_value is not None and value > max_value)


def extract_value(
    folded_text: str,
    patterns: Iterable[str],
    unit_kind: str | UnitKind,
    min_value: float | None = None,
    max_value: float | None = None,
    period: str | None = None,
    strict_period: bool = True,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
) -> float | None:
    """Return the first plausible value matched by a pattern bank.

    Parameters
    ----------
    folded_text : str
        Text produced by :func:`~kpi_official.utils.parsing.fold_text`.
    patterns : Iterable[str]
        Regexes tried in order; group 1 holds the number and the optional
        group 2 the unit word.
    unit_kind : str | UnitKind
        Drives digit minimums and unit normalization.
    min_value, max_value : float, optional
        Plausibility bounds applied after normalization.
    period : str, optional
        Expected ``YYYYQn`` period for the proximity check.
    strict_period : bool, optional
        When ``True``, matches without the period nearby are rejected.
    settings : ExtractionSettings, optional
        Proximity window and digit minimums.

    Returns
    -------
    float | None
        Normalized value, or ``None`` when nothing survives the filters.
    """
    kind = str(unit_kind)
    for pattern in patterns:
        try:
            regex = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            logger.warning("Skipping invalid pattern %r: %s", pattern, e)
            continue

        for match in regex.finditer(folded_text):
            captured = match.group(1) if regex.groups >= 1 else match.group(0)
            if captured is None:
                continue
            token = pick_number_token(captured, kind, settings.min_digits)
            unit_token = (match.group(2) or "") if regex.groups >= 2 else ""
            value = normalize_by_unit(parse_number(token), unit_token, match.group(0), kind)
            if value is None or not within_bounds(value, min_value, max_value):
                continue
            if strict_period and not has_period_near_match(
                folded_text, match.start(), period, settings.window_before, settings.window_after
            ):
                continue
            return value
    return None


def extract_from_lines(
    text: str,
    row_patterns: Iterable[str],
    unit_kind: str | UnitKind,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float | None:
    """Read the first plausible number after a row label on the same line.

    Lines are cleaned of common OCR separator artifacts and folded one at a
    time, so table rows survive even when OCR breaks their column alignment.
    Bare years (``2024``) after the label are skipped.
    """
    compiled = [re.compile(p, re.IGNORECASE) for p in row_patterns]
    if not compiled:
        return None
    kind = str(unit_kind)

    for line in text.splitlines():
        folded = fold_text(normalize_ocr_line(line))
        if not folded:
            continue
        for regex in compiled:
            label = regex.search(folded)
            if not label:
                continue
            rest = folded[label.end() :]
            for token in get_number_tokens(rest):
                if _BARE_YEAR.fullmatch(token):
                    continue
                value = normalize_by_unit(parse_number(token), "", rest, kind)
                if value is not None and within_bounds(value, min_value, max_value):
                    return value
    return None


def extract_for_kpi(
    folded_text: str,
    kpi: KpiDefinition,
    period: str | None,
    relaxed: bool = False,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
) -> tuple[float | None, str | None]:
    """Run the primary then fallback bank under strict, then relaxed, matching.

    Parameters
    ----------
    folded_text : str
        Folded document text.
    kpi : KpiDefinition
        Pattern banks, unit kind and bounds.
    period : str | None
        Expected period.
    relaxed : bool, optional
        Allow a second pass without the proximity check.
    settings : ExtractionSettings, optional
        Engine knobs.

    Returns
    -------
    tuple[float | None, str | None]
        ``(value, "strict" | "relaxed")`` on success, ``(None, None)`` otherwise.
    """
    passes = [(True, "strict")]
    if relaxed:
        passes.append((False, "relaxed"))

    for strict, label in passes:
        for bank in kpi.pattern_banks:
            value = extract_value(
                folded_text,
                bank,
                kpi.unit_kind,
                kpi.min_value,
                kpi.max_value,
                period,
                strict_period=strict,
                settings=settings,
            )
            if value is not None:
                return value, label
    return None, None
