"""Fiscal quarter handling for the fixed 2021Q1–2025Q4 window.

Periods are the closed set of twenty ``YYYYQn`` keys; nothing outside that
window is ever produced. This module also infers a period from URLs, anchor
text, and document bodies written in either English (``Q3 2024``) or
Vietnamese (``quý III năm 2024``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from kpi_official.utils.parsing import fold_text

FIRST_YEAR = 2021
LAST_YEAR = 2025

ROMAN_TO_QUARTER = {"i": 1, "ii": 2, "iii": 3, "iv": 4}
QUARTER_TO_ROMAN = {q: r for r, q in ROMAN_TO_QUARTER.items()}


@dataclass(frozen=True, order=True)
class Period:
    """One fiscal quarter, ordered by ``(year, quarter)``."""

    year: int
    quarter: int

    @property
    def key(self) -> str:
        """Canonical ``YYYYQn`` token."""
        return f"{self.year}Q{self.quarter}"

    @property
    def roman(self) -> str:
        """Lower-case Roman numeral for the quarter (``i``..``iv``)."""
        return QUARTER_TO_ROMAN[self.quarter]

    @classmethod
    def parse(cls, token: str) -> Period:
        """Parse a ``YYYYQn`` token that belongs to the fixed window.

        Raises
        ------
        ValueError
            If the token is malformed or outside 2021Q1–2025Q4.
        """
        match = re.fullmatch(r"(\d{4})Q([1-4])", str(token).strip().upper())
        if not match:
            msg = f"Invalid period token: {token!r}"
            raise ValueError(msg)
        period = cls(int(match.group(1)), int(match.group(2)))
        if period.key not in PERIOD_SET:
            msg = f"Period {period.key} is outside {PERIODS[0]}..{PERIODS[-1]}"
            raise ValueError(msg)
        return period

    def __str__(self) -> str:
        return self.key


PERIODS: tuple[str, ...] = tuple(
    f"{year}Q{quarter}" for year in range(FIRST_YEAR, LAST_YEAR + 1) for quarter in range(1, 5)
)
PERIOD_SET = frozenset(PERIODS)


def is_known_period(token: str | None) -> bool:
    """Return whether ``token`` is one of the twenty fixed period keys."""
    return bool(token) and token in PERIOD_SET


def roman_to_quarter(token: str) -> int | None:
    """Map ``i``..``iv`` or ``1``..``4`` to a quarter number."""
    t = str(token or "").strip().lower()
    if t in ROMAN_TO_QUARTER:
        return ROMAN_TO_QUARTER[t]
    if t.isdigit() and 1 <= int(t) <= 4:
        return int(t)
    return None


# Patterns run against folded text; ``order`` tells which group holds the year.
_QUARTER_TOKEN = r"(1|2|3|4|iv|i{1,3})"
_STRING_SCANS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(20\d{2})[-_\s]*q([1-4])\b"), "YQ"),
    (re.compile(r"\bq([1-4])[-_\s]*(20\d{2})\b"), "QY"),
    (re.compile(rf"\b(20\d{{2}})[-_\s]*(?:nam[-_\s]*)?quy[-_\s]*{_QUARTER_TOKEN}\b"), "YQ"),
    (re.compile(rf"\bquy[-_\s]*{_QUARTER_TOKEN}[-_\s]*(?:nam[-_\s]*)?(20\d{{2}})\b"), "QY"),
)
_TEXT_SCANS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(20\d{2})\s*[-_/]?\s*q([1-4])\b"), "YQ"),
    (re.compile(r"\bq([1-4])\s*[-_/]?\s*(20\d{2})\b"), "QY"),
    (re.compile(rf"\b(20\d{{2}})\s*(?:nam)?\s*quy\s*{_QUARTER_TOKEN}\b"), "YQ"),
    (re.compile(rf"\bquy\s*{_QUARTER_TOKEN}\s*(?:nam)?\s*(20\d{{2}})\b"), "QY"),
)


def _period_from_match(match: re.Match[str], order: str, *, within_window: bool = True) -> str | None:
    year, q_token = (match.group(1), match.group(2)) if order == "YQ" else (match.group(2), match.group(1))
    quarter = roman_to_quarter(q_token)
    if quarter is None:
        return None
    key = f"{year}Q{quarter}"
    if within_window and key not in PERIOD_SET:
        return None
    return key


def infer_period_from_string(value: str | None) -> str | None:
    """Infer a period key from a URL or anchor text.

    Only the first match of each scan is considered, in the order
    ``2024q3``, ``q3-2024``, ``2024-nam-quy-iii``, ``quy-3-nam-2024``. The
    key is returned even when it falls outside the fixed window so callers
    can skip documents for other years without fetching them.

    Returns
    -------
    str | None
        ``YYYYQn`` key, or ``None`` when no marker is present.
    """
    text = fold_text(value or "")
    if not text:
        return None
    for regex, order in _STRING_SCANS:
        match = regex.search(text)
        if match:
            return _period_from_match(match, order, within_window=False)
    return None


def infer_period_from_text(folded_text: str) -> str | None:
    """Infer a period key from a document body.

    Every occurrence of every scan is tried; the first one that names a
    period inside the fixed window wins.
    """
    for regex, order in _TEXT_SCANS:
        for match in regex.finditer(folded_text):
            period = _period_from_match(match, order)
            if period:
                return period
    return None
