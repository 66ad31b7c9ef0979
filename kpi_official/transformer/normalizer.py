"""Unit normalization for extracted KPI figures.

Every KPI declares a :class:`UnitKind`; the raw number captured next to a
label is scaled into the canonical magnitude for that kind:

* ``percent``: decimal fraction (``18`` or ``18%`` -> ``0.18``)
* ``currency``: billions of VND (``ty``)
* ``volume``: millions of tonnes
* ``count``: unchanged

Plausibility bounds are applied by the caller, not here.
"""

from __future__ import annotations

import math
import re
from enum import StrEnum
from typing import TYPE_CHECKING

from kpi_official.config import setup_logging
from kpi_official.utils.parsing import fold_text

if TYPE_CHECKING:
    from collections.abc import Callable

logger = setup_logging(__name__)

__all__ = [
    "UnitKind",
    "normalize_by_unit",
]


class UnitKind(StrEnum):
    """Numeric nature of a KPI."""

    COUNT = "count"
    CURRENCY = "currency"
    VOLUME = "volume"
    PERCENT = "percent"

    @classmethod
    def coerce(cls, value: str | UnitKind | None) -> UnitKind | None:
        """Return the matching member, or ``None`` for unknown kinds."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None


# Magnitude thresholds used when no unit word is present
PERCENT_SCALE_THRESHOLD = 1.5
CURRENCY_RAW_VND_THRESHOLD = 1e6
CURRENCY_MILLIONS_THRESHOLD = 1e3
VOLUME_THOUSANDS_THRESHOLD = 100


def _has_word(text: str, *words: str) -> bool:
    """Return whether any of ``words`` appears as a whole word in ``text``."""
    return any(re.search(rf"(?<![a-z]){re.escape(word)}(?![a-z])", text) for word in words)


def _normalize_percent(value: float, token: str, context: str) -> float | None:
    if "%" in context or "%" in token or abs(value) > PERCENT_SCALE_THRESHOLD:
        return value / 100
    return value


def _normalize_currency(value: float, token: str, context: str) -> float | None:
    if _has_word(token, "billion", "ty"):
        return value
    if _has_word(token, "million", "trieu"):
        return value / 1000
    if _has_word(token, "usd"):
        # No FX conversion; USD figures are dropped
        return None
    if _has_word(context, "trieu", "million"):
        return value / 1000
    if _has_word(context, "ty", "billion"):
        return value
    if abs(value) >= CURRENCY_RAW_VND_THRESHOLD:
        return value / 1e9
    if abs(value) >= CURRENCY_MILLIONS_THRESHOLD:
        return value / 1e3
    return value


def _normalize_volume(value: float, token: str, context: str) -> float | None:  # noqa: ARG001
    if _has_word(token, "million", "trieu"):
        return value
    if _has_word(token, "thousand", "nghin"):
        return value / 1000
    if abs(value) > VOLUME_THOUSANDS_THRESHOLD:
        return value / 1000
    return value


def _normalize_count(value: float, token: str, context: str) -> float | None:  # noqa: ARG001
    return value


_NORMALIZERS: dict[UnitKind, Callable[[float, str, str], float | None]] = {
    UnitKind.PERCENT: _normalize_percent,
    UnitKind.CURRENCY: _normalize_currency,
    UnitKind.VOLUME: _normalize_volume,
    UnitKind.COUNT: _normalize_count,
}


def normalize_by_unit(
    value: float | None,
    unit_token: str | None,
    context: str | None,
    unit_kind: str | UnitKind,
) -> float | None:
    """Scale a raw parsed number into the canonical unit for ``unit_kind``.

    Parameters
    ----------
    value
        Number returned by :func:`~kpi_official.utils.parsing.parse_number`.
    unit_token
        Unit word captured right after the number (``"ty"``, ``"trieu"``,
        ``"%"``...), possibly empty.
    context
        Surrounding text (usually the whole regex match) used when the token
        is absent.
    unit_kind
        KPI unit kind; unknown kinds pass the value through.

    Returns
    -------
    float | None
        Normalized value, or ``None`` when the input is missing or the unit
        is rejected (USD amounts).

    Examples
    --------
    >>> normalize_by_unit(8235606, "ty", "8.235.606 ty", "currency")
    8235606
    >>> normalize_by_unit(8235606, "trieu", "8.235.606 trieu", "currency")
    8235.606
    """
    if value is None or not math.isfinite(value):
        return None

    kind = UnitKind.coerce(unit_kind)
    if kind is None:
        return value

    token = fold_text(unit_token)
    ctx = fold_text(context)
    return _NORMALIZERS[kind](value, token, ctx)
