"""KPI definitions loaded from ``config/kpis.json``.

Each KPI carries ordered regex pattern banks that run against folded text:

* ``primary``: label + number patterns tried first
* ``fallback``: broader or English-language patterns
* ``row_patterns``: bare row labels for the line-anchored OCR fallback

Group 1 of a value pattern captures the number (possibly with neighbouring
numbers, see :func:`~kpi_official.utils.parsing.pick_number_token`); an
optional group 2 captures the unit word.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import cache
from typing import Any

from kpi_official.config import ConfigError, get_kpi_specs
from kpi_official.transformer.normalizer import UnitKind


@dataclass(frozen=True)
class KpiDefinition:
    """Immutable extraction recipe for one KPI type."""

    key: str
    unit_kind: UnitKind
    primary: tuple[str, ...]
    fallback: tuple[str, ...] = ()
    row_patterns: tuple[str, ...] = ()
    min_value: float | None = None
    max_value: float | None = None
    url_keywords: tuple[str, ...] = ()
    ocr_keywords: tuple[str, ...] = ()
    requires_pdf: bool = False

    @property
    def pattern_banks(self) -> tuple[tuple[str, ...], ...]:
        """Primary then fallback bank, skipping empty banks."""
        return tuple(bank for bank in (self.primary, self.fallback) if bank)

    @classmethod
    def from_dict(cls, key: str, block: dict[str, Any]) -> KpiDefinition:
        """Build a definition from its ``kpis.json`` block.

        Raises
        ------
        ConfigError
            If the unit kind is unknown, no primary pattern is given, or a
            pattern does not compile.
        """
        unit_kind = UnitKind.coerce(block.get("unit_kind"))
        if unit_kind is None:
            msg = f"KPI {key!r} has unknown unit_kind {block.get('unit_kind')!r}"
            raise ConfigError(msg)

        primary = tuple(block.get("primary", []))
        if not primary:
            msg = f"KPI {key!r} needs at least one primary pattern"
            raise ConfigError(msg)

        fallback = tuple(block.get("fallback", []))
        row_patterns = tuple(block.get("row_patterns", []))
        for pattern in (*primary, *fallback, *row_patterns):
            try:
                re.compile(pattern)
            except re.error as err:
                msg = f"KPI {key!r} has an invalid pattern {pattern!r}: {err}"
                raise ConfigError(msg) from err

        return cls(
            key=key,
            unit_kind=unit_kind,
            primary=primary,
            fallback=fallback,
            row_patterns=row_patterns,
            min_value=block.get("min_value"),
            max_value=block.get("max_value"),
            url_keywords=tuple(block.get("url_keywords", [])),
            ocr_keywords=tuple(block.get("ocr_keywords", [])),
            requires_pdf=bool(block.get("requires_pdf", False)),
        )


def parse_kpi_definitions(specs: dict[str, Any]) -> dict[str, KpiDefinition]:
    """Turn a raw ``kpis.json`` mapping into definitions keyed by KPI key."""
    return {key: KpiDefinition.from_dict(key, block) for key, block in specs.items()}


@cache
def load_kpi_definitions() -> dict[str, KpiDefinition]:
    """Load and validate every KPI definition once per process."""
    return parse_kpi_definitions(get_kpi_specs())
