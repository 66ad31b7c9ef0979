"""Unit normalization and provenance tracking for extracted KPI values."""

from kpi_official.transformer.normalizer import UnitKind, normalize_by_unit
from kpi_official.transformer.source_tracker import ExtractionOutcome, SourceTracker

__all__ = [
    "ExtractionOutcome",
    "SourceTracker",
    "UnitKind",
    "normalize_by_unit",
]
