"""Source tracking for audit and provenance.

Every value written into a series can be traced back to the document it was
read from and the route that produced it (explicit entry, text layer, relaxed
period match, OCR, or OCR line scan).

Classes
-------
ExtractionOutcome
    Return contract of the extraction routes: value, period, source URL.
SourceTracker
    Collects accepted outcomes per ``ticker/kpi`` and persists them to JSON.

Notes
-----
Source mappings are saved to ``audit/{as_of}/source_mapping.json``.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from kpi_official.config import AUDIT_DIR, setup_logging

if TYPE_CHECKING:
    from pathlib import Path

# Module logger for source tracking operations
logger = setup_logging(__name__)

# Extraction routes, from most to least trustworthy
METHOD_CONFIDENCE = {
    "explicit": 1.0,
    "text": 0.9,
    "text_relaxed": 0.7,
    "ocr": 0.6,
    "ocr_lines": 0.4,
}


@dataclass
class ExtractionOutcome:
    """Result of one extraction attempt.

    Attributes
    ----------
    value : float or None
        Normalized value, ``None`` on a miss.
    period : str
        Period key the value belongs to.
    source_url : str
        Document URL the value was read from.
    method : str
        Route that produced the value (see :data:`METHOD_CONFIDENCE`).
    timestamp : str
        ISO 8601 timestamp when the outcome was recorded.
    """

    value: float | None
    period: str
    source_url: str
    method: str = "text"
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def confidence(self) -> float:
        """Heuristic confidence derived from the extraction route."""
        return METHOD_CONFIDENCE.get(self.method, 0.5)


@dataclass
class SourceTracker:
    """Track data sources for the audit trail of one run.

    Attributes
    ----------
    as_of : str
        Dataset ``asOf`` label, used as the audit sub-directory.
    mappings : dict[str, list[ExtractionOutcome]]
        ``"TICKER/kpi"`` to accepted outcomes in assignment order.
    """

    as_of: str
    mappings: dict[str, list[ExtractionOutcome]] = field(default_factory=dict)

    def add_outcome(self, ticker: str, kpi_key: str, outcome: ExtractionOutcome) -> None:
        """Record an accepted outcome for ``ticker/kpi_key``."""
        series_key = f"{ticker}/{kpi_key}"
        self.mappings.setdefault(series_key, []).append(outcome)
        logger.debug("Added source for '%s' %s: %s", series_key, outcome.period, outcome.source_url)

    def get_source(self, ticker: str, kpi_key: str, period: str) -> ExtractionOutcome | None:
        """Return the outcome that filled ``period``, if any."""
        for outcome in self.mappings.get(f"{ticker}/{kpi_key}", []):
            if outcome.period == period:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "as_of": self.as_of,
            "generated_at": datetime.now(UTC).isoformat(),
            "mappings": {
                key: [{**asdict(o), "confidence": o.confidence} for o in outcomes]
                for key, outcomes in self.mappings.items()
            },
        }

    def save(self, output_dir: Path | None = None) -> Path:
        """Save source mappings to the audit directory.

        Parameters
        ----------
        output_dir : Path or None, optional
            Directory to save to. Defaults to ``AUDIT_DIR/{as_of}``.

        Returns
        -------
        Path
            Path to saved JSON file.
        """
        save_dir = output_dir if output_dir is not None else AUDIT_DIR / (self.as_of or "latest")
        save_dir.mkdir(parents=True, exist_ok=True)
        filepath = save_dir / "source_mapping.json"

        with filepath.open("w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

        logger.info("Saved source mapping to: %s", filepath)
        return filepath

    @classmethod
    def load(cls, filepath: Path) -> SourceTracker:
        """Load a tracker previously written by :meth:`save`."""
        with filepath.open(encoding="utf-8") as f:
            data = json.load(f)

        tracker = cls(as_of=data.get("as_of", ""))
        for series_key, outcomes in data.get("mappings", {}).items():
            ticker, _, kpi_key = series_key.partition("/")
            for item in outcomes:
                tracker.add_outcome(
                    ticker,
                    kpi_key,
                    ExtractionOutcome(
                        value=item.get("value"),
                        period=item["period"],
                        source_url=item["source_url"],
                        method=item.get("method", "text"),
                        timestamp=item.get("timestamp", ""),
                    ),
                )
        return tracker
