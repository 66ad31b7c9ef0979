"""kpi-official: quarterly KPI extraction from official filings.

The package finds and reads PDF filings and investor-relations pages of PNJ,
MWG, HPG and TCB, extracts store counts, revenue, steel sales volume and
credit growth, and assembles a dataset keyed by the twenty quarters
2021Q1–2025Q4.

Architecture
------------
* ``scraper``: httpx fetching, the per-run document cache, sitemap and
  listing-page discovery with candidate scoring.
* ``extractor``: pdfplumber text layer, PyMuPDF rasterization, OCR chain
  (tesseract CLI, Mistral OCR) and the regex pattern-bank engine.
* ``transformer``: unit normalization and source provenance tracking.
* ``writer``: JSON dataset and long-format CSV output.
* ``hydration``: the per (company, KPI) orchestrator.

Configuration and credentials
-----------------------------
Tuning knobs live in ``config/*.json``. Paths default to ``audit/``, ``logs/``
and ``temp/`` but respect ``AUDIT_DIR``, ``LOGS_DIR`` and ``TEMP_DIR``.
``TESSERACT_PATH`` points at an explicit OCR binary and ``MISTRAL_API_KEY``
enables the embedded OCR engine.

Examples
--------
Hydrate the example sources file:

    >>> python -m kpi_official.main config/official_sources.json
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
