"""Extractor module for PDF text, OCR, and pattern-bank KPI extraction.

Key exports:
    extract_value: Scan a pattern bank over folded text with period proximity
    extract_from_lines: Row-anchored fallback for noisy OCR text
    extract_for_kpi: Primary/fallback banks under strict then relaxed matching
    OcrChain: Ordered OCR strategies (tesseract CLI, Mistral OCR)
    OcrUnavailableError: Raised when no OCR engine can run
"""

from kpi_official.extractor.extraction import (
    ExtractionSettings,
    extract_for_kpi,
    extract_from_lines,
    extract_value,
    has_period_near_match,
)
from kpi_official.extractor.ocr_fallback import (
    MistralStrategy,
    OcrChain,
    OcrSettings,
    OcrUnavailableError,
    TesseractStrategy,
    build_ocr_chain,
)
from kpi_official.extractor.ocr_tesseract import find_tesseract_binary, score_ocr_text
from kpi_official.extractor.pdf_parser import RenderedPage, extract_text_from_pdf_bytes, render_page, render_pages

__all__ = [
    # Pattern extraction
    "ExtractionSettings",
    "MistralStrategy",
    # OCR
    "OcrChain",
    "OcrSettings",
    "OcrUnavailableError",
    # PDF
    "RenderedPage",
    "TesseractStrategy",
    "build_ocr_chain",
    "extract_for_kpi",
    "extract_from_lines",
    "extract_text_from_pdf_bytes",
    "extract_value",
    "find_tesseract_binary",
    "has_period_near_match",
    "render_page",
    "render_pages",
    "score_ocr_text",
]
