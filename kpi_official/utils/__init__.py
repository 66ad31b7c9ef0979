"""Shared utility functions for kpi_official package."""

from kpi_official.utils.parsing import (
    count_digits,
    fold_text,
    get_number_tokens,
    normalize_ocr_line,
    parse_number,
    pick_number_token,
    strip_html,
)

__all__ = [
    "count_digits",
    "fold_text",
    "get_number_tokens",
    "normalize_ocr_line",
    "parse_number",
    "pick_number_token",
    "strip_html",
]
