"""Shared parsing utilities for locale-ambiguous numbers and document text.

Vietnamese filings mix ``8.235.606`` (dot thousands) with ``1,234.56``
(Western) and ``18,5`` (comma decimal), and the same label may appear with or
without diacritics. Everything downstream matches against *folded* text
produced here.
"""

from __future__ import annotations

import logging
import math
import re
import unicodedata

from lxml import etree
from lxml import html as lxml_html

logger = logging.getLogger(__name__)

# Minimum digits (separators ignored) a token needs before it is taken as
# the real figure rather than a page number or footnote marker.
DEFAULT_MIN_DIGITS = {"currency": 6, "volume": 2, "percent": 1, "count": 1}

_NUMERIC_TOKEN = re.compile(r"^-?\d[\d.,]*$")
_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)


# =============================================================================
# Text Normalization
# =============================================================================


def fold_text(text: str | None) -> str:
    """Strip diacritics, lowercase, and collapse whitespace.

    Examples
    --------
    - ``"Số cửa hàng"`` -> ``"so cua hang"``
    - ``"Quý  IV\\nnăm 2024"`` -> ``"quy iv nam 2024"``
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text))
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    # đ has no combining form
    stripped = stripped.replace("đ", "d").replace("Đ", "D")
    return re.sub(r"\s+", " ", stripped.lower()).strip()


def strip_html(markup: str | None) -> str:
    """Return the visible text of an HTML page.

    ``<script>`` and ``<style>`` elements are removed together with their
    content before the remaining text nodes are joined, so numbers embedded
    in JS or CSS never reach the pattern engine.
    """
    if not markup or not markup.strip():
        return ""

    try:
        root = lxml_html.fromstring(_XML_DECLARATION.sub("", markup))
    except etree.ParserError:
        # lxml refuses documents with no elements at all (comments only)
        logger.debug("HTML document has no parsable elements")
        return ""

    for node in root.xpath("//script | //style | //comment()"):
        if node is not root and node.getparent() is not None:
            node.drop_tree()
    if root.tag in {"script", "style"}:
        return ""

    return " ".join(chunk for chunk in root.itertext() if chunk.strip())


def normalize_ocr_line(line: str) -> str:
    """Fix common OCR artifacts around separators.

    Examples
    --------
    - ``'2 ,59'`` -> ``'2,59'``
    - ``'8 .235.606'`` -> ``'8.235.606'``
    - ``'( 62.982)'`` -> ``'-62.982'``
    """
    result = re.sub(r"\(\s*([\d.,]+)\s*\)", r"-\1", line)
    return re.sub(r"(\d)\s+([,.])(\d)", r"\1\2\3", result)


# =============================================================================
# Number Parsing
# =============================================================================


def parse_number(raw: str | None) -> float | None:
    """Parse a number whose separators may follow either locale.

    Rules, applied in order after scrubbing everything except digits,
    ``,``, ``.`` and ``-``:

    1. two or more dots and no comma: dots are thousands separators
    2. two or more commas and no dot: commas are thousands separators
    3. exactly one comma and no dot: the comma is the decimal separator
    4. both present: commas are thousands, the dot is decimal
    5. otherwise parse as-is

    Examples
    --------
    - ``"1.234.567"`` -> ``1234567.0``
    - ``"1,234,567"`` -> ``1234567.0``
    - ``"1,234.56"`` -> ``1234.56``
    - ``"1,23"`` -> ``1.23``

    Returns
    -------
    float | None
        Parsed value, or ``None`` for input without a usable number.
    """
    if raw is None:
        return None

    cleaned = re.sub(r"[^\d,.\-]", "", str(raw))
    if not re.search(r"\d", cleaned):
        return None

    dots = cleaned.count(".")
    commas = cleaned.count(",")

    if dots >= 2 and commas == 0:
        cleaned = cleaned.replace(".", "")
    elif commas >= 2 and dots == 0:
        cleaned = cleaned.replace(",", "")
    elif commas == 1 and dots == 0:
        cleaned = cleaned.replace(",", ".")
    elif commas and dots:
        cleaned = cleaned.replace(",", "")

    try:
        value = float(cleaned)
    except ValueError:
        logger.debug("Could not parse number: %s", raw)
        return None

    return value if math.isfinite(value) else None


def count_digits(token: str) -> int:
    """Count decimal digits in ``token``, ignoring separators and signs."""
    return sum(1 for c in token if c.isdigit())


def get_number_tokens(text: str) -> list[str]:
    """Return whitespace-separated tokens that look like numbers.

    Trailing or leading separators (``"412,"``) are trimmed.
    """
    tokens = []
    for chunk in text.split():
        token = chunk.strip(".,")
        if token.startswith("-"):
            token = "-" + token[1:].strip(".,")
        if _NUMERIC_TOKEN.match(token):
            tokens.append(token)
    return tokens


def pick_number_token(
    raw_match: str,
    unit_kind: str,
    min_digits: dict[str, int] | None = None,
) -> str:
    """Choose the real figure among several numbers caught by one capture.

    Parameters
    ----------
    raw_match
        Captured text, possibly spanning several numbers
        (``"Q3 2025 8.235.606 ty"``).
    unit_kind
        KPI unit kind (``"currency"``, ``"volume"``, ``"percent"``, ``"count"``).
    min_digits
        Optional override of :data:`DEFAULT_MIN_DIGITS`.

    Returns
    -------
    str
        First token meeting the digit minimum for ``unit_kind``, else the
        first numeric token, else the stripped input.

    Examples
    --------
    - ``pick_number_token("Q3 2025 8.235.606 ty", "currency")`` -> ``"8.235.606"``
    - ``pick_number_token("12.3 45.6", "currency")`` -> ``"12.3"``
    """
    table = min_digits or DEFAULT_MIN_DIGITS
    threshold = table.get(str(unit_kind), 1)
    tokens = get_number_tokens(raw_match or "")
    if not tokens:
        return (raw_match or "").strip()
    for token in tokens:
        if count_digits(token) >= threshold:
            return token
    return tokens[0]
