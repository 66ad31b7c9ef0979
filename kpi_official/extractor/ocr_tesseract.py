"""Tesseract OCR with optional rotation retries.

Each call renders the leading PDF pages with PyMuPDF, writes them as PNG files
into a fresh directory under ``TEMP_DIR`` and recognizes every file with
``pytesseract.image_to_string`` (``--psm 6`` by default), bounded by a per-page
timeout. The directory is removed when the call returns or raises.

When rotation retries are enabled every page is rasterized and recognized
again at each configured angle, and the rotation whose text scores highest
(keyword hits first, digit density second) is kept.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import pytesseract

from kpi_official.config import TEMP_DIR, TESSERACT_PATH, setup_logging
from kpi_official.extractor.pdf_parser import render_page, render_pages
from kpi_official.utils.parsing import count_digits, fold_text

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from kpi_official.extractor.ocr_fallback import OcrSettings

logger = setup_logging(__name__)

WINDOWS_FALLBACK_PATHS = (
    r"C:\Program Files\Tesseract-OCR\tesseract.exe",
    r"C:\Program Files (x86)\Tesseract-OCR\tesseract.exe",
)


@dataclass
class OcrPage:
    """Recognition results for one page across the rotations tried.

    Attributes
    ----------
    page_number : int
        One-based page index.
    texts : dict[int, str]
        Recognized text per rotation angle.
    scores : dict[int, int]
        Candidate score per rotation angle.
    keyword_hits : dict[int, int]
        Weighted keyword matches per rotation angle.
    """

    page_number: int
    texts: dict[int, str] = field(default_factory=dict)
    scores: dict[int, int] = field(default_factory=dict)
    keyword_hits: dict[int, int] = field(default_factory=dict)

    def add(self, rotation: int, text: str, score: int, hits: int) -> None:
        self.texts[rotation] = text
        self.scores[rotation] = score
        self.keyword_hits[rotation] = hits

    def best_rotation(self, require_keywords: bool = False) -> int | None:
        """Return the winning rotation; earlier rotations win ties."""
        pool = list(self.texts)
        if require_keywords:
            keyworded = [r for r in pool if self.keyword_hits[r] > 0]
            # Without any keyworded rotation the best text is still used
            if keyworded:
                pool = keyworded
        if not pool:
            return None
        return max(pool, key=lambda r: self.scores[r])

    def best_text(self, require_keywords: bool = False) -> str:
        rotation = self.best_rotation(require_keywords)
        return "" if rotation is None else self.texts[rotation]


def find_tesseract_binary(
    env_path: str | None = None,
    config_path: str | None = None,
    fallback_paths: Iterable[str] = WINDOWS_FALLBACK_PATHS,
) -> str | None:
    """Locate the tesseract executable.

    Lookup order: ``TESSERACT_PATH`` environment override, explicit path from
    configuration, ``PATH``, then the fixed Windows install locations. Paths
    that do not exist on disk are ignored.

    Parameters
    ----------
    env_path : str, optional
        Override value; defaults to the ``TESSERACT_PATH`` environment variable.
    config_path : str, optional
        Path from the ``ocr.tesseract_path`` configuration key.
    fallback_paths : Iterable[str], optional
        Platform install locations checked last.

    Returns
    -------
    str | None
        Absolute path of the binary, or ``None`` when OCR via CLI is unavailable.
    """
    override = TESSERACT_PATH if env_path is None else env_path
    for candidate in (override, config_path):
        if candidate and Path(candidate).exists():
            return str(candidate)

    on_path = shutil.which("tesseract.exe" if os.name == "nt" else "tesseract")
    if on_path:
        return on_path

    for candidate in fallback_paths:
        if Path(candidate).exists():
            return candidate
    return None


def keyword_matches(folded_text: str, keywords: Iterable[str]) -> int:
    """Count keyword occurrences, each weighted by the keyword's word count."""
    total = 0
    for keyword in keywords:
        folded_keyword = fold_text(keyword)
        if folded_keyword:
            total += folded_text.count(folded_keyword) * len(folded_keyword.split())
    return total


def score_ocr_text(
    text: str,
    keywords: Iterable[str],
    keyword_weight: int = 1000,
    digit_cap: int = 500,
) -> tuple[int, int]:
    """Score an OCR candidate text.

    Returns
    -------
    tuple[int, int]
        ``(keyword_weight * matches + min(digits, digit_cap), matches)``.
    """
    hits = keyword_matches(fold_text(text), keywords)
    return keyword_weight * hits + min(count_digits(text), digit_cap), hits


def run_tesseract(binary: str, image_path: Path, langs: str = "eng", psm: int = 6, timeout: float = 60.0) -> str:
    """Recognize one image file through pytesseract.

    Parameters
    ----------
    binary : str
        Tesseract executable used for the call.
    image_path : Path
        PNG written by the caller; pytesseract hands the path to the binary as-is.
    langs : str
        Tesseract language list, for example ``eng+vie``.
    psm : int
        Page segmentation mode.
    timeout : float
        Seconds before the tesseract process is killed.

    Raises
    ------
    RuntimeError
        If tesseract exits with an error, cannot be started, or times out.
    """
    pytesseract.pytesseract.tesseract_cmd = binary
    try:
        return pytesseract.image_to_string(str(image_path), lang=langs, config=f"--psm {psm}", timeout=timeout)
    except pytesseract.TesseractError as e:
        msg = f"tesseract failed: {e.message or e.status}"
        raise RuntimeError(msg) from e
    except pytesseract.TesseractNotFoundError as e:
        msg = f"tesseract failed: {binary} is not runnable"
        raise RuntimeError(msg) from e


def _recognize(binary: str, image: bytes, workdir: Path, name: str, settings: OcrSettings) -> str:
    image_path = workdir / f"{name}.png"
    image_path.write_bytes(image)
    return run_tesseract(binary, image_path, settings.langs, settings.psm, settings.page_timeout)


def _ocr_page_rotations(
    data: bytes,
    page_image: bytes,
    page_number: int,
    binary: str,
    workdir: Path,
    settings: OcrSettings,
    rotations: Sequence[int],
) -> OcrPage:
    page = OcrPage(page_number=page_number)
    for rotation in rotations:
        if rotation == 0:
            image = page_image
        else:
            rendered = render_page(data, page_number, settings.scale, rotation)
            if rendered is None:
                continue
            image = rendered.image
        text = _recognize(binary, image, workdir, f"page-{page_number}-r{rotation}", settings)
        score, hits = score_ocr_text(text, settings.keywords, settings.keyword_weight, settings.digit_cap)
        page.add(rotation, text, score, hits)
        logger.debug("OCR page %d rotation %d: score=%d keywords=%d", page_number, rotation, score, hits)

        if rotation == 0 and hits >= settings.keyword_threshold:
            break
    return page


def ocr_pdf_with_tesseract(data: bytes, binary: str, settings: OcrSettings) -> str:
    """Run the CLI engine over the leading pages of a PDF.

    Parameters
    ----------
    data : bytes
        Raw PDF content.
    binary : str
        Tesseract executable (see :func:`find_tesseract_binary`).
    settings : OcrSettings
        Pages, scale, languages, and rotation policy.

    Returns
    -------
    str
        Page texts, each prefixed by a newline; empty when nothing rendered.

    Raises
    ------
    RuntimeError
        If tesseract fails on any page.
    """
    pages = render_pages(data, settings.max_pages, settings.scale)
    if not pages:
        return ""

    rotations = list(settings.rotations) if settings.rotate else [0]
    if 0 in rotations:
        rotations.remove(0)
    rotations.insert(0, 0)

    logger.debug("OCR engine=cli bin=%s pages=%d rotations=%s", binary, len(pages), rotations)
    text = ""
    with tempfile.TemporaryDirectory(prefix="kpi-ocr-", dir=TEMP_DIR) as tmp:
        workdir = Path(tmp)
        for page in pages:
            result = _ocr_page_rotations(data, page.image, page.page_number, binary, workdir, settings, rotations)
            text += "\n" + result.best_text(settings.require_keywords)
    return text
