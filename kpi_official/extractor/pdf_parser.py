"""PDF helpers: text-layer extraction (pdfplumber) and page rasterization (PyMuPDF)."""

from __future__ import annotations

import io
from dataclasses import dataclass

import fitz  # PyMuPDF
import pdfplumber

from kpi_official.config import setup_logging

logger = setup_logging(__name__)


@dataclass
class RenderedPage:
    """One rasterized PDF page.

    Attributes
    ----------
    page_number : int
        One-based page index.
    image : bytes
        PNG-encoded raster.
    rotation : int
        Clockwise rotation in degrees applied while rendering.
    """

    page_number: int
    image: bytes
    rotation: int = 0


def extract_text_from_pdf_bytes(data: bytes, max_pages: int | None = None) -> str:
    """Extract the text layer of an in-memory PDF.

    Parameters
    ----------
    data : bytes
        Raw PDF content.
    max_pages : int | None, optional
        Limit on the number of leading pages to read; ``None`` reads all.

    Returns
    -------
    str
        Page texts joined by newlines; empty for image-only PDFs.

    Raises
    ------
    pdfminer.pdfparser.PDFSyntaxError
        If the content is not a readable PDF.
    """
    page_texts: list[str] = []

    with pdfplumber.open(io.BytesIO(data)) as pdf:
        pages = pdf.pages if max_pages is None else pdf.pages[:max_pages]
        for idx, page in enumerate(pages):
            text = page.extract_text() or ""
            page_texts.append(text)
            logger.debug(f"Page {idx + 1}: {len(text)} characters")

    logger.debug(f"Extracted text from {len(page_texts)} pages")
    return "\n".join(page_texts)


def render_pages(
    data: bytes,
    max_pages: int = 2,
    scale: float = 1.6,
    rotation: int = 0,
) -> list[RenderedPage]:
    """Rasterize the first pages of a PDF to PNG images.

    Parameters
    ----------
    data : bytes
        Raw PDF content.
    max_pages : int, optional
        Number of leading pages to render.
    scale : float, optional
        Zoom factor; higher values trade time for OCR accuracy.
    rotation : int, optional
        Clockwise rotation in degrees (0, 90, 180, 270).

    Returns
    -------
    list[RenderedPage]
        Rendered pages in document order. Encrypted PDFs yield an empty list.
    """
    pages: list[RenderedPage] = []
    matrix = fitz.Matrix(scale, scale).prerotate(rotation)

    with fitz.open(stream=data, filetype="pdf") as doc:
        if doc.needs_pass:
            logger.warning("PDF is password protected, skipping rasterization")
            return pages
        for idx in range(min(len(doc), max_pages)):
            pix = doc[idx].get_pixmap(matrix=matrix, alpha=False)
            pages.append(RenderedPage(page_number=idx + 1, image=pix.tobytes("png"), rotation=rotation))

    logger.debug("Rendered %d pages at scale %.2f rotation %d", len(pages), scale, rotation)
    return pages


def render_page(data: bytes, page_number: int, scale: float = 1.6, rotation: int = 0) -> RenderedPage | None:
    """Rasterize a single one-based page, or return ``None`` if it does not exist."""
    matrix = fitz.Matrix(scale, scale).prerotate(rotation)

    with fitz.open(stream=data, filetype="pdf") as doc:
        if doc.needs_pass or not 1 <= page_number <= len(doc):
            return None
        pix = doc[page_number - 1].get_pixmap(matrix=matrix, alpha=False)
        return RenderedPage(page_number=page_number, image=pix.tobytes("png"), rotation=rotation)
