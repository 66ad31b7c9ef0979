"""Mistral OCR integration for rasterized PDF pages.

This is the embedded engine of the OCR chain. It is a remote API: pages
rendered by PyMuPDF are uploaded one at a time to the Mistral OCR model and
the returned markdown is accumulated in page order. No rotation retries are
attempted. Responses can be persisted to the audit directory for traceability.
"""

from __future__ import annotations

import base64
import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from kpi_official.config import setup_logging

if TYPE_CHECKING:
    from pathlib import Path

    from kpi_official.extractor.pdf_parser import RenderedPage

logger = setup_logging(__name__)

OCR_MODEL = "mistral-ocr-latest"


def _image_data_url(image: bytes, mime_type: str = "image/png") -> str:
    """Encode raw image bytes as a ``data:`` URL accepted by the OCR endpoint."""
    encoded = base64.standard_b64encode(image).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def ocr_page_with_mistral(client: Any, page: RenderedPage, model: str = OCR_MODEL) -> str:
    """Recognize one rendered page.

    Parameters
    ----------
    client
        ``mistralai.Mistral`` instance (see :func:`kpi_official.config.get_mistral_client`).
    page
        Rasterized page to send.
    model
        OCR model identifier.

    Returns
    -------
    str
        Markdown text of every page block returned by the model.
    """
    response = client.ocr.process(
        model=model,
        document={"type": "image_url", "image_url": _image_data_url(page.image)},
    )
    return "\n".join(p.markdown or "" for p in response.pages)


def ocr_pages_with_mistral(
    client: Any,
    pages: list[RenderedPage],
    model: str = OCR_MODEL,
    audit_dir: Path | None = None,
) -> str:
    """Recognize pages sequentially and join their text.

    Parameters
    ----------
    client
        ``mistralai.Mistral`` instance.
    pages
        Pages in document order.
    model
        OCR model identifier.
    audit_dir
        When given, the per-page texts are written there as JSON.

    Returns
    -------
    str
        Page texts, each prefixed by a newline.
    """
    logger.debug("OCR engine=mistral model=%s pages=%d", model, len(pages))
    texts: list[dict[str, Any]] = []
    text = ""
    for page in pages:
        page_text = ocr_page_with_mistral(client, page, model)
        texts.append({"page": page.page_number, "content": page_text})
        text += "\n" + page_text

    if audit_dir is not None:
        _save_audit_response({"provider": "mistral", "model": model, "pages": texts}, audit_dir, model)
    return text


def _save_audit_response(result: dict[str, Any], audit_dir: Path, model: str = "mistral") -> None:
    """Persist OCR output for traceability."""
    audit_dir.mkdir(parents=True, exist_ok=True)

    model_safe = model.replace("/", "_").replace(".", "_")
    timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S_%f")
    filepath = audit_dir / f"ocr_{model_safe}_{timestamp}.json"

    with filepath.open("w", encoding="utf-8") as f:
        json.dump(result, f, indent=2, ensure_ascii=False)

    logger.debug("Audit response saved: %s", filepath)
