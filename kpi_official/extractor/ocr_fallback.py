"""OCR engine selection as an ordered chain of strategies.

Two interchangeable engines exist. The ``cli`` engine runs a local tesseract
binary through pytesseract and works offline. The ``embedded`` engine calls the
remote Mistral OCR API through the ``mistralai`` SDK, so it needs network access
and ``MISTRAL_API_KEY``. Each strategy either returns recognized
text or raises :class:`OcrUnavailableError` when its engine cannot run (no
binary, no API key); the chain moves on to the next strategy in that case.
Any other exception is a real OCR failure and propagates to the caller.

Engine names
------------
``cli``
    Tesseract only.
``embedded`` (aliases ``js``, ``mistral``)
    Mistral OCR only (remote API call).
``auto``
    Tesseract when a binary is discoverable, else Mistral OCR. Without a
    binary this falls back to the network, never to an offline engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from kpi_official.config import get_mistral_client, setup_logging
from kpi_official.extractor.ocr_mistral import OCR_MODEL, ocr_pages_with_mistral
from kpi_official.extractor.ocr_tesseract import ocr_pdf_with_tesseract
from kpi_official.extractor.pdf_parser import render_pages

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

logger = setup_logging(__name__)

ENGINE_ALIASES = {
    "auto": "auto",
    "cli": "cli",
    "tesseract": "cli",
    "embedded": "embedded",
    "js": "embedded",
    "mistral": "embedded",
}

ENGINE_ORDER = {
    "auto": ("cli", "embedded"),
    "cli": ("cli",),
    "embedded": ("embedded",),
}


class OcrUnavailableError(RuntimeError):
    """Raised when no OCR engine can run for the requested selection."""


@dataclass(frozen=True)
class OcrSettings:
    """Per-call OCR options merged from ``config.json`` and the ``auto`` block."""

    engine: str = "auto"
    langs: str = "eng+vie"
    max_pages: int = 2
    scale: float = 1.6
    psm: int = 6
    page_timeout: float = 60.0
    rotate: bool = False
    rotations: tuple[int, ...] = (0, 90, 180, 270)
    require_keywords: bool = False
    keywords: tuple[str, ...] = ()
    keyword_weight: int = 1000
    digit_cap: int = 500
    keyword_threshold: int = 1
    mistral_model: str = OCR_MODEL

    @classmethod
    def from_config(
        cls,
        auto: dict[str, Any],
        ocr_config: dict[str, Any] | None = None,
        keywords: Sequence[str] = (),
    ) -> OcrSettings:
        """Build settings from a merged ``auto`` block and the ``ocr`` config block."""
        block = ocr_config or {}
        defaults = cls()
        return cls(
            engine=normalize_engine(auto.get("ocrEngine", defaults.engine)),
            langs=str(auto.get("ocrLangs") or defaults.langs),
            max_pages=int(auto.get("ocrMaxPages") or defaults.max_pages),
            scale=float(auto.get("ocrScale") or defaults.scale),
            psm=int(block.get("psm", defaults.psm)),
            page_timeout=float(block.get("page_timeout_seconds", defaults.page_timeout)),
            rotate=bool(auto.get("ocrRotate", defaults.rotate)),
            rotations=tuple(int(r) for r in block.get("rotations", defaults.rotations)),
            require_keywords=bool(auto.get("ocrRequireKeywords", defaults.require_keywords)),
            keywords=tuple(keywords),
            keyword_weight=int(block.get("keyword_weight", defaults.keyword_weight)),
            digit_cap=int(block.get("digit_cap", defaults.digit_cap)),
            keyword_threshold=int(block.get("keyword_threshold", defaults.keyword_threshold)),
            mistral_model=str(block.get("mistral_model", defaults.mistral_model)),
        )


def normalize_engine(engine: str | None) -> str:
    """Map an engine name or alias to ``auto``, ``cli`` or ``embedded``."""
    name = str(engine or "auto").strip().lower()
    if name not in ENGINE_ALIASES:
        logger.warning("Unknown OCR engine %r, falling back to auto", engine)
        return "auto"
    return ENGINE_ALIASES[name]


class OcrStrategy(Protocol):
    """Callable OCR engine taking raw PDF bytes."""

    name: str

    def __call__(self, data: bytes, settings: OcrSettings) -> str: ...


class TesseractStrategy:
    """Local tesseract engine; unavailable when no binary was found."""

    name = "cli"

    def __init__(self, binary: str | None) -> None:
        self.binary = binary

    def __call__(self, data: bytes, settings: OcrSettings) -> str:
        if not self.binary:
            msg = "Tesseract CLI not found"
            raise OcrUnavailableError(msg)
        return ocr_pdf_with_tesseract(data, self.binary, settings)


class MistralStrategy:
    """Remote Mistral OCR engine.

    Pages are uploaded to the Mistral API, so this needs network access and an
    API key. The SDK client is created on first use and reused.
    """

    name = "embedded"

    def __init__(
        self,
        client_factory: Callable[[], Any] = get_mistral_client,
        audit_dir: Path | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._client: Any = None
        self.audit_dir = audit_dir

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                self._client = self._client_factory()
            except (ImportError, ValueError) as e:
                msg = f"Mistral OCR unavailable: {e}"
                raise OcrUnavailableError(msg) from e
        return self._client

    def __call__(self, data: bytes, settings: OcrSettings) -> str:
        client = self._get_client()
        pages = render_pages(data, settings.max_pages, settings.scale)
        if not pages:
            return ""
        return ocr_pages_with_mistral(client, pages, settings.mistral_model, self.audit_dir)


@dataclass
class OcrChain:
    """Ordered strategies tried until one is available."""

    strategies: Sequence[OcrStrategy] = field(default_factory=list)

    def run(self, data: bytes, settings: OcrSettings) -> str:
        """Recognize the leading pages of a PDF.

        Raises
        ------
        OcrUnavailableError
            If every strategy reports its engine unavailable.
        RuntimeError
            If an available engine fails (for example a tesseract error).
        """
        reasons: list[str] = []
        for strategy in self.strategies:
            try:
                text = strategy(data, settings)
            except OcrUnavailableError as e:
                logger.debug("OCR strategy %s unavailable: %s", strategy.name, e)
                reasons.append(str(e))
                continue
            logger.debug("OCR strategy %s produced %d chars", strategy.name, len(text))
            return text

        msg = "; ".join(reasons) or "No OCR engine configured"
        raise OcrUnavailableError(msg)


def select_strategies(engine: str, available: dict[str, OcrStrategy]) -> list[OcrStrategy]:
    """Order the strategies for ``engine``; explicit engines use only themselves."""
    names = ENGINE_ORDER[normalize_engine(engine)]
    return [available[name] for name in names if name in available]


def build_ocr_chain(engine: str, available: dict[str, OcrStrategy]) -> OcrChain:
    """Convenience wrapper around :func:`select_strategies`."""
    return OcrChain(select_strategies(engine, available))
