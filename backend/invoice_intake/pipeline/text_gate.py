"""Decide whether a document carries usable text or has to go through OCR."""
from __future__ import annotations

import enum
import logging
import time
from typing import Callable, Optional, Union

from ..config import get_settings
from ..models import Document
from ..utils.pdf import extract_pdf_text

logger = logging.getLogger(__name__)


class TextGateOutcome(enum.Enum):
    NEEDS_OCR = "needs_ocr"


NEEDS_OCR = TextGateOutcome.NEEDS_OCR

GateResult = Union[str, TextGateOutcome]


class TextExtractionGate:
    """Routes a document to its text layer or to rasterization + OCR.

    Only PDFs have a native text layer; every other mime type goes to OCR.
    A text layer counts as usable when its trimmed length is strictly greater
    than ``min_chars``. Short text, empty text and parser failures all map to
    ``NEEDS_OCR`` since OCR is always a valid fallback.
    """

    def __init__(
        self,
        min_chars: Optional[int] = None,
        text_extractor: Callable[[bytes], str] = extract_pdf_text,
    ) -> None:
        settings = get_settings()
        self.min_chars = settings.OCR_TEXT_MIN_CHARS if min_chars is None else min_chars
        self._extract = text_extractor

    def try_extract_text(self, document: Document) -> GateResult:
        if not document.is_pdf:
            return NEEDS_OCR

        started = time.perf_counter()
        try:
            text = (self._extract(document.data) or "").strip()
        except Exception as exc:  # noqa: BLE001 corrupt/unsupported input falls back to OCR
            logger.warning("Text layer extraction failed, routing to OCR: %s", exc)
            return NEEDS_OCR

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if len(text) > self.min_chars:
            logger.info("Extracted %d characters of text layer in %dms", len(text), elapsed_ms)
            return text

        logger.info("Insufficient selectable text (%d chars, checked in %dms), will need OCR", len(text), elapsed_ms)
        return NEEDS_OCR

    def has_selectable_text(self, document: Document) -> bool:
        return self.try_extract_text(document) is not NEEDS_OCR
