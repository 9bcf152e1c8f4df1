"""Google Cloud Vision OCR for preprocessed page images.

Pages arrive as PNG bytes (the ``standard`` / ``noLines`` variants produced
by ImagePreprocessorService) and are sent inline with DOCUMENT_TEXT_DETECTION.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from google.cloud import vision_v1 as vision

from ..config import get_settings
from ..exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


@dataclass
class OcrResult:
    text: str
    confidence: float = 0.0
    method: str = "vision_image"


class VisionService:
    def __init__(self, client: Optional[vision.ImageAnnotatorClient] = None, language_hints: Optional[List[str]] = None) -> None:
        settings = get_settings()
        self._vision = client or vision.ImageAnnotatorClient()
        self._hints = [h for h in (language_hints or settings.OCR_LANG_HINTS) if h != "*"]

    def ocr_image(self, content: bytes) -> OcrResult:
        """OCR a single image and return its full text and mean page confidence."""
        image = vision.Image(content=content)
        context = vision.ImageContext(language_hints=self._hints) if self._hints else None
        response = self._vision.document_text_detection(image=image, image_context=context)
        if response.error and response.error.message:
            raise ExternalServiceError(f"Vision OCR error: {response.error.message}")

        fta = response.full_text_annotation
        text = (getattr(fta, "text", "") or "").strip()
        pages = list(getattr(fta, "pages", []) or [])
        confidence = sum(float(p.confidence or 0.0) for p in pages) / len(pages) if pages else 0.0
        logger.debug("Vision OCR: %d chars, confidence=%.2f", len(text), confidence)
        return OcrResult(text=text, confidence=confidence)
