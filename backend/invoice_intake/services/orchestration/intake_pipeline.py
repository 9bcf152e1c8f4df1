from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple

from fastapi.concurrency import run_in_threadpool
from google.api_core.exceptions import GoogleAPIError

from ...config import get_settings
from ...exceptions import ExternalServiceError
from ...models import Document, IntakeResponse, PageOcr
from ...pipeline.evaluation import review_extraction
from ...pipeline.field_extraction import StructuredFieldExtractor
from ...pipeline.preprocessing import PAGE_BREAK, sanitize_for_llm
from ...pipeline.scoring import pick_best_variant
from ...pipeline.text_gate import NEEDS_OCR, TextExtractionGate
from ...pipeline.vendor_resolution import VendorResolver, normalize_vendor_name
from ...services.image_preprocessor import ImagePreprocessorService
from ...services.vision import OcrResult
from ...utils.pdf import rasterize_pdf

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = f"\n\n{PAGE_BREAK}\n\n"


class IntakePipelineService:
    """Owns the execution of one document's intake pipeline.

    bytes -> text gate -> (text layer) or (rasterize -> preprocess -> OCR)
    -> sanitize -> field extraction -> review -> vendor resolution.
    """

    def __init__(
        self,
        resolver: VendorResolver,
        ocr: Callable[[bytes], OcrResult],
        extractor: Optional[StructuredFieldExtractor] = None,
        gate: Optional[TextExtractionGate] = None,
        preprocessor: Optional[ImagePreprocessorService] = None,
        rasterizer: Callable[..., List[bytes]] = rasterize_pdf,
    ) -> None:
        self.settings = get_settings()
        self.resolver = resolver
        self.ocr = ocr
        self.extractor = extractor or StructuredFieldExtractor()
        self.gate = gate or TextExtractionGate()
        self.preprocessor = preprocessor or ImagePreprocessorService()
        self.rasterizer = rasterizer

    # --- text acquisition (blocking) ---

    def read_text(self, document: Document) -> Tuple[str, str, int, List[PageOcr], List[str]]:
        """Return (text, source, page count, per-page OCR choices, warnings)."""
        gated = self.gate.try_extract_text(document)
        if gated is not NEEDS_OCR:
            return gated, "text_layer", document.page_count, [], []

        if document.is_pdf:
            try:
                page_images = self.rasterizer(
                    document.data, dpi=self.settings.PDF_RASTER_DPI, max_pages=self.settings.MAX_PAGES
                )
            except Exception as exc:  # noqa: BLE001 poppler errors are not typed
                logger.error("PDF rasterization failed: %s", exc)
                return "", "ocr", document.page_count, [], [f"PDF conversion failed: {exc}"]
        else:
            page_images = [document.data]

        text, pages, warnings = self.ocr_pages(page_images)
        # Pages whose OCR failed still count
        return text, "ocr", len(page_images), pages, warnings

    def ocr_pages(self, page_images: Sequence[bytes]) -> Tuple[str, List[PageOcr], List[str]]:
        started = time.perf_counter()
        results = self.preprocessor.preprocess_multiple(page_images)
        texts: List[str] = []
        pages: List[PageOcr] = []
        warnings: List[str] = []
        for idx, result in enumerate(results, start=1):
            logger.info("Processing page %d/%d", idx, len(results))
            if not result.ok:
                warnings.append(f"Page {idx}: image preprocessing failed, OCR ran on the original image")
            variants = {"standard": result.standard}
            if result.no_lines != result.standard:
                variants["noLines"] = result.no_lines
            candidates = {}
            for name, content in variants.items():
                try:
                    candidates[name] = self.ocr(content).text
                except (ExternalServiceError, GoogleAPIError) as exc:
                    logger.warning("OCR of page %d (%s) failed: %s", idx, name, exc)
            if not candidates:
                warnings.append(f"Page {idx}: OCR failed")
                continue
            variant, text, score = pick_best_variant(candidates)
            logger.debug("Page %d: chose %s (score=%.1f, %d chars)", idx, variant, score, len(text))
            texts.append(text)
            pages.append(PageOcr(page=idx, variant=variant, score=round(score, 1), chars=len(text)))

        logger.info("OCR of %d pages completed in %dms", len(results), int((time.perf_counter() - started) * 1000))
        return PAGE_SEPARATOR.join(texts), pages, warnings

    # --- full pipeline ---

    async def process_document(self, document: Document, tenant_id: str) -> IntakeResponse:
        started = time.perf_counter()
        text, source, page_count, pages, warnings = await run_in_threadpool(self.read_text, document)
        logger.info("[%s] text source=%s, %d chars", tenant_id, source, len(text))

        text_for_llm = sanitize_for_llm(
            text,
            self.settings.PREPROCESS_MAX_CHARS,
            self.settings.ZONE_STRIP_TOP,
            self.settings.ZONE_STRIP_BOTTOM,
        )
        if not text_for_llm:
            warnings.append("Text extraction returned empty text")

        extraction = await self.extractor.extract_fields(text_for_llm)
        extraction.warnings.extend(warnings)

        needs_review, review_warnings = review_extraction(extraction, self.settings.REVIEW_MIN_CONFIDENCE)
        extraction.warnings.extend(review_warnings)

        vendor = None
        if extraction.vendorName and normalize_vendor_name(extraction.vendorName):
            vendor = await run_in_threadpool(self.resolver.match_vendor, extraction.vendorName, tenant_id)
            if vendor.isNew:
                needs_review = True
        else:
            extraction.warnings.append("Vendor name not found; no vendor assigned")
            needs_review = True

        logger.info(
            "[%s] Document processed in %dms (needsReview=%s)",
            tenant_id,
            int((time.perf_counter() - started) * 1000),
            needs_review,
        )
        return IntakeResponse(
            tenantId=tenant_id,
            filename=document.filename,
            textSource=source,
            pageCount=page_count,
            extraction=extraction,
            vendor=vendor,
            needsReview=needs_review,
            pages=pages,
        )
