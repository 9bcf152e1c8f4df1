"""Image preprocessing for OCR on small, skewed, low-contrast invoice scans.

Pipeline (fixed order, each stage feeds the next):
1. auto-rotate from EXIF orientation
2. grayscale
3. upscale so the larger side reaches the ~350 DPI minimum dimension
4. normalize contrast
5. mild sharpen
6. linear contrast boost
7. binarize -> ``standard``
8. from the stage-6 image: binarize, blur, re-binarize higher, blur + sharpen
   -> ``noLines`` (thin table rulings suppressed)

The pipeline never raises. On any failure both variants are the original
input bytes and ``error`` carries the reason.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..config import get_settings
from .imaging import PillowImageTransformer

logger = logging.getLogger(__name__)

SHARPEN_RADIUS = 0.7
CONTRAST_SLOPE = 1.3
CONTRAST_OFFSET = -(128 * 0.3)
BINARIZE_LEVEL = 128

LINE_MERGE_BLUR = 0.5
LINE_ERASE_LEVEL = 140
DENOISE_BLUR = 0.3
DENOISE_SHARPEN = 0.8


@dataclass
class ImageSize:
    width: int = 0
    height: int = 0


@dataclass
class PreprocessingMetadata:
    original_size: ImageSize = field(default_factory=ImageSize)
    processed_size: ImageSize = field(default_factory=ImageSize)
    rotated: bool = False
    # Deskew is not implemented; always False
    deskewed: bool = False


@dataclass
class PreprocessingResult:
    standard: bytes
    no_lines: bytes
    metadata: PreprocessingMetadata = field(default_factory=PreprocessingMetadata)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ImagePreprocessorService:
    def __init__(self, transformer: Optional[PillowImageTransformer] = None, min_dimension: Optional[int] = None, workers: Optional[int] = None) -> None:
        settings = get_settings()
        self.ops = transformer or PillowImageTransformer()
        self.min_dimension = min_dimension or settings.PREPROCESS_MIN_DIMENSION
        self.workers = workers or settings.PREPROCESS_WORKERS

    def preprocess(self, data: bytes) -> PreprocessingResult:
        started = time.perf_counter()
        try:
            image = self.ops.open(data)
            orig_w, orig_h = self.ops.size(image)
            logger.debug("Original image: %dx%d, mode=%s", orig_w, orig_h, getattr(image, "mode", "?"))

            rotated = self.ops.needs_exif_rotation(image)
            image = self.ops.rotate_by_exif(image)
            image = self.ops.grayscale(image)
            image = self._scale_if_needed(image)
            proc_w, proc_h = self.ops.size(image)
            image = self.ops.normalize(image)
            image = self.ops.sharpen(image, SHARPEN_RADIUS)
            boosted = self.ops.linear(image, CONTRAST_SLOPE, CONTRAST_OFFSET)

            standard = self.ops.encode_png(self.ops.threshold(boosted, BINARIZE_LEVEL))
            no_lines = self._remove_table_lines(boosted, standard)
        except Exception as exc:  # noqa: BLE001 callers always get a usable pair
            logger.warning("Preprocessing failed, returning original bytes: %s", exc)
            return PreprocessingResult(standard=data, no_lines=data, error=str(exc) or exc.__class__.__name__)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info("Preprocessing completed in %dms (%dx%d -> %dx%d)", elapsed_ms, orig_w, orig_h, proc_w, proc_h)
        return PreprocessingResult(
            standard=standard,
            no_lines=no_lines,
            metadata=PreprocessingMetadata(
                original_size=ImageSize(orig_w, orig_h),
                processed_size=ImageSize(proc_w, proc_h),
                rotated=rotated,
                deskewed=False,
            ),
        )

    def preprocess_multiple(self, pages: Sequence[bytes]) -> List[PreprocessingResult]:
        """Preprocess pages independently; results keep page order."""
        if not pages:
            return []
        if len(pages) == 1 or self.workers <= 1:
            return [self.preprocess(p) for p in pages]
        logger.info("Preprocessing %d pages with %d workers", len(pages), self.workers)
        with ThreadPoolExecutor(max_workers=min(self.workers, len(pages))) as pool:
            return list(pool.map(self.preprocess, pages))

    def needs_preprocessing(self, data: bytes) -> bool:
        # Resize and contrast handling interact, so every page gets the full
        # pipeline regardless of resolution.
        return True

    def _scale_if_needed(self, image):
        width, height = self.ops.size(image)
        if not width or not height:
            return image
        max_dim = max(width, height)
        if max_dim >= self.min_dimension:
            return image
        scale = self.min_dimension / max_dim
        new_w = max(1, round(width * scale))
        new_h = max(1, round(height * scale))
        logger.debug("Scaling up to %dx%d for better OCR", new_w, new_h)
        return self.ops.resize(image, new_w, new_h)

    def _remove_table_lines(self, boosted, standard: bytes) -> bytes:
        """Suppress thin ruled lines while keeping thicker glyph strokes."""
        try:
            image = self.ops.threshold(boosted, BINARIZE_LEVEL)
            # Merge broken or anti-aliased thin lines into soft grey regions
            image = self.ops.blur(image, LINE_MERGE_BLUR)
            # Grey left over from thin lines falls under the higher cut
            image = self.ops.threshold(image, LINE_ERASE_LEVEL)
            image = self.ops.blur(image, DENOISE_BLUR)
            image = self.ops.sharpen(image, DENOISE_SHARPEN)
            return self.ops.encode_png(image)
        except Exception as exc:  # noqa: BLE001 fall back to the plain binarization
            logger.warning("Line removal failed: %s, using standard version", exc)
            return standard
