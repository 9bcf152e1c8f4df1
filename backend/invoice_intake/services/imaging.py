"""Pillow-backed image transforms used by the OCR preprocessing pipeline.

Every verb takes and returns a ``PIL.Image.Image`` so stages can be chained.
Grayscale images stay in mode ``L``; thresholding produces pure 0/255 pixels
in mode ``L`` rather than mode ``1`` so later blur/sharpen stages still work.
"""
from __future__ import annotations

import io
from typing import Tuple

from PIL import Image, ImageFilter, ImageOps


_WIDE_GRAY_MODES = ("I", "I;16", "I;16L", "I;16B", "I;16N")


def _clamp8(value: float) -> int:
    return max(0, min(255, int(round(value))))


class PillowImageTransformer:
    """Image-transform collaborator for ImagePreprocessorService."""

    def open(self, data: bytes) -> Image.Image:
        image = Image.open(io.BytesIO(data))
        # Force decode now so corrupt payloads fail here, not mid-pipeline
        image.load()
        return image

    def size(self, image: Image.Image) -> Tuple[int, int]:
        return image.size

    def needs_exif_rotation(self, image: Image.Image) -> bool:
        orientation = image.getexif().get(0x0112, 1)
        return orientation not in (None, 1)

    def rotate_by_exif(self, image: Image.Image) -> Image.Image:
        return ImageOps.exif_transpose(image)

    def grayscale(self, image: Image.Image) -> Image.Image:
        if image.mode in _WIDE_GRAY_MODES:
            # 16/32-bit gray: a plain convert("L") clips everything above 255 to white
            image = image.convert("I")
            _, high = image.getextrema()
            if high > 255:
                image = image.point(lambda v: v * (1 / 256))
            return image.convert("L")
        if image.mode in ("RGBA", "LA", "P"):
            # Flatten transparency onto white so alpha does not turn black
            rgba = image.convert("RGBA")
            background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
            image = Image.alpha_composite(background, rgba)
        return image.convert("L")

    def resize(self, image: Image.Image, width: int, height: int) -> Image.Image:
        # Fill mode: exact target box, aspect handled by the caller
        return image.resize((width, height), resample=Image.Resampling.LANCZOS)

    def normalize(self, image: Image.Image) -> Image.Image:
        return ImageOps.autocontrast(image, cutoff=1)

    def sharpen(self, image: Image.Image, radius: float) -> Image.Image:
        return image.filter(ImageFilter.UnsharpMask(radius=radius, percent=150, threshold=0))

    def linear(self, image: Image.Image, slope: float, offset: float) -> Image.Image:
        lut = [_clamp8(v * slope + offset) for v in range(256)]
        return image.point(lut)

    def threshold(self, image: Image.Image, level: int) -> Image.Image:
        lut = [255 if v >= level else 0 for v in range(256)]
        return image.point(lut)

    def blur(self, image: Image.Image, radius: float) -> Image.Image:
        return image.filter(ImageFilter.GaussianBlur(radius=radius))

    def encode_png(self, image: Image.Image) -> bytes:
        buf = io.BytesIO()
        image.save(buf, format="PNG", optimize=True)
        return buf.getvalue()
