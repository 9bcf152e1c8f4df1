from __future__ import annotations

import io
from typing import List, Optional, Tuple

import pytest
from PIL import Image, ImageDraw
from pypdf import PdfWriter

from invoice_intake.config import get_settings


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic settings for every test; the cached instance is rebuilt."""
    monkeypatch.setenv("GEMINI_API_KEY", "test-gemini-key")
    monkeypatch.setenv("OPENROUTER_API_KEY", "test-openrouter-key")
    monkeypatch.setenv("LLM_MAX_ATTEMPTS", "2")
    monkeypatch.setenv("VENDOR_STORE", "memory")
    monkeypatch.setenv("PREPROCESS_WORKERS", "2")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


def make_png(size: Tuple[int, int] = (400, 300), lines: Optional[List[str]] = None, mode: str = "RGB") -> bytes:
    color = (255, 255, 255, 255) if mode == "RGBA" else "white"
    image = Image.new(mode, size, color)
    draw = ImageDraw.Draw(image)
    for i, line in enumerate(lines or []):
        draw.text((10, 10 + i * 14), line, fill="black")
    # A thin table rule under the text
    draw.line((0, size[1] - 20, size[0], size[1] - 20), fill="black", width=1)
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def make_jpeg_with_orientation(size: Tuple[int, int], orientation: int) -> bytes:
    image = Image.new("RGB", size, "white")
    exif = Image.Exif()
    exif[0x0112] = orientation
    buf = io.BytesIO()
    image.save(buf, format="JPEG", exif=exif)
    return buf.getvalue()


def make_blank_pdf(pages: int = 1) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def _pdf_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def make_text_pdf(lines: List[str]) -> bytes:
    """Single-page PDF with a real text layer (Helvetica, one Tj per line)."""
    ops = ["BT", "/F1 12 Tf", "14 TL", "72 720 Td"]
    for line in lines:
        ops.append(f"({_pdf_escape(line)}) Tj T*")
    ops.append("ET")
    stream = "\n".join(ops).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Resources << /Font << /F1 5 0 R >> >> /Contents 4 0 R >>",
        b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for num, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{num} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for off in offsets:
        out += f"{off:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode()
    return bytes(out)


INVOICE_LINES = [
    "ACME Corp. Ltd",
    "Invoice No. INV-1042",
    "Date: 2024-03-15",
    "Consulting services 10 x 100.00 = 1000.00",
    "VAT 17%: 170.00",
    "Total due: 1170.00 USD",
]


@pytest.fixture
def text_pdf() -> bytes:
    return make_text_pdf(INVOICE_LINES)


@pytest.fixture
def blank_pdf() -> bytes:
    return make_blank_pdf()


@pytest.fixture
def invoice_png() -> bytes:
    return make_png((400, 200), ["ACME Corp.", "Invoice total 1170.00"])
