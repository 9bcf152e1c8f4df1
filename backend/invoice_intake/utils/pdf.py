from __future__ import annotations

import io
from typing import List, Optional

from pdf2image import convert_from_bytes
from pypdf import PdfReader

from ..exceptions import FileValidationError


def count_pdf_pages(data: bytes) -> int:
    """Count pages of a PDF from raw bytes.

    Raises FileValidationError on invalid or unreadable PDFs.
    """
    try:
        reader = PdfReader(io.BytesIO(data))
        return len(reader.pages)
    except Exception as exc:  # noqa: BLE001 broad, returns user error
        raise FileValidationError("Invalid or unreadable PDF") from exc


def extract_pdf_text(data: bytes, max_pages: Optional[int] = None) -> str:
    """Return the native text layer of a PDF, page texts joined by newlines.

    Best-effort: pages without a text layer contribute an empty string.
    Parser errors propagate to the caller.
    """
    reader = PdfReader(io.BytesIO(data))
    pages = reader.pages if max_pages is None else reader.pages[:max_pages]
    return "\n".join((page.extract_text() or "") for page in pages)


def rasterize_pdf(data: bytes, dpi: int = 300, max_pages: Optional[int] = None) -> List[bytes]:
    """Render PDF pages to PNG bytes, in page order."""
    kwargs = {"dpi": dpi, "fmt": "png"}
    if max_pages:
        kwargs["last_page"] = max_pages
    pages: List[bytes] = []
    for image in convert_from_bytes(data, **kwargs):
        buf = io.BytesIO()
        image.save(buf, format="PNG")
        pages.append(buf.getvalue())
    return pages
