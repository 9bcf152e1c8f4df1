"""Pydantic models for extraction results, vendors and API responses."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Annotated, Dict, List, Optional
from pydantic import BaseModel, Field

CURRENCY_PATTERN = r"^[A-Z]{3}$"

Confidence = Annotated[float, Field(ge=0, le=1)]


@dataclass
class Document:
    """A raw uploaded document. Request-scoped, never persisted here."""

    data: bytes
    mime_type: str
    page_count: int = 1
    filename: str = ""

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == "application/pdf"


class Limits(BaseModel):
    """Runtime limits exposed to the frontend."""

    maxSizeMb: int = Field(..., description="Maximum size per file in MB")
    maxPages: int = Field(..., description="Maximum pages per PDF")
    acceptedMime: List[str]


class LineItem(BaseModel):
    """A single invoice line item."""

    description: str
    quantity: Optional[float] = None
    unitPrice: Optional[float] = None
    amount: Optional[float] = None


class ExtractionResult(BaseModel):
    """Structured invoice fields as validated from the language model.

    Required fields are Optional here on purpose: a field that failed
    validation is dropped to None and explained in ``warnings``.
    """

    vendorName: Optional[str] = None
    invoiceDate: Optional[date] = None
    totalAmount: Optional[float] = None
    currency: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)
    invoiceNumber: Optional[str] = None
    vatAmount: Optional[float] = None
    subtotalAmount: Optional[float] = None
    lineItems: List[LineItem] = Field(default_factory=list)
    confidence: Dict[str, Confidence] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


class Vendor(BaseModel):
    """Tenant-scoped vendor record."""

    id: str
    tenantId: str
    name: str
    displayOrder: int


class MatchResult(BaseModel):
    """Outcome of resolving an extracted vendor name."""

    vendorId: str
    vendorName: str
    isNew: bool


class PageOcr(BaseModel):
    """Which preprocessed variant won OCR for one page."""

    page: int
    variant: str
    score: float
    chars: int


class IntakeResponse(BaseModel):
    """Result of pushing one document through the intake pipeline."""

    tenantId: str
    filename: str
    textSource: str = Field(..., description="text_layer or ocr")
    pageCount: int
    extraction: ExtractionResult
    vendor: Optional[MatchResult] = None
    needsReview: bool = True
    pages: List[PageOcr] = Field(default_factory=list)
