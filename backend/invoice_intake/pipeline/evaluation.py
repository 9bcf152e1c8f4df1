from __future__ import annotations

from datetime import date
from typing import List, Optional, Tuple

from ..models import ExtractionResult

_REVIEW_FIELDS = (
    ("vendorName", "vendor name"),
    ("totalAmount", "total amount"),
    ("currency", "currency"),
)


def review_extraction(
    result: ExtractionResult,
    min_confidence: float,
    today: Optional[date] = None,
) -> Tuple[bool, List[str]]:
    """Decide whether an extraction needs human review.

    Returns ``(needs_review, review_warnings)``. The warnings are meant to be
    appended to ``result.warnings`` by the caller.
    """
    today = today or date.today()
    warnings: List[str] = []

    if result.totalAmount is None or result.totalAmount <= 0:
        warnings.append("Invalid total amount (must be positive)")

    if result.invoiceDate and result.invoiceDate > today:
        warnings.append("Invoice date is in the future")

    low: List[str] = []
    for key, label in _REVIEW_FIELDS:
        if result.confidence.get(key, 0.0) < min_confidence:
            low.append(label)
    if result.invoiceDate and result.confidence.get("invoiceDate", 0.0) < min_confidence:
        low.append("invoice date")
    if low:
        warnings.append(f"Low confidence in: {', '.join(low)}")

    # Anything the model or the validator flagged also needs a human look
    needs_review = bool(warnings or result.warnings)
    return needs_review, warnings
