from __future__ import annotations

import re
from typing import Dict, Tuple

# Invoice vocabulary, Hebrew and English
_KEYWORDS = [
    re.compile(r"סה[\"״']?כ"),  # total
    re.compile(r"יתרה\s*לתשלום"),  # balance due
    re.compile(r"לתשלום"),  # to pay
    re.compile(r"מע[\"״']?מ"),  # VAT
    re.compile(r"חשבונית"),  # invoice
    re.compile(r"קבלה"),  # receipt
    re.compile(r"\btotal\b", re.IGNORECASE),
    re.compile(r"\bamount\s+due\b", re.IGNORECASE),
    re.compile(r"\binvoice\b", re.IGNORECASE),
    re.compile(r"\breceipt\b", re.IGNORECASE),
    re.compile(r"\bVAT\b"),
]
_MONEY = re.compile(r"[₪$€£]?\s*\d{1,10}[.,]\d{2}\b")
_DATES = [
    re.compile(r"\b\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(r"\b\d{1,2}\s+[א-ת]{3,10}\s+\d{4}\b"),
]
_NOISE = re.compile(r"[^\w\s\u0590-\u05FF.,!?@#$%&*()₪€£]")


def score_ocr_text(text: str) -> float:
    """Heuristic invoice-likeness of OCR output; higher is better, never negative."""
    score = 0.0
    for pattern in _KEYWORDS:
        score += 10 * len(pattern.findall(text))
    score += 5 * len(_MONEY.findall(text))
    for pattern in _DATES:
        score += 3 * len(pattern.findall(text))
    score += min(len(text) / 100.0, 20.0)

    if len(_NOISE.findall(text)) > len(text) * 0.1:
        score -= 10
    return max(0.0, score)


def pick_best_variant(texts: Dict[str, str]) -> Tuple[str, str, float]:
    """Return (variant, text, score) with the highest score.

    Ties keep the first variant in insertion order.
    """
    best: Tuple[str, str, float] = ("", "", -1.0)
    for name, text in texts.items():
        score = score_ocr_text(text)
        if score > best[2]:
            best = (name, text, score)
    return best
