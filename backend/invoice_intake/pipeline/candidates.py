"""Regex pre-parse of invoice text, run before the LLM call.

The values found here are not trusted as results. The best total, currency
and date plus the vendor-name candidates are handed to the model as hints it
must verify against the text.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

_AMOUNT = r"[:\s]*([₪$€£]?\s*[\d,]+\.?\d*)"

_DATE_PATTERNS = [
    re.compile(r"\b\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(
        r"\b\d{1,2}\s+(?:ינואר|פברואר|מרץ|אפריל|מאי|יוני|יולי|אוגוסט|ספטמבר|אוקטובר|נובמבר|דצמבר)\s+\d{4}\b"
    ),
]

_INVOICE_NUMBER_PATTERNS = [
    re.compile(r"חשבונית\s*מס[׳']?\s*[:#]?\s*(\d+[-/]?\d*)"),
    re.compile(r"מס[׳']?\s*חשבונית\s*[:#]?\s*(\d+[-/]?\d*)"),
    re.compile(r"קבלה\s*מס[׳']?\s*[:#]?\s*(\d+[-/]?\d*)"),
    re.compile(r"מספר\s*[:#]?\s*(\d+[-/]?\d*)"),
    re.compile(r"\binvoice\s*#?\s*[:#]?\s*(\d+[-/]?\d*)", re.IGNORECASE),
    re.compile(r"\breceipt\s*#?\s*[:#]?\s*(\d+[-/]?\d*)", re.IGNORECASE),
    re.compile(r"\binv\.\s*#?\s*[:#]?\s*(\d+[-/]?\d*)", re.IGNORECASE),
]

# (keyword, pattern); scanned in this order, then stably sorted by priority
_AMOUNT_PATTERNS = [
    ("total_to_pay_he", re.compile(r"סה[\"״']?כ\s*לתשלום" + _AMOUNT)),
    ("to_pay_he", re.compile(r"לתשלום" + _AMOUNT)),
    ("balance_due_he", re.compile(r"יתרה\s*לתשלום" + _AMOUNT)),
    ("total_he", re.compile(r"סה[\"״']?כ" + _AMOUNT)),
    ("total_amount_he", re.compile(r"סכום\s*כולל" + _AMOUNT)),
    ("total_amount_en", re.compile(r"\btotal\s*amount" + _AMOUNT, re.IGNORECASE)),
    ("amount_due_en", re.compile(r"\bamount\s*due" + _AMOUNT, re.IGNORECASE)),
    ("grand_total_en", re.compile(r"\bgrand\s*total" + _AMOUNT, re.IGNORECASE)),
    # \b keeps "subtotal" out
    ("total_en", re.compile(r"\btotal" + _AMOUNT, re.IGNORECASE)),
    ("balance_en", re.compile(r"\bbalance" + _AMOUNT, re.IGNORECASE)),
]

_AMOUNT_PRIORITY = {
    "total_to_pay_he": 1,
    "amount_due_en": 1,
    "to_pay_he": 2,
    "grand_total_en": 2,
    "balance_due_he": 3,
    "total_he": 4,
    "total_en": 4,
}

_CURRENCY_SYMBOLS = (("₪", "ILS"), ("$", "USD"), ("€", "EUR"), ("£", "GBP"))
_CURRENCY_CODES = re.compile(r"\b(ILS|NIS|USD|EUR|GBP)\b", re.IGNORECASE)

_VENDOR_SKIP = ("חשבונית", "קבלה", "invoice", "receipt", "tel:", "phone:", "email:")
_ALPHA = re.compile(r"[a-zA-Z\u0590-\u05FF]")


@dataclass
class AmountCandidate:
    value: float
    keyword: str
    context: str


@dataclass
class Candidates:
    dates: List[str] = field(default_factory=list)
    invoice_numbers: List[str] = field(default_factory=list)
    amounts: List[AmountCandidate] = field(default_factory=list)
    currencies: List[str] = field(default_factory=list)
    vendor_names: List[str] = field(default_factory=list)


def _unique(values) -> List[str]:
    return list(dict.fromkeys(values))


def _dates(text: str) -> List[str]:
    return _unique(m.group(0) for pattern in _DATE_PATTERNS for m in pattern.finditer(text))


def _invoice_numbers(text: str) -> List[str]:
    return _unique(m.group(1).strip() for pattern in _INVOICE_NUMBER_PATTERNS for m in pattern.finditer(text))


def _amounts(text: str) -> List[AmountCandidate]:
    found: List[AmountCandidate] = []
    for keyword, pattern in _AMOUNT_PATTERNS:
        for m in pattern.finditer(text):
            raw = re.sub(r"[₪$€£,\s]", "", m.group(1))
            try:
                value = float(raw)
            except ValueError:
                continue
            if value <= 0:
                continue
            start, end = max(0, m.start() - 50), min(len(text), m.end() + 50)
            context = re.sub(r"\s+", " ", text[start:end])
            found.append(AmountCandidate(value=value, keyword=keyword, context=context))
    return sorted(found, key=lambda a: _AMOUNT_PRIORITY.get(a.keyword, 10))


def _currencies(text: str) -> List[str]:
    codes = [code for symbol, code in _CURRENCY_SYMBOLS if symbol in text]
    for m in _CURRENCY_CODES.finditer(text):
        code = m.group(1).upper()
        codes.append("ILS" if code == "NIS" else code)
    return _unique(codes)


def _vendor_names(text: str) -> List[str]:
    """Plausible business names among the first five non-empty lines."""
    lines = [ln.strip() for ln in text[:500].split("\n") if ln.strip()]
    names = []
    for line in lines[:5]:
        if len(line) < 3 or len(line) > 80:
            continue
        if len(_ALPHA.findall(line)) / len(line) < 0.5:
            continue
        if any(kw in line.lower() for kw in _VENDOR_SKIP):
            continue
        names.append(line)
    return _unique(names)


def extract_candidates(text: str) -> Candidates:
    started = time.perf_counter()
    text = text or ""
    candidates = Candidates(
        dates=_dates(text),
        invoice_numbers=_invoice_numbers(text),
        amounts=_amounts(text),
        currencies=_currencies(text),
        vendor_names=_vendor_names(text),
    )
    logger.debug(
        "Extracted candidates in %dms: %d dates, %d amounts, %d currencies, %d vendors",
        int((time.perf_counter() - started) * 1000),
        len(candidates.dates),
        len(candidates.amounts),
        len(candidates.currencies),
        len(candidates.vendor_names),
    )
    return candidates


def best_total(candidates: Candidates) -> Optional[float]:
    return candidates.amounts[0].value if candidates.amounts else None


def best_currency(candidates: Candidates) -> Optional[str]:
    """Single currency wins; among several, ILS is preferred, else the first seen."""
    if not candidates.currencies:
        return None
    if len(candidates.currencies) > 1 and "ILS" in candidates.currencies:
        return "ILS"
    return candidates.currencies[0]


def best_date(candidates: Candidates) -> Optional[str]:
    return candidates.dates[0] if candidates.dates else None


def format_hints(candidates: Candidates) -> str:
    """Render the candidates as a prompt section; empty when nothing was found."""
    lines = []
    total = best_total(candidates)
    if total is not None:
        lines.append(f"- Detected total amount: {total}")
    currency = best_currency(candidates)
    if currency:
        lines.append(f"- Detected currency: {currency}")
    date = best_date(candidates)
    if date:
        lines.append(f"- Detected date: {date}")
    if candidates.vendor_names:
        lines.append(f"- Vendor candidates from top of document: {', '.join(candidates.vendor_names[:3])}")
    if not lines:
        return ""
    return (
        "### PRE-EXTRACTED HINTS ###\n"
        + "\n".join(lines)
        + "\nThese hints may help, but ALWAYS verify them against the invoice text.\n"
    )
