"""Schema-constrained field extraction and validation of the model's answer.

The model is trusted for language understanding only. Every field it returns
is checked against EXTRACTION_SCHEMA here; violations are dropped or coerced
and reported through ``warnings`` instead of failing the request.
"""
from __future__ import annotations

import logging
import math
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from ..exceptions import ExternalServiceError, MalformedResponseError
from ..models import CURRENCY_PATTERN, ExtractionResult, LineItem
from .candidates import extract_candidates, format_hints
from ..services.llm import EXTRACTION_SCHEMA, LLMService

logger = logging.getLogger(__name__)

CONFIDENCE_FIELDS = ("vendorName", "invoiceDate", "totalAmount", "currency")

_CURRENCY_RE = re.compile(CURRENCY_PATTERN)
_THOUSANDS_ONLY = re.compile(r"^-?\d{1,3}(?:,\d{3})+$")


def parse_number(val: Any) -> float:
    """Parse numbers from mixed-locale strings.

    Accepts strings like "₪ 1.234,56", "1,234.56", "1234.56".
    Strategy:
    - Strip currency symbols and letters, keep digits, separators (., ,), minus, and parentheses.
    - A comma-only string grouped in threes ("1,234") is an integer with thousand separators.
    - Otherwise detect decimal separator by the rightmost of ',' or '.'. Treat the other as thousand sep and remove.
    - Support negatives in parentheses, e.g., (123.45) -> -123.45.
    """
    if val is None or isinstance(val, bool):
        raise ValueError("not a number")
    if isinstance(val, (int, float)):
        num = float(val)
    elif not isinstance(val, str):
        raise ValueError(f"not a number: {type(val).__name__}")
    else:
        s = val.strip()
        neg = False
        if s.startswith("(") and s.endswith(")"):
            neg = True
            s = s[1:-1]
        s = re.sub(r"[^0-9,\.\-]", "", s)
        if not re.search(r"\d", s):
            raise ValueError("empty number")
        last_comma = s.rfind(",")
        last_dot = s.rfind(".")
        if last_dot == -1 and _THOUSANDS_ONLY.match(s):
            # "1,234" or "1,234,567": commas group thousands, no decimals
            num = float(s.replace(",", ""))
        elif last_comma > last_dot:
            # comma decimal; remove all dots (thousands), replace comma with dot
            num = float(s.replace(".", "").replace(",", "."))
        else:
            # dot decimal; remove all commas (thousands)
            num = float(s.replace(",", ""))
        if neg:
            num = -num
    if not math.isfinite(num):
        raise ValueError("non-finite number")
    return num


class _Validator:
    """Collects schema violations while coercing one model payload."""

    def __init__(self, payload: Dict[str, Any]) -> None:
        self.payload = payload
        self.warnings: List[str] = []

    def violation(self, message: str) -> None:
        self.warnings.append(f"Schema violation: {message}")

    def string(self, key: str, required: bool = False) -> Optional[str]:
        value = self.payload.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                self.violation(f"{key} is missing")
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool) and key == "invoiceNumber":
            return str(value)
        if not isinstance(value, str):
            self.violation(f"{key} is not a string")
            return None
        return value.strip()

    def number(self, key: str, required: bool = False, source: Optional[Dict[str, Any]] = None) -> Optional[float]:
        value = (source if source is not None else self.payload).get(key)
        if value is None:
            if required:
                self.violation(f"{key} is missing")
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
            return float(value)
        if not isinstance(value, str):
            self.violation(f"{key} is not a number")
            return None
        try:
            num = parse_number(value)
        except (ValueError, TypeError):
            self.violation(f"{key} is not a number")
            return None
        self.violation(f"{key} was not numeric, coerced {value!r} to {num}")
        return num

    def currency(self) -> Optional[str]:
        value = self.payload.get("currency")
        if value is None or (isinstance(value, str) and not value.strip()):
            self.violation("currency is missing")
            return None
        if not isinstance(value, str):
            self.violation("currency is not a string")
            return None
        if _CURRENCY_RE.match(value):
            return value
        candidate = value.strip().upper()
        if _CURRENCY_RE.match(candidate):
            self.violation(f"currency {value!r} normalized to {candidate}")
            return candidate
        self.violation(f"currency {value!r} does not match {CURRENCY_PATTERN}")
        return None

    def invoice_date(self):
        value = self.payload.get("invoiceDate")
        if value is None or value == "":
            return None
        if not isinstance(value, str):
            self.violation("invoiceDate is not a string")
            return None
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d").date()
        except ValueError:
            self.violation(f"invoiceDate {value!r} is not an ISO date (YYYY-MM-DD)")
            return None

    def confidence(self) -> Dict[str, float]:
        value = self.payload.get("confidence")
        if value is None:
            self.violation("confidence is missing")
            return {}
        if not isinstance(value, dict):
            self.violation("confidence is not an object")
            return {}
        out: Dict[str, float] = {}
        for field, score in value.items():
            if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
                self.violation(f"confidence.{field} is not a number")
                continue
            if score < 0 or score > 1:
                clamped = min(1.0, max(0.0, float(score)))
                self.violation(f"confidence.{field}={score} outside [0,1], clamped to {clamped}")
                score = clamped
            out[str(field)] = float(score)
        return out

    def model_warnings(self) -> List[str]:
        value = self.payload.get("warnings")
        if value is None:
            self.violation("warnings is missing")
            return []
        if not isinstance(value, list):
            self.violation("warnings is not a list")
            return []
        kept = [w for w in value if isinstance(w, str) and w.strip()]
        if len(kept) != len(value):
            self.violation(f"dropped {len(value) - len(kept)} non-string warnings")
        return kept

    def line_items(self) -> List[LineItem]:
        value = self.payload.get("lineItems")
        if value is None:
            return []
        if not isinstance(value, list):
            self.violation("lineItems is not a list")
            return []
        items: List[LineItem] = []
        dropped = 0
        for raw in value:
            desc = raw.get("description") if isinstance(raw, dict) else None
            if not isinstance(desc, str) or not desc.strip():
                dropped += 1
                continue
            items.append(
                LineItem(
                    description=desc.strip(),
                    quantity=self.number("quantity", source=raw),
                    unitPrice=self.number("unitPrice", source=raw),
                    amount=self.number("amount", source=raw),
                )
            )
        if dropped:
            self.violation(f"dropped {dropped} line items without a description")
        return items


def validate_extraction(payload: Any) -> ExtractionResult:
    """Turn a decoded model answer into a best-effort ExtractionResult.

    Never raises. The model's own warnings come first, followed by one entry
    per schema violation in field order.
    """
    if not isinstance(payload, dict):
        return failed_result("Schema violation: LLM response is not a JSON object")

    v = _Validator(payload)
    model_warnings = v.model_warnings()
    result = ExtractionResult(
        vendorName=v.string("vendorName", required=True),
        invoiceDate=v.invoice_date(),
        totalAmount=v.number("totalAmount", required=True),
        currency=v.currency(),
        invoiceNumber=v.string("invoiceNumber"),
        vatAmount=v.number("vatAmount"),
        subtotalAmount=v.number("subtotalAmount"),
        lineItems=v.line_items(),
        confidence=v.confidence(),
    )
    result.warnings = model_warnings + v.warnings
    if v.warnings:
        logger.warning("LLM response had %d schema violations: %s", len(v.warnings), "; ".join(v.warnings))
    return result


def failed_result(message: str) -> ExtractionResult:
    return ExtractionResult(
        confidence={field: 0.0 for field in CONFIDENCE_FIELDS},
        warnings=[message],
    )


class StructuredFieldExtractor:
    """Sends document text to the language model and validates the answer."""

    def __init__(self, llm: Optional[LLMService] = None, schema: Dict[str, Any] = EXTRACTION_SCHEMA) -> None:
        self.llm = llm or LLMService()
        self.schema = schema

    async def extract_fields(self, text: str) -> ExtractionResult:
        if not (text or "").strip():
            return failed_result("No text available for extraction")

        started = time.perf_counter()
        hints = format_hints(extract_candidates(text))
        try:
            payload = await self.llm.extract_invoice_async(text, self.schema, hints)
        except MalformedResponseError as e:
            logger.error("LLM returned malformed JSON: %s", e)
            return failed_result(f"LLM returned malformed JSON: {e}")
        except (ExternalServiceError, httpx.HTTPError) as e:
            logger.error("LLM extraction failed: %s", e)
            return failed_result(f"LLM extraction failed: {e}")

        result = validate_extraction(payload)
        logger.info("Field extraction completed in %dms", int((time.perf_counter() - started) * 1000))
        return result
