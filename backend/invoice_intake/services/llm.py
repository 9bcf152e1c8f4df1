"""LLM service: Gemini primary, OpenRouter fallback, returning schema-shaped JSON.

Async implementation using httpx so the FastAPI event loop is not blocked
while waiting on upstream LLM APIs. Includes lightweight retries via tenacity
for transient network and 429/5xx responses.

Only the contract matters to callers: OCR text and EXTRACTION_SCHEMA go in,
a decoded JSON object comes out. Validation lives in the field extractor.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from ..config import get_settings
from ..exceptions import ExternalServiceError, MalformedResponseError

logger = logging.getLogger(__name__)


# Retry predicate: network errors, timeouts, and 429/5xx HTTP errors
def _is_retryable(exc: BaseException) -> bool:  # pragma: no cover - simple predicate
    if isinstance(exc, (httpx.RequestError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or 500 <= status < 600
    return False


EXTRACTION_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["vendorName", "totalAmount", "currency", "confidence", "warnings"],
    "properties": {
        "vendorName": {"type": "string", "description": "Name of the company that issued the invoice"},
        "invoiceDate": {"type": "string", "format": "date", "description": "Invoice date, YYYY-MM-DD"},
        "totalAmount": {"type": "number", "description": "Total amount due"},
        "currency": {"type": "string", "pattern": "^[A-Z]{3}$", "description": "ISO 4217 code, e.g. USD, EUR, ILS"},
        "invoiceNumber": {"type": "string"},
        "vatAmount": {"type": "number"},
        "subtotalAmount": {"type": "number"},
        "lineItems": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["description"],
                "properties": {
                    "description": {"type": "string"},
                    "quantity": {"type": "number"},
                    "unitPrice": {"type": "number"},
                    "amount": {"type": "number"},
                },
            },
        },
        "confidence": {
            "type": "object",
            "properties": {
                "vendorName": {"type": "number", "minimum": 0, "maximum": 1},
                "invoiceDate": {"type": "number", "minimum": 0, "maximum": 1},
                "totalAmount": {"type": "number", "minimum": 0, "maximum": 1},
                "currency": {"type": "number", "minimum": 0, "maximum": 1},
            },
        },
        "warnings": {"type": "array", "items": {"type": "string"}},
    },
}

JSON_INSTRUCTIONS = """### ROLE ###
You are a highly accurate invoice data extraction engine.

### CONTEXT ###
The user will provide text taken from an invoice, either from the PDF text
layer or from OCR. The text may be messy, incomplete, and can be in English
or Hebrew.

### OBJECTIVE ###
Extract the key information and return a SINGLE JSON object that conforms to
the JSON schema below. Do not output anything other than the JSON object.

### RULES ###
- `vendorName` is the entity that ISSUED the invoice, not the "Bill To" customer.
- Dates must be `YYYY-MM-DD`.
- Numbers must be plain numbers (e.g. `1234.56`) without currency symbols
  or thousands separators.
- `currency` is a 3-letter ISO 4217 code in upper case (₪ is ILS).
- `confidence` holds a number between 0 and 1 for each extracted field.
- Put anything you were unsure about into `warnings` as short sentences.
- Do not wrap the JSON in markdown code fences.

### JSON SCHEMA ###
"""


def build_instructions(schema: Dict[str, Any], hints: str = "") -> str:
    instructions = JSON_INSTRUCTIONS + json.dumps(schema, indent=2, ensure_ascii=False)
    if hints:
        instructions += "\n\n" + hints
    return instructions


def parse_json_object(text: str) -> Dict[str, Any]:
    """Decode the outermost ``{...}`` in a model reply."""
    start = (text or "").find("{")
    end = (text or "").rfind("}")
    if start == -1 or end <= start:
        raise MalformedResponseError("No JSON object found in LLM response")
    try:
        data = json.loads(text[start : end + 1])
    except ValueError as e:
        raise MalformedResponseError(f"LLM returned non-JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponseError("LLM JSON is not an object")
    return data


class LLMService:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.max_output_tokens = self.settings.LLM_MAX_OUTPUT_TOKENS
        self.max_input_chars = self.settings.LLM_MAX_INPUT_CHARS

    def _gemini_url(self) -> str:
        model = self.settings.GEMINI_MODEL or "gemini-2.5-flash"
        return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={self.settings.GEMINI_API_KEY}"

    def _openrouter_url(self) -> str:
        return "https://openrouter.ai/api/v1/chat/completions"

    async def _post_json(self, url: str, *, headers: Optional[Dict[str, str]] = None, payload: Dict[str, Any]) -> Dict[str, Any]:
        """HTTP POST JSON with retries. Raises httpx.HTTPStatusError on non-2xx.

        Returns parsed JSON dict.
        """
        t = httpx.Timeout(self.settings.LLM_TIMEOUT_SECONDS, connect=5.0)
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.settings.LLM_MAX_ATTEMPTS),
            wait=wait_random_exponential(multiplier=0.2, max=5),
            retry=retry_if_exception(_is_retryable),
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info("LLM retry attempt %d/%d", attempt.retry_state.attempt_number, self.settings.LLM_MAX_ATTEMPTS)
                async with httpx.AsyncClient(timeout=t) as client:
                    resp = await client.post(url, headers=headers, json=payload)
                    # Raise for non-2xx and feed status to retry predicate
                    resp.raise_for_status()
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise MalformedResponseError(f"Provider returned non-JSON body: {e}") from e
        raise ExternalServiceError("LLM request gave up without a response")  # pragma: no cover

    async def parse_with_gemini_async(self, text: str, schema: Dict[str, Any], hints: str = "") -> Dict[str, Any]:
        if not self.settings.GEMINI_API_KEY:
            raise ExternalServiceError("Missing GEMINI_API_KEY")
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": build_instructions(schema, hints)},
                        {"text": "\n---- INVOICE TEXT ----\n" + text[: self.max_input_chars]},
                    ],
                }
            ],
            "generationConfig": {
                "temperature": 0,
                "maxOutputTokens": self.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }
        data = await self._post_json(self._gemini_url(), payload=payload)
        # Gemini may return candidates[0].content.parts[0].text
        try:
            parts = data["candidates"][0]["content"]["parts"][0]
            text_out = parts.get("text") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error("Gemini unexpected response: %s", data)
            raise MalformedResponseError(f"Gemini parse error: {e}") from e
        return parse_json_object(text_out)

    async def parse_with_openrouter_async(self, text: str, schema: Dict[str, Any], hints: str = "") -> Dict[str, Any]:
        if not self.settings.OPENROUTER_API_KEY:
            raise ExternalServiceError("Missing OPENROUTER_API_KEY")
        headers = {
            "Authorization": f"Bearer {self.settings.OPENROUTER_API_KEY}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.settings.OPENROUTER_MODEL or "meta-llama/llama-3.3-70b-instruct:free",
            "messages": [
                {"role": "system", "content": build_instructions(schema, hints)},
                {"role": "user", "content": text[: self.max_input_chars]},
            ],
            "temperature": 0,
            "response_format": {"type": "json_object"},
            "max_tokens": self.max_output_tokens,
        }
        data = await self._post_json(self._openrouter_url(), headers=headers, payload=payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error("OpenRouter unexpected response: %s", data)
            raise MalformedResponseError(f"OpenRouter parse error: {e}") from e
        return parse_json_object(content or "")

    async def extract_invoice_async(
        self, text: str, schema: Dict[str, Any] = EXTRACTION_SCHEMA, hints: str = ""
    ) -> Dict[str, Any]:
        """Try Gemini, fallback to OpenRouter, returning the decoded JSON object.

        Raises MalformedResponseError when the last provider answered with
        unusable JSON, ExternalServiceError (or the httpx error) otherwise.
        """
        try:
            return await self.parse_with_gemini_async(text, schema, hints)
        except (ExternalServiceError, httpx.HTTPError) as e:
            logger.warning("Gemini failed: %s", e)
        try:
            return await self.parse_with_openrouter_async(text, schema, hints)
        except (ExternalServiceError, httpx.HTTPError) as e:
            logger.error("OpenRouter failed: %s", e)
            raise
