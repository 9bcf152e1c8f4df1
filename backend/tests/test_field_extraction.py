import asyncio
import json
from datetime import date

import httpx
import pytest
import respx

from invoice_intake.exceptions import MalformedResponseError
from invoice_intake.pipeline.field_extraction import (
    StructuredFieldExtractor,
    parse_number,
    validate_extraction,
)
from invoice_intake.services.llm import parse_json_object

GEMINI_PREFIX = "https://generativelanguage.googleapis.com/"
OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"

GOOD_PAYLOAD = {
    "vendorName": "ACME Corp. Ltd",
    "invoiceDate": "2024-03-15",
    "totalAmount": 1170.0,
    "currency": "USD",
    "invoiceNumber": "INV-1042",
    "vatAmount": 170,
    "lineItems": [{"description": "Consulting services", "quantity": 10, "unitPrice": 100, "amount": 1000}],
    "confidence": {"vendorName": 0.97, "invoiceDate": 0.9, "totalAmount": 0.99, "currency": 0.95},
    "warnings": [],
}


def gemini_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def openrouter_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


def extract(text: str):
    return asyncio.run(StructuredFieldExtractor().extract_fields(text))


# --- validation ---


def test_valid_payload_passes_through():
    result = validate_extraction(GOOD_PAYLOAD)
    assert result.vendorName == "ACME Corp. Ltd"
    assert result.invoiceDate == date(2024, 3, 15)
    assert result.totalAmount == 1170.0
    assert result.currency == "USD"
    assert result.vatAmount == 170.0
    assert result.lineItems[0].description == "Consulting services"
    assert result.lineItems[0].amount == 1000.0
    assert result.confidence["totalAmount"] == 0.99
    assert result.warnings == []


def test_missing_currency_is_a_warning_not_an_error():
    payload = dict(GOOD_PAYLOAD)
    del payload["currency"]
    result = validate_extraction(payload)
    assert result.currency is None
    assert result.vendorName == "ACME Corp. Ltd"
    assert result.warnings == ["Schema violation: currency is missing"]


def test_model_warnings_come_before_violations():
    payload = dict(GOOD_PAYLOAD, currency="usd", warnings=["Total is handwritten"])
    result = validate_extraction(payload)
    assert result.currency == "USD"
    assert result.warnings[0] == "Total is handwritten"
    assert result.warnings[1].startswith("Schema violation: currency 'usd' normalized to USD")


def test_string_amount_is_coerced_with_warning():
    result = validate_extraction(dict(GOOD_PAYLOAD, totalAmount="₪ 1.234,56"))
    assert result.totalAmount == pytest.approx(1234.56)
    assert any("totalAmount was not numeric" in w for w in result.warnings)


def test_bad_date_and_currency_are_dropped():
    result = validate_extraction(dict(GOOD_PAYLOAD, invoiceDate="15/03/2024", currency="dollars"))
    assert result.invoiceDate is None
    assert result.currency is None
    assert len(result.warnings) == 2


def test_confidence_is_clamped():
    payload = dict(GOOD_PAYLOAD, confidence={"vendorName": 1.5, "currency": -0.2, "totalAmount": "high"})
    result = validate_extraction(payload)
    assert result.confidence == {"vendorName": 1.0, "currency": 0.0}
    assert len(result.warnings) == 3


@pytest.mark.parametrize("value", [[100, 200], {"value": 42}, True])
def test_structured_values_in_numeric_fields_are_dropped(value):
    result = validate_extraction(dict(GOOD_PAYLOAD, totalAmount=value))
    assert result.totalAmount is None
    assert result.warnings == ["Schema violation: totalAmount is not a number"]


def test_line_item_amount_list_is_dropped():
    payload = dict(GOOD_PAYLOAD, lineItems=[{"description": "Widget", "amount": [1, 2]}])
    result = validate_extraction(payload)
    assert result.lineItems[0].amount is None
    assert result.warnings == ["Schema violation: amount is not a number"]


def test_non_object_payload_gives_failed_result():
    result = validate_extraction(["not", "an", "object"])
    assert result.vendorName is None
    assert result.confidence == {"vendorName": 0.0, "invoiceDate": 0.0, "totalAmount": 0.0, "currency": 0.0}
    assert len(result.warnings) == 1


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("1,234.56", 1234.56),
        ("1.234,56", 1234.56),
        ("(12.50)", -12.5),
        ("$ 99", 99.0),
        (7, 7.0),
        ("1,234", 1234.0),
        ("1,234,567", 1234567.0),
        ("12,50", 12.5),
        ("1,23", 1.23),
    ],
)
def test_parse_number(raw, expected):
    assert parse_number(raw) == pytest.approx(expected)


def test_parse_json_object_tolerates_fences():
    assert parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}
    with pytest.raises(MalformedResponseError):
        parse_json_object("sorry, I cannot help with that")
    with pytest.raises(MalformedResponseError):
        parse_json_object("{not json}")


# --- LLM round trips ---


def test_gemini_success():
    with respx.mock as mock:
        route = mock.post(url__startswith=GEMINI_PREFIX).mock(return_value=gemini_reply(json.dumps(GOOD_PAYLOAD)))
        result = extract("ACME Corp. Ltd invoice total 1170.00 USD")
    assert route.call_count == 1
    assert result.vendorName == "ACME Corp. Ltd"
    assert result.warnings == []
    sent = json.loads(route.calls[0].request.content)
    assert "ACME Corp. Ltd invoice" in sent["contents"][0]["parts"][1]["text"]


def test_pre_extracted_hints_reach_both_providers():
    text = "ACME Corp. Ltd\nDate: 15/03/2024\nTotal: 1170.00 USD"
    with respx.mock as mock:
        gemini = mock.post(url__startswith=GEMINI_PREFIX).mock(return_value=httpx.Response(400))
        openrouter = mock.post(OPENROUTER_URL).mock(return_value=openrouter_reply(json.dumps(GOOD_PAYLOAD)))
        extract(text)

    gemini_prompt = json.loads(gemini.calls[0].request.content)["contents"][0]["parts"][0]["text"]
    openrouter_prompt = json.loads(openrouter.calls[0].request.content)["messages"][0]["content"]
    for prompt in (gemini_prompt, openrouter_prompt):
        assert "- Detected total amount: 1170.0" in prompt
        assert "- Detected currency: USD" in prompt
        assert "- Detected date: 15/03/2024" in prompt
        assert "- Vendor candidates from top of document: ACME Corp. Ltd" in prompt


def test_gemini_5xx_is_retried_then_falls_back_to_openrouter():
    with respx.mock as mock:
        gemini = mock.post(url__startswith=GEMINI_PREFIX).mock(return_value=httpx.Response(503))
        openrouter = mock.post(OPENROUTER_URL).mock(return_value=openrouter_reply(json.dumps(GOOD_PAYLOAD)))
        result = extract("some invoice text")
    assert gemini.call_count == 2
    assert openrouter.call_count == 1
    assert result.totalAmount == 1170.0
    assert openrouter.calls[0].request.headers["Authorization"] == "Bearer test-openrouter-key"


def test_client_errors_are_not_retried():
    with respx.mock as mock:
        gemini = mock.post(url__startswith=GEMINI_PREFIX).mock(return_value=httpx.Response(400))
        mock.post(OPENROUTER_URL).mock(return_value=httpx.Response(401))
        result = extract("some invoice text")
    assert gemini.call_count == 1
    assert result.warnings[0].startswith("LLM extraction failed")
    assert result.confidence["vendorName"] == 0.0


def test_malformed_json_from_both_providers():
    with respx.mock as mock:
        mock.post(url__startswith=GEMINI_PREFIX).mock(return_value=gemini_reply("not json at all"))
        mock.post(OPENROUTER_URL).mock(return_value=openrouter_reply('{"vendorName": "Acme", '))
        result = extract("some invoice text")
    assert result.vendorName is None
    assert result.warnings[0].startswith("LLM returned malformed JSON")


def test_empty_text_skips_the_model():
    with respx.mock(assert_all_called=False) as mock:
        gemini = mock.post(url__startswith=GEMINI_PREFIX)
        result = extract("   ")
    assert gemini.call_count == 0
    assert result.warnings == ["No text available for extraction"]
