import json
from decimal import Decimal
from datetime import date

import pytest

from conftest import FakeLLMProvider
from receipt_inventory.errors import (
    ConfigurationError,
    ErrorKind,
    LlmExtractionError,
    MalformedResponseError,
    UnsupportedInputError,
)
from receipt_inventory.services.llm_service import StructuredExtractionService


def _message(text: str) -> list:
    return [
        {"type": "reasoning", "id": "rs_1", "summary": []},
        {"type": "message", "role": "assistant", "content": [{"type": "output_text", "text": text}]},
    ]


def _service(output=None, **kwargs) -> StructuredExtractionService:
    provider = kwargs.pop("provider", None) or FakeLLMProvider(output=output)
    return StructuredExtractionService(provider=provider, prompt_id=kwargs.pop("prompt_id", "pmpt_ticket"), **kwargs)


def test_fenced_response_with_short_ean_is_filtered() -> None:
    body = "```json\n{\"products\":[{\"name\":\"Milk\",\"suggestedEans\":[{\"ean\":\"12345\"}]}]}\n```"
    service = _service(output=_message(body))

    analysis = service.analyze_receipt_text("LAIT 1L 1,05")

    assert len(analysis.products) == 1
    assert analysis.products[0].name == "Milk"
    assert analysis.products[0].suggested_eans == ()


def test_missing_products_field_is_fatal() -> None:
    service = _service(output=_message(json.dumps({"merchantName": "Lidl"})))

    with pytest.raises(MalformedResponseError, match="missing the products field"):
        service.analyze_receipt_text("LIDL")


def test_products_not_a_list_is_fatal() -> None:
    service = _service(output=_message(json.dumps({"products": {"name": "Milk"}})))

    with pytest.raises(MalformedResponseError, match="not a list"):
        service.analyze_receipt_text("LIDL")


def test_invalid_json_is_fatal() -> None:
    service = _service(output=_message("Sorry, I cannot read this receipt"))

    with pytest.raises(MalformedResponseError, match="Invalid JSON"):
        service.analyze_receipt_text("???")


def test_unrecognized_output_shape_is_fatal() -> None:
    service = _service(output=[{"type": "message", "content": [{"type": "refusal", "refusal": "no"}]}])

    with pytest.raises(MalformedResponseError, match="Unrecognized response format"):
        service.analyze_receipt_text("text")


def test_direct_text_field_is_accepted() -> None:
    service = _service(output=[{"text": "{\"products\": []}"}])

    analysis = service.analyze_receipt_text("text")

    assert analysis.products == ()


def test_full_analysis_is_normalized() -> None:
    payload = {
        "merchantName": " Monoprix ",
        "purchaseDate": "2025-03-14",
        "totalAmount": "7,35",
        "confidence": 0.9,
        "products": [
            {
                "name": "Lait demi-écrémé",
                "quantity": 2,
                "unitPrice": 1.05,
                "totalPrice": 2.1,
                "suggestedEans": [
                    {"ean": "3428271940011", "confidence": 1.4, "brand": "Lactel", "image": "https://img/lait.jpg"},
                    {"ean": "34282719400AB"},
                ],
            },
            {"quantity": 1, "totalPrice": 3},
            {"name": "Baguette"},
        ],
    }
    service = _service(output=_message(json.dumps(payload)))

    analysis = service.analyze_receipt_text("MONOPRIX ...")

    assert analysis.merchant_name == "Monoprix"
    assert analysis.purchase_date == date(2025, 3, 14)
    assert analysis.total_amount == Decimal("7.35")
    assert [p.name for p in analysis.products] == ["Lait demi-écrémé", "Baguette"]

    milk = analysis.products[0]
    assert milk.unit_price == Decimal("1.05")
    assert len(milk.suggested_eans) == 1
    suggestion = milk.suggested_eans[0]
    assert suggestion.confidence == 1.0
    assert suggestion.product_name == "Lait demi-écrémé"
    assert suggestion.image == "https://img/lait.jpg"

    baguette = analysis.products[1]
    assert baguette.confidence == 0.5
    assert baguette.suggested_eans == ()


def test_receipt_text_is_sent_as_user_content_with_prompt_identity() -> None:
    provider = FakeLLMProvider(output=_message("{\"products\": []}"))
    service = StructuredExtractionService(provider=provider, prompt_id="pmpt_ticket", prompt_version="3")

    service.analyze_receipt_text("CARREFOUR\nLAIT 1,05")

    assert provider.calls == [{"prompt_id": "pmpt_ticket", "prompt_version": "3", "user_content": "CARREFOUR\nLAIT 1,05"}]


def test_missing_api_key_fails_before_any_call() -> None:
    provider = FakeLLMProvider(available=False)
    service = StructuredExtractionService(provider=provider, prompt_id="pmpt_ticket")

    with pytest.raises(ConfigurationError):
        service.analyze_receipt_text("text")

    assert provider.calls == []
    assert not service.is_available()


def test_missing_prompt_id_fails_before_any_call() -> None:
    provider = FakeLLMProvider()
    service = StructuredExtractionService(provider=provider, prompt_id=None)

    with pytest.raises(ConfigurationError, match="prompt id"):
        service.analyze_receipt_text("text")

    assert provider.calls == []


def test_empty_text_is_rejected() -> None:
    with pytest.raises(UnsupportedInputError):
        _service(output=[]).analyze_receipt_text("   ")


def test_transport_failure_is_classified_and_timed() -> None:
    provider = FakeLLMProvider(exception=TimeoutError("read timed out"))
    service = StructuredExtractionService(provider=provider, prompt_id="pmpt_ticket")

    with pytest.raises(LlmExtractionError) as excinfo:
        service.analyze_receipt_text("text")

    assert excinfo.value.kind == ErrorKind.TIMEOUT
    assert "timed out" in str(excinfo.value)
    assert excinfo.value.processing_time_ms >= 0
    assert len(provider.calls) == 1


def test_elapsed_time_is_recorded() -> None:
    analysis = _service(output=_message("{\"products\": []}")).analyze_receipt_text("text")

    assert analysis.processing_time_ms >= 0


@pytest.mark.parametrize(
    "content, expected",
    [
        ("```json\n{\"a\": 1}\n```", "{\"a\": 1}"),
        ("```\n[]\n```", "[]"),
        ("  {\"a\": 1}  ", "{\"a\": 1}"),
    ],
)
def test_strip_code_fences(content, expected) -> None:
    assert StructuredExtractionService.strip_code_fences(content) == expected
