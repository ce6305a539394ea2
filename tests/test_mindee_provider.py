from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from receipt_inventory.errors import ErrorKind
from receipt_inventory.providers.ocr.mindee_provider import MindeeOcrProvider
from receipt_inventory.receipt_schemas import DocumentType


def _field(value):
    return SimpleNamespace(value=value)


def _line(description, quantity=None, unit_price=None, total_amount=None, confidence=None, product_code=None):
    return SimpleNamespace(description=description, quantity=quantity, unit_price=unit_price,
                           total_amount=total_amount, confidence=confidence, product_code=product_code)


def _document(prediction):
    return SimpleNamespace(id="doc-1", n_pages=1, inference=SimpleNamespace(prediction=prediction))


def _receipt_prediction(line_items):
    return SimpleNamespace(
        supplier_name=_field("  Carrefour City "),
        supplier_address=_field("5 place Bellecour\n69002 Lyon"),
        total_amount=_field(7.35),
        total_tax=_field(0.38),
        date=_field("2025-03-14"),
        locale=SimpleNamespace(currency="EUR"),
        line_items=line_items,
    )


def _invoice_prediction(line_items):
    prediction = _receipt_prediction(line_items)
    prediction.invoice_number = _field("FA-2025-0042")
    prediction.reference_numbers = [_field(None), _field("CMD-778")]
    prediction.locale = SimpleNamespace(currency=None)
    return prediction


class FakeMindeeHTTPError(Exception):
    def __init__(self, status_code, api_message, api_details=None):
        super().__init__(api_message)
        self.status_code = status_code
        self.api_message = api_message
        self.api_details = api_details


@pytest.fixture
def mindee_client():
    with patch("receipt_inventory.providers.ocr.mindee_provider.Client") as client_class:
        client = client_class.return_value
        client.source_from_bytes.return_value = MagicMock(name="input_source")
        yield client


def test_receipt_image_is_parsed_with_receipt_model(mindee_client) -> None:
    lines = [
        _line("Lait demi-écrémé", quantity=2, unit_price=1.05, total_amount=2.10, confidence=0.93),
        _line("Baguette", quantity=1, total_amount=1.20, confidence=0.88),
        _line(None, total_amount=4.05),
    ]
    mindee_client.parse.return_value = SimpleNamespace(document=_document(_receipt_prediction(lines)))
    provider = MindeeOcrProvider(api_key="key")

    result = provider.process_document(b"jpeg-bytes", DocumentType.RECEIPT_IMAGE)

    mindee_client.source_from_bytes.assert_called_once_with(b"jpeg-bytes", "receipt.jpg")
    model = mindee_client.parse.call_args.args[0]
    assert model.__name__ == "ReceiptV5"

    assert result.success
    assert result.provider == "mindee"
    assert result.document_type == DocumentType.RECEIPT_IMAGE
    data = result.data
    assert len(data.line_items) == 3
    assert 0 <= data.confidence <= 1
    assert data.confidence == 0.0
    assert data.merchant_name == "Carrefour City"
    assert data.merchant_address == "5 place Bellecour, 69002 Lyon"
    assert data.total_amount == Decimal("7.35")
    assert data.tax_amount == Decimal("0.38")
    assert data.purchase_date == date(2025, 3, 14)
    assert data.line_items[0].unit_price == Decimal("1.05")
    assert data.line_items[2].description == "Item 3"
    assert data.line_items[2].confidence == 0.0
    assert data.invoice_number is None


@pytest.mark.parametrize("document_type, filename", [
    (DocumentType.INVOICE_PDF, "invoice.pdf"),
    (DocumentType.INVOICE_HTML, "invoice.html"),
])
def test_invoice_uses_invoice_model_and_optimistic_defaults(mindee_client, document_type, filename) -> None:
    lines = [_line("Café grains 1kg", quantity=1, unit_price=12.9, total_amount=12.9, product_code="REF-12")]
    mindee_client.parse.return_value = SimpleNamespace(document=_document(_invoice_prediction(lines)))
    provider = MindeeOcrProvider(api_key="key")

    result = provider.process_document(b"invoice-bytes", document_type)

    mindee_client.source_from_bytes.assert_called_once_with(b"invoice-bytes", filename)
    assert mindee_client.parse.call_args.args[0].__name__ == "InvoiceV4"
    data = result.data
    assert data.confidence == 0.95
    assert data.line_items[0].confidence == 0.99
    assert data.line_items[0].product_code == "REF-12"
    assert data.invoice_number == "FA-2025-0042"
    assert data.order_number == "CMD-778"
    assert data.currency == "EUR"


def test_upstream_error_is_returned_not_raised(mindee_client) -> None:
    mindee_client.parse.side_effect = FakeMindeeHTTPError(401, "Invalid token provided")
    provider = MindeeOcrProvider(api_key="bad-key")

    result = provider.process_document(b"jpeg-bytes", DocumentType.RECEIPT_IMAGE)

    assert not result.success
    assert result.data is None
    assert result.error == "Mindee API error: Invalid token provided"
    assert result.error_kind == ErrorKind.AUTHENTICATION


def test_timeout_is_classified(mindee_client) -> None:
    mindee_client.parse.side_effect = TimeoutError()
    provider = MindeeOcrProvider(api_key="key")

    result = provider.process_document(b"jpeg-bytes", DocumentType.RECEIPT_IMAGE)

    assert result.error == "Mindee API request timed out"
    assert result.error_kind == ErrorKind.TIMEOUT


def test_not_configured_provider_returns_failure_without_client() -> None:
    with patch("receipt_inventory.providers.ocr.mindee_provider.Client") as client_class:
        provider = MindeeOcrProvider(api_key="")
        result = provider.process_document(b"jpeg-bytes", DocumentType.RECEIPT_IMAGE)

    client_class.assert_not_called()
    assert not provider.is_available()
    assert not result.success
    assert result.error_kind == ErrorKind.CONFIGURATION
