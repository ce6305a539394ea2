"""
    Mindee OCR Provider module
"""

import time
import logging
from typing import Optional, List, Any
from mindee import Client, product
from receipt_inventory.config import (
    setup_logging,
    Settings,
    INVOICE_DOCUMENT_CONFIDENCE,
    INVOICE_LINE_ITEM_CONFIDENCE,
    RECEIPT_DOCUMENT_CONFIDENCE,
    RECEIPT_LINE_ITEM_CONFIDENCE,
)
from receipt_inventory.errors import ErrorKind
from receipt_inventory.provider_interfaces import OCRProvider, OcrProcessingResult, DOCUMENT_FILENAMES
from receipt_inventory.providers.helpers import classify_error, elapsed_ms, normalize_date
from receipt_inventory.receipt_schemas import DocumentType, OcrReceiptData, OcrLineItem
from receipt_inventory.services.receipt_validation_service import normalize_amount, normalize_confidence, normalize_quantity, clean_text


setup_logging()
logger = logging.getLogger(__name__)


def _value(field: Any) -> Any:
    return getattr(field, 'value', None) if field is not None else None


class MindeeOcrProvider(OCRProvider):
    """Mindee structured-document OCR (receipt and invoice models)"""

    name = 'mindee'
    supported_document_types = frozenset(DocumentType)

    def __init__(self, api_key: Optional[str] = None):
        self.client: Optional[Client] = None

        if not api_key:
            logger.warning("MINDEE_API_KEY is not set, Mindee provider disabled")
            return

        try:
            self.client = Client(api_key=api_key)
            logger.info("Mindee client initialized")
        except Exception as e:
            logger.error(f"Mindee client initialization failed: {e}")

    @classmethod
    def from_settings(cls, settings: Settings) -> 'MindeeOcrProvider':
        return cls(api_key=settings.mindee_api_key)

    def is_available(self) -> bool:
        return self.client is not None

    def process_document(self, document_data: bytes, document_type: DocumentType) -> OcrProcessingResult:
        """Send the document to the receipt or invoice model and map the prediction"""
        started_at = time.perf_counter()

        if not self.supports_document_type(document_type):
            return OcrProcessingResult.failed(self.name, document_type, f"Document type {document_type} not supported",
                                              elapsed_ms(started_at), ErrorKind.UNSUPPORTED_INPUT)

        if not self.is_available():
            return OcrProcessingResult.failed(self.name, document_type, "Mindee provider not configured",
                                              elapsed_ms(started_at), ErrorKind.CONFIGURATION)

        try:
            filename = DOCUMENT_FILENAMES[document_type]
            input_doc = self.client.source_from_bytes(document_data, filename)

            if document_type.is_invoice:
                logger.info(f"Parsing {filename} with Mindee invoice model")
                response = self.client.parse(product.InvoiceV4, input_doc)
                data = self._map_invoice(response.document)
            else:
                logger.info(f"Parsing {filename} with Mindee receipt model")
                response = self.client.parse(product.ReceiptV5, input_doc)
                data = self._map_receipt(response.document)

            processing_time = elapsed_ms(started_at)
            logger.info(f"Mindee extracted {len(data.line_items)} line items in {processing_time} ms")

            return OcrProcessingResult.succeeded(self.name, document_type, data, processing_time)

        except Exception as e:
            classified = classify_error(e, 'Mindee')
            processing_time = elapsed_ms(started_at)
            logger.error(f"Mindee processing failed after {processing_time} ms: {classified.message}")
            return OcrProcessingResult.failed(self.name, document_type, classified.message, processing_time, classified.kind)

    def _map_receipt(self, document: Any) -> OcrReceiptData:
        prediction = document.inference.prediction

        return OcrReceiptData(
            merchant_name=clean_text(_value(prediction.supplier_name)),
            merchant_address=_value(prediction.supplier_address),
            total_amount=normalize_amount(_value(prediction.total_amount)),
            tax_amount=normalize_amount(_value(prediction.total_tax)),
            purchase_date=normalize_date(_value(prediction.date)),
            currency=self._currency(prediction),
            line_items=tuple(self._map_line_items(prediction.line_items, RECEIPT_LINE_ITEM_CONFIDENCE)),
            confidence=normalize_confidence(getattr(prediction, 'confidence', None), RECEIPT_DOCUMENT_CONFIDENCE),
            raw_data=self._raw_data(document, 'ReceiptV5'),
        )

    def _map_invoice(self, document: Any) -> OcrReceiptData:
        prediction = document.inference.prediction
        reference_numbers = [_value(ref) for ref in getattr(prediction, 'reference_numbers', None) or []]

        return OcrReceiptData(
            merchant_name=clean_text(_value(prediction.supplier_name)),
            merchant_address=_value(prediction.supplier_address),
            total_amount=normalize_amount(_value(prediction.total_amount)),
            tax_amount=normalize_amount(_value(prediction.total_tax)),
            purchase_date=normalize_date(_value(prediction.date)),
            currency=self._currency(prediction),
            line_items=tuple(self._map_line_items(prediction.line_items, INVOICE_LINE_ITEM_CONFIDENCE)),
            # Zero means "not reported" for invoices
            confidence=normalize_confidence(getattr(prediction, 'confidence', None) or None, INVOICE_DOCUMENT_CONFIDENCE),
            raw_data=self._raw_data(document, 'InvoiceV4'),
            invoice_number=_value(prediction.invoice_number),
            order_number=next((ref for ref in reference_numbers if ref), None),
        )

    def _map_line_items(self, line_items: Optional[List[Any]], default_confidence: float) -> List[OcrLineItem]:
        items = []

        for index, line in enumerate(line_items or [], start=1):
            description = clean_text(getattr(line, 'description', None)) or f"Item {index}"
            confidence = getattr(line, 'confidence', None)
            if default_confidence and not confidence:
                confidence = None

            items.append(OcrLineItem(
                description=description,
                quantity=normalize_quantity(getattr(line, 'quantity', None)),
                unit_price=normalize_amount(getattr(line, 'unit_price', None)),
                total_price=normalize_amount(getattr(line, 'total_amount', None)),
                confidence=normalize_confidence(confidence, default_confidence),
                product_code=clean_text(getattr(line, 'product_code', None)),
            ))

        return items

    @staticmethod
    def _currency(prediction: Any) -> Optional[str]:
        locale = getattr(prediction, 'locale', None)
        return getattr(locale, 'currency', None) if locale is not None else None

    @staticmethod
    def _raw_data(document: Any, model_name: str) -> dict:
        return {
            'model': model_name,
            'document_id': getattr(document, 'id', None),
            'pages': getattr(document, 'n_pages', None),
        }
