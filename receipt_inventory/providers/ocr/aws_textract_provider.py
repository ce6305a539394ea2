"""
    AWS Textract Provider module
"""

import time
import boto3
import logging
from typing import Optional, List, Dict, Any
from receipt_inventory.config import (
    setup_logging,
    get_textract_client,
    Settings,
    AWS_REGION,
    TEXTRACT_MIN_FIELD_CONFIDENCE,
    INVOICE_DOCUMENT_CONFIDENCE,
    INVOICE_LINE_ITEM_CONFIDENCE,
    RECEIPT_DOCUMENT_CONFIDENCE,
    RECEIPT_LINE_ITEM_CONFIDENCE,
)
from receipt_inventory.errors import ErrorKind
from receipt_inventory.provider_interfaces import OCRProvider, OcrProcessingResult
from receipt_inventory.providers.helpers import classify_error, elapsed_ms, normalize_date
from receipt_inventory.receipt_schemas import DocumentType, OcrReceiptData, OcrLineItem
from receipt_inventory.services.receipt_validation_service import normalize_amount, normalize_confidence, normalize_quantity, clean_text


setup_logging()
logger = logging.getLogger(__name__)

# Textract expense field type -> OcrReceiptData field
_SUMMARY_FIELDS = {
    'vendor_name': 'merchant_name',
    'name': 'merchant_name',
    'vendor_address': 'merchant_address',
    'address': 'merchant_address',
    'total': 'total_amount',
    'tax': 'tax_amount',
    'invoice_receipt_date': 'purchase_date',
    'invoice_receipt_id': 'invoice_number',
    'po_number': 'order_number',
}


class TextractOcrProvider(OCRProvider):
    """AWS Textract AnalyzeExpense provider"""

    name = 'aws_textract'
    # AnalyzeExpense reads images and PDF, not HTML
    supported_document_types = frozenset({DocumentType.RECEIPT_IMAGE, DocumentType.INVOICE_PDF})

    def __init__(self, region_name: str = AWS_REGION, client=None):
        self.region_name = region_name
        self.client = client or get_textract_client(region_name)

    @classmethod
    def from_settings(cls, settings: Settings) -> 'TextractOcrProvider':
        return cls(region_name=settings.aws_region)

    def is_available(self) -> bool:
        """Available when boto3 can resolve AWS credentials"""
        try:
            return boto3.Session(region_name=self.region_name).get_credentials() is not None
        except Exception as e:
            logger.warning(f"AWS credentials lookup failed: {e}")
            return False

    def process_document(self, document_data: bytes, document_type: DocumentType) -> OcrProcessingResult:
        """Extract structured receipt data using AnalyzeExpense"""
        started_at = time.perf_counter()

        if not self.supports_document_type(document_type):
            return OcrProcessingResult.failed(self.name, document_type, f"Document type {document_type} not supported",
                                              elapsed_ms(started_at), ErrorKind.UNSUPPORTED_INPUT)

        logger.info("Extracting structured receipt data using AWS Textract")

        try:
            response = self.client.analyze_expense(Document={'Bytes': document_data})

            expense_docs = response.get('ExpenseDocuments', [])
            if not expense_docs:
                return OcrProcessingResult.failed(self.name, document_type, "AWS Textract returned no expense document",
                                                  elapsed_ms(started_at), ErrorKind.UPSTREAM_ERROR)

            data = self._map_expense_document(expense_docs[0], document_type)
            processing_time = elapsed_ms(started_at)
            logger.info(f"Extracted {len(data.line_items)} items from document in {processing_time} ms")

            return OcrProcessingResult.succeeded(self.name, document_type, data, processing_time)

        except Exception as e:
            classified = classify_error(e, 'AWS Textract')
            processing_time = elapsed_ms(started_at)
            logger.error(f"Textract expense analysis error after {processing_time} ms: {classified.message}")
            return OcrProcessingResult.failed(self.name, document_type, classified.message, processing_time, classified.kind)

    def _map_expense_document(self, expense_doc: Dict[str, Any], document_type: DocumentType) -> OcrReceiptData:
        summary = self._extract_summary_fields(expense_doc)

        if document_type.is_invoice:
            document_default, line_default = INVOICE_DOCUMENT_CONFIDENCE, INVOICE_LINE_ITEM_CONFIDENCE
        else:
            document_default, line_default = RECEIPT_DOCUMENT_CONFIDENCE, RECEIPT_LINE_ITEM_CONFIDENCE

        return OcrReceiptData(
            merchant_name=clean_text(summary.get('merchant_name')),
            merchant_address=summary.get('merchant_address'),
            total_amount=normalize_amount(summary.get('total_amount')),
            tax_amount=normalize_amount(summary.get('tax_amount')),
            purchase_date=normalize_date(summary.get('purchase_date')),
            currency=summary.get('currency'),
            line_items=tuple(self._extract_line_items(expense_doc, line_default)),
            confidence=normalize_confidence(self._calculate_avg_confidence(expense_doc.get('SummaryFields', [])), document_default),
            raw_data={'expense_index': expense_doc.get('ExpenseIndex'), 'summary_fields': len(expense_doc.get('SummaryFields', []))},
            invoice_number=summary.get('invoice_number') if document_type.is_invoice else None,
            order_number=summary.get('order_number') if document_type.is_invoice else None,
        )

    def _extract_summary_fields(self, expense_doc: Dict[str, Any]) -> Dict[str, Any]:
        """Extract summary fields from expense document"""
        summary = {}

        for field in expense_doc.get('SummaryFields', []):
            field_type = field.get('Type', {}).get('Text', '').lower()
            value = field.get('ValueDetection', {}).get('Text', '')
            confidence = field.get('ValueDetection', {}).get('Confidence', 0)

            if confidence < TEXTRACT_MIN_FIELD_CONFIDENCE:  # Skip low confidence fields
                continue

            target = _SUMMARY_FIELDS.get(field_type)
            if target and value and target not in summary:
                summary[target] = value

            currency = field.get('Currency', {}).get('Code')
            if currency and 'currency' not in summary:
                summary['currency'] = currency

        return summary

    def _extract_line_items(self, expense_doc: Dict[str, Any], default_confidence: float) -> List[OcrLineItem]:
        """Extract line items from expense document"""
        items = []

        for group in expense_doc.get('LineItemGroups', []):
            for line_item in group.get('LineItems', []):
                fields = line_item.get('LineItemExpenseFields', [])
                item_data = {}

                for field in fields:
                    field_type = field.get('Type', {}).get('Text', '').lower()
                    value = field.get('ValueDetection', {}).get('Text', '')

                    if field_type == 'item':
                        item_data['description'] = value
                    elif field_type == 'price':
                        item_data['total_price'] = value
                    elif field_type == 'unit_price':
                        item_data['unit_price'] = value
                    elif field_type == 'quantity':
                        item_data['quantity'] = value
                    elif field_type == 'product_code':
                        item_data['product_code'] = value

                description = clean_text(item_data.get('description'))
                if not description:
                    continue

                items.append(OcrLineItem(
                    description=description,
                    quantity=normalize_quantity(item_data.get('quantity')),
                    unit_price=normalize_amount(item_data.get('unit_price')),
                    total_price=normalize_amount(item_data.get('total_price')),
                    confidence=normalize_confidence(self._calculate_avg_confidence(fields), default_confidence),
                    product_code=clean_text(item_data.get('product_code')),
                ))

        return items

    @staticmethod
    def _calculate_avg_confidence(fields: List[Dict[str, Any]]) -> Optional[float]:
        """Average confidence rescaled to 0-1; None when Textract reported none"""
        confidences = []

        for field in fields:
            confidence = field.get('ValueDetection', {}).get('Confidence')
            if confidence:
                confidences.append(confidence)

        return sum(confidences) / len(confidences) / 100 if confidences else None
