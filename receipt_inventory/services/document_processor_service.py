"""
    Document Processor Service module
"""

import time
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional
from pydantic import ValidationError
from receipt_inventory.config import setup_logging, Settings
from receipt_inventory.errors import InvalidTransitionError, ReceiptPipelineError, UnsupportedInputError
from receipt_inventory.provider_interfaces import OcrProcessingResult
from receipt_inventory.providers.helpers import classify_error, elapsed_ms
from receipt_inventory.receipt_schemas import DocumentType, LlmReceiptAnalysis, Receipt, ReceiptItem, ReceiptStatus, ValidationReport
from receipt_inventory.services.llm_service import StructuredExtractionService
from receipt_inventory.services.ocr_service import OcrOrchestrator
from receipt_inventory.services.receipt_review_service import ReceiptReviewWorkflow
from receipt_inventory.services.receipt_validation_service import ReceiptItemValidator


setup_logging()
logger = logging.getLogger(__name__)


@dataclass
class ExtractionOutcome:
    items: List[ReceiptItem]
    analysis: Optional[LlmReceiptAnalysis] = None


class ItemExtractionStrategy(ABC):
    @abstractmethod
    def extract(self, ocr_result: OcrProcessingResult) -> ExtractionOutcome:
        pass


class StructuredOcrStrategy(ItemExtractionStrategy):
    """Line items read by a structured provider go straight to validation"""

    def __init__(self, validator: ReceiptItemValidator):
        self.validator = validator

    def extract(self, ocr_result: OcrProcessingResult) -> ExtractionOutcome:
        logger.info(f"Using structured fields from {ocr_result.provider}")
        return ExtractionOutcome(items=self.validator.items_from_ocr(ocr_result.data))


class OcrTextLlmStrategy(ItemExtractionStrategy):
    """Plain OCR text is structured by the language model first"""

    def __init__(self, llm: StructuredExtractionService, validator: ReceiptItemValidator):
        self.llm = llm
        self.validator = validator

    def extract(self, ocr_result: OcrProcessingResult) -> ExtractionOutcome:
        logger.info(f"Structuring {ocr_result.provider} text with LLM")
        analysis = self.llm.analyze_receipt_text(ocr_result.data.extracted_text or '')
        return ExtractionOutcome(items=self.validator.items_from_analysis(analysis), analysis=analysis)


class ReceiptProcessingPipeline:
    """Document bytes -> OCR -> (LLM) -> validated items -> COMPLETED or FAILED receipt"""

    def __init__(self, orchestrator: OcrOrchestrator, llm: StructuredExtractionService,
                 workflow: Optional[ReceiptReviewWorkflow] = None, validator: Optional[ReceiptItemValidator] = None):
        self.orchestrator = orchestrator
        self.llm = llm
        self.workflow = workflow or ReceiptReviewWorkflow()
        self.validator = validator or ReceiptItemValidator()

        self.structured_strategy = StructuredOcrStrategy(self.validator)
        self.text_strategy = OcrTextLlmStrategy(self.llm, self.validator)

    @classmethod
    def from_settings(cls, settings: Settings, workflow: Optional[ReceiptReviewWorkflow] = None) -> 'ReceiptProcessingPipeline':
        return cls(
            orchestrator=OcrOrchestrator.from_settings(settings),
            llm=StructuredExtractionService.from_settings(settings),
            workflow=workflow,
        )

    def process_receipt(self, receipt: Receipt, document_data: bytes) -> Receipt:
        """Extract items for a PROCESSING receipt; failures end in FAILED with a readable reason"""
        if receipt.status != ReceiptStatus.PROCESSING:
            raise InvalidTransitionError(f"Receipt {receipt.id} is {receipt.status}, expected {ReceiptStatus.PROCESSING}")

        started_at = time.perf_counter()
        logger.info(f"Processing receipt {receipt.id} ({receipt.document_type})")

        try:
            ocr_result = self._run_ocr(document_data, receipt.document_type)
            if not ocr_result.success:
                raise ReceiptPipelineError(ocr_result.error or "OCR failed")

            outcome = self._select_strategy(ocr_result).extract(ocr_result)

        except (ReceiptPipelineError, ValidationError) as e:
            receipt.processing_time_ms = elapsed_ms(started_at)
            return self.workflow.mark_failed(receipt, str(e))

        self._apply_receipt_fields(receipt, ocr_result, outcome.analysis)
        receipt.processing_time_ms = elapsed_ms(started_at)

        return self.workflow.mark_completed(receipt, outcome.items)

    def build_report(self, receipt: Receipt) -> ValidationReport:
        return self.validator.build_report(receipt.items, receipt.total_amount)

    def close(self) -> None:
        self.orchestrator.close()

    def _run_ocr(self, document_data: bytes, document_type: DocumentType) -> OcrProcessingResult:
        """Exceptions raised by a provider become a pipeline failure"""
        try:
            return self.orchestrator.process_with_fallback(document_data, document_type)
        except ReceiptPipelineError:
            raise
        except Exception as e:
            classified = classify_error(e, self.orchestrator.default_provider)
            logger.error(f"OCR provider raised instead of returning a result: {classified.message}")
            raise ReceiptPipelineError(classified.message) from e

    def _select_strategy(self, ocr_result: OcrProcessingResult) -> ItemExtractionStrategy:
        data = ocr_result.data
        if data is None:
            raise UnsupportedInputError(f"{ocr_result.provider} returned no data")

        if data.line_items:
            return self.structured_strategy
        if data.extracted_text:
            return self.text_strategy
        if data.has_structured_fields:
            return self.structured_strategy

        raise UnsupportedInputError("No text could be read from the document")

    @staticmethod
    def _apply_receipt_fields(receipt: Receipt, ocr_result: OcrProcessingResult, analysis: Optional[LlmReceiptAnalysis]) -> None:
        """OCR fields win, the model fills the gaps"""
        data = ocr_result.data

        receipt.merchant_name = data.merchant_name or (analysis.merchant_name if analysis else None)
        receipt.merchant_address = data.merchant_address
        receipt.total_amount = data.total_amount if data.total_amount is not None else (analysis.total_amount if analysis else None)
        receipt.tax_amount = data.tax_amount
        receipt.purchase_date = data.purchase_date or (analysis.purchase_date if analysis else None)
        receipt.currency = data.currency
        receipt.invoice_number = data.invoice_number
        receipt.order_number = data.order_number
        receipt.ocr_provider = ocr_result.provider
        receipt.ocr_confidence = data.confidence
