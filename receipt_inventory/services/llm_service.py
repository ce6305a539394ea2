"""
    LLM Service module
"""

import re
import json
import time
import logging
from typing import Any, Dict, List, Optional
from receipt_inventory.config import setup_logging, Settings, DEFAULT_LLM_PROVIDER, LLM_DEFAULT_CONFIDENCE, TICKET_PROMPT_VERSION
from receipt_inventory.errors import ConfigurationError, LlmExtractionError, MalformedResponseError, UnsupportedInputError
from receipt_inventory.provider_interfaces import LLMProvider
from receipt_inventory.providers.helpers import classify_error, elapsed_ms, normalize_date
from receipt_inventory.providers.provider_factory import ProviderFactory
from receipt_inventory.receipt_schemas import LlmReceiptAnalysis
from receipt_inventory.services.receipt_validation_service import (
    ReceiptItemValidator,
    clean_text,
    normalize_amount,
    normalize_confidence,
)


setup_logging()
logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r'^\s*```[a-zA-Z]*\s*\n?(.*?)\n?\s*```\s*$', re.DOTALL)
_TEXT_CONTENT_TYPES = ('output_text', 'text')


class StructuredExtractionService:
    """Turns raw receipt text into products with EAN suggestions"""

    def __init__(self, provider: Optional[LLMProvider], prompt_id: Optional[str],
                 prompt_version: str = TICKET_PROMPT_VERSION, validator: Optional[ReceiptItemValidator] = None):
        self.provider = provider
        self.prompt_id = prompt_id
        self.prompt_version = prompt_version
        self.validator = validator or ReceiptItemValidator()

    @classmethod
    def from_settings(cls, settings: Settings) -> 'StructuredExtractionService':
        return cls(
            provider=ProviderFactory.create_llm_provider(DEFAULT_LLM_PROVIDER, settings),
            prompt_id=settings.ticket_prompt_id,
            prompt_version=settings.ticket_prompt_version,
        )

    def is_available(self) -> bool:
        return bool(self.prompt_id) and self.provider is not None and self.provider.is_available()

    def analyze_receipt_text(self, receipt_text: str) -> LlmReceiptAnalysis:
        """
        Run the stored ticket prompt over OCR text.

        The text is sent only as the user message. Raises ConfigurationError
        before any network call when the key or prompt id is missing,
        LlmExtractionError when the call fails and MalformedResponseError when
        the answer cannot be used. Never retries.
        """
        started_at = time.perf_counter()

        if self.provider is None or not self.provider.is_available():
            raise ConfigurationError("OpenAI API key is not configured")
        if not self.prompt_id:
            raise ConfigurationError("Ticket prompt id is not configured")
        if not receipt_text or not receipt_text.strip():
            raise UnsupportedInputError("Receipt text is empty")

        logger.info(f"Analyzing {len(receipt_text)} characters of receipt text with LLM")

        try:
            response = self.provider.run_prompt(self.prompt_id, self.prompt_version, receipt_text)
        except Exception as e:
            classified = classify_error(e, 'OpenAI')
            processing_time = elapsed_ms(started_at)
            logger.error(f"LLM call failed after {processing_time} ms: {classified.message}")
            raise LlmExtractionError(classified.message, classified.kind, processing_time) from e

        try:
            content = self.extract_response_text(response.output)
            analysis = self.parse_analysis(content)
        except MalformedResponseError as e:
            e.processing_time_ms = elapsed_ms(started_at)
            logger.error(f"LLM response rejected after {e.processing_time_ms} ms: {e}")
            raise

        processing_time = elapsed_ms(started_at)
        logger.info(f"LLM detected {len(analysis.products)} products in {processing_time} ms "
                    f"(usage tokens: {response.usage_tokens})")

        return analysis.model_copy(update={'processing_time_ms': processing_time})

    @staticmethod
    def extract_response_text(output: Any) -> str:
        """Return the first textual item of a Responses API output list"""
        if not isinstance(output, list):
            raise MalformedResponseError("Unrecognized response format: output is not a list")

        for item in output:
            if not isinstance(item, dict):
                continue

            # Direct text field
            if isinstance(item.get('text'), str):
                return item['text']

            # Content array with a typed text entry
            content = item.get('content')
            if isinstance(content, list):
                for entry in content:
                    if isinstance(entry, dict) and entry.get('type') in _TEXT_CONTENT_TYPES and isinstance(entry.get('text'), str):
                        return entry['text']

        raise MalformedResponseError("Unrecognized response format: no text output found")

    @staticmethod
    def strip_code_fences(content: str) -> str:
        """Remove a ```json ... ``` wrapper if present"""
        match = _FENCE_RE.match(content)
        return match.group(1).strip() if match else content.strip()

    def parse_analysis(self, content: str) -> LlmReceiptAnalysis:
        """Parse the model JSON; structural problems are fatal, bad products are dropped"""
        try:
            parsed = json.loads(self.strip_code_fences(content))
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Invalid JSON in LLM response: {e.msg}") from e

        if not isinstance(parsed, dict):
            raise MalformedResponseError("LLM response is not a JSON object")
        if 'products' not in parsed:
            raise MalformedResponseError("LLM response is missing the products field")
        if not isinstance(parsed['products'], list):
            raise MalformedResponseError("LLM response products field is not a list")

        products = self._parse_products(parsed['products'])

        return LlmReceiptAnalysis(
            merchant_name=clean_text(parsed.get('merchantName')),
            purchase_date=normalize_date(parsed.get('purchaseDate')),
            total_amount=normalize_amount(parsed.get('totalAmount')),
            confidence=normalize_confidence(parsed.get('confidence'), LLM_DEFAULT_CONFIDENCE),
            products=tuple(products),
        )

    def _parse_products(self, raw_products: List[Dict[str, Any]]) -> list:
        products = []
        for raw_product in raw_products:
            product = self.validator.normalize_detected_product(raw_product)
            if product:
                products.append(product)

        dropped = len(raw_products) - len(products)
        if dropped:
            logger.warning(f"Dropped {dropped} product(s) without a usable name")

        return products
