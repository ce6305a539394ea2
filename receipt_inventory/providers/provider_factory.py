"""
    Provider Factory for creating OCR and LLM providers
"""

import logging
from typing import Dict, Type, Iterable, Optional
from receipt_inventory.config import setup_logging, Settings
from receipt_inventory.errors import ProviderNotFoundError
from receipt_inventory.provider_interfaces import LLMProvider, OCRProvider
from receipt_inventory.providers.llm.openai_provider import OpenAIProvider
from receipt_inventory.providers.ocr.aws_textract_provider import TextractOcrProvider
from receipt_inventory.providers.ocr.mindee_provider import MindeeOcrProvider
from receipt_inventory.providers.ocr.tesseract_provider import TesseractOcrProvider


setup_logging()
logger = logging.getLogger(__name__)


class ProviderFactory:
    """Unified factory for creating all providers"""

    _llm_providers: Dict[str, Type[LLMProvider]] = {
        'openai': OpenAIProvider
    }

    _ocr_providers: Dict[str, Type[OCRProvider]] = {
        'mindee': MindeeOcrProvider,
        'aws_textract': TextractOcrProvider,
        'tesseract': TesseractOcrProvider,
    }

    @classmethod
    def create_llm_provider(cls, provider_name: str, settings: Settings) -> LLMProvider:
        if provider_name not in cls._llm_providers:
            available = ', '.join(cls._llm_providers.keys())
            raise ProviderNotFoundError(f"Unknown LLM provider '{provider_name}'. Available: {available}")

        provider_class = cls._llm_providers[provider_name]
        return provider_class.from_settings(settings)

    @classmethod
    def create_ocr_provider(cls, provider_name: str, settings: Settings) -> OCRProvider:
        if provider_name not in cls._ocr_providers:
            available = ', '.join(cls._ocr_providers.keys())
            raise ProviderNotFoundError(f"Unknown OCR provider '{provider_name}'. Available: {available}")

        provider_class = cls._ocr_providers[provider_name]
        return provider_class.from_settings(settings)

    @classmethod
    def create_ocr_registry(cls, settings: Settings, provider_names: Optional[Iterable[str]] = None) -> Dict[str, OCRProvider]:
        """Build the name -> provider registry used by the orchestrator"""
        registry: Dict[str, OCRProvider] = {}

        for name in provider_names or settings.ocr_providers:
            if name not in registry:
                registry[name] = cls.create_ocr_provider(name, settings)

        logger.info(f"OCR providers registered: {', '.join(registry)}")
        return registry
