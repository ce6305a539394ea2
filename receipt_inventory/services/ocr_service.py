"""
    OCR Orchestrator Service module
"""

import logging
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Sequence
from receipt_inventory.config import setup_logging, Settings
from receipt_inventory.errors import (
    ConfigurationError,
    OcrFallbackExhaustedError,
    ProviderFailure,
    ProviderNotFoundError,
    ProviderUnavailableError,
    UnsupportedInputError,
)
from receipt_inventory.provider_interfaces import OCRProvider, OcrProcessingResult
from receipt_inventory.providers.helpers import classify_error
from receipt_inventory.providers.provider_factory import ProviderFactory
from receipt_inventory.receipt_schemas import DocumentType


setup_logging()
logger = logging.getLogger(__name__)


class OcrOrchestrator:
    """Routes documents to the registered OCR providers"""

    def __init__(self, providers: Mapping[str, OCRProvider], default_provider: str,
                 fallback_enabled: bool = False, fallback_order: Sequence[str] = ()):
        if not providers:
            raise ConfigurationError("No OCR provider registered")

        if default_provider not in providers:
            available = ', '.join(providers.keys())
            raise ConfigurationError(f"Default OCR provider '{default_provider}' is not registered. Available: {available}")

        # Built once, read-only afterwards
        self._providers: Mapping[str, OCRProvider] = MappingProxyType(dict(providers))
        self.default_provider = default_provider
        self.fallback_enabled = fallback_enabled
        self._fallback_chain = self._build_fallback_chain(fallback_order)

    @classmethod
    def from_settings(cls, settings: Settings) -> 'OcrOrchestrator':
        registry = ProviderFactory.create_ocr_registry(settings)
        return cls(
            providers=registry,
            default_provider=settings.ocr_default_provider,
            fallback_enabled=settings.ocr_enable_fallback,
            fallback_order=settings.ocr_fallback_order,
        )

    @property
    def providers(self) -> Mapping[str, OCRProvider]:
        return self._providers

    @property
    def fallback_chain(self) -> List[str]:
        return list(self._fallback_chain)

    def process(self, document_data: bytes, document_type: DocumentType) -> OcrProcessingResult:
        """Process with the default provider"""
        return self.process_with_provider(document_data, document_type, self.default_provider)

    def process_with_provider(self, document_data: bytes, document_type: DocumentType, provider_name: str) -> OcrProcessingResult:
        """Process with one named provider, failing fast on configuration problems"""
        if not document_data:
            raise UnsupportedInputError("Document is empty")

        provider = self._providers.get(provider_name)
        if provider is None:
            available = ', '.join(self._providers.keys())
            raise ProviderNotFoundError(f"Unknown OCR provider '{provider_name}'. Available: {available}")

        if not provider.is_available():
            raise ProviderUnavailableError(f"OCR provider '{provider_name}' is not available")

        if not provider.supports_document_type(document_type):
            raise UnsupportedInputError(f"OCR provider '{provider_name}' does not support document type {document_type}")

        logger.info(f"Processing {document_type} ({len(document_data)} bytes) with {provider_name}")
        return provider.process_document(document_data, document_type)

    def process_with_fallback(self, document_data: bytes, document_type: DocumentType) -> OcrProcessingResult:
        """
        Try each provider of the chain in order until one succeeds.

        Providers are attempted at most once, strictly one after the other.
        Raises OcrFallbackExhaustedError listing every skip and failure when
        none succeeds.
        """
        if not self.fallback_enabled:
            return self.process(document_data, document_type)

        if not document_data:
            raise UnsupportedInputError("Document is empty")

        failures: List[ProviderFailure] = []

        for name in self._fallback_chain:
            provider = self._providers[name]

            if not provider.is_available():
                failures.append(ProviderFailure(name, "not available"))
                logger.warning(f"Skipping OCR provider {name}: not available")
                continue

            if not provider.supports_document_type(document_type):
                failures.append(ProviderFailure(name, f"type {document_type} not supported"))
                logger.warning(f"Skipping OCR provider {name}: type {document_type} not supported")
                continue

            logger.info(f"Trying OCR provider {name} for {document_type}")

            try:
                result = provider.process_document(document_data, document_type)
            except Exception as e:
                reason = classify_error(e, name).message
                failures.append(ProviderFailure(name, reason))
                logger.error(f"OCR provider {name} raised: {reason}")
                continue

            if result.success:
                if failures:
                    logger.info(f"OCR provider {name} succeeded after {len(failures)} skipped or failed provider(s)")
                return result

            failures.append(ProviderFailure(name, result.error or "unknown error"))
            logger.warning(f"OCR provider {name} failed: {result.error}")

        error = OcrFallbackExhaustedError(failures)
        logger.error(str(error))
        raise error

    def get_available_providers(self) -> List[str]:
        return [name for name, provider in self._providers.items() if provider.is_available()]

    def get_providers_info(self) -> List[Dict[str, Any]]:
        return [
            {
                'name': name,
                'available': provider.is_available(),
                'default': name == self.default_provider,
                'supported_document_types': [t for t in DocumentType if provider.supports_document_type(t)],
            }
            for name, provider in self._providers.items()
        ]

    def close(self) -> None:
        """Release resources held by every provider"""
        for name, provider in self._providers.items():
            try:
                provider.close()
            except Exception as e:
                logger.error(f"Failed to close OCR provider {name}: {e}")

    def _build_fallback_chain(self, fallback_order: Sequence[str]) -> List[str]:
        """Default provider first, then the configured order (all registered providers when none is configured)"""
        chain = [self.default_provider]
        fallback_order = fallback_order or list(self._providers)

        for name in fallback_order:
            if name not in self._providers:
                logger.warning(f"Ignoring unregistered OCR provider '{name}' in fallback order")
                continue
            if name not in chain:
                chain.append(name)

        return chain
