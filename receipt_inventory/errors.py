"""
    Error taxonomy for the receipt pipeline
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import List, Optional, Sequence


class ErrorKind(StrEnum):
    CONFIGURATION = "configuration"
    UNSUPPORTED_INPUT = "unsupported_input"
    CONNECTION_REFUSED = "connection_refused"
    TIMEOUT = "timeout"
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTHENTICATION = "authentication"
    UPSTREAM_ERROR = "upstream_error"
    MALFORMED_RESPONSE = "malformed_response"
    DOMAIN_VALIDATION = "domain_validation"
    UNKNOWN = "unknown"


class ReceiptPipelineError(RuntimeError):
    """Base class for every error raised by the pipeline"""
    kind: ErrorKind = ErrorKind.UNKNOWN


class ConfigurationError(ReceiptPipelineError):
    """Required credentials or identifiers are missing"""
    kind = ErrorKind.CONFIGURATION


class ProviderNotFoundError(ConfigurationError):
    pass


class ProviderUnavailableError(ConfigurationError):
    pass


class UnsupportedInputError(ReceiptPipelineError):
    """Empty input or a document type the provider cannot handle"""
    kind = ErrorKind.UNSUPPORTED_INPUT


@dataclass(frozen=True)
class ProviderFailure:
    provider: str
    reason: str


class OcrFallbackExhaustedError(ReceiptPipelineError):
    """Every provider of the fallback chain was skipped or failed"""

    def __init__(self, failures: Sequence[ProviderFailure]):
        self.failures: List[ProviderFailure] = list(failures)
        lines = [f"  - {failure.provider}: {failure.reason}" for failure in self.failures]
        super().__init__("All OCR providers failed:\n" + "\n".join(lines))


class LlmExtractionError(ReceiptPipelineError):
    """The language-model call failed; carries the elapsed time of the attempt"""

    def __init__(self, message: str, kind: Optional[ErrorKind] = None, processing_time_ms: int = 0):
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.processing_time_ms = processing_time_ms


class MalformedResponseError(LlmExtractionError):
    kind = ErrorKind.MALFORMED_RESPONSE

    def __init__(self, message: str, processing_time_ms: int = 0):
        super().__init__(message, processing_time_ms=processing_time_ms)


class ReviewWorkflowError(ReceiptPipelineError):
    kind = ErrorKind.DOMAIN_VALIDATION


class InvalidTransitionError(ReviewWorkflowError):
    pass


class CommitNotAllowedError(InvalidTransitionError):
    pass


class ReceiptItemNotFoundError(ReviewWorkflowError):
    pass


class ProductNotFoundError(ReviewWorkflowError):
    pass
