"""
    Provider Interfaces for the OCR, LLM and downstream collaborators
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, FrozenSet, Sequence
from receipt_inventory.config import Settings
from receipt_inventory.errors import ErrorKind
from receipt_inventory.receipt_schemas import (
    DocumentType,
    OcrReceiptData,
    CatalogProduct,
    InventoryEntry,
    ExpenseRequest,
    ExpenseOutcome,
)


# Filename hint sent upstream; the extension tells the API what it receives
DOCUMENT_FILENAMES: Dict[DocumentType, str] = {
    DocumentType.RECEIPT_IMAGE: 'receipt.jpg',
    DocumentType.INVOICE_PDF: 'invoice.pdf',
    DocumentType.INVOICE_HTML: 'invoice.html',
}


@dataclass(frozen=True)
class OcrProcessingResult:
    """Outcome of one provider attempt"""
    success: bool
    provider: str
    document_type: DocumentType
    processing_time_ms: int
    data: Optional[OcrReceiptData] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def succeeded(cls, provider: str, document_type: DocumentType, data: OcrReceiptData,
                  processing_time_ms: int) -> 'OcrProcessingResult':
        return cls(success=True, provider=provider, document_type=document_type,
                   processing_time_ms=processing_time_ms, data=data)

    @classmethod
    def failed(cls, provider: str, document_type: DocumentType, error: str, processing_time_ms: int,
               error_kind: ErrorKind = ErrorKind.UNKNOWN) -> 'OcrProcessingResult':
        return cls(success=False, provider=provider, document_type=document_type,
                   processing_time_ms=processing_time_ms, error=error, error_kind=error_kind)


@dataclass
class LLMResponse:
    output: List[Dict[str, Any]] = field(default_factory=list)
    usage_tokens: Optional[int] = None


class OCRProvider(ABC):
    name: str = ''
    supported_document_types: FrozenSet[DocumentType] = frozenset()

    @classmethod
    def from_settings(cls, settings: Settings) -> 'OCRProvider':
        return cls()

    def supports_document_type(self, document_type: DocumentType) -> bool:
        return document_type in self.supported_document_types

    @abstractmethod
    def is_available(self) -> bool:
        """True when credentials are present and the provider can be used"""
        pass

    @abstractmethod
    def process_document(self, document_data: bytes, document_type: DocumentType) -> OcrProcessingResult:
        """Never raises; upstream failures come back as a failed result"""
        pass

    def close(self) -> None:
        """Release held resources"""
        return None


class LLMProvider(ABC):
    @classmethod
    def from_settings(cls, settings: Settings) -> 'LLMProvider':
        return cls()

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    def run_prompt(self, prompt_id: str, prompt_version: str, user_content: str) -> LLMResponse:
        """Run a stored prompt with the given text as the only user message"""
        pass


class InventoryStore(ABC):
    """Interface for the household inventory"""

    @abstractmethod
    def add_item(self, entry: InventoryEntry) -> str:
        """Create an inventory entry and return its id"""
        pass


class BudgetLedger(ABC):
    """Interface for the expense ledger"""

    @abstractmethod
    def record_expense(self, expense: ExpenseRequest) -> ExpenseOutcome:
        """Record an expense; the outcome carries the budget severity"""
        pass


class ProductCatalog(ABC):
    """Interface for the barcode product catalog"""

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[CatalogProduct]:
        pass

    @abstractmethod
    def find_by_ean(self, ean: str) -> Optional[CatalogProduct]:
        pass

    @abstractmethod
    def search_by_keywords(self, keywords: Sequence[str]) -> List[CatalogProduct]:
        """Products whose name or brand contains any keyword (case and accent insensitive)"""
        pass
