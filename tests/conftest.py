from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import pytest

from receipt_inventory.errors import ErrorKind
from receipt_inventory.provider_interfaces import (
    BudgetLedger,
    InventoryStore,
    LLMProvider,
    LLMResponse,
    OCRProvider,
    OcrProcessingResult,
    ProductCatalog,
)
from receipt_inventory.receipt_schemas import (
    CatalogProduct,
    CommitSeverity,
    DocumentType,
    ExpenseOutcome,
    ExpenseRequest,
    InventoryEntry,
    OcrLineItem,
    OcrReceiptData,
)
from receipt_inventory.services.product_matching_service import normalize_product_text


class FakeOcrProvider(OCRProvider):
    def __init__(self, name: str, available: bool = True, document_types=frozenset(DocumentType),
                 data: Optional[OcrReceiptData] = None, error: Optional[str] = None, exception: Optional[Exception] = None):
        self.name = name
        self.available = available
        self.supported_document_types = frozenset(document_types)
        self.data = data
        self.error = error
        self.exception = exception
        self.calls: List[DocumentType] = []
        self.closed = False

    def is_available(self) -> bool:
        return self.available

    def process_document(self, document_data: bytes, document_type: DocumentType) -> OcrProcessingResult:
        self.calls.append(document_type)
        if self.exception is not None:
            raise self.exception
        if self.error is not None:
            return OcrProcessingResult.failed(self.name, document_type, self.error, 5, ErrorKind.TIMEOUT)
        return OcrProcessingResult.succeeded(self.name, document_type, self.data or OcrReceiptData(), 5)

    def close(self) -> None:
        self.closed = True


class FakeLLMProvider(LLMProvider):
    def __init__(self, output=None, available: bool = True, exception: Optional[Exception] = None):
        self.output = output if output is not None else []
        self.available = available
        self.exception = exception
        self.calls: List[Dict[str, str]] = []

    def is_available(self) -> bool:
        return self.available

    def run_prompt(self, prompt_id: str, prompt_version: str, user_content: str) -> LLMResponse:
        self.calls.append({'prompt_id': prompt_id, 'prompt_version': prompt_version, 'user_content': user_content})
        if self.exception is not None:
            raise self.exception
        return LLMResponse(output=self.output, usage_tokens=42)


class InMemoryInventory(InventoryStore):
    def __init__(self, failing_names=()):
        self.entries: List[InventoryEntry] = []
        self.failing_names = set(failing_names)

    def add_item(self, entry: InventoryEntry) -> str:
        if entry.name in self.failing_names:
            raise RuntimeError(f"cannot store {entry.name}")
        self.entries.append(entry)
        return f"inv-{len(self.entries)}"


class InMemoryLedger(BudgetLedger):
    def __init__(self, budget: Optional[Decimal] = None):
        self.expenses: List[ExpenseRequest] = []
        self.budget = budget

    def record_expense(self, expense: ExpenseRequest) -> ExpenseOutcome:
        self.expenses.append(expense)
        spent = sum(e.amount for e in self.expenses)
        if self.budget is not None and spent > self.budget:
            return ExpenseOutcome(expense_id=f"exp-{len(self.expenses)}", severity=CommitSeverity.WARNING,
                                  message="Monthly budget exceeded")
        return ExpenseOutcome(expense_id=f"exp-{len(self.expenses)}")


class InMemoryCatalog(ProductCatalog):
    def __init__(self, products: List[CatalogProduct]):
        self.products = {product.id: product for product in products}

    def get_product(self, product_id: str) -> Optional[CatalogProduct]:
        return self.products.get(product_id)

    def find_by_ean(self, ean: str) -> Optional[CatalogProduct]:
        return next((p for p in self.products.values() if p.barcode == ean), None)

    def search_by_keywords(self, keywords: Sequence[str]) -> List[CatalogProduct]:
        return [p for p in self.products.values()
                if any(keyword in normalize_product_text(f"{p.name} {p.brand or ''}") for keyword in keywords)]


def structured_receipt(line_count: int = 2) -> OcrReceiptData:
    return OcrReceiptData(
        merchant_name="Carrefour Market",
        merchant_address="12 rue de la Paix\n75002 Paris",
        total_amount=Decimal("6.40"),
        confidence=0.91,
        line_items=tuple(
            OcrLineItem(description=f"Article {i}", quantity=1, total_price=Decimal("3.20"), confidence=0.9)
            for i in range(1, line_count + 1)
        ),
    )


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog([
        CatalogProduct(id="p-milk", name="Lait demi-écrémé", brand="Lactel", barcode="3428271940011", category="dairy"),
        CatalogProduct(id="p-bread", name="Baguette", barcode="3250391234567"),
    ])
