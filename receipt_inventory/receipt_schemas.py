"""
    Pydantic schemas for receipt extraction and review
"""

import re
import uuid
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Optional, List, Dict, Any, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator
from receipt_inventory.config import setup_logging, DEFAULT_CURRENCY, MAX_ITEM_QUANTITY, MAX_ITEM_NAME_LENGTH, MAX_ITEM_PRICE, EAN_PATTERN
from receipt_inventory.errors import ReceiptItemNotFoundError


setup_logging()
logger = logging.getLogger(__name__)


class DocumentType(StrEnum):
    RECEIPT_IMAGE = "receipt_image"
    INVOICE_PDF = "invoice_pdf"
    INVOICE_HTML = "invoice_html"

    @property
    def is_invoice(self) -> bool:
        return self is not DocumentType.RECEIPT_IMAGE


class ReceiptStatus(StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    VALIDATED = "validated"


class CommitSeverity(StrEnum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"

    @property
    def rank(self) -> int:
        return [CommitSeverity.SUCCESS, CommitSeverity.INFO, CommitSeverity.WARNING].index(self)


# ---------------------------- OCR output ---------------------------------

class OcrLineItem(BaseModel):
    """One line of a receipt or invoice, as read by an OCR provider"""
    model_config = ConfigDict(frozen=True)

    description: str = Field(min_length=1)
    quantity: Optional[float] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    confidence: float = Field(default=0.0, ge=0, le=1)
    product_code: Optional[str] = None
    discount: Optional[Decimal] = None


class OcrReceiptData(BaseModel):
    """Canonical shape every OCR provider maps its upstream output into"""
    model_config = ConfigDict(frozen=True)

    merchant_name: Optional[str] = None
    merchant_address: Optional[str] = None
    total_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    purchase_date: Optional[date] = None
    currency: str = DEFAULT_CURRENCY
    line_items: Tuple[OcrLineItem, ...] = ()
    confidence: float = Field(default=0.0, ge=0, le=1)
    raw_data: Optional[Dict[str, Any]] = Field(default=None, exclude=True, repr=False, description="Debug only")
    extracted_text: Optional[str] = None
    invoice_number: Optional[str] = None
    order_number: Optional[str] = None

    @field_validator('merchant_name', 'invoice_number', 'order_number')
    @classmethod
    def clean_optional_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        cleaned = v.strip()
        return cleaned or None

    @field_validator('merchant_address')
    @classmethod
    def collapse_address(cls, v: Optional[str]) -> Optional[str]:
        """Addresses are kept on a single line"""
        if v is None:
            return None
        parts = [part.strip() for part in re.split(r'[\r\n]+', v) if part.strip()]
        return ', '.join(parts) or None

    @field_validator('currency', mode='before')
    @classmethod
    def default_currency(cls, v: Optional[str]) -> str:
        if not v or not str(v).strip():
            return DEFAULT_CURRENCY
        return str(v).strip().upper()

    @property
    def has_structured_fields(self) -> bool:
        return bool(self.line_items) or any(
            value is not None for value in (self.merchant_name, self.total_amount, self.purchase_date)
        )


# ---------------------------- LLM output ---------------------------------

class EanSuggestion(BaseModel):
    """Candidate product code proposed for a detected product"""
    model_config = ConfigDict(frozen=True)

    ean: str = Field(pattern=EAN_PATTERN)
    confidence: float = Field(ge=0, le=1)
    brand: str = "-"
    product_name: str = Field(min_length=1)
    image: Optional[str] = None


class DetectedProduct(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    quantity: Optional[float] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    confidence: float = Field(ge=0, le=1)
    suggested_eans: Tuple[EanSuggestion, ...] = Field(default=(), description="Ordered by relevance")


class LlmReceiptAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    merchant_name: Optional[str] = None
    purchase_date: Optional[date] = None
    total_amount: Optional[Decimal] = None
    confidence: float = Field(ge=0, le=1)
    products: Tuple[DetectedProduct, ...] = ()
    processing_time_ms: int = 0


# ---------------------------- Review entities ----------------------------

class CatalogProduct(BaseModel):
    """Product reference owned by the external catalog"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    brand: Optional[str] = None
    barcode: Optional[str] = None
    category: Optional[str] = None


class MatchType(StrEnum):
    EXACT_BARCODE = "exact_barcode"
    EXACT_NAME = "exact_name"
    FUZZY_NAME = "fuzzy_name"
    KEYWORD = "keyword"


class MatchStatus(StrEnum):
    EXACT_MATCH = "exact_match"
    GOOD_MATCH = "good_match"
    POSSIBLE_MATCH = "possible_match"
    NO_MATCH = "no_match"


class ProductMatch(BaseModel):
    """One catalog candidate for a receipt line"""
    model_config = ConfigDict(frozen=True)

    product: CatalogProduct
    score: float = Field(ge=0, le=1)
    match_type: MatchType
    matched_text: Optional[str] = None
    edit_distance: Optional[int] = None
    matched_keywords: Tuple[str, ...] = ()


class ProductMatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    matches: Tuple[ProductMatch, ...] = Field(default=(), description="Best score first")
    status: MatchStatus = MatchStatus.NO_MATCH
    suggested_category: Optional[str] = None

    @property
    def best_match(self) -> Optional[ProductMatch]:
        return self.matches[0] if self.matches else None


class ReceiptItem(BaseModel):
    """Detected purchase line awaiting human review"""
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    detected_name: str = Field(min_length=1, max_length=MAX_ITEM_NAME_LENGTH)
    quantity: float = Field(default=1.0, gt=0, le=MAX_ITEM_QUANTITY)
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    confidence: float = Field(default=0.0, ge=0, le=1)
    category_guess: Optional[str] = None
    product: Optional[CatalogProduct] = None
    product_code: Optional[str] = None
    discount: Optional[Decimal] = None
    suggested_eans: Tuple[EanSuggestion, ...] = ()
    validated: bool = False
    expiry_date: Optional[date] = None
    storage_location: Optional[str] = None
    notes: Optional[str] = None

    @property
    def purchase_price(self) -> Optional[Decimal]:
        """Total paid for the line, derived from the unit price when no total was read"""
        if self.total_price is not None:
            return self.total_price
        if self.unit_price is not None:
            return (self.unit_price * Decimal(str(self.quantity))).quantize(Decimal('0.01'))
        return None


class ReceiptItemUpdate(BaseModel):
    """Partial correction of a receipt item; unset fields are left untouched"""

    detected_name: Optional[str] = Field(default=None, min_length=1, max_length=MAX_ITEM_NAME_LENGTH)
    quantity: Optional[float] = Field(default=None, ge=0.01, le=MAX_ITEM_QUANTITY)
    unit_price: Optional[Decimal] = Field(default=None, ge=0, le=MAX_ITEM_PRICE)
    total_price: Optional[Decimal] = Field(default=None, ge=0, le=MAX_ITEM_PRICE)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    category_guess: Optional[str] = None
    expiry_date: Optional[date] = None
    storage_location: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('detected_name', 'category_guess', 'storage_location', 'notes', mode='before')
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class Receipt(BaseModel):
    """Aggregate root of the review workflow"""
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    document_type: DocumentType = DocumentType.RECEIPT_IMAGE
    status: ReceiptStatus = ReceiptStatus.PROCESSING
    items: List[ReceiptItem] = Field(default_factory=list)
    merchant_name: Optional[str] = None
    merchant_address: Optional[str] = None
    total_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    purchase_date: Optional[date] = None
    currency: str = DEFAULT_CURRENCY
    invoice_number: Optional[str] = None
    order_number: Optional[str] = None
    ocr_provider: Optional[str] = None
    ocr_confidence: Optional[float] = Field(default=None, ge=0, le=1)
    processing_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    committed_at: Optional[datetime] = None

    @property
    def validated_items(self) -> List[ReceiptItem]:
        return [item for item in self.items if item.validated]

    @property
    def is_committed(self) -> bool:
        return self.committed_at is not None

    @property
    def is_ready_for_inventory(self) -> bool:
        return self.status == ReceiptStatus.VALIDATED and bool(self.items) and all(item.validated for item in self.items)

    def get_item(self, item_id: str) -> ReceiptItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise ReceiptItemNotFoundError(f"Item '{item_id}' not found on receipt '{self.id}'")

    def get_summary(self) -> str:
        """Get human-readable receipt summary for logging"""
        summary = f"Receipt {self.id}: {self.status} | {self.merchant_name or '?'} | {len(self.items)} items"
        if self.total_amount is not None:
            summary += f" | Total: {self.total_amount} {self.currency}"
        return summary


# ---------------------------- Collaborator payloads ----------------------

class InventoryEntry(BaseModel):
    """Data handed to the inventory store for one committed item"""

    receipt_id: str
    item_id: str
    name: str
    quantity: float
    product_id: Optional[str] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    category: Optional[str] = None
    purchase_date: Optional[date] = None
    expiry_date: Optional[date] = None
    storage_location: Optional[str] = None
    notes: Optional[str] = None


class ExpenseRequest(BaseModel):
    receipt_id: str
    item_id: str
    description: str
    amount: Decimal = Field(ge=0)
    currency: str = DEFAULT_CURRENCY
    category: Optional[str] = None
    purchase_date: Optional[date] = None
    merchant_name: Optional[str] = None


class ExpenseOutcome(BaseModel):
    """Ledger answer; the ledger decides whether the expense deserves a warning"""

    expense_id: Optional[str] = None
    severity: CommitSeverity = CommitSeverity.SUCCESS
    message: Optional[str] = None


class CommittedItem(BaseModel):
    item_id: str
    inventory_entry_id: str
    name: str
    quantity: float
    total_price: Optional[Decimal] = None
    expense: Optional[ExpenseOutcome] = None


class FailedItem(BaseModel):
    item_id: str
    name: str
    error: str


class CommitResult(BaseModel):
    receipt_id: str
    added_items: List[CommittedItem] = Field(default_factory=list)
    failed_items: List[FailedItem] = Field(default_factory=list)
    skipped_item_ids: List[str] = Field(default_factory=list)
    total_amount_spent: Decimal = Decimal('0')
    severity: CommitSeverity = CommitSeverity.SUCCESS
    message: str = ""


class ValidationReport(BaseModel):
    """Quality summary of the items produced for review"""

    item_count: int = 0
    overall_confidence: float = Field(default=0.0, ge=0, le=1)
    low_confidence_item_ids: List[str] = Field(default_factory=list)
    suspicious_item_ids: List[str] = Field(default_factory=list)
    data_consistency: float = Field(default=1.0, ge=0, le=1)
