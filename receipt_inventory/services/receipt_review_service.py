"""
    Receipt Review Workflow module
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional
from receipt_inventory.config import setup_logging
from receipt_inventory.errors import (
    CommitNotAllowedError,
    ConfigurationError,
    InvalidTransitionError,
    ProductNotFoundError,
)
from receipt_inventory.provider_interfaces import BudgetLedger, InventoryStore, ProductCatalog
from receipt_inventory.services.product_matching_service import ProductMatcher
from receipt_inventory.receipt_schemas import (
    CommitResult,
    CommitSeverity,
    CommittedItem,
    DocumentType,
    ExpenseOutcome,
    ExpenseRequest,
    FailedItem,
    InventoryEntry,
    ProductMatchResult,
    Receipt,
    ReceiptItem,
    ReceiptItemUpdate,
    ReceiptStatus,
)


setup_logging()
logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[ReceiptStatus, FrozenSet[ReceiptStatus]] = {
    ReceiptStatus.PROCESSING: frozenset({ReceiptStatus.COMPLETED, ReceiptStatus.FAILED}),
    ReceiptStatus.COMPLETED: frozenset({ReceiptStatus.VALIDATED}),
    ReceiptStatus.FAILED: frozenset(),
    ReceiptStatus.VALIDATED: frozenset(),
}

_EDITABLE_STATES = frozenset({ReceiptStatus.COMPLETED, ReceiptStatus.VALIDATED})


class ReceiptReviewWorkflow:
    """
    State machine for a receipt from extraction to inventory.

    PROCESSING -> COMPLETED | FAILED, then COMPLETED -> VALIDATED. Items can
    be edited, validated and linked to catalog products while the receipt is
    COMPLETED or VALIDATED and not yet committed.
    """

    def __init__(self, inventory: Optional[InventoryStore] = None, budget: Optional[BudgetLedger] = None,
                 catalog: Optional[ProductCatalog] = None):
        self.inventory = inventory
        self.budget = budget
        self.catalog = catalog

    # ---------------------------- Receipt status -------------------------

    def start(self, document_type: DocumentType) -> Receipt:
        receipt = Receipt(document_type=document_type)
        logger.info(f"Receipt {receipt.id} created for {document_type}")
        return receipt

    def restart(self, receipt: Receipt) -> Receipt:
        """A failed receipt is only re-processed from scratch"""
        if receipt.status != ReceiptStatus.FAILED:
            raise InvalidTransitionError(f"Only failed receipts can be re-processed (receipt is {receipt.status})")
        return self.start(receipt.document_type)

    def mark_completed(self, receipt: Receipt, items: List[ReceiptItem]) -> Receipt:
        self._transition(receipt, ReceiptStatus.COMPLETED)
        receipt.items = list(items)
        receipt.error_message = None
        logger.info(receipt.get_summary())
        return receipt

    def mark_failed(self, receipt: Receipt, reason: str) -> Receipt:
        self._transition(receipt, ReceiptStatus.FAILED)
        receipt.error_message = reason
        logger.warning(f"Receipt {receipt.id} failed: {reason}")
        return receipt

    def mark_validated(self, receipt: Receipt) -> Receipt:
        self._transition(receipt, ReceiptStatus.VALIDATED)
        logger.info(f"Receipt {receipt.id} validated ({len(receipt.validated_items)}/{len(receipt.items)} items)")
        return receipt

    # ---------------------------- Item review ----------------------------

    def edit_item(self, receipt: Receipt, item_id: str, changes: ReceiptItemUpdate) -> ReceiptItem:
        """Apply a partial correction to one item; receipt status is unchanged"""
        self._ensure_editable(receipt)
        item = receipt.get_item(item_id)
        updates = changes.model_dump(exclude_unset=True)

        # Validate the merged item first so a rejected edit leaves the item untouched
        candidate = ReceiptItem.model_validate({**item.model_dump(), **updates})

        for field_name in updates:
            setattr(item, field_name, getattr(candidate, field_name))

        return item

    def set_item_validated(self, receipt: Receipt, item_id: str, validated: bool = True) -> ReceiptItem:
        self._ensure_editable(receipt)
        item = receipt.get_item(item_id)
        item.validated = validated
        return item

    def associate_product(self, receipt: Receipt, item_id: str, product_id: str) -> ReceiptItem:
        """Link a catalog product; the item's validation flag is left as is"""
        self._ensure_editable(receipt)
        item = receipt.get_item(item_id)

        product = self._require_catalog().get_product(product_id)
        if product is None:
            raise ProductNotFoundError(f"Product '{product_id}' not found in catalog")

        item.product = product
        return item

    def clear_product(self, receipt: Receipt, item_id: str) -> ReceiptItem:
        self._ensure_editable(receipt)
        item = receipt.get_item(item_id)
        item.product = None
        return item

    def suggest_products(self, receipt: Receipt, item_id: str) -> ProductMatchResult:
        """Scored catalog candidates for one item, by barcode, name and keywords"""
        item = receipt.get_item(item_id)
        return ProductMatcher(self._require_catalog()).match_item(item)

    def suggest_all_products(self, receipt: Receipt) -> List[ProductMatchResult]:
        return ProductMatcher(self._require_catalog()).match_items(receipt.items)

    # ---------------------------- Commit ---------------------------------

    def commit_to_inventory(self, receipt: Receipt) -> CommitResult:
        """
        Send validated items to the inventory store and priced ones to the ledger.

        Unvalidated items are skipped. A failure on one item is reported in
        the result and does not stop the others.
        """
        if receipt.status != ReceiptStatus.VALIDATED:
            raise CommitNotAllowedError(f"Receipt must be validated before commit (receipt is {receipt.status})")
        if receipt.is_committed:
            raise CommitNotAllowedError(f"Receipt {receipt.id} was already committed")

        validated_items = receipt.validated_items
        if not validated_items:
            raise CommitNotAllowedError("No validated items to add to inventory")

        if self.inventory is None:
            raise ConfigurationError("No inventory store configured")

        result = CommitResult(
            receipt_id=receipt.id,
            skipped_item_ids=[item.id for item in receipt.items if not item.validated],
        )
        severities = [CommitSeverity.SUCCESS]

        for item in validated_items:
            try:
                entry_id = self.inventory.add_item(self._inventory_entry(receipt, item))
            except Exception as e:
                logger.error(f"Failed to add item '{item.detected_name}' to inventory: {e}")
                result.failed_items.append(FailedItem(item_id=item.id, name=item.detected_name, error=str(e)))
                severities.append(CommitSeverity.WARNING)
                continue

            price = item.purchase_price
            expense = None

            if price is not None and price > 0:
                expense = self._record_expense(receipt, item, price)
                result.total_amount_spent += price
                severities.append(expense.severity)
            else:
                severities.append(CommitSeverity.INFO)

            result.added_items.append(CommittedItem(
                item_id=item.id,
                inventory_entry_id=entry_id,
                name=item.detected_name,
                quantity=item.quantity,
                total_price=price,
                expense=expense,
            ))

        if result.added_items:
            receipt.committed_at = datetime.now(timezone.utc)

        result.severity = max(severities, key=lambda severity: severity.rank)
        result.message = self._build_message(result)
        logger.info(f"Receipt {receipt.id} commit: {result.message}")

        return result

    def _record_expense(self, receipt: Receipt, item: ReceiptItem, amount: Decimal) -> ExpenseOutcome:
        if self.budget is None:
            return ExpenseOutcome(severity=CommitSeverity.INFO, message="No budget ledger configured")

        try:
            return self.budget.record_expense(ExpenseRequest(
                receipt_id=receipt.id,
                item_id=item.id,
                description=item.detected_name,
                amount=amount,
                currency=receipt.currency,
                category=item.category_guess,
                purchase_date=receipt.purchase_date,
                merchant_name=receipt.merchant_name,
            ))
        except Exception as e:
            logger.error(f"Failed to record expense for '{item.detected_name}': {e}")
            return ExpenseOutcome(severity=CommitSeverity.WARNING, message=f"Expense not recorded: {e}")

    @staticmethod
    def _inventory_entry(receipt: Receipt, item: ReceiptItem) -> InventoryEntry:
        return InventoryEntry(
            receipt_id=receipt.id,
            item_id=item.id,
            name=item.product.name if item.product else item.detected_name,
            quantity=item.quantity,
            product_id=item.product.id if item.product else None,
            unit_price=item.unit_price,
            total_price=item.purchase_price,
            category=item.category_guess or (item.product.category if item.product else None),
            purchase_date=receipt.purchase_date,
            expiry_date=item.expiry_date,
            storage_location=item.storage_location,
            notes=item.notes,
        )

    @staticmethod
    def _build_message(result: CommitResult) -> str:
        message = f"{len(result.added_items)} item(s) added to inventory"
        if result.total_amount_spent:
            message += f", {result.total_amount_spent} spent"
        if result.failed_items:
            message += f", {len(result.failed_items)} failed"
        if result.skipped_item_ids:
            message += f", {len(result.skipped_item_ids)} not validated"

        warnings = [item.expense.message for item in result.added_items
                    if item.expense and item.expense.severity == CommitSeverity.WARNING and item.expense.message]
        if warnings:
            message += f". {warnings[-1]}"

        return message

    def _transition(self, receipt: Receipt, target: ReceiptStatus) -> None:
        if target not in _TRANSITIONS[receipt.status]:
            raise InvalidTransitionError(f"Cannot move receipt {receipt.id} from {receipt.status} to {target}")
        receipt.status = target

    @staticmethod
    def _ensure_editable(receipt: Receipt) -> None:
        if receipt.status not in _EDITABLE_STATES:
            raise InvalidTransitionError(f"Receipt {receipt.id} cannot be edited while {receipt.status}")
        if receipt.is_committed:
            raise InvalidTransitionError(f"Receipt {receipt.id} is committed and can no longer be edited")

    def _require_catalog(self) -> ProductCatalog:
        if self.catalog is None:
            raise ConfigurationError("No product catalog configured")
        return self.catalog
