"""
    Receipt Item Validation Service module

    Every default, clamp and filter applied to OCR or LLM output lives here so
    the rest of the pipeline only sees values that already satisfy the
    receipt schemas.
"""

import re
import math
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional, Tuple
from pydantic import ValidationError
from receipt_inventory.config import (
    setup_logging,
    EAN_PATTERN,
    LLM_DEFAULT_CONFIDENCE,
    MAX_ITEM_QUANTITY,
    MAX_ITEM_NAME_LENGTH,
    LOW_CONFIDENCE_THRESHOLD,
    SUSPICIOUS_CONFIDENCE_THRESHOLD,
    SUSPICIOUS_MAX_PRICE,
    SUSPICIOUS_MAX_QUANTITY,
    MIN_ITEM_NAME_LENGTH,
    TOTAL_TOLERANCE_RATIO,
    LINE_TOTAL_TOLERANCE,
)
from receipt_inventory.providers.helpers import parse_amount
from receipt_inventory.receipt_schemas import (
    DetectedProduct,
    EanSuggestion,
    LlmReceiptAnalysis,
    OcrReceiptData,
    ReceiptItem,
    ValidationReport,
)


setup_logging()
logger = logging.getLogger(__name__)

_EAN_RE = re.compile(EAN_PATTERN, re.ASCII)
_QUANTITY_PREFIX_RE = re.compile(r'^\s*(\d+(?:[.,]\d+)?)\s*[xX×]\s*(\S.*)$')
_CENT = Decimal('0.01')


def is_valid_ean(value: Any) -> bool:
    return isinstance(value, str) and _EAN_RE.fullmatch(value) is not None


def normalize_confidence(value: Any, default: float) -> float:
    """Clamp into [0, 1]; absent or non-numeric values take the default"""
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return min(1.0, max(0.0, number))


def normalize_amount(value: Any) -> Optional[Decimal]:
    amount = parse_amount(value)
    if amount is None:
        return None
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def normalize_quantity(value: Any) -> Optional[float]:
    """Quantities outside (0, MAX_ITEM_QUANTITY] are treated as unread"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).replace(',', '.')) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or number <= 0 or number > MAX_ITEM_QUANTITY:
        return None
    return number


def clean_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = ' '.join(value.split())
    return cleaned or None


def split_quantity_prefix(description: str) -> Tuple[Optional[float], str]:
    """'2 x Yaourt nature' -> (2.0, 'Yaourt nature')"""
    match = _QUANTITY_PREFIX_RE.match(description)
    if not match:
        return None, description
    return normalize_quantity(match.group(1)), match.group(2).strip()


class ReceiptItemValidator:
    """Normalizes provider and model output into reviewable receipt items"""

    def items_from_ocr(self, data: OcrReceiptData) -> List[ReceiptItem]:
        items = []
        for line in data.line_items:
            item = self._build_item(
                name=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
                confidence=normalize_confidence(line.confidence, 0.0),
                product_code=line.product_code,
                discount=normalize_amount(line.discount),
            )
            if item:
                items.append(item)

        logger.info(f"Validated {len(items)}/{len(data.line_items)} OCR line items")
        return items

    def items_from_analysis(self, analysis: LlmReceiptAnalysis) -> List[ReceiptItem]:
        items = []
        for product in analysis.products:
            item = self._build_item(
                name=product.name,
                quantity=product.quantity,
                unit_price=product.unit_price,
                total_price=product.total_price,
                confidence=normalize_confidence(product.confidence, LLM_DEFAULT_CONFIDENCE),
                suggested_eans=product.suggested_eans,
            )
            if item:
                items.append(item)

        logger.info(f"Validated {len(items)}/{len(analysis.products)} detected products")
        return items

    def normalize_detected_product(self, raw_product: Any) -> Optional[DetectedProduct]:
        """
        Build a DetectedProduct from one entry of the model's `products` list.

        Returns None when the entry has no usable name. Invalid EAN candidates
        are dropped one by one; the product itself is kept.
        """
        if not isinstance(raw_product, dict):
            logger.debug(f"Dropping non-object product entry: {raw_product!r}")
            return None

        name = clean_text(raw_product.get('name'))
        if not name:
            logger.debug("Dropping product without a name")
            return None

        return DetectedProduct(
            name=name[:MAX_ITEM_NAME_LENGTH],
            quantity=normalize_quantity(raw_product.get('quantity')),
            unit_price=normalize_amount(raw_product.get('unitPrice')),
            total_price=normalize_amount(raw_product.get('totalPrice')),
            confidence=normalize_confidence(raw_product.get('confidence'), LLM_DEFAULT_CONFIDENCE),
            suggested_eans=self.normalize_ean_suggestions(raw_product.get('suggestedEans'), name),
        )

    def normalize_ean_suggestions(self, raw_suggestions: Any, product_name: str) -> Tuple[EanSuggestion, ...]:
        if not isinstance(raw_suggestions, list):
            return ()

        suggestions = []
        for entry in raw_suggestions:
            if not isinstance(entry, dict):
                continue

            # Taken as sent: no trimming, no number-to-string coercion
            ean = entry.get('ean')
            if not is_valid_ean(ean):
                logger.debug(f"Dropping invalid EAN {ean!r} suggested for '{product_name}'")
                continue

            image = entry.get('image')
            suggestions.append(EanSuggestion(
                ean=ean,
                confidence=normalize_confidence(entry.get('confidence'), LLM_DEFAULT_CONFIDENCE),
                brand=clean_text(entry.get('brand')) or '-',
                product_name=clean_text(entry.get('productName')) or product_name,
                image=image.strip() if isinstance(image, str) and image.strip() else None,
            ))

        return tuple(suggestions)

    def build_report(self, items: List[ReceiptItem], total_amount: Optional[Decimal] = None) -> ValidationReport:
        """Confidence and consistency summary shown next to the review screen"""
        if not items:
            return ValidationReport()

        confidences = [item.confidence for item in items]

        return ValidationReport(
            item_count=len(items),
            overall_confidence=sum(confidences) / len(confidences),
            low_confidence_item_ids=[item.id for item in items if item.confidence < LOW_CONFIDENCE_THRESHOLD],
            suspicious_item_ids=[item.id for item in items if self._is_suspicious(item)],
            data_consistency=self._data_consistency(items, total_amount),
        )

    def _build_item(self, name: str, quantity: Optional[float], unit_price: Any, total_price: Any,
                    confidence: float, **extra) -> Optional[ReceiptItem]:
        detected_name = clean_text(name)
        if not detected_name:
            return None

        parsed_quantity = normalize_quantity(quantity)
        if parsed_quantity is None:
            parsed_quantity, detected_name = split_quantity_prefix(detected_name)
        parsed_quantity = parsed_quantity or 1.0

        unit = normalize_amount(unit_price)
        total = normalize_amount(total_price)
        if unit is None and total is not None:
            unit = (total / Decimal(str(parsed_quantity))).quantize(_CENT, rounding=ROUND_HALF_UP)

        try:
            return ReceiptItem(
                detected_name=detected_name[:MAX_ITEM_NAME_LENGTH],
                quantity=parsed_quantity,
                unit_price=unit,
                total_price=total,
                confidence=confidence,
                **extra,
            )
        except ValidationError as e:
            logger.warning(f"Dropping item '{detected_name}': {e}")
            return None

    @staticmethod
    def _is_suspicious(item: ReceiptItem) -> bool:
        prices = [price for price in (item.unit_price, item.total_price) if price is not None]
        return (
            item.confidence < SUSPICIOUS_CONFIDENCE_THRESHOLD
            or any(price < 0 or price > SUSPICIOUS_MAX_PRICE for price in prices)
            or item.quantity > SUSPICIOUS_MAX_QUANTITY
            or len(item.detected_name) < MIN_ITEM_NAME_LENGTH
        )

    @staticmethod
    def _data_consistency(items: Iterable[ReceiptItem], total_amount: Optional[Decimal]) -> float:
        checks: List[bool] = []

        priced = [item.purchase_price for item in items if item.purchase_price is not None]
        if total_amount and priced:
            difference = abs(sum(priced) - total_amount)
            checks.append(difference <= abs(total_amount) * Decimal(str(TOTAL_TOLERANCE_RATIO)))

        for item in items:
            if item.unit_price is not None and item.total_price is not None:
                expected = item.unit_price * Decimal(str(item.quantity))
                checks.append(abs(expected - item.total_price) <= Decimal(str(LINE_TOTAL_TOLERANCE)))

        if not checks:
            return 1.0
        return sum(checks) / len(checks)
