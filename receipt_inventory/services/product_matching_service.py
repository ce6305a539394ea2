"""
    Product Matching Service module
"""

import re
import logging
import unicodedata
from typing import Any, Dict, List, Optional, Sequence
from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein
from receipt_inventory.config import (
    setup_logging,
    MATCH_MIN_SCORE,
    MATCH_GOOD_THRESHOLD,
    MATCH_EXACT_THRESHOLD,
    MATCH_MAX_EDIT_DISTANCE,
    MATCH_MAX_RESULTS,
    MATCH_MIN_KEYWORD_LENGTH,
)
from receipt_inventory.provider_interfaces import ProductCatalog
from receipt_inventory.receipt_schemas import (
    CatalogProduct,
    MatchStatus,
    MatchType,
    ProductMatch,
    ProductMatchResult,
    ReceiptItem,
)


setup_logging()
logger = logging.getLogger(__name__)

BARCODE_SCORE = 1.0
EXACT_NAME_SCORE = 0.98
FUZZY_SCORE_CAP = 0.95
FUZZY_KEYWORD_BONUS = 0.3
KEYWORD_SCORE_CAP = 0.9
KEYWORD_WEIGHT = 0.8

# Compared after normalization (lowercase, no accents)
STOP_WORDS = frozenset({
    'le', 'la', 'les', 'un', 'une', 'des', 'du', 'de', 'et', 'ou', 'avec', 'sans',
    'bio', 'frais', 'surgele', 'surgelee', 'kg', 'g', 'l', 'ml', 'piece', 'pc',
    'unite', 'lot', 'pack', 'x',
})

# First pattern found in the normalized description wins
CATEGORY_PATTERNS = {
    'Fruits et légumes': re.compile(r'pomme|banane|tomate|carotte|salade|legume|fruit'),
    'Viande et poisson': re.compile(r'viande|porc|boeuf|bœuf|poulet|poisson|saumon|jambon'),
    'Produits laitiers': re.compile(r'lait|fromage|yaourt|beurre|creme|dairy'),
    'Pain et pâtisserie': re.compile(r'pain|baguette|croissant|patisserie|brioche'),
    'Boissons': re.compile(r'eau|jus|soda|biere|vin|boisson'),
    'Surgelés': re.compile(r'surgele|congele|frozen'),
    'Épicerie': re.compile(r'riz|pates|conserve|sauce|huile'),
}


def normalize_product_text(text: Optional[str]) -> str:
    """'Café "Très" BON!!!' -> 'cafe tres bon'"""
    if not text:
        return ''
    decomposed = unicodedata.normalize('NFD', text.lower())
    stripped = ''.join(char for char in decomposed if not unicodedata.combining(char))
    stripped = re.sub(r'[^\w\s]', ' ', stripped)
    return re.sub(r'\s+', ' ', stripped).strip()


def extract_keywords(text: str) -> List[str]:
    """Meaningful words of a normalized text: no stop words, no pure numbers, no short words"""
    keywords = []
    for word in text.split():
        word = re.sub(r'\W', '', word)
        if len(word) < MATCH_MIN_KEYWORD_LENGTH or word in STOP_WORDS or word.isdigit():
            continue
        if word not in keywords:
            keywords.append(word)
    return keywords


class ProductMatcher:
    """
    Ranks catalog products for a receipt line.

    Candidates come from the line's barcodes (product code and suggested
    EANs), then from a keyword search on the catalog scored by exact name,
    fuzzy name and keyword overlap. Each product keeps its best score.
    """

    def __init__(self, catalog: ProductCatalog):
        self.catalog = catalog

    def match_item(self, item: ReceiptItem) -> ProductMatchResult:
        description = normalize_product_text(item.detected_name)

        try:
            matches = self._barcode_matches(item)

            keywords = extract_keywords(description)
            if keywords:
                for product in self.catalog.search_by_keywords(keywords):
                    matches.extend(self._name_matches(product, description, keywords))

        except Exception as e:
            logger.error(f"Product matching failed for '{item.detected_name}': {e}")
            return ProductMatchResult(item_id=item.id, suggested_category=self._category_from_text(description))

        ranked = self._rank(matches)
        best = ranked[0] if ranked else None

        if best:
            logger.info(f"Matched '{item.detected_name}': {len(ranked)} candidate(s), best score {best.score:.2f}")
        else:
            logger.info(f"No catalog match for '{item.detected_name}'")

        return ProductMatchResult(
            item_id=item.id,
            matches=tuple(ranked),
            status=self._status(best),
            suggested_category=self._suggest_category(description, best),
        )

    def match_items(self, items: Sequence[ReceiptItem]) -> List[ProductMatchResult]:
        return [self.match_item(item) for item in items]

    @staticmethod
    def get_matching_stats(results: Sequence[ProductMatchResult]) -> Dict[str, Any]:
        counts = {status: 0 for status in MatchStatus}
        for result in results:
            counts[result.status] += 1

        best_scores = [result.best_match.score for result in results if result.best_match]
        total = len(results)

        return {
            'total_items': total,
            'exact_matches': counts[MatchStatus.EXACT_MATCH],
            'good_matches': counts[MatchStatus.GOOD_MATCH],
            'possible_matches': counts[MatchStatus.POSSIBLE_MATCH],
            'no_matches': counts[MatchStatus.NO_MATCH],
            'match_rate': (counts[MatchStatus.EXACT_MATCH] + counts[MatchStatus.GOOD_MATCH]) / total if total else 0.0,
            'avg_score': sum(best_scores) / len(best_scores) if best_scores else 0.0,
        }

    def _barcode_matches(self, item: ReceiptItem) -> List[ProductMatch]:
        codes = [item.product_code] if item.product_code else []
        codes.extend(suggestion.ean for suggestion in item.suggested_eans)

        matches = []
        for code in codes:
            product = self.catalog.find_by_ean(code)
            if product:
                matches.append(ProductMatch(product=product, score=BARCODE_SCORE,
                                            match_type=MatchType.EXACT_BARCODE, matched_text=code))
        return matches

    @staticmethod
    def _name_matches(product: CatalogProduct, description: str, keywords: List[str]) -> List[ProductMatch]:
        name = normalize_product_text(product.name)
        matches = []

        if name == description:
            matches.append(ProductMatch(product=product, score=EXACT_NAME_SCORE,
                                        match_type=MatchType.EXACT_NAME, matched_text=product.name))

        # Whole-string fuzzy match, tolerating a few typos only
        distance = Levenshtein.distance(description, name, score_cutoff=MATCH_MAX_EDIT_DISTANCE)
        if distance <= MATCH_MAX_EDIT_DISTANCE:
            product_keywords = extract_keywords(name)
            common = tuple(keyword for keyword in keywords if keyword in product_keywords)
            similarity = fuzz.ratio(description, name) / 100
            score = min(FUZZY_SCORE_CAP, similarity + len(common) / len(keywords) * FUZZY_KEYWORD_BONUS)
            matches.append(ProductMatch(product=product, score=score, match_type=MatchType.FUZZY_NAME,
                                        matched_text=product.name, edit_distance=distance,
                                        matched_keywords=common))

        product_text = normalize_product_text(f"{product.name} {product.brand or ''}")
        matched_keywords = tuple(keyword for keyword in keywords if keyword in product_text)
        if matched_keywords:
            score = min(KEYWORD_SCORE_CAP, len(matched_keywords) / len(keywords) * KEYWORD_WEIGHT)
            matches.append(ProductMatch(product=product, score=score, match_type=MatchType.KEYWORD,
                                        matched_keywords=matched_keywords))

        return matches

    @staticmethod
    def _rank(matches: List[ProductMatch]) -> List[ProductMatch]:
        best_by_product: Dict[str, ProductMatch] = {}
        for match in matches:
            existing = best_by_product.get(match.product.id)
            if existing is None or match.score > existing.score:
                best_by_product[match.product.id] = match

        kept = [match for match in best_by_product.values() if match.score >= MATCH_MIN_SCORE]
        kept.sort(key=lambda match: match.score, reverse=True)
        return kept[:MATCH_MAX_RESULTS]

    @staticmethod
    def _status(best: Optional[ProductMatch]) -> MatchStatus:
        if best is None:
            return MatchStatus.NO_MATCH
        if best.score >= MATCH_EXACT_THRESHOLD:
            return MatchStatus.EXACT_MATCH
        if best.score >= MATCH_GOOD_THRESHOLD:
            return MatchStatus.GOOD_MATCH
        return MatchStatus.POSSIBLE_MATCH

    def _suggest_category(self, description: str, best: Optional[ProductMatch]) -> Optional[str]:
        if best and best.score > MATCH_GOOD_THRESHOLD and best.product.category:
            return best.product.category
        return self._category_from_text(description)

    @staticmethod
    def _category_from_text(description: str) -> Optional[str]:
        for category, pattern in CATEGORY_PATTERNS.items():
            if pattern.search(description):
                return category
        return None
