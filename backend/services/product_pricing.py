"""
Orderdesk Core - Product Pricing

Line-item matching against the venue catalog and derivation of the
canonical order amounts:

    originalAmount  secondary currency (catalog sum, or native total * rate)
    baseAmount      originalAmount / rate
    totalAmount     round(baseAmount * 1.035, 2), or the native total when
                    there is no usable rate

Matching is all-or-nothing per order. A single unmatched item makes the
whole order fall back to native-total pricing so an order is never priced
from a partial sum.
"""

import logging
from typing import Dict, Iterable, List, Optional

from database.order_models import PricingSource
from ingestion.errors import UnmatchedProducts
from ingestion.unified_schema import AmountBreakdown, CatalogProduct, RawLineItem
from services.order_repository import OrderDatastore
from utils.money import (
    after_payout_deduction,
    base_amount as to_base_amount,
    round_currency,
    with_processing_fee,
    without_processing_fee,
)

logger = logging.getLogger(__name__)


class CatalogIndex:
    """
    Lookup tables over a venue's active products, one per matching tier.

    The first product wins when several share a key.
    """

    def __init__(self, products: Iterable[CatalogProduct]):
        self.by_external_id: Dict[str, CatalogProduct] = {}
        self.by_sku: Dict[str, CatalogProduct] = {}
        self.by_name: Dict[str, CatalogProduct] = {}
        self.size = 0

        for product in products:
            if not product.active:
                continue
            self.size += 1
            if product.external_id and product.external_id.strip():
                self.by_external_id.setdefault(product.external_id.strip(), product)
            if product.sku and product.sku.strip():
                self.by_sku.setdefault(product.sku.strip(), product)
            if product.name and product.name.strip():
                self.by_name.setdefault(product.name.strip().lower(), product)

    def __len__(self) -> int:
        return self.size

    def lookup(self, item: RawLineItem) -> Optional[CatalogProduct]:
        """Variant/product id first, then SKU (case-sensitive), then name (case-insensitive)."""
        if item.external_product_id:
            product = self.by_external_id.get(item.external_product_id.strip())
            if product:
                return product

        if item.sku and item.sku.strip():
            product = self.by_sku.get(item.sku.strip())
            if product:
                return product

        if item.product_name and item.product_name.strip():
            return self.by_name.get(item.product_name.strip().lower())

        return None


class ProductPriceMatcher:
    """Resolves raw line items to catalog prices for one venue."""

    def __init__(self, store: OrderDatastore):
        self.store = store

    async def match(self, line_items: List[RawLineItem], venue_id: Optional[int]) -> float:
        """
        Sum of matched price * quantity over all items.

        Raises:
            UnmatchedProducts: no items, empty catalog, or any item unmatched
        """
        if not line_items:
            raise UnmatchedProducts([], venue_id)

        products = await self.store.find_products_by_venue(venue_id, active_only=True) if venue_id else []
        index = CatalogIndex(products)
        if not len(index):
            raise UnmatchedProducts([item.describe() for item in line_items], venue_id)

        total = 0.0
        unmatched = []
        for item in line_items:
            product = index.lookup(item)
            if product is None:
                unmatched.append(item.describe())
                continue
            total += product.price * item.quantity

        if unmatched:
            raise UnmatchedProducts(unmatched, venue_id)

        return total


class AmountCalculator:
    """Derives original/base/total amounts from catalog or fallback pricing."""

    def __init__(self, matcher: ProductPriceMatcher):
        self.matcher = matcher

    async def calculate(
        self,
        line_items: List[RawLineItem],
        rate: float,
        venue_id: Optional[int],
        native_total: float,
        allow_fallback: bool = True,
    ) -> AmountBreakdown:
        """
        Compute the canonical amounts for one order.

        Args:
            allow_fallback: when False, line items that fail matching raise
                UnmatchedProducts instead of falling back. Orders with no
                line items always fall back.
        """
        original_amount = None
        unmatched: List[str] = []

        if rate > 0:
            try:
                original_amount = await self.matcher.match(line_items, venue_id)
            except UnmatchedProducts as e:
                if e.items and not allow_fallback:
                    raise
                unmatched = e.items
                if unmatched:
                    logger.warning(
                        f"Fallback pricing for venue {venue_id}: {e.message}",
                        extra={"venue_id": venue_id, "unmatched_items": unmatched}
                    )

        if original_amount is None:
            pricing_source = PricingSource.FALLBACK
            original_amount = native_total * rate
        else:
            pricing_source = PricingSource.CATALOG

        base = to_base_amount(original_amount, rate)
        total_amount = with_processing_fee(base) if base is not None else native_total

        return AmountBreakdown(
            original_amount=original_amount,
            base_amount=base,
            total_amount=total_amount,
            pricing_source=pricing_source,
            unmatched_items=unmatched,
        )


def calculate_payout(
    original_amount: Optional[float],
    exchange_rate: Optional[float],
    total_amount: float,
) -> float:
    """
    Expected payout for an order.

    With secondary-currency pricing: round(original / rate * 0.9825, 2).
    Without it: the processing fee backed out of the fee-inclusive total.
    """
    base = to_base_amount(original_amount, exchange_rate)
    if base is not None and original_amount >= 0:
        return after_payout_deduction(base)
    return round_currency(without_processing_fee(total_amount))
