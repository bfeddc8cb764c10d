"""
Unit Tests for Product Pricing

Tests:
- Tiered matching (variant id -> SKU -> name) and tier priority
- All-or-nothing matching across multi-item orders
- Amount calculation: catalog pricing, fallback pricing, non-positive rates
- Fee rounding and payout inverse

Run with: pytest tests/test_product_pricing.py -v
"""

import pytest

from database.order_models import PricingSource
from ingestion.errors import UnmatchedProducts
from ingestion.unified_schema import RawLineItem
from services.product_pricing import (
    AmountCalculator,
    CatalogIndex,
    ProductPriceMatcher,
    calculate_payout,
)
from utils.money import fee_inclusive_total, with_processing_fee

VENUE = 7


def item(name, quantity=1, sku=None, external_id=None, price=0.0):
    return RawLineItem(
        product_name=name, quantity=quantity, sku=sku,
        external_product_id=external_id, unit_price=price,
    )


class TestMatchingTiers:
    """Each item takes the first tier that matches."""

    @pytest.fixture
    def matcher(self, store):
        store.add_product(VENUE, "Product A", 100.0, sku="SKU-A")
        store.add_product(VENUE, "Product B", 200.0, sku="SKU-B")
        store.add_product(VENUE, "Product C", 300.0, external_id="999")
        return ProductPriceMatcher(store)

    @pytest.mark.asyncio
    async def test_sku_beats_name(self, matcher):
        total = await matcher.match([item("Product B", sku="SKU-A")], VENUE)
        assert total == 100.0

    @pytest.mark.asyncio
    async def test_variant_id_beats_sku_and_name(self, matcher):
        total = await matcher.match([item("Product B", sku="SKU-A", external_id="999")], VENUE)
        assert total == 300.0

    @pytest.mark.asyncio
    async def test_name_match_is_case_insensitive_and_trimmed(self, matcher):
        total = await matcher.match([item("  product b ")], VENUE)
        assert total == 200.0

    @pytest.mark.asyncio
    async def test_sku_match_is_case_sensitive(self, matcher):
        with pytest.raises(UnmatchedProducts):
            await matcher.match([item("Unknown", sku="sku-a")], VENUE)

    @pytest.mark.asyncio
    async def test_quantity_multiplies_price(self, matcher):
        total = await matcher.match([item("Product A", quantity=3), item("Product C", external_id="999")], VENUE)
        assert total == 600.0

    @pytest.mark.asyncio
    async def test_zero_quantity_counts_once(self, matcher):
        zero = item("Product A", quantity=0)

        assert zero.quantity == 1
        assert await matcher.match([zero], VENUE) == 100.0
        assert RawLineItem(product_name="Product A", quantity=None).quantity == 1


class TestAllOrNothing:

    @pytest.mark.asyncio
    async def test_one_unmatched_item_fails_the_whole_match(self, store):
        store.add_product(VENUE, "Product A", 100.0)
        store.add_product(VENUE, "Product B", 200.0)
        matcher = ProductPriceMatcher(store)

        with pytest.raises(UnmatchedProducts) as exc_info:
            await matcher.match([item("Product A"), item("Product B"), item("Mystery Box")], VENUE)

        assert exc_info.value.items == ["Mystery Box"]

    @pytest.mark.asyncio
    async def test_empty_catalog_fails(self, store):
        with pytest.raises(UnmatchedProducts) as exc_info:
            await ProductPriceMatcher(store).match([item("Product A")], VENUE)
        assert exc_info.value.items == ["Product A"]

    @pytest.mark.asyncio
    async def test_inactive_products_are_ignored(self, store):
        store.add_product(VENUE, "Product A", 100.0, active=False)
        with pytest.raises(UnmatchedProducts):
            await ProductPriceMatcher(store).match([item("Product A")], VENUE)

    @pytest.mark.asyncio
    async def test_partial_match_falls_back_for_entire_order(self, store):
        store.add_product(VENUE, "Product A", 100.0)
        store.add_product(VENUE, "Product B", 200.0)
        calculator = AmountCalculator(ProductPriceMatcher(store))

        result = await calculator.calculate(
            [item("Product A"), item("Product B"), item("Mystery Box")],
            rate=50.0, venue_id=VENUE, native_total=20.0,
        )

        assert result.pricing_source == PricingSource.FALLBACK
        assert result.original_amount == 1000.0  # 20 * 50, not 300
        assert result.unmatched_items == ["Mystery Box"]


class TestAmountCalculator:

    @pytest.mark.asyncio
    async def test_catalog_pricing(self, store):
        store.add_product(VENUE, "Gala Ticket", 1000.0, sku="GALA-1")
        store.add_product(VENUE, "VIP Upgrade", 500.0)
        calculator = AmountCalculator(ProductPriceMatcher(store))

        result = await calculator.calculate(
            [item("Gala Ticket", quantity=2, sku="GALA-1"), item("VIP Upgrade")],
            rate=50.0, venue_id=VENUE, native_total=999.0,
        )

        assert result.pricing_source == PricingSource.CATALOG
        assert result.original_amount == 2500.0
        assert result.base_amount == 50.0
        assert result.total_amount == 51.75

    @pytest.mark.asyncio
    async def test_fallback_with_no_catalog(self, store):
        """50.00 USD at 48.5 with no products: 2425.00 EGP, 51.75 USD."""
        calculator = AmountCalculator(ProductPriceMatcher(store))

        result = await calculator.calculate([item("Gala Ticket")], rate=48.5, venue_id=VENUE, native_total=50.0)

        assert result.pricing_source == PricingSource.FALLBACK
        assert result.original_amount == 2425.0
        assert result.total_amount == 51.75

    @pytest.mark.asyncio
    async def test_non_positive_rate_keeps_native_total(self, store):
        store.add_product(VENUE, "Gala Ticket", 1000.0)
        calculator = AmountCalculator(ProductPriceMatcher(store))

        result = await calculator.calculate([item("Gala Ticket")], rate=0.0, venue_id=VENUE, native_total=42.5)

        assert result.base_amount is None
        assert result.total_amount == 42.5
        assert result.pricing_source == PricingSource.FALLBACK

    @pytest.mark.asyncio
    async def test_no_fallback_when_disallowed(self, store):
        calculator = AmountCalculator(ProductPriceMatcher(store))

        with pytest.raises(UnmatchedProducts):
            await calculator.calculate(
                [item("Gala Ticket")], rate=48.5, venue_id=VENUE, native_total=50.0, allow_fallback=False
            )

    @pytest.mark.asyncio
    async def test_orders_without_line_items_always_fall_back(self, store):
        calculator = AmountCalculator(ProductPriceMatcher(store))

        result = await calculator.calculate([], rate=48.5, venue_id=VENUE, native_total=50.0, allow_fallback=False)

        assert result.pricing_source == PricingSource.FALLBACK
        assert result.unmatched_items == []
        assert result.total_amount == 51.75


class TestRounding:

    def test_fee_rounding(self):
        assert with_processing_fee(1000 / 48.5) == 21.34
        assert fee_inclusive_total(1000, 48.5) == 21.34

    def test_half_up_on_exact_half_cent(self):
        assert with_processing_fee(50.0) == 51.75

    def test_payout_from_secondary_pricing(self):
        assert calculate_payout(1000, 48.5, 21.34) == 20.26

    def test_payout_backs_fee_out_without_pricing(self):
        assert calculate_payout(None, None, 103.5) == 100.0

    def test_fee_inclusive_total_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            fee_inclusive_total(1000, 0)


class TestCatalogIndex:

    def test_first_product_wins_on_shared_key(self, store):
        first = store.add_product(VENUE, "Ticket", 10.0, sku="T")
        store.add_product(VENUE, "Ticket", 20.0, sku="T")
        index = CatalogIndex(store.products[VENUE])

        assert index.lookup(item("Ticket", sku="T")) == first
        assert len(index) == 2
