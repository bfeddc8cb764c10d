"""
Unit Tests for the Record Transformer

Tests field mapping from storefront orders and bank credits into
canonical order drafts.

Run with: pytest tests/test_transformer.py -v
"""

import pytest

from conftest import bank_transaction, shopify_order
from database.order_models import OrderSource, OrderStatus, PricingSource
from ingestion.unified_schema import NO_CUSTOMER, RawExternalRecord

VENUE = 3


def raw_shopify(**kwargs):
    return RawExternalRecord.from_shopify(shopify_order(5001, **kwargs))


class TestFieldMapping:

    @pytest.mark.asyncio
    async def test_basic_mapping(self, transformer):
        draft = await transformer.transform(raw_shopify(), 48.5, VENUE, store_id=9)

        assert draft.external_id == "5001"
        assert draft.order_number is None
        assert draft.shopify_order_number == "#S5001"
        assert draft.customer_name == "Nadia Fahmy"
        assert draft.tags == ["vip", "gala"]
        assert draft.status == OrderStatus.OPEN.value
        assert draft.financial_status == "Paid"
        assert draft.shipping_city == "Cairo"
        assert draft.shipping_country == "Egypt"
        assert draft.source == OrderSource.SHOPIFY.value
        assert draft.store_id == 9
        assert draft.venue_id is None

    @pytest.mark.asyncio
    async def test_refunded_orders_are_closed(self, transformer):
        draft = await transformer.transform(raw_shopify(financial_status="refunded"), 48.5, VENUE)
        assert draft.status == OrderStatus.CLOSED.value
        assert draft.financial_status == "Refunded"

    @pytest.mark.asyncio
    async def test_statuses_are_title_cased(self, transformer):
        draft = await transformer.transform(
            raw_shopify(financial_status="partially_refunded", fulfillment_status="partial"), 48.5, VENUE
        )
        assert draft.financial_status == "Partially Refunded"
        assert draft.fulfillment_status == "Partial"
        assert draft.status == OrderStatus.OPEN.value

    @pytest.mark.asyncio
    async def test_missing_customer_uses_sentinel(self, transformer):
        draft = await transformer.transform(raw_shopify(customer=None), 48.5, VENUE)
        assert draft.customer_name == NO_CUSTOMER

    @pytest.mark.asyncio
    async def test_shipping_falls_back_to_billing_then_surname(self, transformer):
        billing = {"city": "Giza", "country": "Egypt"}
        draft = await transformer.transform(
            raw_shopify(shipping_address=None, billing_address=billing), 48.5, VENUE
        )
        assert draft.shipping_city == "Giza"
        assert draft.shipping_country == "Egypt"

        draft = await transformer.transform(
            raw_shopify(shipping_address=None, billing_address=None), 48.5, VENUE
        )
        assert draft.shipping_city == "Fahmy"
        assert draft.shipping_country is None

    @pytest.mark.asyncio
    async def test_storefront_number_from_order_number_field(self, transformer):
        draft = await transformer.transform(raw_shopify(name=None, order_number=77), 48.5, VENUE)
        assert draft.order_number is None
        assert draft.shopify_order_number == "#77"

    @pytest.mark.asyncio
    async def test_tags_from_list(self, transformer):
        draft = await transformer.transform(raw_shopify(tags=[" a ", "", "b"]), 48.5, VENUE)
        assert draft.tags == ["a", "b"]

    @pytest.mark.asyncio
    async def test_assign_venue(self, transformer):
        draft = await transformer.transform(raw_shopify(), 48.5, VENUE, assign_venue=True)
        assert draft.venue_id == VENUE

    @pytest.mark.asyncio
    async def test_line_items(self, transformer):
        items = [
            {"name": "Gala Ticket", "quantity": 2, "sku": "GALA-1", "variant_id": 111, "price": "25.00"},
            {"name": "Program", "quantity": 0, "price": "3.00"},
        ]
        draft = await transformer.transform(raw_shopify(line_items=items), 48.5, VENUE)

        assert [(i.product_name, i.quantity, i.total) for i in draft.line_items] == [
            ("Gala Ticket", 2, 50.0),
            ("Program", 1, 3.0),
        ]


class TestPricing:

    @pytest.mark.asyncio
    async def test_catalog_priced_draft(self, store, transformer):
        store.add_product(VENUE, "Gala Ticket", 2425.0, external_id="111")

        draft = await transformer.transform(raw_shopify(total="60.00"), 48.5, VENUE)

        assert draft.pricing_source == PricingSource.CATALOG.value
        assert draft.original_amount == 2425.0
        assert draft.exchange_rate == 48.5
        assert draft.total_amount == 51.75
        assert not draft.used_fallback_pricing

    @pytest.mark.asyncio
    async def test_zero_quantity_priced_as_stored(self, store, transformer):
        store.add_product(VENUE, "Gala Ticket", 2425.0, external_id="111")
        items = [{"name": "Gala Ticket", "quantity": 0, "variant_id": 111, "price": "50.00"}]

        draft = await transformer.transform(raw_shopify(line_items=items), 48.5, VENUE)

        assert draft.pricing_source == PricingSource.CATALOG.value
        assert draft.original_amount == 2425.0
        assert [(i.quantity, i.total) for i in draft.line_items] == [(1, 50.0)]

    @pytest.mark.asyncio
    async def test_fallback_is_flagged(self, transformer):
        draft = await transformer.transform(raw_shopify(total="50.00"), 48.5, VENUE)

        assert draft.used_fallback_pricing
        assert draft.unmatched_items == ["Gala Ticket sku=GALA-1 id=111"]
        assert draft.original_amount == 2425.0
        assert draft.total_amount == 51.75

    @pytest.mark.asyncio
    async def test_no_rate_stores_no_secondary_pricing(self, transformer):
        draft = await transformer.transform(raw_shopify(total="50.00"), 0.0, VENUE)

        assert draft.exchange_rate is None
        assert draft.original_amount is None
        assert draft.total_amount == 50.0


class TestBankCredits:

    @pytest.mark.asyncio
    async def test_credit_mapping(self, transformer):
        raw = RawExternalRecord.from_mercury(bank_transaction("txn-1", 120.0, memo="March gala"))

        draft = await transformer.transform(raw, 0.0, VENUE, assign_venue=True)

        assert draft.external_id == "txn-1"
        assert draft.source == OrderSource.MERCURY.value
        assert draft.customer_name == "Acme Events"
        assert draft.notes == "March gala"
        assert draft.total_amount == 120.0
        assert draft.line_items == []
        assert draft.order_number is None
        assert draft.financial_status == "Paid"
