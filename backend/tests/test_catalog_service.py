"""
Unit Tests for the product catalog import

The session is an AsyncMock returning real ProductDB rows for the venue.

Run with: pytest tests/test_catalog_service.py -v
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from database.order_models import ProductDB
from ingestion.errors import StoreNotFound
from services.catalog_service import CatalogImportService, CatalogProductIn, flatten_variants

VENUE = 2


def catalog_row(external_id, name, sku, price):
    return ProductDB(
        name=name, sku=sku, shopify_product_id=external_id,
        egp_price=price, venue_id=VENUE, active=True,
    )


def incoming(external_id, name, sku=None, price=100.0):
    return CatalogProductIn(shopify_product_id=external_id, name=name, sku=sku, price=price)


@pytest.fixture
def existing():
    return [catalog_row("111", "Gala Ticket", "GALA-1", 2000.0), catalog_row(None, "Program", "PRG", 50.0)]


@pytest.fixture
def db(existing):
    session = AsyncMock()
    session.add = MagicMock()
    session.get.return_value = SimpleNamespace(id=5, venue_id=VENUE, store_domain="gala.myshopify.com")
    rows = MagicMock()
    rows.scalars.return_value.all.return_value = existing
    session.execute.return_value = rows
    return session


class TestImportProducts:

    @pytest.mark.asyncio
    async def test_create_update_and_sku_conflict(self, db, existing):
        result = await CatalogImportService(db).import_products(5, [
            incoming("111", "Gala Ticket 2026", sku="GALA-1", price=2425.0),
            incoming("222", "Souvenir Program", sku="PRG"),
            incoming("333", "VIP Upgrade", sku="VIP", price=500.0),
        ])

        assert (result.created, result.updated, result.skipped, result.total_processed) == (1, 1, 1, 3)
        assert result.errors == ['Product "Souvenir Program" has SKU conflict with existing product']

        assert existing[0].name == "Gala Ticket 2026"
        assert existing[0].egp_price == 2425.0

        [added] = [call.args[0] for call in db.add.call_args_list]
        assert (added.shopify_product_id, added.sku, added.venue_id, added.active) == ("333", "VIP", VENUE, True)
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sku_claimed_earlier_in_the_batch(self, db):
        result = await CatalogImportService(db).import_products(5, [
            incoming("444", "Dinner", sku="DIN"),
            incoming("555", "Dinner (late)", sku="DIN"),
        ])

        assert (result.created, result.skipped) == (1, 1)

    @pytest.mark.asyncio
    async def test_fixed_rate_converts_primary_prices(self, db):
        await CatalogImportService(db).import_products(5, [incoming("333", "VIP Upgrade", price=50.0)], exchange_rate=48.5)

        added = db.add.call_args.args[0]
        assert added.egp_price == 2425.0

    @pytest.mark.asyncio
    async def test_unknown_store(self, db):
        db.get.return_value = None

        with pytest.raises(StoreNotFound):
            await CatalogImportService(db).import_products(404, [incoming("1", "x")])
        db.commit.assert_not_awaited()

    def test_negative_price_rejected(self):
        with pytest.raises(ValueError):
            incoming("1", "x", price=-1.0)


class TestFlattenVariants:

    def test_one_row_per_variant(self):
        rows = flatten_variants([{
            "id": 7, "title": "Gala Ticket", "status": "active",
            "variants": [{"id": 70, "sku": "GALA-1", "price": "50.00"}, {"id": 71, "sku": "", "price": "80.00"}],
        }])

        assert rows == [
            {"shopify_product_id": "7", "name": "Gala Ticket", "sku": "GALA-1", "price": 50.0, "status": "active"},
            {"shopify_product_id": "7", "name": "Gala Ticket", "sku": None, "price": 80.0, "status": "active"},
        ]
