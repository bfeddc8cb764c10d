"""
Orderdesk Core - Product Catalog Import

Copies storefront products into a venue's catalog so the price matcher can
resolve line items against them.

For each incoming product:
- same storefront product id in the venue: name, SKU and price are updated
- otherwise a SKU already used in the venue: skipped with an error
- otherwise: created, active

Prices are stored in the secondary currency. When the caller passes the
rate it fetched the storefront prices at, primary-currency prices are
converted with that rate instead of the live one.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.order_models import ProductDB, ShopifyStoreDB
from ingestion.errors import StoreNotFound
from ingestion.services.events import OrderAuditEvent, log_order_event
from utils.money import round_currency

logger = logging.getLogger(__name__)


class CatalogProductIn(BaseModel):
    shopify_product_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    sku: Optional[str] = None
    price: float = Field(..., ge=0)


@dataclass
class CatalogImportResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    total_processed: int = 0
    errors: List[str] = field(default_factory=list)


def flatten_variants(products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """One row per variant, keyed by the parent product id."""
    rows = []
    for product in products:
        for variant in product.get("variants") or []:
            rows.append({
                "shopify_product_id": str(product["id"]),
                "name": product.get("title") or "",
                "sku": variant.get("sku") or None,
                "price": float(variant.get("price") or 0),
                "status": product.get("status"),
            })
    return rows


class CatalogImportService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def import_products(
        self,
        store_id: int,
        products: List[CatalogProductIn],
        exchange_rate: Optional[float] = None,
    ) -> CatalogImportResult:
        """
        Create or update the store venue's products.

        Args:
            store_id: Storefront whose venue owns the catalog
            products: Incoming products; prices in the secondary currency
                unless exchange_rate is given
            exchange_rate: Primary -> secondary rate fixed when the prices
                were fetched

        Raises:
            StoreNotFound: no store with store_id
        """
        store = await self.db.get(ShopifyStoreDB, store_id)
        if store is None:
            raise StoreNotFound(str(store_id))

        rows = await self.db.execute(select(ProductDB).where(ProductDB.venue_id == store.venue_id))
        catalog = list(rows.scalars().all())
        by_external_id = {p.shopify_product_id: p for p in catalog if p.shopify_product_id}
        by_sku = {p.sku: p for p in catalog if p.sku}

        result = CatalogImportResult(total_processed=len(products))
        for incoming in products:
            price = incoming.price
            if exchange_rate is not None and exchange_rate > 0:
                price = round_currency(price * exchange_rate)

            existing = by_external_id.get(incoming.shopify_product_id)
            holder = by_sku.get(incoming.sku) if incoming.sku else None

            if holder is not None and holder is not existing:
                result.errors.append(f'Product "{incoming.name}" has SKU conflict with existing product')
                result.skipped += 1
                continue

            if existing is not None:
                if existing.sku and existing.sku != incoming.sku:
                    by_sku.pop(existing.sku, None)
                existing.name = incoming.name
                existing.sku = incoming.sku
                existing.egp_price = price
                result.updated += 1
                target = existing
            else:
                target = ProductDB(
                    name=incoming.name,
                    sku=incoming.sku,
                    shopify_product_id=incoming.shopify_product_id,
                    egp_price=price,
                    venue_id=store.venue_id,
                    active=True,
                )
                self.db.add(target)
                by_external_id[incoming.shopify_product_id] = target
                result.created += 1

            if incoming.sku:
                by_sku[incoming.sku] = target

        try:
            await self.db.commit()
        except Exception as e:
            logger.error(f"Failed to commit catalog import for store {store_id}: {e}")
            await self.db.rollback()
            raise

        log_order_event(
            OrderAuditEvent.CATALOG_IMPORTED,
            store.store_domain,
            {
                "venue_id": store.venue_id,
                "created": result.created,
                "updated": result.updated,
                "skipped": result.skipped,
            }
        )
        return result
