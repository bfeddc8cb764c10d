"""
Storefront - API Router

- POST /api/shopify/sync             - Fetch a store's orders and upsert them
- POST /api/shopify/fetch            - Fetch a date range into the staging queue
- POST /api/shopify/products         - List the store's active products
- POST /api/shopify/products/import  - Copy products into the venue catalog
"""

from dataclasses import asdict
from typing import Callable, List, Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ingestion.errors import StoreNotFound
from ingestion.services import OrderImportService, StagingQueueService
from services.catalog_service import CatalogImportService, CatalogProductIn, flatten_variants
from services.order_repository import OrderDatastore
from routers.dependencies import (
    get_catalog_service,
    get_current_user_id,
    get_import_service,
    get_order_store,
    get_shopify_client_factory,
    get_staging_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shopify", tags=["Shopify"])


class SyncRequest(BaseModel):
    store_id: int
    since_id: Optional[str] = None
    created_at_min: Optional[str] = None
    created_at_max: Optional[str] = None
    exchange_rate: Optional[float] = None


class FetchRequest(BaseModel):
    store_id: int
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class ProductsRequest(BaseModel):
    store_id: int


class ProductImportRequest(BaseModel):
    store_id: int
    products: List[CatalogProductIn]
    exchange_rate: Optional[float] = Field(
        default=None,
        gt=0,
        description="Rate the prices were fetched at; when set, prices are primary-currency"
    )


async def _load_store(store: OrderDatastore, store_id: int):
    store_ref = await store.get_store(store_id)
    if store_ref is None:
        raise StoreNotFound(str(store_id))
    return store_ref


@router.post("/sync")
async def sync_store(
    request: SyncRequest,
    store: OrderDatastore = Depends(get_order_store),
    service: OrderImportService = Depends(get_import_service),
    client_factory: Callable = Depends(get_shopify_client_factory),
    user_id: Optional[int] = Depends(get_current_user_id),
):
    store_ref = await _load_store(store, request.store_id)
    result = await service.sync_store(
        store_ref,
        client_factory(store_ref),
        since_id=request.since_id,
        created_at_min=request.created_at_min,
        created_at_max=request.created_at_max,
        rate=request.exchange_rate,
        created_by_id=user_id,
    )
    return {**asdict(result), "total": result.total}


@router.post("/fetch")
async def fetch_into_queue(
    request: FetchRequest,
    store: OrderDatastore = Depends(get_order_store),
    service: OrderImportService = Depends(get_import_service),
    staging: StagingQueueService = Depends(get_staging_service),
    client_factory: Callable = Depends(get_shopify_client_factory),
):
    """Orders already imported are skipped; everything else is queued for approval."""
    store_ref = await _load_store(store, request.store_id)
    result = await service.fetch_to_queue(
        store_ref,
        client_factory(store_ref),
        staging,
        created_at_min=request.start_date,
        created_at_max=request.end_date,
    )
    return asdict(result)


@router.post("/products")
async def fetch_store_products(
    request: ProductsRequest,
    store: OrderDatastore = Depends(get_order_store),
    client_factory: Callable = Depends(get_shopify_client_factory),
):
    """Active storefront products, one row per variant, for review before import."""
    store_ref = await _load_store(store, request.store_id)
    products = flatten_variants(await client_factory(store_ref).fetch_products())
    return {
        "products": products,
        "store": {"id": store_ref.id, "domain": store_ref.store_domain, "venue_id": store_ref.venue_id},
        "count": len(products),
    }


@router.post("/products/import")
async def import_store_products(
    request: ProductImportRequest,
    service: CatalogImportService = Depends(get_catalog_service),
):
    result = await service.import_products(request.store_id, request.products, exchange_rate=request.exchange_rate)
    return asdict(result)
