"""
FastAPI dependencies wiring the order engine to a request.

Each request gets an OrderRepository bound to its own AsyncSession; the
rate provider (and its cache) lives on ``app.state`` for the lifetime of
the application.
"""

from typing import Callable, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database import get_db
from ingestion.clients import MercuryClient, ShopifyClient
from ingestion.factories import RecordTransformer
from ingestion.services import OrderImportService, OrderUpsertService, StagingQueueService
from services.exchange_rate import CurrencyRateProvider, build_rate_provider
from services.order_numbers import OrderNumberSequencer
from services.order_repository import OrderDatastore, OrderRepository, StoreRef
from services.order_service import OrderService
from services.catalog_service import CatalogImportService
from services.payout_service import PayoutService
from services.product_pricing import AmountCalculator, ProductPriceMatcher
from services.store_service import StoreRegistry
from utils.encryption import decrypt_secret


def get_app_settings() -> Settings:
    return get_settings()


def get_rate_provider(request: Request) -> CurrencyRateProvider:
    provider = getattr(request.app.state, "rate_provider", None)
    if provider is None:
        provider = build_rate_provider(get_settings())
        request.app.state.rate_provider = provider
    return provider


def get_current_user_id(x_user_id: Optional[int] = Header(default=None)) -> Optional[int]:
    """Acting user, when the caller identifies one."""
    return x_user_id


def get_order_store(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> OrderDatastore:
    return OrderRepository(db, lock_timeout_ms=settings.SEQUENCER_LOCK_TIMEOUT_MS)


def get_sequencer(
    store: OrderDatastore = Depends(get_order_store),
    settings: Settings = Depends(get_app_settings),
) -> OrderNumberSequencer:
    return OrderNumberSequencer(store, max_attempts=settings.SEQUENCER_MAX_ATTEMPTS)


def get_transformer(store: OrderDatastore = Depends(get_order_store)) -> RecordTransformer:
    return RecordTransformer(AmountCalculator(ProductPriceMatcher(store)))


def get_upsert_service(
    store: OrderDatastore = Depends(get_order_store),
    sequencer: OrderNumberSequencer = Depends(get_sequencer),
) -> OrderUpsertService:
    return OrderUpsertService(store, sequencer)


def get_staging_service(
    store: OrderDatastore = Depends(get_order_store),
    transformer: RecordTransformer = Depends(get_transformer),
    upsert_service: OrderUpsertService = Depends(get_upsert_service),
    rate_provider: CurrencyRateProvider = Depends(get_rate_provider),
    settings: Settings = Depends(get_app_settings),
) -> StagingQueueService:
    return StagingQueueService(
        store,
        transformer,
        upsert_service,
        rate_provider,
        require_catalog_match=settings.STAGING_REQUIRE_CATALOG_MATCH,
    )


def get_import_service(
    store: OrderDatastore = Depends(get_order_store),
    transformer: RecordTransformer = Depends(get_transformer),
    upsert_service: OrderUpsertService = Depends(get_upsert_service),
    rate_provider: CurrencyRateProvider = Depends(get_rate_provider),
) -> OrderImportService:
    return OrderImportService(store, transformer, upsert_service, rate_provider)


def get_order_service(
    store: OrderDatastore = Depends(get_order_store),
    sequencer: OrderNumberSequencer = Depends(get_sequencer),
    rate_provider: CurrencyRateProvider = Depends(get_rate_provider),
) -> OrderService:
    return OrderService(store, sequencer, rate_provider)


def get_payout_service(db: AsyncSession = Depends(get_db)) -> PayoutService:
    return PayoutService(db)


def get_store_registry(db: AsyncSession = Depends(get_db)) -> StoreRegistry:
    return StoreRegistry(db)


def get_catalog_service(db: AsyncSession = Depends(get_db)) -> CatalogImportService:
    return CatalogImportService(db)


def get_shopify_client_factory(
    settings: Settings = Depends(get_app_settings),
) -> Callable[[StoreRef], ShopifyClient]:
    """Builds a storefront client, decrypting the stored access token."""
    def build(store_ref: StoreRef) -> ShopifyClient:
        return ShopifyClient(
            store_domain=store_ref.store_domain,
            access_token=decrypt_secret(store_ref.access_token, "access_token"),
            api_version=settings.SHOPIFY_API_VERSION,
            timeout=settings.SOURCE_TIMEOUT_SECONDS,
        )
    return build


def get_mercury_client(settings: Settings = Depends(get_app_settings)) -> Optional[MercuryClient]:
    """None when the bank integration is not configured."""
    if not settings.MERCURY_API_KEY:
        return None
    return MercuryClient(
        api_key=settings.MERCURY_API_KEY,
        base_url=settings.MERCURY_API_URL,
        timeout=settings.SOURCE_TIMEOUT_SECONDS,
    )
