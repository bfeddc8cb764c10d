"""
Order Import Service

Batch paths into the order table:
- import_payloads: raw storefront/bank payloads supplied by the caller
- sync_store: fetch a storefront's orders and upsert them all
- import_bank_credits: incoming bank transactions as orders
- fetch_to_queue: fetch a storefront date range into the staging queue

One rate is obtained per batch. Every record is transformed and upserted
on its own; a failing record is reported in the BatchResult and never
stops its siblings.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from database.order_models import OrderSource
from ingestion.clients.shopify_client import ShopifyClient
from ingestion.errors import RecordTransformFailure
from ingestion.factories.order_transformer import RecordTransformer
from ingestion.services.events import OrderAuditEvent, log_order_event
from ingestion.services.staging_service import StagingQueueService
from ingestion.services.upsert_service import OrderUpsertService
from ingestion.unified_schema import BatchResult, RawExternalRecord, UpsertContext
from services.exchange_rate import CurrencyRateProvider
from services.order_repository import OrderDatastore, StoreRef

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Result of fetching a storefront date range into the queue."""
    fetched: int
    already_imported: int
    queued: int


class OrderImportService:
    """Batch import and sync of external records into canonical orders."""

    def __init__(
        self,
        store: OrderDatastore,
        transformer: RecordTransformer,
        upsert_service: OrderUpsertService,
        rate_provider: CurrencyRateProvider,
    ):
        self.store = store
        self.transformer = transformer
        self.upsert_service = upsert_service
        self.rate_provider = rate_provider

    async def import_payloads(
        self,
        payloads: List[Dict[str, Any]],
        venue_id: int,
        source: OrderSource = OrderSource.SHOPIFY,
        rate: Optional[float] = None,
        store_id: Optional[int] = None,
        created_by_id: Optional[int] = None,
        assign_venue: bool = False,
    ) -> BatchResult:
        """
        Transform and upsert each payload.

        A non-positive ``rate`` imports without secondary-currency pricing
        (totals are the native totals). None asks the rate provider.

        Raises:
            RateUnavailable: before any record is touched
        """
        if rate is None or rate > 0:
            rate = await self.rate_provider.get_current_rate(override=rate)

        batch_id = str(uuid.uuid4())
        log_order_event(
            OrderAuditEvent.BATCH_STARTED,
            batch_id,
            {"count": len(payloads), "source": OrderSource(source).value, "venue_id": venue_id, "rate": rate}
        )

        result = BatchResult()
        context = UpsertContext(venue_id=venue_id, created_by_id=created_by_id, store_id=store_id)

        for payload in payloads:
            record_id = str(payload.get("id", "unknown"))
            try:
                raw = RawExternalRecord.from_payload(source, payload)
                draft = await self.transformer.transform(
                    raw, rate, venue_id, store_id=store_id, assign_venue=assign_venue
                )
                outcome = await self.upsert_service.upsert(draft, context)
            except Exception as e:
                failure = RecordTransformFailure(record_id, getattr(e, "message", None) or str(e))
                log_order_event(
                    OrderAuditEvent.RECORD_FAILED,
                    batch_id,
                    {"record_id": record_id, "reason": failure.reason},
                    success=False
                )
                result.record_failure(record_id, failure.reason)
                continue

            result.record_success(outcome)
            if draft.used_fallback_pricing:
                result.fallback_priced.append(record_id)
                if draft.unmatched_items:
                    log_order_event(
                        OrderAuditEvent.FALLBACK_PRICING,
                        batch_id,
                        {"record_id": record_id, "unmatched_items": draft.unmatched_items},
                        success=False
                    )

        log_order_event(
            OrderAuditEvent.BATCH_COMPLETED,
            batch_id,
            {
                "total": result.total,
                "created": result.created,
                "updated": result.updated,
                "failed": len(result.failed),
                "fallback_priced": len(result.fallback_priced),
            }
        )
        return result

    async def sync_store(
        self,
        store_ref: StoreRef,
        client: ShopifyClient,
        since_id: Optional[str] = None,
        created_at_min: Optional[str] = None,
        created_at_max: Optional[str] = None,
        rate: Optional[float] = None,
        created_by_id: Optional[int] = None,
    ) -> BatchResult:
        """
        Pull a storefront's orders and upsert every one of them.

        New orders land in the store's venue; existing orders keep theirs.

        Raises:
            SourceUnreachable: the storefront fetch failed
        """
        payloads = await client.fetch_orders(
            since_id=since_id,
            created_at_min=created_at_min,
            created_at_max=created_at_max,
        )
        return await self.import_payloads(
            payloads,
            venue_id=store_ref.venue_id,
            source=OrderSource.SHOPIFY,
            rate=rate,
            store_id=store_ref.id,
            created_by_id=created_by_id,
        )

    async def import_bank_credits(
        self,
        transactions: List[Dict[str, Any]],
        venue_id: int,
        created_by_id: Optional[int] = None,
    ) -> BatchResult:
        """
        Incoming bank transactions become orders with no line items.

        Callers pass credits only. Bank amounts are already settled in the
        primary currency, so no rate is applied.
        """
        return await self.import_payloads(
            transactions,
            venue_id=venue_id,
            source=OrderSource.MERCURY,
            rate=0.0,
            created_by_id=created_by_id,
            assign_venue=True,
        )

    async def fetch_to_queue(
        self,
        store_ref: StoreRef,
        client: ShopifyClient,
        staging: StagingQueueService,
        created_at_min: Optional[str] = None,
        created_at_max: Optional[str] = None,
    ) -> FetchResult:
        """Fetch a date range, drop orders that already exist, queue the rest."""
        payloads = await client.fetch_orders(created_at_min=created_at_min, created_at_max=created_at_max)

        existing = await self.store.find_existing_external_ids(str(p.get("id")) for p in payloads)
        fresh = [p for p in payloads if str(p.get("id")) not in existing]

        queued = await staging.enqueue(fresh, OrderSource.SHOPIFY, store_ref.store_domain)

        return FetchResult(
            fetched=len(payloads),
            already_imported=len(payloads) - len(fresh),
            queued=queued,
        )
