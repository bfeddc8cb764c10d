"""
Staging Queue Service

Fetched or webhook-pushed storefront orders wait here for an operator
to approve or discard them. Approval runs each record through the transformer and the upsert
engine; only records that made it into the order table leave the queue.
Failed records stay queued with their reason reported back.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from database.order_models import OrderSource
from ingestion.errors import RecordTransformFailure, StagedRecordNotFound
from ingestion.factories.order_transformer import RecordTransformer
from ingestion.services.events import OrderAuditEvent, log_order_event
from ingestion.services.upsert_service import OrderUpsertService
from ingestion.unified_schema import (
    ApprovalResult,
    FailedRecord,
    NewStagedRecord,
    StagedFilter,
    StagedRecord,
    UpsertContext,
    WebhookDisposition,
)
from services.exchange_rate import CurrencyRateProvider
from services.order_repository import OrderDatastore

logger = logging.getLogger(__name__)


class StagingQueueService:
    """
    Operations on the import queue.

    Args:
        require_catalog_match: when True, approval treats unmatched line
            items as a failure (record stays queued) instead of pricing the
            order from its native total
    """

    def __init__(
        self,
        store: OrderDatastore,
        transformer: RecordTransformer,
        upsert_service: OrderUpsertService,
        rate_provider: CurrencyRateProvider,
        require_catalog_match: bool = True,
    ):
        self.store = store
        self.transformer = transformer
        self.upsert_service = upsert_service
        self.rate_provider = rate_provider
        self.require_catalog_match = require_catalog_match

    async def enqueue(
        self,
        payloads: List[Dict[str, Any]],
        source: OrderSource = OrderSource.SHOPIFY,
        store_domain: Optional[str] = None,
    ) -> int:
        """Queue raw payloads; returns how many were new to the queue."""
        records = []
        for payload in payloads:
            try:
                records.append(NewStagedRecord.from_payload(source, payload, store_domain))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unparseable payload {payload.get('id')}: {e}")

        inserted = await self.store.insert_staged_records(records)

        log_order_event(
            OrderAuditEvent.STAGED_ENQUEUED,
            store_domain,
            {"received": len(payloads), "queued": inserted, "already_queued": len(records) - inserted}
        )
        return inserted

    async def receive_webhook(self, payload: Dict[str, Any], store_domain: str) -> WebhookDisposition:
        """
        Queue one order pushed by a storefront webhook.

        Orders already imported are left alone. A redelivery of a queued
        order refreshes its payload and filter fields in place.

        Raises:
            KeyError, ValueError: the payload is not a storefront order
        """
        store_ids = await self.store.find_store_ids_by_domain([store_domain])
        if store_domain not in store_ids:
            log_order_event(OrderAuditEvent.WEBHOOK_IGNORED, store_domain, {"reason": "unknown store"}, success=False)
            return WebhookDisposition.UNKNOWN_STORE

        record = NewStagedRecord.from_payload(OrderSource.SHOPIFY, payload, store_domain)
        if await self.store.find_existing_external_ids([record.external_id]):
            log_order_event(
                OrderAuditEvent.WEBHOOK_IGNORED,
                store_domain,
                {"external_id": record.external_id, "reason": "already imported"}
            )
            return WebhookDisposition.ALREADY_IMPORTED

        staged = await self.store.upsert_staged_record(record)

        log_order_event(
            OrderAuditEvent.WEBHOOK_QUEUED,
            store_domain,
            {"external_id": staged.external_id, "staged_id": staged.id, "total_amount": staged.total_amount}
        )
        return WebhookDisposition.QUEUED

    async def list(self, filter: Optional[StagedFilter] = None) -> List[StagedRecord]:
        return await self.store.list_staged_records(filter or StagedFilter())

    async def approve(
        self,
        ids: Iterable[int],
        venue_id: int,
        created_by_id: Optional[int] = None,
        rate: Optional[float] = None,
    ) -> ApprovalResult:
        """
        Promote staged records into orders for ``venue_id``.

        Raises:
            StagedRecordNotFound: none of the ids are queued
            RateUnavailable: no rate could be obtained; nothing is promoted
        """
        ids = list(ids)
        records = await self.store.get_staged_records(ids)
        if not records:
            raise StagedRecordNotFound(ids)

        rate = await self.rate_provider.get_current_rate(override=rate)
        store_ids = await self.store.find_store_ids_by_domain(
            record.store_domain for record in records if record.store_domain
        )

        imported_ids: List[int] = []
        errors: List[FailedRecord] = []
        fallback_priced: List[str] = []

        for record in records:
            store_id = store_ids.get(record.store_domain) if record.store_domain else None
            try:
                draft = await self.transformer.transform(
                    record.to_raw_record(),
                    rate,
                    venue_id,
                    store_id=store_id,
                    allow_fallback=not self.require_catalog_match,
                    assign_venue=True,
                )
                await self.upsert_service.upsert(
                    draft,
                    UpsertContext(venue_id=venue_id, created_by_id=created_by_id, store_id=store_id),
                )
            except Exception as e:
                failure = RecordTransformFailure(str(record.id), getattr(e, "message", None) or str(e))
                logger.warning(failure.message)
                errors.append(FailedRecord(id=str(record.id), reason=failure.reason))
                continue

            imported_ids.append(record.id)
            if draft.used_fallback_pricing:
                fallback_priced.append(record.external_id)

        if imported_ids:
            await self.store.delete_staged_records(imported_ids)

        log_order_event(
            OrderAuditEvent.STAGED_APPROVED,
            f"venue:{venue_id}",
            {
                "requested": len(ids),
                "imported": len(imported_ids),
                "failed": len(errors),
                "fallback_priced": fallback_priced,
            },
            success=not errors
        )

        return ApprovalResult(
            imported_count=len(imported_ids),
            imported_ids=imported_ids,
            errors=errors,
            fallback_priced=fallback_priced,
        )

    async def discard(self, ids: Iterable[int]) -> int:
        ids = list(ids)
        deleted = await self.store.delete_staged_records(ids)
        log_order_event(OrderAuditEvent.STAGED_DISCARDED, None, {"requested": len(ids), "deleted": deleted})
        return deleted
