"""
Dedup & Upsert Engine

Looks a draft up by external id and either replaces the existing order
(all fields, all line items) or creates a new one. Drafts without an
external id are always created.

Two concurrent imports of the same new external id can both miss the
lookup; the loser's insert hits the unique key, surfaces from the
datastore as DuplicateExternalId, and is retried here as an update.
"""

import logging
from typing import Optional

from ingestion.errors import DuplicateExternalId
from ingestion.services.events import OrderAuditEvent, log_order_event
from ingestion.unified_schema import (
    CanonicalOrderDraft,
    StoredOrder,
    UpsertAction,
    UpsertContext,
    UpsertOutcome,
)
from services.order_numbers import OrderNumberSequencer
from services.order_repository import OrderDatastore

logger = logging.getLogger(__name__)


class OrderUpsertService:
    """Creates or fully replaces canonical orders keyed by external id."""

    def __init__(self, store: OrderDatastore, sequencer: OrderNumberSequencer):
        self.store = store
        self.sequencer = sequencer

    async def upsert(self, draft: CanonicalOrderDraft, context: Optional[UpsertContext] = None) -> UpsertOutcome:
        context = context or UpsertContext()

        if draft.external_id:
            existing = await self.store.find_order_by_external_id(draft.external_id)
            if existing:
                return await self._replace(existing, draft)

        to_create = draft
        if not draft.order_number:
            to_create = draft.model_copy(update={"order_number": await self.sequencer.next_order_number()})

        try:
            stored = await self.store.create_order(to_create, context)
        except DuplicateExternalId:
            existing = await self.store.find_order_by_external_id(draft.external_id)
            if existing is None:
                raise
            logger.info(f"Concurrent create of {draft.external_id} lost the race, updating instead")
            return await self._replace(existing, draft)

        log_order_event(
            OrderAuditEvent.ORDER_CREATED,
            stored.order_number,
            {
                "order_id": stored.id,
                "external_id": stored.external_id,
                "venue_id": stored.venue_id,
                "pricing_source": stored.pricing_source,
            }
        )
        return UpsertOutcome(
            order_id=stored.id,
            order_number=stored.order_number,
            external_id=stored.external_id,
            action=UpsertAction.CREATED,
        )

    async def _replace(self, existing: StoredOrder, draft: CanonicalOrderDraft) -> UpsertOutcome:
        stored = await self.store.replace_order(existing.id, draft)

        log_order_event(
            OrderAuditEvent.ORDER_UPDATED,
            stored.order_number,
            {
                "order_id": stored.id,
                "external_id": stored.external_id,
                "line_items": len(stored.line_items),
                "pricing_source": stored.pricing_source,
            }
        )
        return UpsertOutcome(
            order_id=stored.id,
            order_number=stored.order_number,
            external_id=stored.external_id,
            action=UpsertAction.UPDATED,
        )
