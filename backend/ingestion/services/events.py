"""
Order engine audit events.

Every domain event is a single log line carrying a structured ``extra``
payload, so the JSON formatter emits it as searchable fields.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("ingestion.audit")


class OrderAuditEvent:
    """Audit event types for order ingestion operations."""
    BATCH_STARTED = "orders.batch_started"
    BATCH_COMPLETED = "orders.batch_completed"
    ORDER_CREATED = "orders.order_created"
    ORDER_UPDATED = "orders.order_updated"
    RECORD_FAILED = "orders.record_failed"
    FALLBACK_PRICING = "orders.fallback_pricing"
    STAGED_ENQUEUED = "staging.enqueued"
    STAGED_APPROVED = "staging.approved"
    STAGED_DISCARDED = "staging.discarded"
    PAYOUTS_IMPORTED = "payouts.imported"
    PAYOUT_SYNCED = "payouts.synced"
    PAYOUT_SYNC_FAILED = "payouts.sync_failed"
    WEBHOOK_QUEUED = "webhooks.queued"
    WEBHOOK_IGNORED = "webhooks.ignored"
    STORE_REGISTERED = "stores.registered"
    CATALOG_IMPORTED = "catalog.imported"


def log_order_event(
    event_type: str,
    reference: Optional[str],
    details: Dict[str, Any],
    success: bool = True
):
    """Log order engine event for audit trail."""
    log_entry = {
        "event": event_type,
        "reference": reference,
        "details": details,
        "success": success,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    if success:
        logger.info(f"Order event: {event_type} for {reference}", extra=log_entry)
    else:
        logger.warning(f"Order event FAILED: {event_type} for {reference}", extra=log_entry)
