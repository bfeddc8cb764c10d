"""
Ingestion Services Module
"""

from .events import OrderAuditEvent, log_order_event
from .upsert_service import OrderUpsertService
from .staging_service import StagingQueueService
from .import_service import OrderImportService, FetchResult

__all__ = [
    "OrderAuditEvent",
    "log_order_event",
    "OrderUpsertService",
    "StagingQueueService",
    "OrderImportService",
    "FetchResult",
]
