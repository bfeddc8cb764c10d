"""
Pending Orders (Staging Queue) - API Router

- GET    /api/pending-orders?amount=&currency=  - List queued records
- POST   /api/pending-orders/approve            - Promote records into a venue
- DELETE /api/pending-orders                    - Discard records
"""

from dataclasses import asdict
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ingestion.services import StagingQueueService
from ingestion.unified_schema import StagedFilter
from routers.dependencies import get_current_user_id, get_staging_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pending-orders", tags=["Pending Orders"])


class ApproveRequest(BaseModel):
    order_ids: List[int] = Field(..., min_length=1)
    venue_id: int = Field(..., description="Target venue for the import")
    exchange_rate: Optional[float] = None


class DiscardRequest(BaseModel):
    order_ids: List[int] = Field(..., min_length=1)


@router.get("")
async def list_pending_orders(
    amount: Optional[float] = Query(None),
    currency: Optional[str] = Query(None),
    service: StagingQueueService = Depends(get_staging_service),
):
    records = await service.list(StagedFilter(amount=amount, currency=currency))
    return {
        "orders": [record.model_dump(mode="json") for record in records],
        "count": len(records),
    }


@router.post("/approve")
async def approve_pending_orders(
    request: ApproveRequest,
    service: StagingQueueService = Depends(get_staging_service),
    user_id: Optional[int] = Depends(get_current_user_id),
):
    """Records that fail stay queued and are listed under ``errors``."""
    result = await service.approve(
        request.order_ids,
        request.venue_id,
        created_by_id=user_id,
        rate=request.exchange_rate,
    )
    return asdict(result)


@router.delete("")
async def discard_pending_orders(
    request: DiscardRequest,
    service: StagingQueueService = Depends(get_staging_service),
):
    deleted = await service.discard(request.order_ids)
    return {"deleted": deleted}
