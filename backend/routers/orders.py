"""
Orders - API Router

- GET  /api/orders?month=YYYY-MM  - Orders with revenue/payout metrics
- POST /api/orders                - Manual order entry
- POST /api/orders/import         - Batch import of raw storefront or bank payloads
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from database.order_models import OrderSource
from ingestion.services import OrderImportService
from services.order_service import ManualOrderRequest, OrderService
from routers.dependencies import get_current_user_id, get_import_service, get_order_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


# ==================== REQUEST MODELS ====================

class ImportOrdersRequest(BaseModel):
    """Raw payloads to import into one venue"""
    venue_id: int
    orders: List[Dict[str, Any]] = Field(..., description="Raw storefront orders or bank transactions")
    source: OrderSource = OrderSource.SHOPIFY
    exchange_rate: Optional[float] = Field(None, description="Fixed rate; current rate when omitted")
    store_id: Optional[int] = None


# ==================== ENDPOINTS ====================

@router.get("")
async def list_orders(
    month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$", description="YYYY-MM"),
    service: OrderService = Depends(get_order_service),
):
    try:
        orders, metrics = await service.list_orders(month)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {
        "orders": [order.model_dump(mode="json") for order in orders],
        "metrics": metrics.to_dict(),
    }


@router.post("", status_code=201)
async def create_order(
    request: ManualOrderRequest,
    service: OrderService = Depends(get_order_service),
    user_id: Optional[int] = Depends(get_current_user_id),
):
    order = await service.create_manual_order(request, created_by_id=user_id)
    return order.model_dump(mode="json")


@router.post("/import")
async def import_orders(
    request: ImportOrdersRequest,
    service: OrderImportService = Depends(get_import_service),
    user_id: Optional[int] = Depends(get_current_user_id),
):
    """
    Transform and upsert each payload. Per-record failures are reported,
    never raised; existing orders (same external id) are replaced.
    """
    result = await service.import_payloads(
        request.orders,
        venue_id=request.venue_id,
        source=request.source,
        rate=request.exchange_rate,
        store_id=request.store_id,
        created_by_id=user_id,
    )
    return {**asdict(result), "total": result.total}
