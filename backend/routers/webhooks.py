"""
Storefront Webhooks - API Router

- POST /api/webhooks/shopify  - Queue an order pushed by a storefront

The shop is identified by the X-Shopify-Shop-Domain header. Unknown shops
and already-imported orders are acknowledged with 200 so the storefront
stops redelivering them.
"""

from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Body, Depends, Header, HTTPException

from ingestion.services import StagingQueueService
from ingestion.unified_schema import WebhookDisposition
from routers.dependencies import get_staging_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/shopify")
async def receive_shopify_order(
    payload: Dict[str, Any] = Body(...),
    shop_domain: Optional[str] = Header(default=None, alias="X-Shopify-Shop-Domain"),
    service: StagingQueueService = Depends(get_staging_service),
):
    if not shop_domain:
        raise HTTPException(status_code=400, detail="Missing shop domain header")

    try:
        outcome = await service.receive_webhook(payload, shop_domain.strip().lower())
    except (KeyError, ValueError) as e:
        logger.warning(f"Rejected webhook payload from {shop_domain}: {e}")
        raise HTTPException(status_code=400, detail="Payload is not a storefront order")

    if outcome == WebhookDisposition.UNKNOWN_STORE:
        logger.warning(f"Webhook from unregistered shop {shop_domain}")

    return {"message": outcome.value, "status": outcome.name.lower()}
