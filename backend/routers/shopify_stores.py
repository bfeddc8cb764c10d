"""
Connected Storefronts - API Router

- GET  /api/shopify-stores  - List stores (access tokens masked)
- POST /api/shopify-stores  - Connect a store to a venue
"""

from dataclasses import asdict
from typing import Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from routers.dependencies import get_current_user_id, get_store_registry
from services.store_service import StoreRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shopify-stores", tags=["Shopify Stores"])


class StoreCreateRequest(BaseModel):
    store_domain: str = Field(..., min_length=5)
    access_token: str = Field(..., min_length=10)
    nickname: Optional[str] = None
    venue_id: int


@router.get("")
async def list_stores(registry: StoreRegistry = Depends(get_store_registry)):
    stores = await registry.list_stores()
    return {"stores": [asdict(s) for s in stores]}


@router.post("", status_code=201)
async def register_store(
    request: StoreCreateRequest,
    registry: StoreRegistry = Depends(get_store_registry),
    user_id: Optional[int] = Depends(get_current_user_id),
):
    store = await registry.register(
        request.store_domain,
        request.access_token,
        request.venue_id,
        nickname=request.nickname,
        owner_id=user_id,
    )
    return {"store": asdict(store)}
