"""
Exchange Rate - API Router

- GET /api/exchange-rate  - Current primary -> secondary rate with cache metadata
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from services.exchange_rate import CurrencyRateProvider
from routers.dependencies import get_rate_provider

router = APIRouter(prefix="/exchange-rate", tags=["Exchange Rate"])


@router.get("")
async def get_exchange_rate(
    base: Optional[str] = Query(None, min_length=3, max_length=3),
    quote: Optional[str] = Query(None, min_length=3, max_length=3),
    provider: CurrencyRateProvider = Depends(get_rate_provider),
):
    info = await provider.get_rate_info(base, quote)
    return info.to_dict()
