"""
Bank - API Router

- POST /api/mercury/import  - Import bank credits as orders and debits as payouts
- POST /api/payouts/sync    - Submit unsynced payouts to the bank
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional, Tuple
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from config import Settings
from ingestion.clients import MercuryClient
from ingestion.services import OrderImportService
from services.payout_service import PayoutService
from routers.dependencies import (
    get_app_settings,
    get_current_user_id,
    get_import_service,
    get_mercury_client,
    get_payout_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mercury", tags=["Mercury"])
payouts_router = APIRouter(prefix="/payouts", tags=["Payouts"])


CREDIT = "credit"
DEBIT = "debit"


class BankImportRequest(BaseModel):
    venue_id: int
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    transaction_ids: Optional[List[str]] = None


class PayoutSyncRequest(BaseModel):
    payout_ids: Optional[List[int]] = None


def _require_client(client: Optional[MercuryClient], settings: Settings) -> MercuryClient:
    if client is None or not settings.MERCURY_ACCOUNT_ID:
        raise HTTPException(status_code=400, detail="Mercury integration is not configured")
    return client


def split_by_direction(transactions: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Credits become orders, debits become payouts; anything else is dropped."""
    credits, debits = [], []
    for transaction in transactions:
        direction = (transaction.get("direction") or "").lower()
        if direction == CREDIT:
            credits.append(transaction)
        elif direction == DEBIT:
            debits.append(transaction)
    return credits, debits


@router.post("/import")
async def import_bank_transactions(
    request: BankImportRequest,
    client: Optional[MercuryClient] = Depends(get_mercury_client),
    settings: Settings = Depends(get_app_settings),
    import_service: OrderImportService = Depends(get_import_service),
    payout_service: PayoutService = Depends(get_payout_service),
    user_id: Optional[int] = Depends(get_current_user_id),
):
    client = _require_client(client, settings)
    transactions = await client.get_transactions(
        settings.MERCURY_ACCOUNT_ID,
        start_date=request.start_date,
        end_date=request.end_date,
    )
    if request.transaction_ids:
        wanted = set(request.transaction_ids)
        transactions = [t for t in transactions if str(t.get("id")) in wanted]

    credits, debits = split_by_direction(transactions)
    ignored = len(transactions) - len(credits) - len(debits)
    if ignored:
        logger.info(f"Ignoring {ignored} bank transactions with no credit/debit direction")

    orders = await import_service.import_bank_credits(credits, request.venue_id, created_by_id=user_id)
    payouts = await payout_service.import_bank_debits(debits, request.venue_id, created_by_id=user_id)

    return {
        "orders": {**asdict(orders), "total": orders.total},
        "payouts": asdict(payouts),
    }


@payouts_router.post("/sync")
async def sync_payouts(
    request: PayoutSyncRequest,
    client: Optional[MercuryClient] = Depends(get_mercury_client),
    settings: Settings = Depends(get_app_settings),
    payout_service: PayoutService = Depends(get_payout_service),
):
    client = _require_client(client, settings)
    result = await payout_service.sync_unsynced(client, settings.MERCURY_ACCOUNT_ID, request.payout_ids)
    return {
        "message": f"Synced {result.synced} payout(s), {result.failed} failed",
        **asdict(result),
    }
