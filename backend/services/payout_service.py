"""
Orderdesk Core - Payout Service

Payouts are outbound money owed to venues. Two bank interactions:

- import: outgoing (debit) bank transactions become payouts, already
  marked synced; transactions already imported are skipped
- sync: unsynced payouts are submitted to the bank one by one. A payout is
  only marked synced (with the bank's transaction id) after the bank
  accepts it, and a synced payout is never selected again.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database.order_models import PayoutDB
from ingestion.clients.mercury_client import MercuryClient
from ingestion.services.events import OrderAuditEvent, log_order_event

logger = logging.getLogger(__name__)

BANK_ACCOUNT_LABEL = "Mercury"


@dataclass
class PayoutImportResult:
    imported: int = 0
    skipped: int = 0
    total: int = 0


@dataclass
class PayoutSyncResult:
    synced: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def _posted_at(transaction: Dict[str, Any]) -> datetime:
    value = transaction.get("postedAt") or transaction.get("createdAt")
    if not value:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class PayoutService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def import_bank_debits(
        self,
        transactions: List[Dict[str, Any]],
        venue_id: int,
        created_by_id: Optional[int] = None,
    ) -> PayoutImportResult:
        """Create payouts from outgoing (debit) bank transactions."""
        result = PayoutImportResult(total=len(transactions))

        ids = [str(t.get("id")) for t in transactions if t.get("id")]
        existing = set()
        if ids:
            rows = await self.db.execute(
                select(PayoutDB.mercury_transaction_id).where(PayoutDB.mercury_transaction_id.in_(ids))
            )
            existing = set(rows.scalars().all())

        now = datetime.now(timezone.utc)
        for transaction in transactions:
            transaction_id = str(transaction.get("id") or "")
            if not transaction_id or transaction_id in existing:
                result.skipped += 1
                continue

            counterparty = (transaction.get("counterparty") or {}).get("name") or "Unknown"
            memo = transaction.get("memo")
            self.db.add(PayoutDB(
                amount=abs(float(transaction.get("amount") or 0)),
                currency="USD",
                status="Posted",
                description=memo or f"Mercury: {counterparty}",
                account=BANK_ACCOUNT_LABEL,
                processed_at=_posted_at(transaction),
                notes=memo,
                venue_id=venue_id,
                created_by_id=created_by_id,
                mercury_transaction_id=transaction_id,
                synced_to_mercury=True,
                synced_at=now,
            ))
            existing.add(transaction_id)
            result.imported += 1

        try:
            await self.db.commit()
        except Exception as e:
            logger.error(f"Failed to commit payout import: {e}")
            await self.db.rollback()
            raise

        log_order_event(
            OrderAuditEvent.PAYOUTS_IMPORTED,
            f"venue:{venue_id}",
            {"imported": result.imported, "skipped": result.skipped, "total": result.total}
        )
        return result

    async def sync_unsynced(
        self,
        client: MercuryClient,
        account_id: str,
        payout_ids: Optional[List[int]] = None,
    ) -> PayoutSyncResult:
        """Submit unsynced payouts to the bank; failures are isolated per payout."""
        query = (
            select(PayoutDB)
            .options(selectinload(PayoutDB.venue))
            .where(PayoutDB.synced_to_mercury.is_(False))
            .order_by(PayoutDB.processed_at.desc())
        )
        if payout_ids:
            query = query.where(PayoutDB.id.in_(payout_ids))

        payouts = (await self.db.execute(query)).scalars().all()
        # Snapshot before any rollback expires the instances
        pending = [
            (
                payout.id,
                payout.amount,
                payout.venue.name if payout.venue else "Unknown Venue",
                f"{payout.description} - {payout.notes}" if payout.notes else payout.description,
                payout.processed_at,
            )
            for payout in payouts
        ]
        result = PayoutSyncResult()

        for payout_id, amount, venue_name, memo, processed_at in pending:
            try:
                transaction = await client.create_transaction(
                    account_id=account_id,
                    amount=amount,
                    counterparty_name=venue_name,
                    memo=memo,
                    posted_at=processed_at,
                    external_id=f"payout-{payout_id}",
                )
                mercury_transaction_id = str(transaction["id"])
                await self.db.execute(
                    update(PayoutDB)
                    .where(PayoutDB.id == payout_id, PayoutDB.synced_to_mercury.is_(False))
                    .values(
                        mercury_transaction_id=mercury_transaction_id,
                        synced_to_mercury=True,
                        synced_at=datetime.now(timezone.utc),
                    )
                )
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                reason = getattr(e, "message", None) or str(e)
                result.failed += 1
                result.errors.append(f"Payout #{payout_id}: {reason}")
                log_order_event(
                    OrderAuditEvent.PAYOUT_SYNC_FAILED,
                    f"payout:{payout_id}",
                    {"reason": reason},
                    success=False
                )
                continue

            result.synced += 1
            log_order_event(
                OrderAuditEvent.PAYOUT_SYNCED,
                f"payout:{payout_id}",
                {"mercury_transaction_id": mercury_transaction_id}
            )

        return result
