"""
Bank API Client

Lists account transactions for a date range, fetches a single transaction
and submits outgoing payouts. Transactions are returned as the bank's own
JSON objects (id, amount, direction, counterparty, memo, postedAt).
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

import httpx

from ingestion.errors import SourceUnreachable

logger = logging.getLogger(__name__)

DateLike = Union[str, date, datetime, None]


def _as_day(value: DateLike) -> Optional[str]:
    """YYYY-MM-DD from a date, datetime or ISO string."""
    if value is None or value == "":
        return None
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value).split("T")[0]


class MercuryClient:
    SOURCE = "mercury"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.mercury.com/api/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}{path}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException:
            raise SourceUnreachable(self.SOURCE, f"{method} {path} timed out")
        except httpx.HTTPError as e:
            raise SourceUnreachable(self.SOURCE, f"{method} {path}: {str(e)[:100]}")

        if response.status_code >= 400:
            logger.error(f"Bank API error for {method} {path}: {response.status_code}")
            raise SourceUnreachable(
                self.SOURCE,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.json()

    async def get_transactions(
        self,
        account_id: str,
        start_date: DateLike = None,
        end_date: DateLike = None,
    ) -> List[Dict[str, Any]]:
        params = {}
        start, end = _as_day(start_date), _as_day(end_date)
        if start:
            params["start"] = start
        if end:
            params["end"] = end

        data = await self._request("GET", f"/account/{account_id}/transactions", params=params)
        transactions = data.get("transactions") or []
        logger.info(f"Fetched {len(transactions)} bank transactions for account {account_id}")
        return transactions

    async def get_transaction(self, account_id: str, transaction_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/account/{account_id}/transaction/{transaction_id}")

    async def create_transaction(
        self,
        account_id: str,
        amount: float,
        counterparty_name: str,
        memo: Optional[str] = None,
        posted_at: Optional[datetime] = None,
        external_id: Optional[str] = None,
        direction: str = "debit",
    ) -> Dict[str, Any]:
        """
        Submit a transaction. ``external_id`` is sent so the bank can reject
        a resubmission of the same payout.
        """
        body = {
            "amount": abs(amount),
            "direction": direction,
            "accountId": account_id,
            "counterparty": {"name": counterparty_name},
            "memo": memo or f"Payout: {counterparty_name}",
            "postedAt": posted_at.isoformat() if posted_at else None,
            "externalId": external_id,
        }
        return await self._request("POST", f"/account/{account_id}/transactions", json=body)
