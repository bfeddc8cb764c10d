"""
Order Number Sequencer

Human-facing order numbers are ``#<integer>``. The next number is one more
than the highest of:
- the numeric suffix of the most recent order by processed time
- the last number this sequencer issued
- the base (1000)

Both values are read while the datastore holds its order-number row lock,
so concurrent callers never receive the same number.
"""

import asyncio
import logging
import re
from typing import Optional

from ingestion.errors import SequencerContention

logger = logging.getLogger(__name__)

ORDER_NUMBER_BASE = 1000
_DIGITS = re.compile(r"\d+")


def extract_order_number(value: Optional[str]) -> Optional[int]:
    """Last run of digits in an order number ("#1042" -> 1042, "SHOP-7-19" -> 19)."""
    if not value:
        return None
    groups = _DIGITS.findall(value)
    if not groups:
        return None
    return int(groups[-1])


def format_order_number(value) -> str:
    """Exactly one leading '#': 1042 / "1042" / "##1042" -> "#1042"."""
    text = str(value).strip().lstrip("#").strip()
    if not text:
        raise ValueError("Order number is empty")
    return f"#{text}"


class OrderNumberSequencer:
    """Issues sequential order numbers through the datastore's locked slot."""

    def __init__(self, store, max_attempts: int = 3, backoff_seconds: float = 0.05):
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    async def next_order_number(self) -> str:
        """
        Raises:
            SequencerContention: the lock was not granted within max_attempts
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.store.order_number_slot() as slot:
                    latest = extract_order_number(slot.latest_order_number)
                    value = max(latest or 0, slot.last_issued or 0, ORDER_NUMBER_BASE) + 1
                    slot.claim(value)
            except SequencerContention:
                logger.warning(f"Order number lock contention (attempt {attempt}/{self.max_attempts})")
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_seconds * attempt)
                continue

            order_number = format_order_number(value)
            logger.info(f"Issued order number {order_number}", extra={"attempt": attempt})
            return order_number

        raise SequencerContention(self.max_attempts)
