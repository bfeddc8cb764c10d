"""
Unit Tests for the Order Number Sequencer

Tests:
- Number parsing and formatting
- Base number on an empty ledger, increment from the latest order
- No duplicates and no gaps under concurrent callers
- Bounded retry on lock contention

Run with: pytest tests/test_order_numbers.py -v
"""

import asyncio
from datetime import datetime, timezone

import pytest

from ingestion.errors import SequencerContention
from ingestion.unified_schema import CanonicalOrderDraft, UpsertContext
from services.order_numbers import (
    OrderNumberSequencer,
    extract_order_number,
    format_order_number,
)


class TestFormatting:

    @pytest.mark.parametrize("value, expected", [
        ("#1042", 1042),
        ("1042", 1042),
        ("SHOP-7-19", 19),
        ("no digits", None),
        (None, None),
    ])
    def test_extract(self, value, expected):
        assert extract_order_number(value) == expected

    @pytest.mark.parametrize("value, expected", [
        (1042, "#1042"),
        ("1042", "#1042"),
        ("##1042", "#1042"),
        (" #A-7 ", "#A-7"),
    ])
    def test_format(self, value, expected):
        assert format_order_number(value) == expected

    def test_format_rejects_empty(self):
        with pytest.raises(ValueError):
            format_order_number("###")


class TestSequencer:

    async def _seed_order(self, store, order_number, processed_at):
        draft = CanonicalOrderDraft(order_number=order_number, total_amount=10.0, processed_at=processed_at)
        await store.create_order(draft, UpsertContext(venue_id=1))

    @pytest.mark.asyncio
    async def test_empty_ledger_starts_after_base(self, sequencer):
        assert await sequencer.next_order_number() == "#1001"

    @pytest.mark.asyncio
    async def test_increments_latest_by_processed_time(self, store, sequencer):
        await self._seed_order(store, "#2050", datetime(2026, 3, 2, tzinfo=timezone.utc))
        await self._seed_order(store, "#1500", datetime(2026, 1, 1, tzinfo=timezone.utc))

        assert await sequencer.next_order_number() == "#2051"

    @pytest.mark.asyncio
    async def test_latest_below_base_uses_base(self, store, sequencer):
        await self._seed_order(store, "#17", datetime(2026, 3, 2, tzinfo=timezone.utc))

        assert await sequencer.next_order_number() == "#1001"

    @pytest.mark.asyncio
    async def test_concurrent_callers_get_distinct_consecutive_numbers(self, sequencer):
        n = 25
        numbers = await asyncio.gather(*(sequencer.next_order_number() for _ in range(n)))

        assert len(set(numbers)) == n
        assert set(numbers) == {f"#{1000 + i}" for i in range(1, n + 1)}

    @pytest.mark.asyncio
    async def test_retries_on_contention(self, store, sequencer):
        store.contention_failures = 2

        assert await sequencer.next_order_number() == "#1001"
        assert store.contention_failures == 0

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, store):
        store.contention_failures = 5
        sequencer = OrderNumberSequencer(store, max_attempts=3, backoff_seconds=0)

        with pytest.raises(SequencerContention) as exc_info:
            await sequencer.next_order_number()

        assert exc_info.value.attempts == 3
        assert store.last_issued is None
