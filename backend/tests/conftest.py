"""
Shared fixtures for the order engine tests.

InMemoryOrderStore implements the OrderDatastore protocol without a
database. An asyncio.Lock stands in for the order-number row lock, and
each method yields to the event loop so concurrent callers interleave.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import pytest

from ingestion.errors import DuplicateExternalId, SequencerContention
from ingestion.factories import RecordTransformer
from ingestion.services import OrderImportService, OrderUpsertService, StagingQueueService
from ingestion.unified_schema import (
    CanonicalOrderDraft,
    CatalogProduct,
    NewStagedRecord,
    StagedFilter,
    StagedRecord,
    StoredOrder,
    UpsertContext,
)
from services.exchange_rate import RateInfo
from services.order_numbers import OrderNumberSequencer
from services.order_repository import OrderNumberSlot, StoreRef
from services.product_pricing import AmountCalculator, ProductPriceMatcher


class InMemoryOrderStore:
    """OrderDatastore test double."""

    def __init__(self):
        self.products: Dict[int, List[CatalogProduct]] = {}
        self.orders: Dict[int, StoredOrder] = {}
        self.staged: Dict[int, StagedRecord] = {}
        self.stores: Dict[int, StoreRef] = {}
        self.last_issued: Optional[int] = None
        self.contention_failures = 0
        self.before_create = None
        self.replace_calls = 0
        self._lock = asyncio.Lock()
        self._next_order_id = 1
        self._next_staged_id = 1
        self._next_product_id = 1

    # ==================== SEEDING ====================

    def add_product(self, venue_id: int, name: str, price: float, sku: Optional[str] = None,
                    external_id: Optional[str] = None, active: bool = True) -> CatalogProduct:
        product = CatalogProduct(
            id=self._next_product_id, name=name, sku=sku,
            external_id=external_id, price=price, active=active,
        )
        self._next_product_id += 1
        self.products.setdefault(venue_id, []).append(product)
        return product

    def add_store(self, store_id: int, domain: str, venue_id: int, access_token: str = "token") -> StoreRef:
        store = StoreRef(id=store_id, store_domain=domain, access_token=access_token, venue_id=venue_id)
        self.stores[store_id] = store
        return store

    def order_by_external_id(self, external_id: str) -> Optional[StoredOrder]:
        return next((o for o in self.orders.values() if o.external_id == external_id), None)

    # ==================== DATASTORE ====================

    async def find_products_by_venue(self, venue_id: int, active_only: bool = True) -> List[CatalogProduct]:
        await asyncio.sleep(0)
        products = self.products.get(venue_id, [])
        return [p for p in products if p.active or not active_only]

    async def find_order_by_external_id(self, external_id: str) -> Optional[StoredOrder]:
        await asyncio.sleep(0)
        return self.order_by_external_id(external_id)

    async def find_existing_external_ids(self, external_ids: Iterable[str]) -> set:
        wanted = set(external_ids)
        return {o.external_id for o in self.orders.values() if o.external_id in wanted}

    async def create_order(self, draft: CanonicalOrderDraft, context: UpsertContext) -> StoredOrder:
        await asyncio.sleep(0)
        if self.before_create:
            hook, self.before_create = self.before_create, None
            await hook(draft)

        venue_id = draft.venue_id or context.venue_id
        if not draft.order_number:
            raise ValueError("Order number must be assigned before create")
        if not venue_id:
            raise ValueError("Order needs a venue")
        if draft.external_id and self.order_by_external_id(draft.external_id):
            raise DuplicateExternalId(draft.external_id)
        if any(o.order_number == draft.order_number for o in self.orders.values()):
            raise ValueError(f"Duplicate order number {draft.order_number}")

        data = draft.model_dump(exclude={"unmatched_items"})
        data.update(
            id=self._next_order_id,
            venue_id=venue_id,
            store_id=draft.store_id or context.store_id,
            created_by_id=context.created_by_id,
        )
        self._next_order_id += 1
        stored = StoredOrder(**data)
        self.orders[stored.id] = stored
        return stored

    async def replace_order(self, order_id: int, draft: CanonicalOrderDraft) -> StoredOrder:
        await asyncio.sleep(0)
        self.replace_calls += 1
        existing = self.orders[order_id]
        data = draft.model_dump(exclude={"unmatched_items"})
        data.update(
            id=existing.id,
            order_number=draft.order_number or existing.order_number,
            shopify_order_number=draft.shopify_order_number or existing.shopify_order_number,
            venue_id=draft.venue_id or existing.venue_id,
            store_id=draft.store_id or existing.store_id,
            created_by_id=existing.created_by_id,
        )
        stored = StoredOrder(**data)
        self.orders[order_id] = stored
        return stored

    async def list_orders(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[StoredOrder]:
        orders = [
            o for o in self.orders.values()
            if (start is None or o.processed_at >= start) and (end is None or o.processed_at <= end)
        ]
        return sorted(orders, key=lambda o: o.processed_at, reverse=True)

    async def list_staged_records(self, filter: StagedFilter) -> List[StagedRecord]:
        records = list(self.staged.values())
        if filter.amount is not None:
            records = [r for r in records if r.total_amount == filter.amount]
        if filter.currency:
            records = [r for r in records if r.currency == filter.currency]
        return records

    async def get_staged_records(self, ids: Iterable[int]) -> List[StagedRecord]:
        return [self.staged[i] for i in sorted(set(ids)) if i in self.staged]

    async def insert_staged_records(self, records: List[NewStagedRecord]) -> int:
        queued = {r.external_id for r in self.staged.values()}
        inserted = 0
        for record in records:
            if record.external_id in queued:
                continue
            staged = StagedRecord(
                id=self._next_staged_id,
                created_at=datetime.now(timezone.utc),
                **record.model_dump(),
            )
            self.staged[staged.id] = staged
            queued.add(record.external_id)
            self._next_staged_id += 1
            inserted += 1
        return inserted

    async def upsert_staged_record(self, record: NewStagedRecord) -> StagedRecord:
        queued = next((r for r in self.staged.values() if r.external_id == record.external_id), None)
        if queued is None:
            await self.insert_staged_records([record])
            return next(r for r in self.staged.values() if r.external_id == record.external_id)

        refreshed = queued.model_copy(update={
            "payload": record.payload,
            "total_amount": record.total_amount,
            "currency": record.currency,
            "financial_status": record.financial_status,
        })
        self.staged[queued.id] = refreshed
        return refreshed

    async def delete_staged_records(self, ids: Iterable[int]) -> int:
        deleted = 0
        for record_id in ids:
            if self.staged.pop(record_id, None) is not None:
                deleted += 1
        return deleted

    async def find_store_ids_by_domain(self, domains: Iterable[str]) -> Dict[str, int]:
        wanted = set(domains)
        return {s.store_domain: s.id for s in self.stores.values() if s.store_domain in wanted}

    async def get_store(self, store_id: int) -> Optional[StoreRef]:
        return self.stores.get(store_id)

    @asynccontextmanager
    async def order_number_slot(self):
        if self.contention_failures > 0:
            self.contention_failures -= 1
            raise SequencerContention(1)

        async with self._lock:
            latest = max(self.orders.values(), key=lambda o: (o.processed_at, o.id), default=None)
            slot = OrderNumberSlot(
                latest_order_number=latest.order_number if latest else None,
                last_issued=self.last_issued,
            )
            await asyncio.sleep(0)
            yield slot
            if slot.claimed is not None:
                self.last_issued = slot.claimed


class StubRateProvider:
    """Fixed-rate provider; ``error`` makes every lookup raise it."""

    def __init__(self, rate: float = 48.5, error: Optional[Exception] = None):
        self.rate = rate
        self.error = error
        self.calls = 0

    async def get_current_rate(self, base=None, quote=None, override=None) -> float:
        if override is not None and override > 0:
            return float(override)
        self.calls += 1
        if self.error:
            raise self.error
        return self.rate

    async def get_rate_info(self, base=None, quote=None) -> RateInfo:
        rate = await self.get_current_rate(base, quote)
        return RateInfo(base or "USD", quote or "EGP", rate, datetime(2026, 1, 1, tzinfo=timezone.utc))


# ==================== PAYLOAD BUILDERS ====================

def shopify_order(order_id, total="50.00", line_items=None, **overrides):
    """Minimal storefront order payload."""
    payload = {
        "id": order_id,
        "name": f"#S{order_id}",
        "order_number": order_id,
        "processed_at": "2026-03-10T12:00:00+00:00",
        "current_total_price": total,
        "currency": "USD",
        "tags": "vip, gala ,",
        "financial_status": "paid",
        "fulfillment_status": None,
        "customer": {"first_name": "Nadia", "last_name": "Fahmy"},
        "shipping_address": {"city": "Cairo", "country": "Egypt"},
        "billing_address": None,
        "line_items": line_items if line_items is not None else [
            {"name": "Gala Ticket", "quantity": 1, "sku": "GALA-1", "variant_id": 111, "price": total},
        ],
    }
    payload.update(overrides)
    return payload


def bank_transaction(transaction_id, amount, direction="credit", name="Acme Events", memo=None):
    return {
        "id": transaction_id,
        "amount": amount,
        "direction": direction,
        "counterparty": {"name": name},
        "memo": memo,
        "postedAt": "2026-03-12T09:30:00Z",
    }


# ==================== FIXTURES ====================

@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def rate_provider():
    return StubRateProvider(rate=48.5)


@pytest.fixture
def sequencer(store):
    return OrderNumberSequencer(store, max_attempts=3, backoff_seconds=0)


@pytest.fixture
def transformer(store):
    return RecordTransformer(AmountCalculator(ProductPriceMatcher(store)))


@pytest.fixture
def upsert_service(store, sequencer):
    return OrderUpsertService(store, sequencer)


@pytest.fixture
def staging_service(store, transformer, upsert_service, rate_provider):
    return StagingQueueService(store, transformer, upsert_service, rate_provider, require_catalog_match=True)


@pytest.fixture
def import_service(store, transformer, upsert_service, rate_provider):
    return OrderImportService(store, transformer, upsert_service, rate_provider)
