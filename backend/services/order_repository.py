"""
Orderdesk Core - Order Datastore

``OrderDatastore`` is the persistence contract the ingestion engine is
written against. ``OrderRepository`` implements it with SQLAlchemy over an
AsyncSession (PostgreSQL).

Persistence-only conventions live here and nowhere else:
- tags are stored comma-joined and read back split/trimmed/filtered
- a unique violation on orders.external_id becomes DuplicateExternalId
- a lock timeout on the order-number rows becomes SequencerContention
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import AsyncIterator, Dict, Iterable, List, Optional, Protocol, Set

from sqlalchemy import select, delete, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database.order_models import (
    ImportQueueDB, OrderDB, OrderLineItemDB, OrderNumberCounterDB,
    ProductDB, ShopifyStoreDB, utc_now,
)
from ingestion.errors import DuplicateExternalId, SequencerContention
from ingestion.unified_schema import (
    CanonicalOrderDraft, CatalogProduct, LineItemDraft, NewStagedRecord,
    StagedFilter, StagedRecord, StoredOrder, UpsertContext, normalise_tags,
)

logger = logging.getLogger(__name__)

COUNTER_ROW_ID = 1
LOCK_NOT_AVAILABLE = "55P03"


@dataclass
class OrderNumberSlot:
    """
    Values visible while the order-number lock is held.

    The sequencer reads both, then calls ``claim`` with the number it
    hands out; the datastore persists the claim when the lock is released.
    """
    latest_order_number: Optional[str]
    last_issued: Optional[int]
    claimed: Optional[int] = None

    def claim(self, value: int):
        self.claimed = value


@dataclass
class StoreRef:
    id: int
    store_domain: str
    access_token: str
    venue_id: int
    nickname: Optional[str] = None


class OrderDatastore(Protocol):
    """Operations the ingestion engine needs from persistence."""

    async def find_products_by_venue(self, venue_id: int, active_only: bool = True) -> List[CatalogProduct]: ...

    async def find_order_by_external_id(self, external_id: str) -> Optional[StoredOrder]: ...

    async def find_existing_external_ids(self, external_ids: Iterable[str]) -> Set[str]: ...

    async def create_order(self, draft: CanonicalOrderDraft, context: UpsertContext) -> StoredOrder: ...

    async def replace_order(self, order_id: int, draft: CanonicalOrderDraft) -> StoredOrder: ...

    async def list_orders(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[StoredOrder]: ...

    async def list_staged_records(self, filter: StagedFilter) -> List[StagedRecord]: ...

    async def get_staged_records(self, ids: Iterable[int]) -> List[StagedRecord]: ...

    async def insert_staged_records(self, records: List[NewStagedRecord]) -> int: ...

    async def upsert_staged_record(self, record: NewStagedRecord) -> StagedRecord: ...

    async def delete_staged_records(self, ids: Iterable[int]) -> int: ...

    async def find_store_ids_by_domain(self, domains: Iterable[str]) -> Dict[str, int]: ...

    async def get_store(self, store_id: int) -> Optional[StoreRef]: ...

    def order_number_slot(self): ...


# ==================== MAPPERS ====================

def join_tags(tags: List[str]) -> str:
    return ",".join(tags)


def _to_stored(order: OrderDB) -> StoredOrder:
    return StoredOrder(
        id=order.id,
        external_id=order.external_id,
        order_number=order.order_number,
        shopify_order_number=order.shopify_order_number,
        customer_name=order.customer_name,
        venue_id=order.venue_id,
        status=order.status,
        financial_status=order.financial_status,
        fulfillment_status=order.fulfillment_status,
        total_amount=order.total_amount,
        original_amount=order.original_amount,
        exchange_rate=order.exchange_rate,
        currency=order.currency,
        processed_at=order.processed_at,
        shipping_city=order.shipping_city,
        shipping_country=order.shipping_country,
        tags=normalise_tags(order.tags),
        notes=order.notes,
        source=order.source,
        store_id=order.shopify_store_id,
        pricing_source=order.pricing_source,
        created_by_id=order.created_by_id,
        line_items=[
            LineItemDraft(
                product_name=item.product_name,
                quantity=item.quantity,
                sku=item.sku,
                price=item.price,
                total=item.total,
            )
            for item in order.line_items
        ],
    )


def _to_staged(row: ImportQueueDB) -> StagedRecord:
    return StagedRecord(
        id=row.id,
        external_id=row.external_id,
        store_domain=row.store_domain,
        source=row.source,
        order_number=row.order_number,
        total_amount=row.total_amount,
        currency=row.currency,
        financial_status=row.financial_status,
        payload=row.payload,
        created_at=row.created_at,
    )


def _line_item_rows(draft: CanonicalOrderDraft) -> List[OrderLineItemDB]:
    return [
        OrderLineItemDB(
            product_name=item.product_name,
            quantity=item.quantity,
            sku=item.sku,
            price=item.price,
            total=item.total,
        )
        for item in draft.line_items
    ]


def _is_external_id_violation(error: IntegrityError) -> bool:
    message = str(error.orig).lower()
    return "external_id" in message


def _is_lock_timeout(error: DBAPIError) -> bool:
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == LOCK_NOT_AVAILABLE or "lock timeout" in str(orig).lower()


# ==================== REPOSITORY ====================

class OrderRepository:
    """SQLAlchemy implementation of OrderDatastore."""

    def __init__(self, session: AsyncSession, lock_timeout_ms: int = 5000):
        self.session = session
        self.lock_timeout_ms = lock_timeout_ms

    # ==================== CATALOG ====================

    async def find_products_by_venue(self, venue_id: int, active_only: bool = True) -> List[CatalogProduct]:
        query = select(ProductDB).where(ProductDB.venue_id == venue_id).order_by(ProductDB.id)
        if active_only:
            query = query.where(ProductDB.active.is_(True))

        result = await self.session.execute(query)
        return [
            CatalogProduct(
                id=product.id,
                name=product.name,
                sku=product.sku,
                external_id=product.shopify_product_id,
                price=product.egp_price,
                active=product.active,
            )
            for product in result.scalars().all()
        ]

    # ==================== ORDERS ====================

    async def _get_order_db(self, order_id: int) -> Optional[OrderDB]:
        result = await self.session.execute(
            select(OrderDB)
            .options(selectinload(OrderDB.line_items))
            .where(OrderDB.id == order_id)
        )
        return result.scalar_one_or_none()

    async def find_order_by_external_id(self, external_id: str) -> Optional[StoredOrder]:
        result = await self.session.execute(
            select(OrderDB)
            .options(selectinload(OrderDB.line_items))
            .where(OrderDB.external_id == external_id)
        )
        order = result.scalar_one_or_none()
        return _to_stored(order) if order else None

    async def find_existing_external_ids(self, external_ids: Iterable[str]) -> Set[str]:
        ids = [str(i) for i in external_ids]
        if not ids:
            return set()
        result = await self.session.execute(
            select(OrderDB.external_id).where(OrderDB.external_id.in_(ids))
        )
        return set(result.scalars().all())

    async def create_order(self, draft: CanonicalOrderDraft, context: UpsertContext) -> StoredOrder:
        """
        Insert a new order with its line items.

        Raises:
            DuplicateExternalId: another order already holds draft.external_id
            ValueError: no order number or no venue to assign
        """
        venue_id = draft.venue_id or context.venue_id
        if not draft.order_number:
            raise ValueError("Order number must be assigned before create")
        if not venue_id:
            raise ValueError("Order needs a venue")

        order = OrderDB(
            external_id=draft.external_id,
            order_number=draft.order_number,
            shopify_order_number=draft.shopify_order_number,
            customer_name=draft.customer_name,
            venue_id=venue_id,
            status=draft.status,
            financial_status=draft.financial_status,
            fulfillment_status=draft.fulfillment_status,
            total_amount=draft.total_amount,
            original_amount=draft.original_amount,
            exchange_rate=draft.exchange_rate,
            currency=draft.currency,
            pricing_source=draft.pricing_source,
            processed_at=draft.processed_at,
            shipping_city=draft.shipping_city,
            shipping_country=draft.shipping_country,
            tags=join_tags(draft.tags),
            notes=draft.notes,
            source=draft.source,
            shopify_store_id=draft.store_id or context.store_id,
            created_by_id=context.created_by_id,
            line_items=_line_item_rows(draft),
        )

        self.session.add(order)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            if draft.external_id and _is_external_id_violation(e):
                raise DuplicateExternalId(draft.external_id) from e
            raise

        return _to_stored(order)

    async def replace_order(self, order_id: int, draft: CanonicalOrderDraft) -> StoredOrder:
        """
        Overwrite every mutable field and all line items in one transaction.

        The venue is kept unless the draft names one; the order number is
        kept unless the draft carries one.
        """
        order = await self._get_order_db(order_id)
        if order is None:
            raise ValueError(f"Order {order_id} not found")

        try:
            if draft.order_number:
                order.order_number = draft.order_number
            if draft.venue_id:
                order.venue_id = draft.venue_id
            if draft.store_id:
                order.shopify_store_id = draft.store_id

            if draft.shopify_order_number:
                order.shopify_order_number = draft.shopify_order_number
            order.customer_name = draft.customer_name
            order.status = draft.status
            order.financial_status = draft.financial_status
            order.fulfillment_status = draft.fulfillment_status
            order.total_amount = draft.total_amount
            order.original_amount = draft.original_amount
            order.exchange_rate = draft.exchange_rate
            order.currency = draft.currency
            order.pricing_source = draft.pricing_source
            order.processed_at = draft.processed_at
            order.shipping_city = draft.shipping_city
            order.shipping_country = draft.shipping_country
            order.tags = join_tags(draft.tags)
            order.notes = draft.notes
            order.source = draft.source

            # delete-orphan cascade removes the previous rows in the same flush
            order.line_items = _line_item_rows(draft)

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        return _to_stored(order)

    async def list_orders(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[StoredOrder]:
        query = select(OrderDB).options(selectinload(OrderDB.line_items)).order_by(OrderDB.processed_at.desc())
        if start:
            query = query.where(OrderDB.processed_at >= start)
        if end:
            query = query.where(OrderDB.processed_at <= end)

        result = await self.session.execute(query)
        return [_to_stored(order) for order in result.scalars().all()]

    # ==================== STAGING QUEUE ====================

    async def list_staged_records(self, filter: StagedFilter) -> List[StagedRecord]:
        query = select(ImportQueueDB).order_by(ImportQueueDB.created_at.desc())
        if filter.amount is not None:
            query = query.where(ImportQueueDB.total_amount == filter.amount)
        if filter.currency:
            query = query.where(ImportQueueDB.currency == filter.currency)

        result = await self.session.execute(query)
        return [_to_staged(row) for row in result.scalars().all()]

    async def get_staged_records(self, ids: Iterable[int]) -> List[StagedRecord]:
        ids = list(ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(ImportQueueDB).where(ImportQueueDB.id.in_(ids)).order_by(ImportQueueDB.id)
        )
        return [_to_staged(row) for row in result.scalars().all()]

    async def insert_staged_records(self, records: List[NewStagedRecord]) -> int:
        """Queue records, skipping external ids that are already queued."""
        if not records:
            return 0

        statement = (
            pg_insert(ImportQueueDB)
            .values([record.model_dump() for record in records])
            .on_conflict_do_nothing(index_elements=["external_id"])
            .returning(ImportQueueDB.id)
        )
        try:
            result = await self.session.execute(statement)
            inserted = len(result.fetchall())
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return inserted

    async def upsert_staged_record(self, record: NewStagedRecord) -> StagedRecord:
        """Queue one record; if its external id is already queued, refresh that row."""
        values = record.model_dump()
        statement = (
            pg_insert(ImportQueueDB)
            .values(**values)
            .on_conflict_do_update(
                index_elements=["external_id"],
                set_={
                    "payload": values["payload"],
                    "total_amount": values["total_amount"],
                    "currency": values["currency"],
                    "financial_status": values["financial_status"],
                    "updated_at": utc_now(),
                },
            )
            .returning(ImportQueueDB)
        )
        try:
            result = await self.session.execute(statement)
            row = result.scalar_one()
            staged = _to_staged(row)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return staged

    async def delete_staged_records(self, ids: Iterable[int]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        try:
            result = await self.session.execute(delete(ImportQueueDB).where(ImportQueueDB.id.in_(ids)))
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return result.rowcount or 0

    # ==================== STORES ====================

    async def find_store_ids_by_domain(self, domains: Iterable[str]) -> Dict[str, int]:
        domains = [d for d in set(domains) if d]
        if not domains:
            return {}
        result = await self.session.execute(
            select(ShopifyStoreDB.store_domain, ShopifyStoreDB.id).where(ShopifyStoreDB.store_domain.in_(domains))
        )
        return {domain: store_id for domain, store_id in result.all()}

    async def get_store(self, store_id: int) -> Optional[StoreRef]:
        store = await self.session.get(ShopifyStoreDB, store_id)
        if store is None:
            return None
        return StoreRef(
            id=store.id,
            store_domain=store.store_domain,
            access_token=store.access_token,
            venue_id=store.venue_id,
            nickname=store.nickname,
        )

    # ==================== ORDER NUMBERS ====================

    @asynccontextmanager
    async def order_number_slot(self) -> AsyncIterator[OrderNumberSlot]:
        """
        Hold row locks on the counter row and the most recent order (by
        processed time) for the duration of the block.

        Raises:
            SequencerContention: the locks were not granted within lock_timeout_ms
        """
        try:
            await self.session.execute(text(f"SET LOCAL lock_timeout = '{int(self.lock_timeout_ms)}ms'"))
            await self.session.execute(
                pg_insert(OrderNumberCounterDB)
                .values(id=COUNTER_ROW_ID, last_issued=None)
                .on_conflict_do_nothing(index_elements=["id"])
            )
            counter = (await self.session.execute(
                select(OrderNumberCounterDB)
                .where(OrderNumberCounterDB.id == COUNTER_ROW_ID)
                .with_for_update()
            )).scalar_one()

            latest = (await self.session.execute(
                select(OrderDB.order_number)
                .order_by(OrderDB.processed_at.desc(), OrderDB.id.desc())
                .limit(1)
                .with_for_update()
            )).scalar_one_or_none()

            slot = OrderNumberSlot(latest_order_number=latest, last_issued=counter.last_issued)
            yield slot

            if slot.claimed is not None:
                counter.last_issued = slot.claimed
            await self.session.commit()
        except DBAPIError as e:
            await self.session.rollback()
            if _is_lock_timeout(e):
                raise SequencerContention(1) from e
            raise
        except Exception:
            await self.session.rollback()
            raise
