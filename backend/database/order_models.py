"""
Orderdesk Core - Order Ledger Database Models

Tables:
- venues: Order owners
- shopify_stores: Connected storefronts (one venue each)
- products: Venue-scoped catalog with secondary-currency prices
- orders / order_line_items: Canonical ledger
- import_queue: Fetched storefront/bank records awaiting approval
- payouts: Outbound money, with bank-sync idempotency flag
- order_number_counter: Single row holding the last issued order number
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, DateTime,
    ForeignKey, Index, UniqueConstraint, JSON
)
from sqlalchemy.orm import relationship

from database.connection import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== ENUMS ====================

class OrderSource(str, PyEnum):
    """Where a canonical order came from"""
    MANUAL = "manual"
    SHOPIFY = "shopify"
    MERCURY = "mercury"


class OrderStatus(str, PyEnum):
    OPEN = "Open"
    CLOSED = "Closed"


class PricingSource(str, PyEnum):
    """How originalAmount was derived"""
    CATALOG = "catalog"    # Sum of matched catalog prices
    FALLBACK = "fallback"  # Native total converted with the exchange rate
    MANUAL = "manual"      # Entered by a user


# ==================== DATABASE MODELS ====================

class VenueDB(Base):
    __tablename__ = "venues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    stores = relationship("ShopifyStoreDB", back_populates="venue")
    products = relationship("ProductDB", back_populates="venue")


class ShopifyStoreDB(Base):
    __tablename__ = "shopify_stores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    store_domain = Column(String(255), nullable=False, unique=True)
    # Fernet token, see utils.encryption
    access_token = Column(Text, nullable=False)
    nickname = Column(String(255), nullable=True)
    venue_id = Column(Integer, ForeignKey("venues.id", ondelete="RESTRICT"), nullable=False, index=True)
    owner_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    venue = relationship("VenueDB", back_populates="stores")


class ProductDB(Base):
    """
    Catalog entry used for line-item price matching.

    Read-only from the ingestion engine's point of view.
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    sku = Column(String(255), nullable=True)
    shopify_product_id = Column(String(64), nullable=True, index=True)
    egp_price = Column(Float, nullable=False)
    venue_id = Column(Integer, ForeignKey("venues.id", ondelete="RESTRICT"), nullable=False, index=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    venue = relationship("VenueDB", back_populates="products")

    __table_args__ = (
        UniqueConstraint("sku", "venue_id", name="uq_products_sku_venue"),
    )


class OrderDB(Base):
    """
    Canonical order.

    Invariant: when original_amount and a positive exchange_rate are both
    present, total_amount == round(original_amount / exchange_rate * 1.035, 2).
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=True, unique=True)
    order_number = Column(String(64), nullable=False, unique=True)
    # Storefront display name (e.g. "#1042"); never used as order_number
    shopify_order_number = Column(String(64), nullable=True, index=True)
    customer_name = Column(Text, nullable=False, default="No Customer")
    venue_id = Column(Integer, ForeignKey("venues.id", ondelete="RESTRICT"), nullable=False, index=True)

    status = Column(String(32), nullable=False, default=OrderStatus.OPEN.value)
    financial_status = Column(String(64), nullable=True)
    fulfillment_status = Column(String(64), nullable=True)

    total_amount = Column(Float, nullable=False)
    original_amount = Column(Float, nullable=True)
    exchange_rate = Column(Float, nullable=True)
    currency = Column(String(8), nullable=False, default="USD")
    pricing_source = Column(String(16), nullable=True)

    processed_at = Column(DateTime(timezone=True), nullable=False, index=True)
    shipping_city = Column(Text, nullable=True)
    shipping_country = Column(Text, nullable=True)
    # Comma-joined; only services.order_repository reads or writes this column
    tags = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=True)

    source = Column(String(16), nullable=False, default=OrderSource.MANUAL.value)
    shopify_store_id = Column(Integer, ForeignKey("shopify_stores.id", ondelete="SET NULL"), nullable=True)
    created_by_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    line_items = relationship(
        "OrderLineItemDB",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLineItemDB.id",
    )


class OrderLineItemDB(Base):
    __tablename__ = "order_line_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_name = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False)
    sku = Column(String(255), nullable=True)
    price = Column(Float, nullable=False)
    total = Column(Float, nullable=False)

    order = relationship("OrderDB", back_populates="line_items")


class ImportQueueDB(Base):
    """
    Staged external record awaiting approval.

    The raw payload is kept verbatim; the other columns are denormalised
    for filtering.
    """
    __tablename__ = "import_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False, unique=True)
    store_domain = Column(String(255), nullable=True, index=True)
    source = Column(String(16), nullable=False, default=OrderSource.SHOPIFY.value)
    order_number = Column(String(64), nullable=True)
    total_amount = Column(Float, nullable=False)
    currency = Column(String(8), nullable=False)
    financial_status = Column(String(64), nullable=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class PayoutDB(Base):
    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(8), nullable=False, default="USD")
    status = Column(String(32), nullable=False, default="Pending")
    description = Column(Text, nullable=False)
    account = Column(String(255), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)
    venue_id = Column(Integer, ForeignKey("venues.id", ondelete="RESTRICT"), nullable=False, index=True)
    created_by_id = Column(Integer, nullable=True)

    mercury_transaction_id = Column(String(64), nullable=True, unique=True)
    synced_to_mercury = Column(Boolean, nullable=False, default=False)
    synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    venue = relationship("VenueDB")

    __table_args__ = (
        Index("ix_payouts_unsynced", "synced_to_mercury", "processed_at"),
    )


class OrderNumberCounterDB(Base):
    """Single row (id=1) locked by the order-number sequencer."""
    __tablename__ = "order_number_counter"

    id = Column(Integer, primary_key=True)
    last_issued = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
