"""
Orderdesk Core - Manual Orders and Order Metrics

Manual entry rules:
- customer name is trimmed; empty becomes "No Customer"
- a supplied order number gets exactly one leading '#'; none draws the
  next number from the sequencer
- payment status defaults to "Paid"
- with a non-negative original amount the total is the fee-inclusive
  conversion at the explicit rate (or the current rate); without one the
  supplied total is kept (0 when absent)
- line items with a blank product name are dropped
"""

import calendar
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from database.order_models import OrderSource, OrderStatus, PricingSource
from ingestion.unified_schema import (
    NO_CUSTOMER,
    CanonicalOrderDraft,
    LineItemDraft,
    StoredOrder,
    UpsertContext,
    normalise_tags,
)
from services.exchange_rate import CurrencyRateProvider
from services.order_numbers import OrderNumberSequencer, format_order_number
from services.order_repository import OrderDatastore
from services.product_pricing import calculate_payout
from utils.money import fee_inclusive_total

logger = logging.getLogger(__name__)

DEFAULT_FINANCIAL_STATUS = "Paid"
FULFILLED = "fulfilled"


# ==================== REQUEST MODELS ====================

class ManualLineItem(BaseModel):
    product_name: str = ""
    quantity: int = Field(default=1, ge=1)
    sku: Optional[str] = None
    price: float = 0.0
    total: Optional[float] = None


class ManualOrderRequest(BaseModel):
    """Operator-entered order."""
    venue_id: int
    customer_name: Optional[str] = None
    order_number: Optional[str] = None
    status: OrderStatus = OrderStatus.OPEN
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    total_amount: Optional[float] = None
    original_amount: Optional[float] = None
    exchange_rate: Optional[float] = None
    currency: str = "USD"
    processed_at: Optional[datetime] = None
    shipping_city: Optional[str] = None
    shipping_country: Optional[str] = None
    tags: Union[List[str], str, None] = None
    notes: Optional[str] = None
    line_items: List[ManualLineItem] = Field(default_factory=list)


# ==================== METRICS ====================

@dataclass
class OrderMetrics:
    orders_count: int = 0
    total_revenue: float = 0.0
    average_order_value: float = 0.0
    total_payout: float = 0.0
    total_tickets_value: float = 0.0
    pending_fulfillment: int = 0

    def to_dict(self):
        return asdict(self)


def summarise_orders(orders: List[StoredOrder]) -> OrderMetrics:
    """Revenue, expected payout and secondary-currency totals over a set of orders."""
    metrics = OrderMetrics(orders_count=len(orders))
    if not orders:
        return metrics

    metrics.total_revenue = sum(order.total_amount or 0 for order in orders)
    metrics.average_order_value = metrics.total_revenue / len(orders)
    metrics.total_payout = sum(
        calculate_payout(order.original_amount, order.exchange_rate, order.total_amount)
        for order in orders
    )
    metrics.total_tickets_value = sum(order.original_amount or 0 for order in orders)
    metrics.pending_fulfillment = sum(
        1 for order in orders
        if (order.fulfillment_status or "").lower() != FULFILLED
    )
    return metrics


def month_bounds(month: str):
    """'2026-03' -> (2026-03-01 00:00:00, 2026-03-31 23:59:59.999999) in UTC."""
    try:
        year, month_number = (int(part) for part in month.split("-"))
        last_day = calendar.monthrange(year, month_number)[1]
    except (ValueError, calendar.IllegalMonthError):
        raise ValueError(f"Invalid month '{month}', expected YYYY-MM")

    start = datetime(year, month_number, 1, tzinfo=timezone.utc)
    end = datetime(year, month_number, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc)
    return start, end


# ==================== SERVICE ====================

class OrderService:

    def __init__(
        self,
        store: OrderDatastore,
        sequencer: OrderNumberSequencer,
        rate_provider: CurrencyRateProvider,
    ):
        self.store = store
        self.sequencer = sequencer
        self.rate_provider = rate_provider

    async def create_manual_order(self, request: ManualOrderRequest, created_by_id: Optional[int] = None) -> StoredOrder:
        """
        Raises:
            RateUnavailable: an original amount was given without a rate and
                the provider has none
            SequencerContention
        """
        customer_name = (request.customer_name or "").strip() or NO_CUSTOMER
        financial_status = (request.financial_status or "").strip() or DEFAULT_FINANCIAL_STATUS

        original_amount = request.original_amount
        if original_amount is not None and original_amount < 0:
            original_amount = None

        explicit_rate = request.exchange_rate if request.exchange_rate and request.exchange_rate > 0 else None
        rate = explicit_rate
        if original_amount is not None:
            rate = await self.rate_provider.get_current_rate(override=explicit_rate)
            total_amount = fee_inclusive_total(original_amount, rate)
        else:
            total_amount = request.total_amount or 0.0

        supplied_number = (request.order_number or "").strip().lstrip("#").strip()
        if supplied_number:
            order_number = format_order_number(supplied_number)
        else:
            order_number = await self.sequencer.next_order_number()

        line_items = [
            LineItemDraft(
                product_name=item.product_name.strip(),
                quantity=item.quantity,
                sku=item.sku,
                price=item.price,
                total=item.total if item.total is not None else item.price * item.quantity,
            )
            for item in request.line_items
            if item.product_name.strip()
        ]

        draft = CanonicalOrderDraft(
            order_number=order_number,
            customer_name=customer_name,
            venue_id=request.venue_id,
            status=request.status,
            financial_status=financial_status,
            fulfillment_status=request.fulfillment_status,
            total_amount=total_amount,
            original_amount=original_amount,
            exchange_rate=rate,
            currency=request.currency or "USD",
            processed_at=request.processed_at or datetime.now(timezone.utc),
            shipping_city=request.shipping_city,
            shipping_country=request.shipping_country,
            tags=normalise_tags(request.tags),
            notes=request.notes,
            source=OrderSource.MANUAL,
            pricing_source=PricingSource.MANUAL,
            line_items=line_items,
        )

        stored = await self.store.create_order(
            draft,
            UpsertContext(venue_id=request.venue_id, created_by_id=created_by_id),
        )
        logger.info(
            f"Created manual order {stored.order_number}",
            extra={"order_id": stored.id, "venue_id": stored.venue_id, "created_by_id": created_by_id}
        )
        return stored

    async def list_orders(self, month: Optional[str] = None):
        """Orders (newest first) and their metrics, optionally for one month."""
        start = end = None
        if month:
            start, end = month_bounds(month)
        orders = await self.store.list_orders(start, end)
        return orders, summarise_orders(orders)
