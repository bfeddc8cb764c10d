"""
Record Transformer

Maps a RawExternalRecord (storefront order or bank credit) into a
CanonicalOrderDraft. Field mapping:

- customer name: "first last", else the party display name, else "No Customer"
- tags: split/trimmed from the source string or list
- status: Closed when the native payment status is "refunded", else Open
- payment/fulfilment statuses: title-cased
- shipping city: shipping -> billing -> customer surname
- shipping country: shipping -> billing
- amounts: AmountCalculator (catalog pricing, fallback to native total)
- storefront order name: kept as shopify_order_number; the internal
  order number is left unset so the sequencer assigns it on create

Nothing is persisted here; the only external reads are the catalog lookup
inside the calculator and whatever rate the caller passes in.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from database.order_models import OrderStatus
from ingestion.unified_schema import (
    NO_CUSTOMER,
    CanonicalOrderDraft,
    LineItemDraft,
    RawExternalRecord,
    normalise_tags,
    title_case,
)
from services.product_pricing import AmountCalculator

logger = logging.getLogger(__name__)


class RecordTransformer:
    """Turns raw external records into canonical order drafts."""

    def __init__(self, calculator: AmountCalculator):
        self.calculator = calculator

    async def transform(
        self,
        raw: RawExternalRecord,
        rate: float,
        venue_id: Optional[int],
        store_id: Optional[int] = None,
        allow_fallback: bool = True,
        assign_venue: bool = False,
    ) -> CanonicalOrderDraft:
        """
        Build a draft for one record.

        Args:
            raw: Immutable source payload
            rate: Primary -> secondary exchange rate; non-positive means no
                secondary-currency pricing is stored
            venue_id: Venue whose catalog prices the line items
            store_id: Owning storefront, when the record came from one
            allow_fallback: Passed to the calculator; False makes unmatched
                line items raise UnmatchedProducts
            assign_venue: Set the draft's venue explicitly so an update
                moves the order; otherwise an update keeps its venue

        Raises:
            UnmatchedProducts: only when allow_fallback is False
        """
        breakdown = await self.calculator.calculate(
            raw.line_items,
            rate,
            venue_id,
            raw.total,
            allow_fallback=allow_fallback,
        )

        has_rate = rate > 0
        draft = CanonicalOrderDraft(
            external_id=raw.external_id,
            shopify_order_number=raw.order_name,
            customer_name=self._customer_name(raw),
            venue_id=venue_id if assign_venue else None,
            status=self._status(raw.financial_status),
            financial_status=title_case(raw.financial_status),
            fulfillment_status=title_case(raw.fulfillment_status),
            total_amount=breakdown.total_amount,
            original_amount=breakdown.original_amount if has_rate else None,
            exchange_rate=rate if has_rate else None,
            currency=raw.currency or "USD",
            processed_at=raw.processed_at or datetime.now(timezone.utc),
            shipping_city=self._shipping_city(raw),
            shipping_country=self._shipping_country(raw),
            tags=normalise_tags(raw.tags),
            notes=raw.notes,
            source=raw.source,
            store_id=store_id,
            pricing_source=breakdown.pricing_source,
            unmatched_items=breakdown.unmatched_items,
            line_items=[
                LineItemDraft(
                    product_name=item.product_name or "Unknown item",
                    quantity=item.quantity,
                    sku=item.sku,
                    price=item.unit_price,
                    total=item.unit_price * item.quantity,
                )
                for item in raw.line_items
            ],
        )

        logger.debug(
            f"Transformed {raw.source.value} record {raw.external_id}",
            extra={"pricing_source": draft.pricing_source, "total_amount": draft.total_amount}
        )
        return draft

    @staticmethod
    def _customer_name(raw: RawExternalRecord) -> str:
        name = raw.customer.full_name if raw.customer else None
        name = name.strip() if name else ""
        return name or NO_CUSTOMER

    @staticmethod
    def _status(financial_status: Optional[str]) -> OrderStatus:
        if (financial_status or "").strip().lower() == "refunded":
            return OrderStatus.CLOSED
        return OrderStatus.OPEN

    @staticmethod
    def _shipping_city(raw: RawExternalRecord) -> Optional[str]:
        if raw.shipping_address and raw.shipping_address.city:
            return raw.shipping_address.city
        if raw.billing_address and raw.billing_address.city:
            return raw.billing_address.city
        if raw.customer and raw.customer.last_name:
            return raw.customer.last_name
        return None

    @staticmethod
    def _shipping_country(raw: RawExternalRecord) -> Optional[str]:
        if raw.shipping_address and raw.shipping_address.country:
            return raw.shipping_address.country
        if raw.billing_address and raw.billing_address.country:
            return raw.billing_address.country
        return None
