"""
Unified Order Schema

Canonical models for everything that flows through the ingestion engine:
- Raw external records (storefront orders, bank transactions)
- Canonical order drafts produced by the transformer
- Stored orders and staged (queued) records read back from the datastore
- Service result types for upserts, batches and approvals

Raw records are immutable. Tags are a list everywhere in this module;
the comma-joined storage form belongs to the repository only.
"""

from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any, Union

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from database.order_models import OrderSource, OrderStatus, PricingSource
from utils.money import fee_inclusive_total

NO_CUSTOMER = "No Customer"


# ==================== ENUMS ====================

class UpsertAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


class WebhookDisposition(str, Enum):
    QUEUED = "Order queued for import"
    ALREADY_IMPORTED = "Order already imported"
    UNKNOWN_STORE = "Store not found"


# ==================== TAGS ====================

def normalise_tags(tags: Union[str, List[Any], None]) -> List[str]:
    """Split a comma-delimited string (or clean a list) into trimmed, non-empty tags."""
    if not tags:
        return []

    if isinstance(tags, str):
        return [tag.strip() for tag in tags.split(",") if tag.strip()]

    cleaned = []
    for tag in tags:
        if isinstance(tag, (str, int, float)) and not isinstance(tag, bool):
            text = str(tag).strip()
            if text:
                cleaned.append(text)
    return cleaned


def title_case(value: Optional[str]) -> Optional[str]:
    """partially_refunded -> Partially Refunded"""
    if not value:
        return None
    words = value.replace("_", " ").split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


# ==================== RAW EXTERNAL RECORDS ====================

class RawLineItem(BaseModel):
    """A line item as the source system reports it."""
    model_config = ConfigDict(frozen=True)

    product_name: str
    quantity: int = 1
    sku: Optional[str] = None
    external_product_id: Optional[str] = Field(
        default=None,
        description="Variant id when the source has one, else product id"
    )
    unit_price: float = 0.0

    @field_validator("quantity", mode="before")
    @classmethod
    def at_least_one(cls, value: Any) -> int:
        # Sources send 0 or null for unit-less items; they count once
        return max(int(value or 0), 1)

    def describe(self) -> str:
        parts = [self.product_name]
        if self.sku:
            parts.append(f"sku={self.sku}")
        if self.external_product_id:
            parts.append(f"id={self.external_product_id}")
        return " ".join(parts)


class RawParty(BaseModel):
    model_config = ConfigDict(frozen=True)

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def full_name(self) -> Optional[str]:
        joined = " ".join(part for part in (self.first_name, self.last_name) if part)
        return joined or self.display_name or None


class RawAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    city: Optional[str] = None
    country: Optional[str] = None


class RawExternalRecord(BaseModel):
    """
    Immutable payload from a storefront (order) or bank (transaction).

    ``total`` is in the record's own currency. Tags are kept as the source
    sent them; the transformer normalises them.
    """
    model_config = ConfigDict(frozen=True)

    external_id: str
    source: OrderSource
    order_name: Optional[str] = None
    total: float
    currency: str = "USD"
    processed_at: Optional[datetime] = None
    customer: Optional[RawParty] = None
    shipping_address: Optional[RawAddress] = None
    billing_address: Optional[RawAddress] = None
    tags: Union[str, List[str], None] = None
    notes: Optional[str] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    line_items: List[RawLineItem] = Field(default_factory=list)

    @classmethod
    def from_shopify(cls, payload: Dict[str, Any]) -> "RawExternalRecord":
        """Build from a storefront order JSON object."""
        customer = payload.get("customer")
        line_items = []
        for item in payload.get("line_items") or []:
            variant_id = item.get("variant_id")
            product_id = item.get("product_id")
            external_product_id = variant_id if variant_id else product_id
            line_items.append(RawLineItem(
                product_name=item.get("name") or item.get("title") or "",
                quantity=item.get("quantity"),
                sku=item.get("sku") or None,
                external_product_id=str(external_product_id) if external_product_id else None,
                unit_price=float(item.get("price") or 0),
            ))

        order_name = payload.get("name")
        if not order_name and payload.get("order_number") is not None:
            order_name = f"#{payload['order_number']}"

        total = payload.get("current_total_price")
        if total is None:
            total = payload.get("total_price", 0)

        return cls(
            external_id=str(payload["id"]),
            source=OrderSource.SHOPIFY,
            order_name=order_name,
            total=float(total or 0),
            currency=payload.get("currency") or "USD",
            processed_at=payload.get("processed_at") or payload.get("created_at"),
            customer=RawParty(
                first_name=customer.get("first_name"),
                last_name=customer.get("last_name"),
            ) if customer else None,
            shipping_address=RawAddress(**_address(payload.get("shipping_address"))),
            billing_address=RawAddress(**_address(payload.get("billing_address"))),
            tags=payload.get("tags"),
            notes=payload.get("note"),
            financial_status=payload.get("financial_status"),
            fulfillment_status=payload.get("fulfillment_status"),
            line_items=line_items,
        )

    @classmethod
    def from_mercury(cls, payload: Dict[str, Any]) -> "RawExternalRecord":
        """Build from a bank transaction JSON object (credits become orders)."""
        counterparty = payload.get("counterparty") or {}
        name = counterparty.get("name") or payload.get("counterpartyName")
        return cls(
            external_id=str(payload["id"]),
            source=OrderSource.MERCURY,
            total=abs(float(payload.get("amount") or 0)),
            currency=payload.get("currency") or "USD",
            processed_at=payload.get("postedAt") or payload.get("createdAt"),
            customer=RawParty(display_name=name) if name else None,
            notes=payload.get("memo") or payload.get("note"),
            financial_status="paid",
        )

    @classmethod
    def from_payload(cls, source: Union[OrderSource, str], payload: Dict[str, Any]) -> "RawExternalRecord":
        if OrderSource(source) == OrderSource.MERCURY:
            return cls.from_mercury(payload)
        return cls.from_shopify(payload)


def _address(value: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not value:
        return {}
    return {"city": value.get("city"), "country": value.get("country")}


# ==================== CATALOG ====================

class CatalogProduct(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str
    sku: Optional[str] = None
    external_id: Optional[str] = None
    price: float
    active: bool = True


# ==================== CANONICAL ORDERS ====================

class LineItemDraft(BaseModel):
    product_name: str
    quantity: int = Field(..., ge=1)
    sku: Optional[str] = None
    price: float
    total: float


class OrderFields(BaseModel):
    """Fields shared by drafts and stored orders."""
    model_config = ConfigDict(use_enum_values=True)

    external_id: Optional[str] = None
    order_number: Optional[str] = None
    shopify_order_number: Optional[str] = None
    customer_name: str = NO_CUSTOMER
    venue_id: Optional[int] = None
    status: OrderStatus = OrderStatus.OPEN
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    total_amount: float
    original_amount: Optional[float] = None
    exchange_rate: Optional[float] = None
    currency: str = "USD"
    processed_at: datetime
    shipping_city: Optional[str] = None
    shipping_country: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    source: OrderSource = OrderSource.MANUAL
    store_id: Optional[int] = None
    pricing_source: Optional[PricingSource] = None
    line_items: List[LineItemDraft] = Field(default_factory=list)


class CanonicalOrderDraft(OrderFields):
    """
    An order ready to be created or to replace an existing one.

    ``venue_id`` set here is an explicit assignment; left as None, an
    update keeps the stored venue and a create takes it from the upsert
    context.
    """
    unmatched_items: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_amounts(self) -> "CanonicalOrderDraft":
        if self.original_amount is not None and self.exchange_rate is not None and self.exchange_rate > 0:
            expected = fee_inclusive_total(self.original_amount, self.exchange_rate)
            if abs(expected - self.total_amount) > 0.005:
                raise ValueError(
                    f"total_amount {self.total_amount} does not match "
                    f"original_amount {self.original_amount} at rate {self.exchange_rate} (expected {expected})"
                )
        return self

    @property
    def used_fallback_pricing(self) -> bool:
        return self.pricing_source == PricingSource.FALLBACK.value


class StoredOrder(OrderFields):
    id: int
    order_number: str
    venue_id: int
    created_by_id: Optional[int] = None


# ==================== STAGING QUEUE ====================

class StagedRecord(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: int
    external_id: str
    store_domain: Optional[str] = None
    source: OrderSource = OrderSource.SHOPIFY
    order_number: Optional[str] = None
    total_amount: float
    currency: str
    financial_status: Optional[str] = None
    payload: Dict[str, Any]
    created_at: Optional[datetime] = None

    def to_raw_record(self) -> RawExternalRecord:
        return RawExternalRecord.from_payload(self.source, self.payload)


class NewStagedRecord(BaseModel):
    """A raw payload about to be queued, with its denormalised filter fields."""
    model_config = ConfigDict(use_enum_values=True)

    external_id: str
    store_domain: Optional[str] = None
    source: OrderSource = OrderSource.SHOPIFY
    order_number: Optional[str] = None
    total_amount: float
    currency: str
    financial_status: Optional[str] = None
    payload: Dict[str, Any]

    @classmethod
    def from_payload(
        cls,
        source: OrderSource,
        payload: Dict[str, Any],
        store_domain: Optional[str] = None
    ) -> "NewStagedRecord":
        raw = RawExternalRecord.from_payload(source, payload)
        return cls(
            external_id=raw.external_id,
            store_domain=store_domain,
            source=source,
            order_number=raw.order_name,
            total_amount=raw.total,
            currency=raw.currency,
            financial_status=raw.financial_status,
            payload=payload,
        )


class StagedFilter(BaseModel):
    amount: Optional[float] = None
    currency: Optional[str] = None


# ==================== SERVICE RESULTS ====================

@dataclass
class AmountBreakdown:
    """Output of the amount calculator."""
    original_amount: Optional[float]
    base_amount: Optional[float]
    total_amount: float
    pricing_source: PricingSource
    unmatched_items: List[str] = field(default_factory=list)


@dataclass
class UpsertContext:
    """Who/where a created order belongs to when the draft does not say."""
    venue_id: Optional[int] = None
    created_by_id: Optional[int] = None
    store_id: Optional[int] = None


@dataclass
class UpsertOutcome:
    order_id: int
    order_number: str
    external_id: Optional[str]
    action: UpsertAction


@dataclass
class FailedRecord:
    id: str
    reason: str


@dataclass
class BatchResult:
    """Result of a multi-record import: failures never abort siblings."""
    succeeded: int = 0
    created: int = 0
    updated: int = 0
    failed: List[FailedRecord] = field(default_factory=list)
    fallback_priced: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + len(self.failed)

    def record_success(self, outcome: UpsertOutcome):
        self.succeeded += 1
        if outcome.action == UpsertAction.CREATED:
            self.created += 1
        else:
            self.updated += 1

    def record_failure(self, record_id: str, reason: str):
        self.failed.append(FailedRecord(id=record_id, reason=reason))


@dataclass
class ApprovalResult:
    imported_count: int
    imported_ids: List[int] = field(default_factory=list)
    errors: List[FailedRecord] = field(default_factory=list)
    fallback_priced: List[str] = field(default_factory=list)
