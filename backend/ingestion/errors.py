"""
Ingestion engine exceptions.

Single-record operations let these propagate to the caller; batch
operations catch them per record and report them in the batch result.
"""

from typing import List, Optional


class OrderEngineError(Exception):
    """Base class for ingestion and reconciliation errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RateUnavailable(OrderEngineError):
    """No exchange rate could be fetched and no usable cached value exists."""

    def __init__(self, base: str, quote: str, reason: Optional[str] = None):
        self.base = base
        self.quote = quote
        message = f"Exchange rate {base}->{quote} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SourceUnreachable(OrderEngineError):
    """A storefront or bank API call failed or timed out."""

    def __init__(self, source: str, reason: str, status_code: Optional[int] = None):
        self.source = source
        self.status_code = status_code
        super().__init__(f"{source} request failed: {reason}")


class UnmatchedProducts(OrderEngineError):
    """One or more line items could not be priced from the venue catalog."""

    def __init__(self, items: List[str], venue_id: Optional[int] = None):
        self.items = list(items)
        self.venue_id = venue_id
        if self.items:
            message = f"Unmatched products: {', '.join(self.items)}"
        else:
            message = "No line items to match"
        super().__init__(message)


class DuplicateExternalId(OrderEngineError):
    """An order with this external id already exists (unique key violation)."""

    def __init__(self, external_id: str):
        self.external_id = external_id
        super().__init__(f"Order with external id {external_id} already exists")


class RecordTransformFailure(OrderEngineError):
    """A single record in a batch failed to transform or persist."""

    def __init__(self, record_id: str, reason: str):
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Record {record_id} failed: {reason}")


class SequencerContention(OrderEngineError):
    """The order-number lock could not be acquired in time."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not acquire order-number lock after {attempts} attempt(s)")


class StagedRecordNotFound(OrderEngineError):
    def __init__(self, ids: List[int]):
        self.ids = list(ids)
        super().__init__(f"No staged records found for ids {self.ids}")


class StoreNotFound(OrderEngineError):
    def __init__(self, store_ref: str):
        self.store_ref = store_ref
        super().__init__(f"Store not found: {store_ref}")


class VenueNotFound(OrderEngineError):
    def __init__(self, venue_id: int):
        self.venue_id = venue_id
        super().__init__(f"Venue not found: {venue_id}")


class StoreAlreadyRegistered(OrderEngineError):
    def __init__(self, store_domain: str):
        self.store_domain = store_domain
        super().__init__(f"Store with domain {store_domain} already exists")
