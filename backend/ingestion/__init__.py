"""
Order Ingestion Module

Transforms storefront orders and bank transactions into canonical orders,
deduplicates them by external id and manages the staging queue.
"""

from .errors import (
    OrderEngineError,
    RateUnavailable,
    SourceUnreachable,
    UnmatchedProducts,
    DuplicateExternalId,
    RecordTransformFailure,
    SequencerContention,
    StagedRecordNotFound,
    StoreNotFound,
)

__all__ = [
    "OrderEngineError",
    "RateUnavailable",
    "SourceUnreachable",
    "UnmatchedProducts",
    "DuplicateExternalId",
    "RecordTransformFailure",
    "SequencerContention",
    "StagedRecordNotFound",
    "StoreNotFound",
]
