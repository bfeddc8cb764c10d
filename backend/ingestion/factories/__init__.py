"""
Order Transformer Factory Module
"""

from .order_transformer import RecordTransformer

__all__ = ["RecordTransformer"]
