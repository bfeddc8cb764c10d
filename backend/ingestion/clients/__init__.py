"""
External source clients (storefront orders, bank transactions).
"""

from .shopify_client import ShopifyClient
from .mercury_client import MercuryClient

__all__ = ["ShopifyClient", "MercuryClient"]
