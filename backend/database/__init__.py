from .connection import get_db, get_engine, get_sessionmaker, init_db, Base

from .order_models import (
    VenueDB, ShopifyStoreDB, ProductDB, OrderDB, OrderLineItemDB,
    ImportQueueDB, PayoutDB, OrderNumberCounterDB,
    OrderSource, OrderStatus, PricingSource,
)

__all__ = [
    'get_db', 'get_engine', 'get_sessionmaker', 'init_db', 'Base',
    'VenueDB', 'ShopifyStoreDB', 'ProductDB', 'OrderDB', 'OrderLineItemDB',
    'ImportQueueDB', 'PayoutDB', 'OrderNumberCounterDB',
    'OrderSource', 'OrderStatus', 'PricingSource',
]
