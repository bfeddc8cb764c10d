from .orders import router as orders_router
from .pending_orders import router as pending_orders_router
from .shopify import router as shopify_router
from .shopify_stores import router as shopify_stores_router
from .webhooks import router as webhooks_router
from .mercury import router as mercury_router, payouts_router
from .exchange_rate import router as exchange_rate_router

__all__ = [
    'orders_router',
    'pending_orders_router',
    'shopify_router',
    'shopify_stores_router',
    'webhooks_router',
    'mercury_router',
    'payouts_router',
    'exchange_rate_router',
]
