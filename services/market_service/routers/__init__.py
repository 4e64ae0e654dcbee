"""Market service routers package."""

from services.market_service.routers.cart import router as cart_router
from services.market_service.routers.checkout import router as checkout_router
from services.market_service.routers.offers import router as offers_router
from services.market_service.routers.orders import router as orders_router

__all__ = [
    "cart_router",
    "checkout_router",
    "offers_router",
    "orders_router",
]
