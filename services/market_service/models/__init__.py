"""Market Service models package."""

from services.market_service.models.catalog import (
    Product,
    ProductVariant,
    Seller,
    SellerLocation,
)
from services.market_service.models.commerce import (
    Cart,
    CartItem,
    Order,
    OrderItem,
    Shipment,
)
from services.market_service.models.enums import (
    AuthenticityGrade,
    OfferCondition,
    OrderStatus,
    PaymentMode,
    SellerLocationStatus,
    ShipmentStatus,
    StockMovementType,
)
from services.market_service.models.offers import LiveOffer, Offer, OfferStockMovement

__all__ = [
    "AuthenticityGrade",
    "Cart",
    "CartItem",
    "LiveOffer",
    "Offer",
    "OfferCondition",
    "OfferStockMovement",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentMode",
    "Product",
    "ProductVariant",
    "Seller",
    "SellerLocation",
    "SellerLocationStatus",
    "Shipment",
    "ShipmentStatus",
    "StockMovementType",
]
