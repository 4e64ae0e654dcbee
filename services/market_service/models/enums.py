"""Enum definitions for market service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class OfferCondition(str, enum.Enum):
    NEW = "new"
    OPEN_BOX = "open_box"
    TESTER = "tester"


class AuthenticityGrade(str, enum.Enum):
    SEALED = "sealed"
    STORE_BILL = "store_bill"
    VERIFIED_UNKNOWN = "verified_unknown"


class SellerLocationStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class StockMovementType(str, enum.Enum):
    SALE = "sale"
    RESTOCK = "restock"
    ADJUSTMENT = "adjustment"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMode(str, enum.Enum):
    PREPAID = "prepaid"
    COD = "cod"


class ShipmentStatus(str, enum.Enum):
    CREATED = "created"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    RETURNED = "returned"
