"""Market commerce models: carts, orders, shipments."""

import secrets
import string
import uuid
from datetime import datetime
from typing import Any, Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.types import JSONType
from services.market_service.models.enums import (
    OrderStatus,
    PaymentMode,
    ShipmentStatus,
    enum_values,
)
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# CART MODELS
# ============================================================================


class Cart(Base):
    """
    Shopping cart owned by either a user or a guest token.

    Guest carts carry a rolling ``expires_at``; claimed/user carts have none.
    """

    __tablename__ = "market_carts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, index=True, nullable=True
    )
    guest_token: Mapped[Optional[str]] = mapped_column(
        String(64), unique=True, index=True, nullable=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    items: Mapped[list["CartItem"]] = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    def __repr__(self):
        return f"<Cart {self.id} user={self.user_id} guest={self.guest_token}>"


class CartItem(Base):
    __tablename__ = "market_cart_items"
    __table_args__ = (
        UniqueConstraint("cart_id", "variant_id", name="uq_cart_item_variant"),
        CheckConstraint("quantity >= 1", name="ck_cart_item_quantity_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    cart_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_carts.id", ondelete="CASCADE"), index=True
    )
    variant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_product_variants.id", ondelete="CASCADE")
    )
    quantity: Mapped[int] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    cart = relationship("Cart", back_populates="items")
    variant = relationship("ProductVariant")


# ============================================================================
# ORDER MODELS
# ============================================================================


class Order(Base):
    """
    Settled order. Amounts are paise.

    Everything except ``status``, ``payment_id`` and the status timestamps is
    frozen at checkout. Addresses are stored as tagged blobs, not references.
    """

    __tablename__ = "market_orders"
    __table_args__ = (
        CheckConstraint("total_paise >= 0", name="ck_order_total_non_negative"),
        Index("ix_market_orders_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)

    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    guest_email: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="market_order_status_enum",
        ),
        default=OrderStatus.PENDING,
    )
    payment_mode: Mapped[PaymentMode] = mapped_column(
        SAEnum(
            PaymentMode,
            values_callable=enum_values,
            name="market_payment_mode_enum",
        ),
        default=PaymentMode.PREPAID,
    )

    subtotal_paise: Mapped[int] = mapped_column(Integer)
    tax_paise: Mapped[int] = mapped_column(Integer, default=0)
    shipping_paise: Mapped[int] = mapped_column(Integer, default=0)
    discount_paise: Mapped[int] = mapped_column(Integer, default=0)
    total_paise: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="INR")

    billing_address: Mapped[dict[str, Any]] = mapped_column(JSONType)
    shipping_address: Mapped[dict[str, Any]] = mapped_column(JSONType)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # payments.id, owned by the payments service
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan"
    )
    shipments: Mapped[list["Shipment"]] = relationship(
        "Shipment", back_populates="order"
    )

    @staticmethod
    def generate_order_number() -> str:
        """Generate a unique order number like PM-20260104-A1B2C3."""
        date_part = utc_now().strftime("%Y%m%d")
        alphabet = string.ascii_uppercase + string.digits
        random_part = "".join(secrets.choice(alphabet) for _ in range(6))
        return f"PM-{date_part}-{random_part}"

    def __repr__(self):
        return f"<Order {self.order_number} {self.status.value}>"


class OrderItem(Base):
    """Order line items (snapshot at order time)."""

    __tablename__ = "market_order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_orders.id", ondelete="CASCADE"), index=True
    )
    variant_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    offer_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    seller_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    seller_location_id: Mapped[uuid.UUID] = mapped_column(Uuid)

    # Snapshot at order time (products and offers may change)
    product_name: Mapped[str] = mapped_column(String(255))
    sku: Mapped[str] = mapped_column(String(100))
    size_ml: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    quantity: Mapped[int] = mapped_column(Integer)
    unit_price_paise: Mapped[int] = mapped_column(Integer)
    line_total_paise: Mapped[int] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.sku} qty={self.quantity}>"


class Shipment(Base):
    """Carrier handover of an order. Its existence blocks cancellation."""

    __tablename__ = "market_shipments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_orders.id", ondelete="CASCADE"), index=True
    )
    carrier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[ShipmentStatus] = mapped_column(
        SAEnum(
            ShipmentStatus,
            values_callable=enum_values,
            name="market_shipment_status_enum",
        ),
        default=ShipmentStatus.CREATED,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    order = relationship("Order", back_populates="shipments")
