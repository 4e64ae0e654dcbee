"""Payment records for marketplace orders and their gateway event log."""

import uuid
from datetime import datetime
from typing import Any, Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.types import JSONType
from services.payments_service.models.enums import (
    PaymentProvider,
    PaymentStatus,
    enum_values,
)
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

provider_enum = SAEnum(
    PaymentProvider, values_callable=enum_values, name="payment_provider_enum"
)


class Payment(Base):
    """
    One payment per order. ``amount_paise`` is the amount the gateway must
    report back for the payment to be accepted.
    """

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount_paise > 0", name="ck_payment_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_orders.id", ondelete="RESTRICT"), unique=True, index=True
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    provider: Mapped[PaymentProvider] = mapped_column(
        provider_enum, default=PaymentProvider.RAZORPAY
    )
    provider_order_id: Mapped[Optional[str]] = mapped_column(
        String(64), unique=True, nullable=True
    )
    provider_payment_id: Mapped[Optional[str]] = mapped_column(
        String(64), unique=True, nullable=True
    )

    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            values_callable=enum_values,
            name="payment_status_enum",
        ),
        default=PaymentStatus.PENDING,
    )
    method: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    amount_paise: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="INR")
    # Gateway-side capture time
    transaction_ts: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    events: Mapped[list["PaymentEvent"]] = relationship(
        "PaymentEvent",
        back_populates="payment",
        order_by="PaymentEvent.created_at",
    )

    def __repr__(self):
        return f"<Payment {self.id} order={self.order_id} {self.status.value}>"


class PaymentEvent(Base):
    """Append-only log of raw gateway payloads. ``event_id`` is unique."""

    __tablename__ = "payment_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("payments.id", ondelete="CASCADE"), index=True
    )
    provider: Mapped[PaymentProvider] = mapped_column(
        provider_enum, default=PaymentProvider.RAZORPAY
    )
    event_id: Mapped[str] = mapped_column(String(128), unique=True)
    event_type: Mapped[str] = mapped_column(String(64))
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    payment = relationship("Payment", back_populates="events")
