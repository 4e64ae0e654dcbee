"""Seller offers, the derived live-offer cache, and the stock movement log."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.market_service.models.enums import (
    AuthenticityGrade,
    OfferCondition,
    StockMovementType,
    enum_values,
)
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

condition_enum = SAEnum(
    OfferCondition, values_callable=enum_values, name="market_offer_condition_enum"
)
auth_grade_enum = SAEnum(
    AuthenticityGrade, values_callable=enum_values, name="market_auth_grade_enum"
)


class Offer(Base):
    """
    A seller's listing of one variant from one location.

    ``stock_qty`` is the authoritative sellable quantity and only changes
    through guarded updates in ``services.inventory``. ``version`` is bumped on
    every write so sellers can update conditionally.
    """

    __tablename__ = "market_offers"
    __table_args__ = (
        UniqueConstraint(
            "seller_id",
            "seller_location_id",
            "variant_id",
            name="uq_offer_seller_location_variant",
        ),
        CheckConstraint("stock_qty >= 0", name="ck_offer_stock_non_negative"),
        CheckConstraint("price_paise >= 0", name="ck_offer_price_non_negative"),
        CheckConstraint("shipping_paise >= 0", name="ck_offer_shipping_non_negative"),
        Index("ix_offer_variant_ranking", "variant_id", "is_active", "effective_price_paise"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_sellers.id", ondelete="CASCADE"), index=True
    )
    seller_location_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_seller_locations.id", ondelete="CASCADE"), index=True
    )
    variant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_product_variants.id", ondelete="CASCADE"), index=True
    )

    price_paise: Mapped[int] = mapped_column(Integer)
    shipping_paise: Mapped[int] = mapped_column(Integer, default=0)
    # price + shipping, stored so ranking happens in SQL
    effective_price_paise: Mapped[int] = mapped_column(Integer)
    stock_qty: Mapped[int] = mapped_column(Integer, default=0)

    condition: Mapped[OfferCondition] = mapped_column(condition_enum)
    auth_grade: Mapped[AuthenticityGrade] = mapped_column(auth_grade_enum)
    cond_rank: Mapped[int] = mapped_column(Integer)
    auth_rank: Mapped[int] = mapped_column(Integer)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<Offer {self.id} variant={self.variant_id} stock={self.stock_qty}>"


class LiveOffer(Base):
    """
    Denormalized pointer to the currently winning offer of a variant.

    Not authoritative: rebuilt by ``recompute_live_offer`` whenever an offer of
    the variant changes. A missing row means the variant is not purchasable.
    """

    __tablename__ = "market_live_offers"

    variant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_product_variants.id", ondelete="CASCADE"), primary_key=True
    )
    offer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_offers.id", ondelete="CASCADE"), index=True
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    seller_location_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    price_paise: Mapped[int] = mapped_column(Integer)
    shipping_paise: Mapped[int] = mapped_column(Integer)
    effective_price_paise: Mapped[int] = mapped_column(Integer)
    stock_qty_snapshot: Mapped[int] = mapped_column(Integer)
    condition: Mapped[OfferCondition] = mapped_column(condition_enum)
    auth_grade: Mapped[AuthenticityGrade] = mapped_column(auth_grade_enum)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    offer: Mapped["Offer"] = relationship("Offer")


class OfferStockMovement(Base):
    """Append-only log of every stock change on an offer."""

    __tablename__ = "market_offer_stock_movements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    offer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_offers.id", ondelete="CASCADE"), index=True
    )
    variant_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    movement_type: Mapped[StockMovementType] = mapped_column(
        SAEnum(
            StockMovementType,
            values_callable=enum_values,
            name="market_stock_movement_type_enum",
        )
    )
    # Signed: negative for sales, positive for restocks
    quantity: Mapped[int] = mapped_column(Integer)
    reference_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
