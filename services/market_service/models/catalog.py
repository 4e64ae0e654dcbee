"""Catalog and seller models read by the settlement core."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.market_service.models.enums import SellerLocationStatus, enum_values
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


class Product(Base):
    __tablename__ = "market_products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    brand_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    variants: Mapped[list["ProductVariant"]] = relationship(
        "ProductVariant", back_populates="product"
    )

    def __repr__(self):
        return f"<Product {self.slug}>"


class ProductVariant(Base):
    """A purchasable size/SKU of a product. Prices are in paise."""

    __tablename__ = "market_product_variants"
    __table_args__ = (
        CheckConstraint("mrp_paise >= 0", name="ck_variant_mrp_non_negative"),
        CheckConstraint(
            "sale_paise IS NULL OR sale_paise >= 0",
            name="ck_variant_sale_non_negative",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_products.id", ondelete="CASCADE"), index=True
    )
    sku: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    size_ml: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    mrp_paise: Mapped[int] = mapped_column(Integer)
    sale_paise: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    product: Mapped["Product"] = relationship("Product", back_populates="variants")

    @property
    def list_price_paise(self) -> int:
        """Sale price when set, else MRP."""
        return self.sale_paise if self.sale_paise is not None else self.mrp_paise

    def __repr__(self):
        return f"<ProductVariant {self.sku}>"


class Seller(Base):
    __tablename__ = "market_sellers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    display_name: Mapped[str] = mapped_column(String(255))
    # Auth subject of the account that manages this seller
    owner_auth_id: Mapped[Optional[str]] = mapped_column(
        String(255), index=True, nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    locations: Mapped[list["SellerLocation"]] = relationship(
        "SellerLocation", back_populates="seller"
    )


class SellerLocation(Base):
    """A warehouse or store a seller ships from."""

    __tablename__ = "market_seller_locations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("market_sellers.id", ondelete="CASCADE"), index=True
    )
    label: Mapped[str] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pincode: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[SellerLocationStatus] = mapped_column(
        SAEnum(
            SellerLocationStatus,
            values_callable=enum_values,
            name="market_seller_location_status_enum",
        ),
        default=SellerLocationStatus.ACTIVE,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    seller: Mapped["Seller"] = relationship("Seller", back_populates="locations")
