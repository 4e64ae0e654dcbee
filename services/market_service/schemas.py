"""Pydantic schemas for market service."""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from services.market_service.models import (
    AuthenticityGrade,
    OfferCondition,
    OrderStatus,
    PaymentMode,
)

# ============================================================================
# ADDRESS SCHEMAS
# ============================================================================

ADDRESS_BLOB_KIND = "postal_address"
ADDRESS_BLOB_VERSION = 1


class Address(BaseModel):
    """
    Postal address snapshot.

    Unknown keys are kept and persisted under ``raw`` so newer clients can
    send fields this version does not model yet.
    """

    model_config = ConfigDict(extra="allow")

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    line1: str = Field(..., min_length=1, max_length=255)
    line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=3, max_length=12)
    country: str = Field("IN", max_length=2)
    phone: Optional[str] = Field(None, max_length=32)

    def to_blob(self) -> dict[str, Any]:
        raw = dict(self.model_extra or {})
        return {
            "kind": ADDRESS_BLOB_KIND,
            "version": ADDRESS_BLOB_VERSION,
            "fields": self.model_dump(exclude=set(raw)),
            "raw": raw,
        }

    @classmethod
    def from_blob(cls, blob: dict[str, Any]) -> "Address":
        if blob.get("kind") != ADDRESS_BLOB_KIND:
            # Untagged blobs are plain field maps
            return cls(**blob)
        return cls(**{**blob.get("raw", {}), **blob.get("fields", {})})


# ============================================================================
# CART SCHEMAS
# ============================================================================

MAX_LINE_QUANTITY = 100


class CartItemAdd(BaseModel):
    variant_id: uuid.UUID
    # Normalized server-side: fractions truncate, non-finite values become 0
    quantity: float = Field(1, le=MAX_LINE_QUANTITY)


class CartItemUpdate(BaseModel):
    quantity: float = Field(..., le=MAX_LINE_QUANTITY)


class CartLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    variant_id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    sku: str
    size_ml: Optional[int]
    quantity: int
    unit_price_paise: int
    line_total_paise: int
    is_purchasable: bool
    offer_id: Optional[uuid.UUID] = None
    seller_id: Optional[uuid.UUID] = None


class CartResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    guest_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    lines: list[CartLineResponse] = []
    item_count: int
    subtotal_paise: int


# ============================================================================
# CHECKOUT SCHEMAS
# ============================================================================


class ContactInfo(BaseModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=32)


class CheckoutRequest(BaseModel):
    billing_address: Address
    shipping_address: Optional[Address] = None  # Defaults to billing
    contact: ContactInfo = Field(default_factory=ContactInfo)
    notes: Optional[str] = Field(None, max_length=2000)
    payment_mode: PaymentMode = PaymentMode.PREPAID

    # Pricing inputs decided by the caller (pricing rules live elsewhere)
    tax_paise: int = Field(0, ge=0)
    shipping_paise: int = Field(0, ge=0)
    discount_paise: int = Field(0, ge=0)


class BuyNowRequest(CheckoutRequest):
    variant_id: uuid.UUID
    quantity: int = Field(1, ge=1, le=MAX_LINE_QUANTITY)


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    variant_id: uuid.UUID
    product_id: uuid.UUID
    offer_id: uuid.UUID
    seller_id: uuid.UUID
    product_name: str
    sku: str
    size_ml: Optional[int]
    quantity: int
    unit_price_paise: int
    line_total_paise: int


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    status: OrderStatus
    payment_mode: PaymentMode
    guest_email: Optional[str]
    contact_email: Optional[str]
    contact_phone: Optional[str]

    subtotal_paise: int
    tax_paise: int
    shipping_paise: int
    discount_paise: int
    total_paise: int
    currency: str

    billing_address: Address
    shipping_address: Address
    notes: Optional[str]
    payment_id: Optional[uuid.UUID]

    items: list[OrderItemResponse] = []
    created_at: datetime
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @field_validator("billing_address", "shipping_address", mode="before")
    @classmethod
    def unpack_address_blob(cls, value):
        if isinstance(value, dict):
            return Address.from_blob(value)
        return value


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    next_cursor: Optional[uuid.UUID] = None


# ============================================================================
# OFFER SCHEMAS
# ============================================================================


class OfferUpsertRequest(BaseModel):
    variant_id: uuid.UUID
    seller_location_id: uuid.UUID
    price_paise: int = Field(..., ge=0)
    shipping_paise: int = Field(0, ge=0)
    stock_qty: int = Field(..., ge=0)
    condition: OfferCondition = OfferCondition.NEW
    auth_grade: AuthenticityGrade = AuthenticityGrade.SEALED
    is_active: Optional[bool] = None  # Defaults to stock_qty > 0
    expires_at: Optional[datetime] = None
    expected_version: Optional[int] = Field(None, ge=1)


class OfferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    seller_id: uuid.UUID
    seller_location_id: uuid.UUID
    variant_id: uuid.UUID
    price_paise: int
    shipping_paise: int
    effective_price_paise: int
    stock_qty: int
    condition: OfferCondition
    auth_grade: AuthenticityGrade
    is_active: bool
    expires_at: Optional[datetime]
    version: int
    created_at: datetime
    updated_at: datetime


class LiveOfferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    variant_id: uuid.UUID
    offer_id: uuid.UUID
    seller_id: uuid.UUID
    seller_location_id: uuid.UUID
    price_paise: int
    shipping_paise: int
    effective_price_paise: int
    stock_qty_snapshot: int
    condition: OfferCondition
    auth_grade: AuthenticityGrade
    computed_at: datetime
