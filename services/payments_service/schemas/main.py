"""Pydantic schemas for payments service."""

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from services.market_service.models import OrderStatus
from services.payments_service.models import PaymentStatus


class PaymentCustomer(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    contact: Optional[str] = None


class CreateSessionRequest(BaseModel):
    # Guests prove access with the email used at checkout
    email: Optional[EmailStr] = None


class PaymentSessionResponse(BaseModel):
    """Everything the Razorpay checkout widget needs."""

    model_config = ConfigDict(from_attributes=True)

    order_id: uuid.UUID
    payment_id: uuid.UUID
    amount_paise: int
    currency: str
    razorpay_order_id: str
    razorpay_key_id: str
    receipt: str
    customer: PaymentCustomer


class ConfirmPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1, max_length=64)
    razorpay_payment_id: str = Field(..., min_length=1, max_length=64)
    razorpay_signature: str = Field(..., min_length=1, max_length=256)
    email: Optional[EmailStr] = None


class PaymentConfirmationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: uuid.UUID
    payment_id: Optional[str]
    status: PaymentStatus
    method: Optional[str]
    amount_paise: int
    order_status: OrderStatus


class WebhookAck(BaseModel):
    status: str
    kind: Optional[str] = None
    payment_status: Optional[str] = None
