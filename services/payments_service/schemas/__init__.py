"""Payments Service schemas package."""

from services.payments_service.schemas.main import (
    ConfirmPaymentRequest,
    CreateSessionRequest,
    PaymentConfirmationResponse,
    PaymentCustomer,
    PaymentSessionResponse,
    WebhookAck,
)

__all__ = [
    "ConfirmPaymentRequest",
    "CreateSessionRequest",
    "PaymentConfirmationResponse",
    "PaymentCustomer",
    "PaymentSessionResponse",
    "WebhookAck",
]
