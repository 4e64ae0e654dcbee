"""Payments Service models package."""

from services.payments_service.models.core import Payment, PaymentEvent
from services.payments_service.models.enums import PaymentProvider, PaymentStatus

__all__ = [
    "Payment",
    "PaymentEvent",
    "PaymentProvider",
    "PaymentStatus",
]
