"""Business error taxonomy shared by every service.

Services raise these; the FastAPI exception handlers in
``libs.common.error_handler`` turn them into JSON responses with a stable
machine-checkable ``kind``. Anything that is not a ``DomainError`` is treated
as an infrastructure failure and surfaces as an opaque 500.
"""

from typing import Any, Optional


class DomainError(Exception):
    kind = "domain_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class NotFoundError(DomainError):
    """Absent resource, or one the caller may not see."""

    kind = "not_found"
    status_code = 404


class ConflictError(DomainError):
    kind = "conflict"
    status_code = 409


class InvalidStateError(DomainError):
    kind = "invalid_state"
    status_code = 400


class AuthenticationRequiredError(DomainError):
    kind = "authentication_required"
    status_code = 401


class InsufficientStockError(DomainError):
    """Stock was not available when the order was settled.

    Always retryable from the shopper's point of view: refetch the cart and
    try again.
    """

    kind = "insufficient_stock"
    status_code = 409

    def __init__(
        self,
        message: str = "Insufficient stock. Refresh your cart and try again.",
        *,
        variant_id: Any = None,
        requested: Optional[int] = None,
    ):
        details: dict[str, Any] = {"retryable": True, "action": "refetch_cart"}
        if variant_id is not None:
            details["variant_id"] = str(variant_id)
        if requested is not None:
            details["requested"] = requested
        super().__init__(message, details)


class PaymentVerificationFailedError(DomainError):
    kind = "payment_verification_failed"
    status_code = 400


class UpstreamUnavailableError(DomainError):
    kind = "upstream_unavailable"
    status_code = 502
