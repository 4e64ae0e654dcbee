"""
Razorpay API client for orders and payments.

Provides async methods for:
- Creating gateway orders (the object a checkout widget pays against)
- Fetching a payment by id
- Listing the payments made against a gateway order

plus the HMAC helpers used to authenticate checkout callbacks and webhooks.
Amounts are always integer paise.
"""

import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.errors import UpstreamUnavailableError
from libs.common.logging import get_logger
from services.payments_service.models import PaymentStatus

logger = get_logger(__name__)

settings = get_settings()

GATEWAY_STATUS_MAP = {
    "captured": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
    "partial_refunded": PaymentStatus.PARTIAL_REFUND,
    "partially_refunded": PaymentStatus.PARTIAL_REFUND,
}


@dataclass
class GatewayOrder:
    """Razorpay order object."""

    id: str
    amount: int
    currency: str
    receipt: Optional[str]
    status: str
    raw: dict = field(default_factory=dict, repr=False)


@dataclass
class GatewayPayment:
    """Razorpay payment object."""

    id: str
    order_id: Optional[str]
    amount: int
    currency: str
    status: str
    method: Optional[str]
    created_at: Optional[int]  # unix seconds
    raw: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: dict) -> "GatewayPayment":
        return cls(
            id=data["id"],
            order_id=data.get("order_id"),
            amount=int(data.get("amount") or 0),
            currency=data.get("currency") or "INR",
            status=str(data.get("status") or ""),
            method=data.get("method"),
            created_at=data.get("created_at"),
            raw=data,
        )


class RazorpayError(UpstreamUnavailableError):
    """Razorpay could not be reached or refused the request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        self.status_code = status_code
        self.response_data = response_data or {}
        details = {"gateway": "razorpay"}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


def map_gateway_status(status: Optional[str]) -> PaymentStatus:
    """captured/failed/refunded map directly; anything unknown stays pending."""
    return GATEWAY_STATUS_MAP.get(str(status or "").lower(), PaymentStatus.PENDING)


def payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(
    order_id: str, payment_id: str, signature: Optional[str], secret: str
) -> bool:
    """Check the checkout callback signature over ``order_id|payment_id``."""
    if not signature or not secret:
        return False
    expected = payment_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature)


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check ``X-Razorpay-Signature``: HMAC-SHA256 of the raw body."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


class RazorpayClient:
    """Async client for the Razorpay Orders and Payments APIs."""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        if not self.key_id or not self.key_secret:
            raise ValueError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET are required")
        self.base_url = (base_url or settings.RAZORPAY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.RAZORPAY_TIMEOUT_SECONDS
        self._transport = transport

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
    ) -> dict:
        """Make an async request to the Razorpay API."""
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                auth=(self.key_id, self.key_secret),
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method=method, url=url, params=params, json=json_data
                )
        except httpx.TimeoutException as exc:
            logger.error("Razorpay %s %s timed out", method, endpoint)
            raise RazorpayError("Payment gateway timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Razorpay %s %s failed: %s", method, endpoint, exc)
            raise RazorpayError("Payment gateway unavailable") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            error = data.get("error") or {}
            logger.error(
                "Razorpay API error: %s - %s", response.status_code, error or response.text
            )
            raise RazorpayError(
                error.get("description") or "Payment gateway request failed",
                status_code=response.status_code,
                response_data=data,
            )
        return data

    # =========================================================================
    # Orders
    # =========================================================================

    async def create_order(
        self,
        *,
        amount_paise: int,
        currency: str,
        receipt: str,
        notes: Optional[dict[str, Any]] = None,
    ) -> GatewayOrder:
        data = await self._request(
            "POST",
            "/orders",
            json_data={
                "amount": amount_paise,
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
                "payment_capture": 1,
            },
        )
        return GatewayOrder(
            id=data["id"],
            amount=int(data.get("amount") or amount_paise),
            currency=data.get("currency") or currency,
            receipt=data.get("receipt"),
            status=str(data.get("status") or "created"),
            raw=data,
        )

    async def fetch_order_payments(self, order_id: str) -> list[GatewayPayment]:
        data = await self._request("GET", f"/orders/{order_id}/payments")
        return [GatewayPayment.from_api(item) for item in data.get("items", [])]

    # =========================================================================
    # Payments
    # =========================================================================

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        data = await self._request("GET", f"/payments/{payment_id}")
        return GatewayPayment.from_api(data)


def get_razorpay_client() -> RazorpayClient:
    """FastAPI dependency returning a client built from settings."""
    try:
        return RazorpayClient()
    except ValueError as exc:
        raise UpstreamUnavailableError("Payment gateway is not configured") from exc
