"""
Client for the Communications Service's templated email API.

Template rendering lives in the Communications Service; callers only pick a
template type and pass its data.

Usage:
    from libs.common.emails.client import get_email_client

    await get_email_client().send_template(
        template_type="order_confirmation",
        to_email="buyer@example.com",
        template_data={"order_number": "PM-20260101-ABC123"},
    )
"""

from typing import Any, Optional

import httpx

from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class EmailDeliveryError(Exception):
    """The Communications Service did not accept an email."""


class EmailClient:
    """
    HTTP client for the Communications Service.

    Authenticates with a short-lived service-role JWT. Failures raise
    ``EmailDeliveryError``; callers decide whether a failed email matters.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.COMMUNICATIONS_SERVICE_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _get_auth_headers(self) -> dict[str, str]:
        from libs.auth.dependencies import _service_role_jwt

        token = _service_role_jwt("email_client")
        return {"Authorization": f"Bearer {token}"}

    async def send_template(
        self,
        template_type: str,
        to_email: str,
        template_data: dict[str, Any],
    ) -> str:
        """
        Send a templated email and return the message id assigned to it.

        Template types used by the marketplace:
        - order_confirmation: order placed (COD or nothing to pay)
        - payment_confirmation: prepaid order paid
        """
        payload = {
            "template_type": template_type,
            "to_email": to_email,
            "template_data": template_data,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/email/template",
                    json=payload,
                    headers=self._get_auth_headers(),
                )
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(
                f"Communications Service unreachable: {exc}"
            ) from exc

        if response.status_code != 200:
            raise EmailDeliveryError(
                f"Template email API returned {response.status_code}: {response.text}"
            )
        body = response.json()
        if not body.get("success", False):
            raise EmailDeliveryError(f"Template email rejected: {body}")
        return str(body.get("message_id") or body.get("id") or "")


_email_client: Optional[EmailClient] = None


def get_email_client() -> EmailClient:
    """Get or create the singleton EmailClient instance."""
    global _email_client
    if _email_client is None:
        _email_client = EmailClient()
    return _email_client
