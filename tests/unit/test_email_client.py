"""Unit tests for the templated email client."""

import json

import httpx
import pytest
from libs.auth.dependencies import decode_token
from libs.common.emails.client import EmailClient, EmailDeliveryError


def _client(handler) -> EmailClient:
    return EmailClient(
        base_url="https://comms.test/", transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_send_template_posts_with_service_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        seen["token"] = request.headers["authorization"].removeprefix("Bearer ")
        return httpx.Response(200, json={"success": True, "message_id": "msg-1"})

    message_id = await _client(handler).send_template(
        template_type="order_confirmation",
        to_email="buyer@test.com",
        template_data={"order_number": "PM-1"},
    )

    assert message_id == "msg-1"
    assert seen["url"] == "https://comms.test/email/template"
    assert seen["body"]["template_type"] == "order_confirmation"
    assert seen["body"]["template_data"] == {"order_number": "PM-1"}
    assert decode_token(seen["token"]).role == "service_role"


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"success": False, "error": "bad template"}),
    ],
)
async def test_rejected_email_raises(response):
    with pytest.raises(EmailDeliveryError):
        await _client(lambda request: response).send_template(
            template_type="order_confirmation",
            to_email="buyer@test.com",
            template_data={},
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unreachable_service_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(EmailDeliveryError):
        await _client(handler).send_template(
            template_type="order_confirmation", to_email="b@test.com", template_data={}
        )
