"""Unit tests for payment sessions, confirmation, webhooks and reconciliation."""

import hashlib
import hmac
import json
from datetime import timedelta

import pytest
from libs.common.datetime_utils import utc_now
from libs.common.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PaymentVerificationFailedError,
    UpstreamUnavailableError,
)
from services.market_service.models import Order, OrderStatus
from services.market_service.schemas import CheckoutRequest
from services.market_service.services import cart_store
from services.market_service.services.cart_store import CartIdentity
from services.market_service.services.checkout import CheckoutContext, checkout_cart
from services.market_service.services.orders import cancel_order
from services.payments_service.models import Payment, PaymentEvent, PaymentStatus
from services.payments_service.razorpay_client import RazorpayError
from services.payments_service.services import reconciler
from services.payments_service.services.reconciler import (
    PaymentCaller,
    confirm_payment,
    create_payment_session,
    handle_webhook,
    reconcile_pending_payments,
)
from sqlalchemy import func, select, update
from tests.factories import address, seed_listing
from tests.fakes import sign

GUEST = PaymentCaller(email="guest@test.com")
WEBHOOK_SECRET = "rzp_webhook_secret"


async def _pending_order(db, price_paise=1000000, **details):
    listing = await seed_listing(db, price_paise=price_paise)
    summary = await cart_store.add_item(
        db, CartIdentity(), variant_id=listing.variant.id, quantity=1
    )
    payload = {"billing_address": address(), "contact": {"email": "guest@test.com"}}
    payload.update(details)
    return await checkout_cart(
        db,
        CheckoutContext(guest_token=summary.guest_token),
        CheckoutRequest.model_validate(payload),
    )


async def _payment(db, order_id) -> Payment:
    return await db.scalar(
        select(Payment)
        .where(Payment.order_id == order_id)
        .execution_options(populate_existing=True)
    )


async def _order(db, order_id) -> Order:
    return await db.get(Order, order_id, populate_existing=True)


async def _confirm(db, gateway, order, session, captured, **overrides):
    kwargs = dict(
        order_id=order.id,
        caller=GUEST,
        gateway_order_id=session.razorpay_order_id,
        gateway_payment_id=captured.id,
        signature=sign(session.razorpay_order_id, captured.id),
    )
    kwargs.update(overrides)
    return await confirm_payment(db, gateway, **kwargs)


def _webhook_body(gateway_payment, event="payment.captured") -> bytes:
    return json.dumps(
        {
            "event": event,
            "payload": {
                "payment": {
                    "entity": {
                        "id": gateway_payment.id,
                        "order_id": gateway_payment.order_id,
                        "amount": gateway_payment.amount,
                    }
                }
            },
        }
    ).encode("utf-8")


def _webhook_signature(body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_session_creates_payment_and_gateway_order(db_session, fake_gateway):
    order = await _pending_order(db_session)

    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )

    assert session.amount_paise == order.total_paise
    assert session.currency == "INR"
    assert session.razorpay_key_id == fake_gateway.key_id
    assert session.customer["name"] == "Asha Rao"
    payment = await _payment(db_session, order.id)
    assert payment.status == PaymentStatus.PENDING
    assert payment.provider_order_id == session.razorpay_order_id
    assert (await _order(db_session, order.id)).payment_id == payment.id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_repeated_session_reuses_gateway_order(db_session, fake_gateway):
    order = await _pending_order(db_session)

    first = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    second = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )

    assert second.razorpay_order_id == first.razorpay_order_id
    assert second.payment_id == first.payment_id
    assert [c for c in fake_gateway.calls if c[0] == "create_order"] == [
        ("create_order", str(order.id))
    ]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_gateway_timeout_leaves_session_retryable(db_session, fake_gateway):
    order = await _pending_order(db_session)
    fake_gateway.fail_next(RazorpayError("Payment gateway timed out"))

    with pytest.raises(UpstreamUnavailableError):
        await create_payment_session(
            db_session, fake_gateway, order_id=order.id, caller=GUEST
        )

    payment = await _payment(db_session, order.id)
    assert payment.status == PaymentStatus.PENDING
    assert payment.provider_order_id is None

    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    assert session.payment_id == payment.id
    assert (await _payment(db_session, order.id)).provider_order_id == (
        session.razorpay_order_id
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_session_below_minimum_amount_rejected(db_session, fake_gateway):
    order = await _pending_order(db_session, price_paise=50)

    with pytest.raises(InvalidStateError):
        await create_payment_session(
            db_session, fake_gateway, order_id=order.id, caller=GUEST
        )
    assert fake_gateway.calls == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_session_for_someone_elses_order_not_found(db_session, fake_gateway):
    order = await _pending_order(db_session)

    with pytest.raises(NotFoundError):
        await create_payment_session(
            db_session,
            fake_gateway,
            order_id=order.id,
            caller=PaymentCaller(email="stranger@test.com"),
        )


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_marks_payment_and_order_paid(db_session, fake_gateway, email_client):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    captured = fake_gateway.capture(session.razorpay_order_id)

    result = await _confirm(db_session, fake_gateway, order, session, captured)

    assert result.status == PaymentStatus.COMPLETED
    assert result.order_status == OrderStatus.PAID
    assert result.payment_id == captured.id
    payment = await _payment(db_session, order.id)
    assert payment.method == "upi"
    assert payment.transaction_ts is not None
    assert (await _order(db_session, order.id)).paid_at is not None
    email_client.send_template.assert_awaited_once()
    assert (
        email_client.send_template.await_args.kwargs["template_type"]
        == "payment_confirmation"
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_replay_returns_stored_result(db_session, fake_gateway, email_client):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    captured = fake_gateway.capture(session.razorpay_order_id)
    first = await _confirm(db_session, fake_gateway, order, session, captured)
    fetches = len([c for c in fake_gateway.calls if c[0] == "fetch_payment"])

    second = await _confirm(db_session, fake_gateway, order, session, captured)

    assert second == first
    assert len([c for c in fake_gateway.calls if c[0] == "fetch_payment"]) == fetches
    email_client.send_template.assert_awaited_once()
    events = await db_session.scalar(
        select(func.count())
        .select_from(PaymentEvent)
        .where(PaymentEvent.event_type == "payment.completed")
    )
    assert events == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_rejects_tampered_amount(db_session, fake_gateway):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    captured = fake_gateway.capture(session.razorpay_order_id, amount=100)
    order_id = order.id

    with pytest.raises(PaymentVerificationFailedError):
        await _confirm(db_session, fake_gateway, order, session, captured)

    assert (await _payment(db_session, order_id)).status == PaymentStatus.PENDING
    assert (await _order(db_session, order_id)).status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_rejects_bad_signature_without_calling_gateway(
    db_session, fake_gateway
):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    captured = fake_gateway.capture(session.razorpay_order_id)

    with pytest.raises(PaymentVerificationFailedError):
        await _confirm(
            db_session, fake_gateway, order, session, captured, signature="0" * 64
        )

    assert ("fetch_payment", captured.id) not in fake_gateway.calls
    assert (await _payment(db_session, order.id)).status == PaymentStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_rejects_other_gateway_order(db_session, fake_gateway):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    captured = fake_gateway.capture(session.razorpay_order_id)

    with pytest.raises(PaymentVerificationFailedError):
        await _confirm(
            db_session,
            fake_gateway,
            order,
            session,
            captured,
            gateway_order_id="order_elsewhere",
            signature=sign("order_elsewhere", captured.id),
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_rejects_payment_made_for_another_order(db_session, fake_gateway):
    """A valid payment of a different order cannot settle this one."""
    order = await _pending_order(db_session)
    other = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    other_session = await create_payment_session(
        db_session, fake_gateway, order_id=other.id, caller=GUEST
    )
    foreign = fake_gateway.capture(other_session.razorpay_order_id)
    order_id = order.id

    with pytest.raises(PaymentVerificationFailedError):
        await _confirm(db_session, fake_gateway, order, session, foreign)

    assert (await _order(db_session, order_id)).status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_gateway_payment_leaves_order_pending(db_session, fake_gateway):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    failed = fake_gateway.capture(session.razorpay_order_id, status="failed")

    result = await _confirm(db_session, fake_gateway, order, session, failed)

    assert result.status == PaymentStatus.FAILED
    assert result.order_status == OrderStatus.PENDING

    # A new session after a failure goes back to pending and reuses the gateway order
    again = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    assert again.razorpay_order_id == session.razorpay_order_id
    assert (await _payment(db_session, order.id)).status == PaymentStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_session_for_paid_order_rejected(db_session, fake_gateway):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    captured = fake_gateway.capture(session.razorpay_order_id)
    await _confirm(db_session, fake_gateway, order, session, captured)

    with pytest.raises(InvalidStateError):
        await create_payment_session(
            db_session, fake_gateway, order_id=order.id, caller=GUEST
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_landing_mid_confirmation_keeps_order_cancelled(
    db_session, session_factory, fake_gateway, email_client, monkeypatch
):
    order = await _pending_order(db_session)
    order_id = order.id
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order_id, caller=GUEST
    )
    captured = fake_gateway.capture(session.razorpay_order_id)
    real_load_order = reconciler.load_order
    raced = []

    async def load_then_cancel(db, requested_id, **kwargs):
        loaded = await real_load_order(db, requested_id, **kwargs)
        if not raced:
            raced.append(requested_id)
            async with session_factory() as other:
                await cancel_order(other, requested_id, email="guest@test.com")
        return loaded

    monkeypatch.setattr(reconciler, "load_order", load_then_cancel)

    with pytest.raises(ConflictError):
        await _confirm(db_session, fake_gateway, order, session, captured)

    assert (await _order(db_session, order_id)).status == OrderStatus.CANCELLED
    assert (await _payment(db_session, order_id)).status == PaymentStatus.FAILED
    email_client.send_template.assert_not_awaited()


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_settles_payment_once(db_session, fake_gateway):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    captured = fake_gateway.capture(session.razorpay_order_id)
    body = _webhook_body(captured)

    first = await handle_webhook(
        db_session,
        fake_gateway,
        body=body,
        signature=_webhook_signature(body),
        event_id="evt_1",
    )
    second = await handle_webhook(
        db_session,
        fake_gateway,
        body=body,
        signature=_webhook_signature(body),
        event_id="evt_1",
    )

    assert first == {"status": "processed", "payment_status": "completed"}
    assert second == {"status": "duplicate"}
    assert (await _order(db_session, order.id)).status == OrderStatus.PAID


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_with_bad_signature_rejected(db_session, fake_gateway):
    body = b'{"event": "payment.captured"}'

    with pytest.raises(PaymentVerificationFailedError):
        await handle_webhook(
            db_session, fake_gateway, body=body, signature="forged", event_id="evt_x"
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_for_unrelated_event_ignored(db_session, fake_gateway):
    body = json.dumps({"event": "refund.created", "payload": {}}).encode()

    result = await handle_webhook(
        db_session, fake_gateway, body=body, signature=_webhook_signature(body)
    )

    assert result == {"status": "ignored"}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_webhook_with_wrong_amount_is_rejected_not_raised(db_session, fake_gateway):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    short = fake_gateway.capture(session.razorpay_order_id, amount=100)
    body = _webhook_body(short)
    order_id = order.id

    result = await handle_webhook(
        db_session, fake_gateway, body=body, signature=_webhook_signature(body)
    )

    assert result["status"] == "rejected"
    assert result["kind"] == "payment_verification_failed"
    assert (await _order(db_session, order_id)).status == OrderStatus.PENDING
    assert (await _payment(db_session, order_id)).status == PaymentStatus.PENDING


# ---------------------------------------------------------------------------
# Background reconciliation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_applies_captures_missed_by_the_client(db_session, fake_gateway):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    fake_gateway.capture(session.razorpay_order_id)
    await db_session.execute(
        update(Payment)
        .where(Payment.id == session.payment_id)
        .values(created_at=utc_now() - timedelta(hours=1))
    )
    await db_session.commit()

    applied = await reconcile_pending_payments(db_session, fake_gateway)

    assert applied == 1
    assert (await _order(db_session, order.id)).status == OrderStatus.PAID


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_skips_recent_sessions(db_session, fake_gateway):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    fake_gateway.capture(session.razorpay_order_id)

    applied = await reconcile_pending_payments(db_session, fake_gateway)

    assert applied == 0
    assert (await _order(db_session, order.id)).status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_with_zero_minutes_includes_fresh_sessions(
    db_session, fake_gateway
):
    order = await _pending_order(db_session)
    session = await create_payment_session(
        db_session, fake_gateway, order_id=order.id, caller=GUEST
    )
    fake_gateway.capture(session.razorpay_order_id)

    applied = await reconcile_pending_payments(
        db_session, fake_gateway, older_than_minutes=0
    )

    assert applied == 1
    assert (await _order(db_session, order.id)).status == OrderStatus.PAID
