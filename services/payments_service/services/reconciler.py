"""Payment reconciliation for marketplace orders.

Creating a session persists the Payment row first and only then talks to the
gateway, outside any transaction; the gateway order id is stored with a
conditional update so a retried or concurrent call never overwrites it.

Confirmation trusts nothing the client sends except ids: the callback
signature is checked, the payment is re-fetched from the gateway and its
order id and amount must match the session exactly. The Payment/Order state
change happens once, in one transaction; replays return the stored result.
"""

import json
import secrets
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import from_epoch_seconds, utc_now
from libs.common.errors import (
    ConflictError,
    DomainError,
    InvalidStateError,
    NotFoundError,
    PaymentVerificationFailedError,
)
from libs.common.logging import get_logger
from libs.db.session import unit_of_work
from services.market_service.models import Order, OrderStatus
from services.market_service.services.notifications import notify_payment_confirmed
from services.market_service.services.orders import (
    claim_transition,
    get_order_for_viewer,
    load_order,
)
from services.payments_service.models import Payment, PaymentEvent, PaymentStatus
from services.payments_service.razorpay_client import (
    GatewayPayment,
    RazorpayClient,
    RazorpayError,
    map_gateway_status,
    verify_payment_signature,
    verify_webhook_signature,
)
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class PaymentCaller:
    """Who is paying: the order owner, or a guest proving the order email."""

    user_id: Optional[str] = None
    email: Optional[str] = None


@dataclass
class PaymentSession:
    order_id: uuid.UUID
    payment_id: uuid.UUID
    amount_paise: int
    currency: str
    razorpay_order_id: str
    razorpay_key_id: str
    receipt: str
    customer: dict = field(default_factory=dict)


@dataclass
class PaymentConfirmation:
    order_id: uuid.UUID
    payment_id: Optional[str]
    status: PaymentStatus
    method: Optional[str]
    amount_paise: int
    order_status: OrderStatus


class _StaleRead(Exception):
    """The payment row changed between read and conditional update."""


def make_event_id(prefix: str, reference: str) -> str:
    return f"{prefix}:{reference}:{int(time.time() * 1000)}:{secrets.token_hex(4)}"


def _confirmation(payment: Payment, order: Order) -> PaymentConfirmation:
    return PaymentConfirmation(
        order_id=order.id,
        payment_id=payment.provider_payment_id,
        status=payment.status,
        method=payment.method,
        amount_paise=payment.amount_paise,
        order_status=order.status,
    )


async def _payment_for_order(db: AsyncSession, order_id: uuid.UUID) -> Optional[Payment]:
    result = await db.execute(
        select(Payment)
        .where(Payment.order_id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _customer(order: Order) -> dict:
    fields = (order.billing_address or {}).get("fields", {})
    name = " ".join(
        part for part in (fields.get("first_name"), fields.get("last_name")) if part
    )
    return {
        "name": name or None,
        "email": order.contact_email or order.guest_email,
        "contact": order.contact_phone or fields.get("phone"),
    }


# ---------------------------------------------------------------------------
# Session creation
# ---------------------------------------------------------------------------


async def create_payment_session(
    db: AsyncSession,
    gateway: RazorpayClient,
    *,
    order_id: uuid.UUID,
    caller: PaymentCaller,
) -> PaymentSession:
    """Create (or reuse) the payment session for an order."""
    async with unit_of_work(db):
        order = await get_order_for_viewer(
            db, order_id, user_id=caller.user_id, email=caller.email
        )
        payment = await _payment_for_order(db, order.id)

        if payment is not None and payment.status == PaymentStatus.COMPLETED:
            raise InvalidStateError("Order has already been paid")
        if order.status != OrderStatus.PENDING:
            raise InvalidStateError(
                f"Order in status {order.status.value} is not awaiting payment"
            )
        if order.total_paise <= 0:
            raise InvalidStateError("Nothing to pay for this order")
        if order.total_paise < settings.PAYMENT_MIN_AMOUNT_PAISE:
            raise InvalidStateError(
                "Order total is below the minimum chargeable amount",
                {"minimum_paise": settings.PAYMENT_MIN_AMOUNT_PAISE},
            )

        if payment is None:
            payment = Payment(
                order_id=order.id,
                user_id=order.user_id,
                amount_paise=order.total_paise,
                currency=order.currency,
                status=PaymentStatus.PENDING,
            )
            db.add(payment)
            try:
                await db.flush()
            except IntegrityError as exc:
                raise ConflictError(
                    "A payment session for this order is already being created"
                ) from exc
            order.payment_id = payment.id
            logger.info("Created payment %s for order %s", payment.id, order.id)
        else:
            if payment.amount_paise != order.total_paise:
                # The gateway order was issued for the old amount
                logger.info(
                    "Payment %s amount %d -> %d",
                    payment.id,
                    payment.amount_paise,
                    order.total_paise,
                )
                payment.amount_paise = order.total_paise
                payment.provider_order_id = None
            if payment.status == PaymentStatus.FAILED:
                payment.status = PaymentStatus.PENDING
        await db.flush()

        payment_id = payment.id
        provider_order_id = payment.provider_order_id
        amount_paise = payment.amount_paise
        currency = payment.currency
        customer = _customer(order)
        order_number = order.order_number

    if provider_order_id is None:
        gateway_order = await gateway.create_order(
            amount_paise=amount_paise,
            currency=currency,
            receipt=str(order_id),
            notes={"order_id": str(order_id), "order_number": order_number},
        )
        async with unit_of_work(db):
            result = await db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.provider_order_id.is_(None))
                .values(provider_order_id=gateway_order.id, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                db.add(
                    PaymentEvent(
                        payment_id=payment_id,
                        event_id=make_event_id("order", gateway_order.id),
                        event_type="order.created",
                        payload=gateway_order.raw,
                    )
                )
                provider_order_id = gateway_order.id
            else:
                provider_order_id = await db.scalar(
                    select(Payment.provider_order_id).where(Payment.id == payment_id)
                )
                logger.warning(
                    "Payment %s already has gateway order %s; discarding %s",
                    payment_id,
                    provider_order_id,
                    gateway_order.id,
                )

    return PaymentSession(
        order_id=order_id,
        payment_id=payment_id,
        amount_paise=amount_paise,
        currency=currency,
        razorpay_order_id=provider_order_id,
        razorpay_key_id=gateway.key_id,
        receipt=str(order_id),
        customer=customer,
    )


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


async def _fetch_payment(gateway: RazorpayClient, payment_id: str) -> GatewayPayment:
    try:
        return await gateway.fetch_payment(payment_id)
    except RazorpayError as exc:
        if exc.is_client_error:
            raise PaymentVerificationFailedError(
                "Payment was not found at the gateway"
            ) from exc
        raise


async def _apply_once(
    db: AsyncSession,
    *,
    payment_id: uuid.UUID,
    gateway_payment: GatewayPayment,
    event_id: Optional[str],
) -> tuple[PaymentConfirmation, bool]:
    async with unit_of_work(db):
        payment = await db.scalar(
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        order = await load_order(db, payment.order_id)

        if gateway_payment.order_id != payment.provider_order_id:
            raise PaymentVerificationFailedError(
                "Payment belongs to a different gateway order"
            )
        if (
            gateway_payment.amount != payment.amount_paise
            or gateway_payment.currency != payment.currency
        ):
            raise PaymentVerificationFailedError(
                "Paid amount does not match the order total",
                {
                    "expected_paise": payment.amount_paise,
                    "reported_paise": gateway_payment.amount,
                },
            )

        status = map_gateway_status(gateway_payment.status)
        previous = payment.status

        if previous == PaymentStatus.COMPLETED:
            same_payment = payment.provider_payment_id == gateway_payment.id
            if same_payment and status == PaymentStatus.COMPLETED:
                return _confirmation(payment, order), False
            if not same_payment or status not in (
                PaymentStatus.REFUNDED,
                PaymentStatus.PARTIAL_REFUND,
            ):
                raise InvalidStateError("Order has already been paid")

        became_completed = (
            status == PaymentStatus.COMPLETED and previous != PaymentStatus.COMPLETED
        )
        if became_completed:
            if order.status == OrderStatus.PENDING:
                claimed = await claim_transition(
                    db, order, OrderStatus.PAID, payment_id=payment.id
                )
                if not claimed:
                    raise _StaleRead()
            elif order.status != OrderStatus.PAID:
                logger.warning(
                    "Payment %s captured for order %s in status %s; order left as is",
                    payment.id,
                    order.id,
                    order.status.value,
                )

        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == previous)
            .values(
                status=status,
                provider_payment_id=gateway_payment.id,
                method=gateway_payment.method,
                amount_paise=gateway_payment.amount,
                transaction_ts=from_epoch_seconds(gateway_payment.created_at),
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise _StaleRead()

        db.add(
            PaymentEvent(
                payment_id=payment.id,
                event_id=event_id or make_event_id("payment", gateway_payment.id),
                event_type=f"payment.{status.value}",
                payload=gateway_payment.raw,
            )
        )
        await db.flush()

    payment = await _payment_for_order(db, order.id)
    order = await load_order(db, order.id)
    logger.info(
        "Payment %s for order %s: %s -> %s",
        payment.id,
        order.id,
        previous.value,
        payment.status.value,
    )
    return _confirmation(payment, order), became_completed


async def apply_gateway_payment(
    db: AsyncSession,
    *,
    payment_id: uuid.UUID,
    gateway_payment: GatewayPayment,
    event_id: Optional[str] = None,
) -> PaymentConfirmation:
    """
    Record an authoritative gateway payment against our Payment row.

    Notifies the buyer only when this call moved the payment to completed.
    """
    try:
        confirmation, became_completed = await _apply_once(
            db,
            payment_id=payment_id,
            gateway_payment=gateway_payment,
            event_id=event_id,
        )
    except _StaleRead:
        # A concurrent confirmation won; report what it stored
        payment = await db.scalar(
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        if (
            payment.status == PaymentStatus.COMPLETED
            and payment.provider_payment_id == gateway_payment.id
        ):
            order = await load_order(db, payment.order_id)
            return _confirmation(payment, order)
        raise ConflictError("Payment was updated concurrently; retry")

    if became_completed:
        order = await load_order(db, confirmation.order_id)
        await notify_payment_confirmed(order)
    return confirmation


async def confirm_payment(
    db: AsyncSession,
    gateway: RazorpayClient,
    *,
    order_id: uuid.UUID,
    caller: PaymentCaller,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
) -> PaymentConfirmation:
    """Confirm a checkout callback. Safe to retry with the same payment id."""
    async with unit_of_work(db):
        order = await get_order_for_viewer(
            db, order_id, user_id=caller.user_id, email=caller.email
        )
        payment = await _payment_for_order(db, order.id)
        if payment is None:
            raise NotFoundError("No payment session exists for this order")
        if (
            payment.provider_order_id is None
            or payment.provider_order_id != gateway_order_id
        ):
            raise PaymentVerificationFailedError(
                "Gateway order does not match this payment session"
            )

        if payment.status == PaymentStatus.COMPLETED:
            if payment.provider_payment_id == gateway_payment_id:
                return _confirmation(payment, order)
            raise InvalidStateError("Order has already been paid")
        payment_id = payment.id

    if not verify_payment_signature(
        gateway_order_id, gateway_payment_id, signature, settings.RAZORPAY_KEY_SECRET
    ):
        logger.warning("Invalid payment signature for order %s", order_id)
        raise PaymentVerificationFailedError("Invalid payment signature")

    gateway_payment = await _fetch_payment(gateway, gateway_payment_id)
    return await apply_gateway_payment(
        db, payment_id=payment_id, gateway_payment=gateway_payment
    )


# ---------------------------------------------------------------------------
# Webhooks and background reconciliation
# ---------------------------------------------------------------------------


async def handle_webhook(
    db: AsyncSession,
    gateway: RazorpayClient,
    *,
    body: bytes,
    signature: Optional[str],
    event_id: Optional[str] = None,
) -> dict:
    """
    Apply a signed ``payment.*`` webhook.

    The payload only tells us which payment to look at; its state is re-read
    from the gateway and goes through the same checks as a confirmation.
    """
    if not verify_webhook_signature(body, signature, settings.RAZORPAY_WEBHOOK_SECRET):
        raise PaymentVerificationFailedError("Invalid webhook signature")

    try:
        payload = json.loads(body.decode("utf-8") or "{}")
    except ValueError as exc:
        raise PaymentVerificationFailedError("Webhook body is not JSON") from exc

    event = str(payload.get("event") or "")
    entity = ((payload.get("payload") or {}).get("payment") or {}).get("entity") or {}
    if not event.startswith("payment.") or not entity.get("id") or not entity.get("order_id"):
        return {"status": "ignored"}

    event_key = f"webhook:{event_id}" if event_id else None
    async with unit_of_work(db):
        payment = await db.scalar(
            select(Payment).where(Payment.provider_order_id == entity["order_id"])
        )
        if payment is None:
            logger.info(
                "Webhook %s for unknown gateway order %s", event, entity["order_id"]
            )
            return {"status": "ignored"}
        payment_id = payment.id

        if event_key is not None:
            seen = await db.scalar(
                select(PaymentEvent.id).where(PaymentEvent.event_id == event_key)
            )
            if seen is not None:
                return {"status": "duplicate"}

    gateway_payment = await _fetch_payment(gateway, entity["id"])
    try:
        confirmation = await apply_gateway_payment(
            db,
            payment_id=payment_id,
            gateway_payment=gateway_payment,
            event_id=event_key,
        )
    except (InvalidStateError, PaymentVerificationFailedError) as exc:
        logger.warning(
            "Webhook %s for payment %s rejected: %s", event, payment_id, exc.message
        )
        return {"status": "rejected", "kind": exc.kind}
    except IntegrityError:
        return {"status": "duplicate"}

    return {"status": "processed", "payment_status": confirmation.status.value}


async def reconcile_pending_payments(
    db: AsyncSession,
    gateway: RazorpayClient,
    *,
    older_than_minutes: Optional[int] = None,
    limit: int = 100,
) -> int:
    """Ask the gateway about stale pending sessions and apply what it reports."""
    minutes = older_than_minutes
    if minutes is None:
        minutes = settings.PAYMENT_RECONCILE_AFTER_MINUTES
    cutoff = utc_now() - timedelta(minutes=minutes)
    async with unit_of_work(db):
        result = await db.execute(
            select(Payment.id, Payment.provider_order_id)
            .where(
                Payment.status == PaymentStatus.PENDING,
                Payment.provider_order_id.is_not(None),
                Payment.created_at <= cutoff,
            )
            .order_by(Payment.created_at.asc())
            .limit(limit)
        )
        pending = result.all()

    applied = 0
    for payment_id, provider_order_id in pending:
        try:
            gateway_payments = await gateway.fetch_order_payments(provider_order_id)
        except RazorpayError as exc:
            logger.warning("Could not list payments for %s: %s", provider_order_id, exc)
            continue
        if not gateway_payments:
            continue

        captured = [
            p for p in gateway_payments
            if map_gateway_status(p.status) == PaymentStatus.COMPLETED
        ]
        chosen = captured[0] if captured else max(
            gateway_payments, key=lambda p: p.created_at or 0
        )
        try:
            await apply_gateway_payment(db, payment_id=payment_id, gateway_payment=chosen)
        except DomainError as exc:
            logger.warning("Reconciliation of payment %s skipped: %s", payment_id, exc.message)
            continue
        applied += 1

    if pending:
        logger.info("Reconciled %d of %d pending payments", applied, len(pending))
    return applied
