"""Order lifecycle: status transitions, access checks, listing, cancellation."""

import uuid
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import (
    AuthenticationRequiredError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
)
from libs.common.logging import get_logger
from libs.db.session import unit_of_work
from services.market_service.models import Order, OrderStatus, StockMovementType
from services.market_service.services.inventory import restock_offer
from services.payments_service.models import Payment, PaymentStatus
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

logger = get_logger(__name__)
settings = get_settings()

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}
CANCELLABLE_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.PROCESSING}
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def _transition_values(target: OrderStatus) -> dict:
    now = utc_now()
    values = {"status": target, "updated_at": now}
    if target == OrderStatus.PAID:
        values["paid_at"] = now
    elif target == OrderStatus.CANCELLED:
        values["cancelled_at"] = now
    return values


async def claim_transition(
    db: AsyncSession, order: Order, target: OrderStatus, **extra
) -> bool:
    """
    Move ``order`` to ``target`` with a conditional UPDATE.

    The row only changes if its stored status is still the one ``order`` was
    read with. Returns False when another transaction moved it first, and
    raises ``InvalidStateError`` for moves the transition table forbids.
    ``extra`` columns are written alongside the status.
    """
    if not can_transition(order.status, target):
        raise InvalidStateError(
            f"Order cannot move from {order.status.value} to {target.value}",
            {"order_id": str(order.id), "status": order.status.value},
        )
    values = {**_transition_values(target), **extra}
    result = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == order.status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    for key, value in values.items():
        set_committed_value(order, key, value)
    return True


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    return email.strip().lower() or None


def assert_order_access(
    order: Order, *, user_id: Optional[str] = None, email: Optional[str] = None
) -> None:
    """
    Owner match for user orders, case-insensitive email match for guest
    orders. Mismatches look exactly like a missing order.
    """
    if user_id is None and normalize_email(email) is None:
        raise AuthenticationRequiredError("Sign in or provide the order email")

    if order.user_id is not None:
        allowed = user_id == order.user_id
    else:
        allowed = (
            normalize_email(order.guest_email) is not None
            and normalize_email(order.guest_email) == normalize_email(email)
        )
    if not allowed:
        raise NotFoundError("Order not found")


async def load_order(
    db: AsyncSession, order_id: uuid.UUID, *, with_shipments: bool = False
) -> Optional[Order]:
    options = [selectinload(Order.items)]
    if with_shipments:
        options.append(selectinload(Order.shipments))
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(*options)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_order_for_viewer(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
) -> Order:
    order = await load_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    assert_order_access(order, user_id=user_id, email=email)
    return order


async def list_orders_for_user(
    db: AsyncSession,
    *,
    user_id: str,
    cursor: Optional[uuid.UUID] = None,
    limit: Optional[int] = None,
) -> tuple[list[Order], Optional[uuid.UUID]]:
    """Newest first. Returns ``(orders, next_cursor)``."""
    if limit is None:
        limit = settings.ORDER_LIST_DEFAULT_LIMIT
    limit = max(1, min(limit, settings.ORDER_LIST_MAX_LIMIT))

    stmt = (
        select(Order)
        .where(Order.user_id == user_id)
        .options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit + 1)
    )
    if cursor is not None:
        anchor = await db.scalar(
            select(Order).where(Order.id == cursor, Order.user_id == user_id)
        )
        if anchor is None:
            raise InvalidStateError("Unknown cursor")
        stmt = stmt.where(
            or_(
                Order.created_at < anchor.created_at,
                and_(Order.created_at == anchor.created_at, Order.id < anchor.id),
            )
        )

    result = await db.execute(stmt)
    orders = list(result.scalars().all())
    next_cursor = orders[limit - 1].id if len(orders) > limit else None
    return orders[:limit], next_cursor


async def cancel_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
) -> Order:
    """
    Cancel an order that has not shipped.

    Stock goes back to the offers it was taken from and a completed payment
    is marked refunded, all in one transaction.
    """
    async with unit_of_work(db):
        order = await load_order(db, order_id, with_shipments=True)
        if order is None:
            raise NotFoundError("Order not found")
        assert_order_access(order, user_id=user_id, email=email)

        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidStateError(
                f"Order in status {order.status.value} cannot be cancelled"
            )
        if order.shipments:
            raise InvalidStateError("Order has already been handed to a carrier")

        if not await claim_transition(db, order, OrderStatus.CANCELLED):
            raise ConflictError("Order changed while cancelling; refresh and retry")

        for item in sorted(order.items, key=lambda i: str(i.offer_id)):
            await restock_offer(
                db,
                offer_id=item.offer_id,
                variant_id=item.variant_id,
                quantity=item.quantity,
                movement_type=StockMovementType.RESTOCK,
                reference_type="order_cancellation",
                reference_id=str(order.id),
            )

        now = utc_now()
        for current, replacement in (
            (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED),
            (PaymentStatus.PENDING, PaymentStatus.FAILED),
        ):
            await db.execute(
                update(Payment)
                .where(Payment.order_id == order.id, Payment.status == current)
                .values(status=replacement, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        order_number = order.order_number

    logger.info("Order %s cancelled", order_number)
    return await load_order(db, order_id)
