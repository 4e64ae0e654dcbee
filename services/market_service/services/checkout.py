"""Checkout settlement: cart or single item -> order, in one transaction.

Inside the settlement transaction every line is re-priced from the offer that
wins *now*, its stock is taken with a conditional decrement, the order and its
line snapshots are written and the source cart lines are removed. Any failure
rolls all of it back; the cart is left as it was so the shopper can retry.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import (
    AuthenticationRequiredError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
)
from libs.common.logging import get_logger
from libs.db.session import unit_of_work
from services.market_service.models import (
    CartItem,
    Offer,
    Order,
    OrderItem,
    OrderStatus,
    ProductVariant,
)
from services.market_service.schemas import BuyNowRequest, CheckoutRequest
from services.market_service.services.cart_store import CartIdentity, resolve_cart
from services.market_service.services.inventory import take_offer_stock
from services.market_service.services.notifications import notify_order_placed
from services.market_service.services.offer_ledger import find_best_offer
from services.market_service.services.orders import load_order
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class CheckoutContext:
    user_id: Optional[str] = None
    guest_token: Optional[str] = None
    # Email of the signed-in account, used when no contact email is given
    user_email: Optional[str] = None

    @property
    def cart_identity(self) -> CartIdentity:
        return CartIdentity(user_id=self.user_id, guest_token=self.guest_token)


@dataclass
class PricedLine:
    variant: ProductVariant
    offer: Offer
    quantity: int

    @property
    def unit_price_paise(self) -> int:
        return self.offer.price_paise

    @property
    def line_total_paise(self) -> int:
        return self.offer.price_paise * self.quantity


def _contact_email(context: CheckoutContext, details: CheckoutRequest) -> Optional[str]:
    email = details.contact.email or context.user_email
    if context.user_id is None and not email:
        raise InvalidStateError("Contact email is required for guest checkout")
    return str(email).strip().lower() if email else None


def _clean_notes(notes: Optional[str]) -> Optional[str]:
    if notes is None:
        return None
    return notes.strip() or None


async def _price_line(
    db: AsyncSession, variant_id: uuid.UUID, quantity: int
) -> PricedLine:
    """Price one line against the currently winning offer."""
    result = await db.execute(
        select(ProductVariant)
        .where(ProductVariant.id == variant_id)
        .options(selectinload(ProductVariant.product))
        .execution_options(populate_existing=True)
    )
    variant = result.scalar_one_or_none()
    if variant is None:
        raise NotFoundError("Variant not found", {"variant_id": str(variant_id)})
    if not variant.is_active or not variant.product.is_active:
        raise InvalidStateError(
            f"{variant.product.name} ({variant.sku}) is no longer available",
            {"variant_id": str(variant_id)},
        )

    offer = await find_best_offer(db, variant_id)
    if offer is None or offer.stock_qty < quantity:
        raise InsufficientStockError(
            f"Not enough stock for {variant.product.name} ({variant.sku}). "
            "Refresh your cart and try again.",
            variant_id=variant_id,
            requested=quantity,
        )
    return PricedLine(variant=variant, offer=offer, quantity=quantity)


async def _settle(
    db: AsyncSession,
    *,
    context: CheckoutContext,
    details: CheckoutRequest,
    contact_email: Optional[str],
    cart_id: Optional[uuid.UUID] = None,
    lines: Optional[list[tuple[uuid.UUID, int]]] = None,
) -> uuid.UUID:
    order_id = uuid.uuid4()

    async with unit_of_work(db):
        if cart_id is not None:
            result = await db.execute(
                select(CartItem.variant_id, CartItem.quantity).where(
                    CartItem.cart_id == cart_id
                )
            )
            lines = [(row.variant_id, row.quantity) for row in result.all()]
        if not lines:
            raise InvalidStateError("Cart is empty")

        priced = [await _price_line(db, variant_id, qty) for variant_id, qty in lines]

        subtotal = sum(line.line_total_paise for line in priced)
        total = (
            subtotal
            + details.tax_paise
            + details.shipping_paise
            - details.discount_paise
        )
        if total < 0:
            raise InvalidStateError("Discount exceeds the order value")

        # Fixed offer order keeps concurrent multi-line checkouts from deadlocking
        for line in sorted(priced, key=lambda line: str(line.offer.id)):
            await take_offer_stock(
                db,
                offer_id=line.offer.id,
                variant_id=line.variant.id,
                quantity=line.quantity,
                reference_type="order",
                reference_id=str(order_id),
            )

        billing = details.billing_address.to_blob()
        shipping = (details.shipping_address or details.billing_address).to_blob()
        now = utc_now()
        order = Order(
            id=order_id,
            order_number=Order.generate_order_number(),
            user_id=context.user_id,
            guest_email=contact_email if context.user_id is None else None,
            contact_email=contact_email,
            contact_phone=details.contact.phone or details.billing_address.phone,
            status=OrderStatus.PAID if total == 0 else OrderStatus.PENDING,
            payment_mode=details.payment_mode,
            subtotal_paise=subtotal,
            tax_paise=details.tax_paise,
            shipping_paise=details.shipping_paise,
            discount_paise=details.discount_paise,
            total_paise=total,
            currency=settings.PAYMENT_CURRENCY,
            billing_address=billing,
            shipping_address=shipping,
            notes=_clean_notes(details.notes),
            paid_at=now if total == 0 else None,
        )
        db.add(order)
        for line in priced:
            db.add(
                OrderItem(
                    order_id=order_id,
                    variant_id=line.variant.id,
                    product_id=line.variant.product_id,
                    offer_id=line.offer.id,
                    seller_id=line.offer.seller_id,
                    seller_location_id=line.offer.seller_location_id,
                    product_name=line.variant.product.name,
                    sku=line.variant.sku,
                    size_ml=line.variant.size_ml,
                    quantity=line.quantity,
                    unit_price_paise=line.unit_price_paise,
                    line_total_paise=line.line_total_paise,
                )
            )
        await db.flush()

        if cart_id is not None:
            await db.execute(delete(CartItem).where(CartItem.cart_id == cart_id))

    logger.info(
        "Order %s settled: %d lines, total=%d paise, mode=%s",
        order_id,
        len(priced),
        total,
        details.payment_mode.value,
    )
    return order_id


async def _after_commit(db: AsyncSession, order_id: uuid.UUID) -> Order:
    order = await load_order(db, order_id)
    await notify_order_placed(order)
    return order


async def checkout_cart(
    db: AsyncSession, context: CheckoutContext, details: CheckoutRequest
) -> Order:
    """Turn the caller's cart into an order."""
    if context.user_id is None and not context.guest_token:
        raise AuthenticationRequiredError("Sign in or start a guest cart to check out")
    contact_email = _contact_email(context, details)

    async with unit_of_work(db):
        resolved = await resolve_cart(db, context.cart_identity)
    cart = resolved.cart
    if cart is None:
        raise InvalidStateError("Cart is empty")

    line_count = await db.scalar(
        select(func.count()).select_from(CartItem).where(CartItem.cart_id == cart.id)
    )
    if not line_count:
        raise InvalidStateError("Cart is empty")

    order_id = await _settle(
        db,
        context=context,
        details=details,
        contact_email=contact_email,
        cart_id=cart.id,
    )
    return await _after_commit(db, order_id)


async def buy_now(
    db: AsyncSession, context: CheckoutContext, details: BuyNowRequest
) -> Order:
    """Order a single variant directly; the cart is not touched."""
    contact_email = _contact_email(context, details)
    order_id = await _settle(
        db,
        context=context,
        details=details,
        contact_email=contact_email,
        lines=[(details.variant_id, details.quantity)],
    )
    return await _after_commit(db, order_id)
