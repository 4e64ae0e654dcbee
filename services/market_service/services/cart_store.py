"""Cart store: guest/user cart identity, merge, claim and item mutations.

A cart belongs to a signed-in user or to an opaque guest token. Guest carts
expire ``GUEST_CART_TTL_DAYS`` after their last use; expired carts are
invisible to lookups until the purge job removes them.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc, utc_now
from libs.common.errors import ConflictError, InvalidStateError, NotFoundError
from libs.common.logging import get_logger
from libs.db.session import unit_of_work
from libs.db.upsert import insert_for
from services.market_service.models import (
    Cart,
    CartItem,
    LiveOffer,
    Product,
    ProductVariant,
)
from services.market_service.schemas import MAX_LINE_QUANTITY
from services.market_service.services.offer_ledger import get_live_offers
from sqlalchemy import case, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)
settings = get_settings()

GUEST_TOKEN_HEADER = "X-Cart-Token"


@dataclass(frozen=True)
class CartIdentity:
    """Who is asking: a signed-in user, a guest token, or both."""

    user_id: Optional[str] = None
    guest_token: Optional[str] = None


@dataclass
class ResolvedCart:
    cart: Optional[Cart]
    # Token the client should keep sending; None once the cart is user-owned
    guest_token: Optional[str] = None
    created: bool = False
    merged: bool = False
    claimed: bool = False


@dataclass
class CartLine:
    variant_id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    sku: str
    size_ml: Optional[int]
    quantity: int
    unit_price_paise: int
    line_total_paise: int
    is_purchasable: bool
    offer_id: Optional[uuid.UUID] = None
    seller_id: Optional[uuid.UUID] = None


@dataclass
class CartSummary:
    id: uuid.UUID
    guest_token: Optional[str]
    expires_at: Optional[datetime]
    lines: list[CartLine] = field(default_factory=list)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def subtotal_paise(self) -> int:
        return sum(line.line_total_paise for line in self.lines)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def new_guest_token() -> str:
    return uuid.uuid4().hex


def guest_expiry(now: Optional[datetime] = None) -> datetime:
    return (now or utc_now()) + timedelta(days=settings.GUEST_CART_TTL_DAYS)


def normalize_quantity(value: Any) -> int:
    """Coerce any input to a whole quantity between 0 and ``MAX_LINE_QUANTITY``.

    Fractions are truncated; negatives, NaN, infinities and non-numbers all
    become 0. Larger values are capped.
    """
    if isinstance(value, bool):
        return int(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return min(max(0, int(number)), MAX_LINE_QUANTITY)


def unit_price_for(variant: ProductVariant, live: Optional[LiveOffer]) -> int:
    """Display price: live offer price, else sale price, else MRP."""
    if live is not None:
        return live.price_paise
    return variant.list_price_paise


async def ensure_variant_purchasable(
    db: AsyncSession, variant_id: uuid.UUID
) -> ProductVariant:
    result = await db.execute(
        select(ProductVariant)
        .join(Product, Product.id == ProductVariant.product_id)
        .where(ProductVariant.id == variant_id)
        .options(selectinload(ProductVariant.product))
        .execution_options(populate_existing=True)
    )
    variant = result.scalar_one_or_none()
    if variant is None or not variant.is_active or not variant.product.is_active:
        raise NotFoundError(
            "Variant not found or inactive", {"variant_id": str(variant_id)}
        )
    return variant


# ---------------------------------------------------------------------------
# Lookup and resolution
# ---------------------------------------------------------------------------


async def find_user_cart(db: AsyncSession, user_id: str) -> Optional[Cart]:
    result = await db.execute(
        select(Cart)
        .where(Cart.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_guest_cart(
    db: AsyncSession, guest_token: str, *, now: Optional[datetime] = None
) -> Optional[Cart]:
    """Return the unexpired guest cart for ``guest_token``."""
    result = await db.execute(
        select(Cart)
        .where(Cart.guest_token == guest_token, Cart.expires_at > (now or utc_now()))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def load_cart(db: AsyncSession, cart_id: uuid.UUID) -> Optional[Cart]:
    """Load a cart with items, variants and products from committed state."""
    result = await db.execute(
        select(Cart)
        .where(Cart.id == cart_id)
        .options(
            selectinload(Cart.items)
            .selectinload(CartItem.variant)
            .selectinload(ProductVariant.product)
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _increment_item(
    db: AsyncSession, *, cart_id: uuid.UUID, variant_id: uuid.UUID, quantity: int
) -> None:
    """Add to a line, capping the total at ``MAX_LINE_QUANTITY``."""
    now = utc_now()
    stmt = insert_for(db, CartItem).values(
        id=uuid.uuid4(),
        cart_id=cart_id,
        variant_id=variant_id,
        quantity=min(quantity, MAX_LINE_QUANTITY),
        created_at=now,
        updated_at=now,
    )
    total = CartItem.quantity + stmt.excluded.quantity
    stmt = stmt.on_conflict_do_update(
        index_elements=["cart_id", "variant_id"],
        set_={
            "quantity": case(
                (total > MAX_LINE_QUANTITY, MAX_LINE_QUANTITY), else_=total
            ),
            "updated_at": now,
        },
    )
    await db.execute(stmt)


async def _set_item(
    db: AsyncSession, *, cart_id: uuid.UUID, variant_id: uuid.UUID, quantity: int
) -> None:
    now = utc_now()
    stmt = insert_for(db, CartItem).values(
        id=uuid.uuid4(),
        cart_id=cart_id,
        variant_id=variant_id,
        quantity=quantity,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["cart_id", "variant_id"],
        set_={"quantity": stmt.excluded.quantity, "updated_at": now},
    )
    await db.execute(stmt)


async def _merge_guest_cart(db: AsyncSession, *, guest: Cart, target: Cart) -> int:
    """Fold every guest line into ``target`` and delete the guest cart."""
    result = await db.execute(select(CartItem).where(CartItem.cart_id == guest.id))
    items = result.scalars().all()
    for item in items:
        await _increment_item(
            db, cart_id=target.id, variant_id=item.variant_id, quantity=item.quantity
        )
    await db.execute(delete(CartItem).where(CartItem.cart_id == guest.id))
    await db.execute(delete(Cart).where(Cart.id == guest.id))
    target.updated_at = utc_now()
    await db.flush()
    return len(items)


async def _create_cart(db: AsyncSession, cart: Cart) -> Cart:
    db.add(cart)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError("Cart was created by a concurrent request; retry") from exc
    return cart


async def resolve_cart(
    db: AsyncSession, identity: CartIdentity, *, create_if_missing: bool = False
) -> ResolvedCart:
    """
    Find (and optionally create) the cart for ``identity``.

    For a signed-in user with a guest token: a distinct user cart absorbs the
    guest cart (quantities add up, guest cart deleted); without a user cart
    the guest cart is claimed. Guest lookups push the expiry forward.

    Does not commit: call inside ``unit_of_work`` so a merge is all or nothing.
    """
    now = utc_now()
    guest_cart = None
    if identity.guest_token:
        guest_cart = await find_guest_cart(db, identity.guest_token, now=now)

    if identity.user_id:
        if guest_cart is not None and guest_cart.user_id not in (None, identity.user_id):
            logger.warning(
                "Ignoring guest cart %s owned by another user", guest_cart.id
            )
            guest_cart = None

        user_cart = await find_user_cart(db, identity.user_id)

        if user_cart is not None and guest_cart is not None and guest_cart.id != user_cart.id:
            merged = await _merge_guest_cart(db, guest=guest_cart, target=user_cart)
            logger.info(
                "Merged %d guest lines from cart %s into user cart %s",
                merged,
                guest_cart.id,
                user_cart.id,
            )
            return ResolvedCart(cart=user_cart, merged=True)

        if user_cart is not None:
            return ResolvedCart(cart=user_cart)

        if guest_cart is not None:
            guest_cart.user_id = identity.user_id
            guest_cart.guest_token = None
            guest_cart.expires_at = None
            guest_cart.updated_at = now
            await db.flush()
            logger.info("User %s claimed guest cart %s", identity.user_id, guest_cart.id)
            return ResolvedCart(cart=guest_cart, claimed=True)

        if not create_if_missing:
            return ResolvedCart(cart=None)

        cart = await _create_cart(db, Cart(user_id=identity.user_id))
        return ResolvedCart(cart=cart, created=True)

    if guest_cart is not None:
        guest_cart.expires_at = guest_expiry(now)
        await db.flush()
        return ResolvedCart(cart=guest_cart, guest_token=guest_cart.guest_token)

    if not create_if_missing:
        return ResolvedCart(cart=None, guest_token=identity.guest_token)

    token = new_guest_token()
    cart = await _create_cart(
        db, Cart(guest_token=token, expires_at=guest_expiry(now))
    )
    return ResolvedCart(cart=cart, guest_token=token, created=True)


def _touch(cart: Cart) -> None:
    now = utc_now()
    cart.updated_at = now
    if cart.is_guest:
        cart.expires_at = guest_expiry(now)


# ---------------------------------------------------------------------------
# Cart operations
# ---------------------------------------------------------------------------


async def summarize_cart(db: AsyncSession, resolved: ResolvedCart) -> CartSummary:
    """Price the cart lines against the current live offers."""
    cart = await load_cart(db, resolved.cart.id)
    live_offers = await get_live_offers(db, (item.variant_id for item in cart.items))

    lines = []
    for item in sorted(cart.items, key=lambda i: as_utc(i.created_at)):
        variant = item.variant
        live = live_offers.get(item.variant_id)
        unit_price = unit_price_for(variant, live)
        lines.append(
            CartLine(
                variant_id=variant.id,
                product_id=variant.product_id,
                product_name=variant.product.name,
                sku=variant.sku,
                size_ml=variant.size_ml,
                quantity=item.quantity,
                unit_price_paise=unit_price,
                line_total_paise=unit_price * item.quantity,
                is_purchasable=(
                    live is not None
                    and variant.is_active
                    and variant.product.is_active
                ),
                offer_id=live.offer_id if live else None,
                seller_id=live.seller_id if live else None,
            )
        )
    return CartSummary(
        id=cart.id,
        guest_token=resolved.guest_token,
        expires_at=as_utc(cart.expires_at),
        lines=lines,
    )


async def get_cart(db: AsyncSession, identity: CartIdentity) -> CartSummary:
    async with unit_of_work(db):
        resolved = await resolve_cart(db, identity, create_if_missing=True)
    return await summarize_cart(db, resolved)


async def add_item(
    db: AsyncSession,
    identity: CartIdentity,
    *,
    variant_id: uuid.UUID,
    quantity: Any,
) -> CartSummary:
    """Add ``quantity`` of a variant, on top of what the cart already holds."""
    quantity = normalize_quantity(quantity)
    if quantity < 1:
        raise InvalidStateError("Quantity must be at least 1")

    async with unit_of_work(db):
        await ensure_variant_purchasable(db, variant_id)
        resolved = await resolve_cart(db, identity, create_if_missing=True)
        await _increment_item(
            db, cart_id=resolved.cart.id, variant_id=variant_id, quantity=quantity
        )
        _touch(resolved.cart)
        await db.flush()

    return await summarize_cart(db, resolved)


async def update_item_quantity(
    db: AsyncSession,
    identity: CartIdentity,
    *,
    variant_id: uuid.UUID,
    quantity: Any,
) -> CartSummary:
    """Set the quantity of a line. Zero or less removes it."""
    quantity = normalize_quantity(quantity)

    async with unit_of_work(db):
        resolved = await resolve_cart(db, identity, create_if_missing=True)
        cart = resolved.cart
        if quantity <= 0:
            await db.execute(
                delete(CartItem).where(
                    CartItem.cart_id == cart.id, CartItem.variant_id == variant_id
                )
            )
        else:
            current = await db.scalar(
                select(CartItem.quantity).where(
                    CartItem.cart_id == cart.id, CartItem.variant_id == variant_id
                )
            )
            if current is None or quantity > current:
                await ensure_variant_purchasable(db, variant_id)
            await _set_item(db, cart_id=cart.id, variant_id=variant_id, quantity=quantity)
        _touch(cart)
        await db.flush()

    return await summarize_cart(db, resolved)


async def remove_item(
    db: AsyncSession, identity: CartIdentity, *, variant_id: uuid.UUID
) -> CartSummary:
    async with unit_of_work(db):
        resolved = await resolve_cart(db, identity, create_if_missing=True)
        await db.execute(
            delete(CartItem).where(
                CartItem.cart_id == resolved.cart.id, CartItem.variant_id == variant_id
            )
        )
        _touch(resolved.cart)
        await db.flush()

    return await summarize_cart(db, resolved)


async def clear_cart(db: AsyncSession, identity: CartIdentity) -> CartSummary:
    async with unit_of_work(db):
        resolved = await resolve_cart(db, identity, create_if_missing=True)
        await db.execute(delete(CartItem).where(CartItem.cart_id == resolved.cart.id))
        _touch(resolved.cart)
        await db.flush()

    return await summarize_cart(db, resolved)


async def purge_expired_guest_carts(
    db: AsyncSession, *, now: Optional[datetime] = None
) -> int:
    """Physically delete guest carts whose TTL has passed."""
    now = now or utc_now()
    async with unit_of_work(db):
        result = await db.execute(
            select(Cart.id).where(Cart.user_id.is_(None), Cart.expires_at <= now)
        )
        cart_ids = list(result.scalars().all())
        if cart_ids:
            await db.execute(delete(CartItem).where(CartItem.cart_id.in_(cart_ids)))
            await db.execute(
                delete(Cart)
                .where(Cart.id.in_(cart_ids))
                .execution_options(synchronize_session=False)
            )

    if cart_ids:
        logger.info("Purged %d expired guest carts", len(cart_ids))
    return len(cart_ids)
