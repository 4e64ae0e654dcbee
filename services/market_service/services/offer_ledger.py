"""Offer ledger: seller offers and the per-variant live offer cache.

The live offer of a variant is recomputed synchronously, inside the caller's
transaction, by every operation that can change which offer wins (offer
writes, stock changes, seller or location status changes). There is no
background reconciliation.
"""

import uuid
from datetime import datetime
from typing import Iterable, Optional

from libs.common.datetime_utils import utc_now
from libs.common.errors import ConflictError, NotFoundError
from libs.common.logging import get_logger
from libs.db.session import unit_of_work
from libs.db.upsert import insert_for
from services.market_service.models import (
    AuthenticityGrade,
    LiveOffer,
    Offer,
    OfferCondition,
    ProductVariant,
    Seller,
    SellerLocation,
    SellerLocationStatus,
)
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

AUTH_RANK = {
    AuthenticityGrade.SEALED: 3,
    AuthenticityGrade.STORE_BILL: 2,
    AuthenticityGrade.VERIFIED_UNKNOWN: 1,
}
COND_RANK = {
    OfferCondition.NEW: 3,
    OfferCondition.OPEN_BOX: 2,
    OfferCondition.TESTER: 1,
}

# Best first. The id breaks exact ties so the winner never flaps.
OFFER_RANKING = (
    Offer.effective_price_paise.asc(),
    Offer.auth_rank.desc(),
    Offer.cond_rank.desc(),
    Offer.created_at.asc(),
    Offer.id.asc(),
)


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


def eligible_offers(variant_id: uuid.UUID, now: datetime):
    """Select offers of a variant that may currently be sold, best first."""
    return (
        select(Offer)
        .join(Seller, Seller.id == Offer.seller_id)
        .join(SellerLocation, SellerLocation.id == Offer.seller_location_id)
        .where(
            Offer.variant_id == variant_id,
            Offer.is_active.is_(True),
            Offer.stock_qty > 0,
            or_(Offer.expires_at.is_(None), Offer.expires_at > now),
            Seller.is_active.is_(True),
            SellerLocation.status == SellerLocationStatus.ACTIVE,
        )
        .order_by(*OFFER_RANKING)
    )


async def find_best_offer(
    db: AsyncSession, variant_id: uuid.UUID
) -> Optional[Offer]:
    """Return the offer that wins right now, read from committed state."""
    result = await db.execute(
        eligible_offers(variant_id, utc_now())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get_live_offer(
    db: AsyncSession, variant_id: uuid.UUID
) -> Optional[LiveOffer]:
    result = await db.execute(
        select(LiveOffer)
        .where(LiveOffer.variant_id == variant_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_live_offers(
    db: AsyncSession, variant_ids: Iterable[uuid.UUID]
) -> dict[uuid.UUID, LiveOffer]:
    ids = list(set(variant_ids))
    if not ids:
        return {}
    result = await db.execute(
        select(LiveOffer)
        .where(LiveOffer.variant_id.in_(ids))
        .execution_options(populate_existing=True)
    )
    return {live.variant_id: live for live in result.scalars().all()}


async def recompute_live_offer(
    db: AsyncSession, variant_id: uuid.UUID
) -> Optional[LiveOffer]:
    """
    Rebuild the live offer of ``variant_id`` from the offers table.

    Deletes the cache row when no offer is eligible. Runs in the caller's
    transaction and does not commit.
    """
    best = await find_best_offer(db, variant_id)

    if best is None:
        await db.execute(delete(LiveOffer).where(LiveOffer.variant_id == variant_id))
        logger.info("Variant %s has no eligible offer; live offer cleared", variant_id)
        return None

    values = {
        "offer_id": best.id,
        "seller_id": best.seller_id,
        "seller_location_id": best.seller_location_id,
        "price_paise": best.price_paise,
        "shipping_paise": best.shipping_paise,
        "effective_price_paise": best.effective_price_paise,
        "stock_qty_snapshot": best.stock_qty,
        "condition": best.condition,
        "auth_grade": best.auth_grade,
        "computed_at": utc_now(),
    }
    stmt = insert_for(db, LiveOffer).values(variant_id=variant_id, **values)
    stmt = stmt.on_conflict_do_update(index_elements=["variant_id"], set_=values)
    await db.execute(stmt)

    logger.debug(
        "Live offer for variant %s -> offer %s (price=%d, stock=%d)",
        variant_id,
        best.id,
        best.price_paise,
        best.stock_qty,
    )
    return await get_live_offer(db, variant_id)


async def recompute_live_offers(
    db: AsyncSession, variant_ids: Iterable[uuid.UUID]
) -> None:
    for variant_id in sorted(set(variant_ids), key=str):
        await recompute_live_offer(db, variant_id)


# ---------------------------------------------------------------------------
# Seller offer management
# ---------------------------------------------------------------------------


async def _load_offer(db: AsyncSession, offer_id: uuid.UUID) -> Optional[Offer]:
    result = await db.execute(
        select(Offer)
        .where(Offer.id == offer_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def upsert_seller_offer(
    db: AsyncSession,
    *,
    seller_id: uuid.UUID,
    variant_id: uuid.UUID,
    seller_location_id: uuid.UUID,
    price_paise: int,
    shipping_paise: int,
    stock_qty: int,
    condition: OfferCondition,
    auth_grade: AuthenticityGrade,
    is_active: Optional[bool] = None,
    expires_at: Optional[datetime] = None,
    expected_version: Optional[int] = None,
) -> Offer:
    """Create or update the seller's offer for a variant at one location.

    ``is_active`` defaults to ``stock_qty > 0``. When ``expected_version`` is
    given the update only applies if the stored version still matches;
    otherwise a ``ConflictError`` is raised and nothing changes.
    """
    async with unit_of_work(db):
        location = await db.scalar(
            select(SellerLocation).where(
                SellerLocation.id == seller_location_id,
                SellerLocation.seller_id == seller_id,
            )
        )
        if location is None:
            raise NotFoundError("Seller location not found")

        variant = await db.get(ProductVariant, variant_id)
        if variant is None:
            raise NotFoundError("Variant not found")

        fields = {
            "price_paise": price_paise,
            "shipping_paise": shipping_paise,
            "effective_price_paise": price_paise + shipping_paise,
            "stock_qty": stock_qty,
            "condition": condition,
            "auth_grade": auth_grade,
            "cond_rank": COND_RANK[condition],
            "auth_rank": AUTH_RANK[auth_grade],
            "is_active": stock_qty > 0 if is_active is None else is_active,
            "expires_at": expires_at,
        }

        existing = await db.scalar(
            select(Offer).where(
                Offer.seller_id == seller_id,
                Offer.seller_location_id == seller_location_id,
                Offer.variant_id == variant_id,
            )
        )

        if existing is None:
            offer = Offer(
                seller_id=seller_id,
                seller_location_id=seller_location_id,
                variant_id=variant_id,
                version=1,
                **fields,
            )
            db.add(offer)
            try:
                await db.flush()
            except IntegrityError as exc:
                raise ConflictError(
                    "An offer for this variant and location already exists"
                ) from exc
            offer_id = offer.id
        else:
            offer_id = existing.id
            conditions = [Offer.id == offer_id]
            if expected_version is not None:
                conditions.append(Offer.version == expected_version)
            result = await db.execute(
                update(Offer)
                .where(*conditions)
                .values(version=Offer.version + 1, updated_at=utc_now(), **fields)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(
                    "Offer was modified by another request",
                    {"offer_id": str(offer_id), "expected_version": expected_version},
                )

        await recompute_live_offer(db, variant_id)

    logger.info(
        "Seller %s upserted offer %s for variant %s (price=%d, stock=%d)",
        seller_id,
        offer_id,
        variant_id,
        price_paise,
        stock_qty,
    )
    return await _load_offer(db, offer_id)


async def deactivate_offer(
    db: AsyncSession, *, seller_id: uuid.UUID, offer_id: uuid.UUID
) -> Offer:
    async with unit_of_work(db):
        offer = await db.scalar(
            select(Offer).where(Offer.id == offer_id, Offer.seller_id == seller_id)
        )
        if offer is None:
            raise NotFoundError("Offer not found")
        await db.execute(
            update(Offer)
            .where(Offer.id == offer_id)
            .values(is_active=False, version=Offer.version + 1, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await recompute_live_offer(db, offer.variant_id)

    logger.info("Seller %s deactivated offer %s", seller_id, offer_id)
    return await _load_offer(db, offer_id)


async def list_seller_offers(db: AsyncSession, *, seller_id: uuid.UUID) -> list[Offer]:
    result = await db.execute(
        select(Offer)
        .where(Offer.seller_id == seller_id)
        .order_by(Offer.created_at.desc())
    )
    return list(result.scalars().all())


async def _variants_offered_by(db: AsyncSession, *conditions) -> list[uuid.UUID]:
    result = await db.execute(select(Offer.variant_id).where(*conditions).distinct())
    return list(result.scalars().all())


async def set_seller_active(
    db: AsyncSession, *, seller_id: uuid.UUID, is_active: bool
) -> Seller:
    """Enable or disable a seller and refresh every variant it offers."""
    async with unit_of_work(db):
        seller = await db.get(Seller, seller_id)
        if seller is None:
            raise NotFoundError("Seller not found")
        seller.is_active = is_active
        await db.flush()
        variant_ids = await _variants_offered_by(db, Offer.seller_id == seller_id)
        await recompute_live_offers(db, variant_ids)

    logger.info(
        "Seller %s active=%s; recomputed %d variants",
        seller_id,
        is_active,
        len(variant_ids),
    )
    return seller


async def set_location_status(
    db: AsyncSession,
    *,
    location_id: uuid.UUID,
    status: SellerLocationStatus,
) -> SellerLocation:
    async with unit_of_work(db):
        location = await db.get(SellerLocation, location_id)
        if location is None:
            raise NotFoundError("Seller location not found")
        location.status = status
        await db.flush()
        variant_ids = await _variants_offered_by(
            db, Offer.seller_location_id == location_id
        )
        await recompute_live_offers(db, variant_ids)

    logger.info("Location %s status=%s", location_id, status.value)
    return location
