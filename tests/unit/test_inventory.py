"""Unit tests for guarded offer stock changes."""

import uuid

import pytest
from libs.common.errors import InsufficientStockError, InvalidStateError, NotFoundError
from libs.db.session import unit_of_work
from services.market_service.models import Offer, OfferStockMovement, StockMovementType
from services.market_service.services.inventory import restock_offer, take_offer_stock
from services.market_service.services.offer_ledger import get_live_offer
from sqlalchemy import select
from tests.factories import seed_listing


async def _stock(db, offer_id) -> int:
    return await db.scalar(
        select(Offer.stock_qty)
        .where(Offer.id == offer_id)
        .execution_options(populate_existing=True)
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_take_stock_decrements_and_logs_movement(db_session):
    listing = await seed_listing(db_session, stock_qty=5)

    async with unit_of_work(db_session):
        await take_offer_stock(
            db_session,
            offer_id=listing.offer.id,
            variant_id=listing.variant.id,
            quantity=3,
            reference_type="order",
            reference_id="order-1",
        )

    assert await _stock(db_session, listing.offer.id) == 2
    movements = (
        await db_session.execute(
            select(OfferStockMovement).where(
                OfferStockMovement.offer_id == listing.offer.id
            )
        )
    ).scalars().all()
    assert [(m.movement_type, m.quantity) for m in movements] == [
        (StockMovementType.SALE, -3)
    ]
    live = await get_live_offer(db_session, listing.variant.id)
    assert live.stock_qty_snapshot == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_take_more_than_available_changes_nothing(db_session):
    listing = await seed_listing(db_session, stock_qty=2)
    offer_id = listing.offer.id

    with pytest.raises(InsufficientStockError) as exc_info:
        async with unit_of_work(db_session):
            await take_offer_stock(
                db_session,
                offer_id=listing.offer.id,
                variant_id=listing.variant.id,
                quantity=3,
            )

    assert exc_info.value.details["retryable"] is True
    assert exc_info.value.details["requested"] == 3
    assert await _stock(db_session, offer_id) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_taking_last_unit_clears_live_offer(db_session):
    listing = await seed_listing(db_session, stock_qty=1)

    async with unit_of_work(db_session):
        await take_offer_stock(
            db_session,
            offer_id=listing.offer.id,
            variant_id=listing.variant.id,
            quantity=1,
        )

    assert await _stock(db_session, listing.offer.id) == 0
    assert await get_live_offer(db_session, listing.variant.id) is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_take_from_inactive_offer_fails(db_session):
    listing = await seed_listing(db_session, stock_qty=5, is_active=False)

    with pytest.raises(InsufficientStockError):
        await take_offer_stock(
            db_session,
            offer_id=listing.offer.id,
            variant_id=listing.variant.id,
            quantity=1,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_take_rejects_non_positive_quantity(db_session):
    listing = await seed_listing(db_session)

    with pytest.raises(InvalidStateError):
        await take_offer_stock(
            db_session,
            offer_id=listing.offer.id,
            variant_id=listing.variant.id,
            quantity=0,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_restock_brings_variant_back(db_session):
    listing = await seed_listing(db_session, stock_qty=1)
    async with unit_of_work(db_session):
        await take_offer_stock(
            db_session,
            offer_id=listing.offer.id,
            variant_id=listing.variant.id,
            quantity=1,
        )

    async with unit_of_work(db_session):
        await restock_offer(
            db_session,
            offer_id=listing.offer.id,
            variant_id=listing.variant.id,
            quantity=1,
            reference_type="order_cancellation",
        )

    assert await _stock(db_session, listing.offer.id) == 1
    live = await get_live_offer(db_session, listing.variant.id)
    assert live.offer_id == listing.offer.id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_restock_unknown_offer_not_found(db_session):
    with pytest.raises(NotFoundError):
        await restock_offer(
            db_session, offer_id=uuid.uuid4(), variant_id=uuid.uuid4(), quantity=1
        )
