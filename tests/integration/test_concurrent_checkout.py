"""Concurrent settlement against a real Postgres database.

Run with ``TEST_DATABASE_URL=postgresql+psycopg://...``; skipped otherwise.
"""

import asyncio

import pytest
from libs.common.errors import InsufficientStockError
from services.market_service.models import Offer, Order
from services.market_service.schemas import BuyNowRequest
from services.market_service.services.checkout import CheckoutContext, buy_now
from sqlalchemy import func, select
from tests.factories import address, seed_listing


async def _attempt(session_factory, variant_id, email):
    details = BuyNowRequest.model_validate(
        {
            "billing_address": address(),
            "contact": {"email": email},
            "variant_id": str(variant_id),
            "quantity": 1,
        }
    )
    async with session_factory() as db:
        return await buy_now(db, CheckoutContext(), details)


@pytest.mark.asyncio
@pytest.mark.integration
@pytest.mark.postgres
async def test_last_unit_is_sold_exactly_once(session_factory, db_session):
    listing = await seed_listing(db_session, stock_qty=1)

    results = await asyncio.gather(
        _attempt(session_factory, listing.variant.id, "first@test.com"),
        _attempt(session_factory, listing.variant.id, "second@test.com"),
        return_exceptions=True,
    )

    orders = [r for r in results if isinstance(r, Order)]
    failures = [r for r in results if isinstance(r, InsufficientStockError)]
    assert len(orders) == 1, results
    assert len(failures) == 1, results

    stock = await db_session.scalar(
        select(Offer.stock_qty)
        .where(Offer.id == listing.offer.id)
        .execution_options(populate_existing=True)
    )
    assert stock == 0
    assert await db_session.scalar(select(func.count()).select_from(Order)) == 1


@pytest.mark.asyncio
@pytest.mark.integration
@pytest.mark.postgres
async def test_parallel_buyers_never_oversell(session_factory, db_session):
    listing = await seed_listing(db_session, stock_qty=3)

    results = await asyncio.gather(
        *(
            _attempt(session_factory, listing.variant.id, f"buyer{i}@test.com")
            for i in range(6)
        ),
        return_exceptions=True,
    )

    sold = sum(isinstance(r, Order) for r in results)
    assert sold == 3, results
    assert all(isinstance(r, (Order, InsufficientStockError)) for r in results), results
