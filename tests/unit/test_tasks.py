"""Unit tests for the arq task entry points."""

from datetime import timedelta

import pytest
from libs.common.datetime_utils import utc_now
from services.market_service import tasks as market_tasks
from services.market_service.models import Cart
from services.payments_service import tasks as payments_tasks
from sqlalchemy import func, select
from tests.factories import CartFactory


@pytest.mark.asyncio
@pytest.mark.unit
async def test_purge_guest_carts_task(monkeypatch, session_factory, db_session):
    now = utc_now()
    db_session.add_all(
        [
            CartFactory.create(guest_token="tok-old", expires_at=now - timedelta(days=1)),
            CartFactory.create(guest_token="tok-new", expires_at=now + timedelta(days=1)),
        ]
    )
    await db_session.commit()
    monkeypatch.setattr(market_tasks, "AsyncSessionLocal", session_factory)

    assert await market_tasks.purge_guest_carts() == 1
    assert await db_session.scalar(select(func.count()).select_from(Cart)) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_task_uses_configured_gateway(
    monkeypatch, session_factory, fake_gateway
):
    monkeypatch.setattr(payments_tasks, "AsyncSessionLocal", session_factory)
    monkeypatch.setattr(payments_tasks, "RazorpayClient", lambda: fake_gateway)

    assert await payments_tasks.reconcile_pending_razorpay_payments() == 0
