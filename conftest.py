import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

# Settings are read at import time by most modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "rzp_webhook_secret")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from libs.common.config import get_settings
from libs.db.base import Base
from libs.db.session import get_async_db

# Import all models so metadata includes every table
from services.market_service import models as _market_models  # noqa: F401
from services.payments_service import models as _payments_models  # noqa: F401
from tests.fakes import FakeGateway

get_settings.cache_clear()
settings = get_settings()

# Point at a disposable PostgreSQL database to run the concurrency tests
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


def pytest_collection_modifyitems(config, items):
    if TEST_DATABASE_URL and TEST_DATABASE_URL.startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="TEST_DATABASE_URL is not a PostgreSQL URL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


@pytest_asyncio.fixture
async def test_engine():
    """
    Fresh schema per test: in-memory SQLite by default, or the database at
    TEST_DATABASE_URL (dropped and recreated around each test).
    """
    if TEST_DATABASE_URL:
        engine = create_async_engine(TEST_DATABASE_URL, future=True)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    else:
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session configured like the application's. Services commit their
    own units of work, so isolation comes from the per-test schema.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def email_client():
    """Replace the Communications Service client; no test sends real email."""
    client = MagicMock()
    client.send_template = AsyncMock(return_value="msg-test")
    with patch(
        "services.market_service.services.notifications.get_email_client",
        return_value=client,
    ):
        yield client


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway(key_id=settings.RAZORPAY_KEY_ID)


@pytest_asyncio.fixture
async def market_client(db_session) -> AsyncGenerator[AsyncClient, None]:
    from services.market_service.app.main import app

    app.dependency_overrides[get_async_db] = lambda: db_session
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def payments_client(db_session, fake_gateway) -> AsyncGenerator[AsyncClient, None]:
    from services.payments_service.app.main import app
    from services.payments_service.razorpay_client import get_razorpay_client

    app.dependency_overrides[get_async_db] = lambda: db_session
    app.dependency_overrides[get_razorpay_client] = lambda: fake_gateway
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
