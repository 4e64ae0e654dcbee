from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from libs.db.config import AsyncSessionLocal


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an async database session.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block as one explicit transaction.

    Any implicit transaction left open by earlier reads is committed first so
    the block starts on fresh state. The block is committed when it exits
    cleanly and rolled back when it raises; the exception propagates.

    Usage:
        async with unit_of_work(db):
            ...
    """
    if db.in_transaction():
        await db.commit()
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise
