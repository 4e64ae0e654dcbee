"""Background maintenance tasks for market service."""

from __future__ import annotations

from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from services.market_service.services.cart_store import purge_expired_guest_carts

logger = get_logger(__name__)


async def purge_guest_carts() -> int:
    """Delete guest carts past their TTL. Lookups already ignore them."""
    async with AsyncSessionLocal() as db:
        purged = await purge_expired_guest_carts(db)
    logger.info("Guest cart purge finished: %d removed", purged)
    return purged
