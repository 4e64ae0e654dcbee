"""Guarded stock changes on offers.

Stock is never read-modified-written in Python. A decrement is a single
conditional UPDATE (``stock_qty >= requested``); when it matches no row the
caller lost the race and must abort its transaction. Every change is logged as
an ``OfferStockMovement`` and followed by a live offer recompute.
"""

import uuid
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.errors import InsufficientStockError, InvalidStateError, NotFoundError
from libs.common.logging import get_logger
from services.market_service.models import Offer, OfferStockMovement, StockMovementType
from services.market_service.services.offer_ledger import recompute_live_offer
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def take_offer_stock(
    db: AsyncSession,
    *,
    offer_id: uuid.UUID,
    variant_id: uuid.UUID,
    quantity: int,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> None:
    """Decrement an active offer's stock by ``quantity`` or raise.

    Must run inside the caller's transaction; an ``InsufficientStockError``
    leaves nothing behind once that transaction rolls back.
    """
    if quantity < 1:
        raise InvalidStateError("Quantity must be at least 1")

    result = await db.execute(
        update(Offer)
        .where(
            Offer.id == offer_id,
            Offer.is_active.is_(True),
            Offer.stock_qty >= quantity,
        )
        .values(
            stock_qty=Offer.stock_qty - quantity,
            version=Offer.version + 1,
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "Stock race lost on offer %s (variant %s, requested %d)",
            offer_id,
            variant_id,
            quantity,
        )
        raise InsufficientStockError(variant_id=variant_id, requested=quantity)

    db.add(
        OfferStockMovement(
            offer_id=offer_id,
            variant_id=variant_id,
            movement_type=StockMovementType.SALE,
            quantity=-quantity,
            reference_type=reference_type,
            reference_id=reference_id,
        )
    )
    await db.flush()
    await recompute_live_offer(db, variant_id)


async def restock_offer(
    db: AsyncSession,
    *,
    offer_id: uuid.UUID,
    variant_id: uuid.UUID,
    quantity: int,
    movement_type: StockMovementType = StockMovementType.RESTOCK,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> None:
    """Return ``quantity`` units to an offer (cancellations, returns)."""
    if quantity < 1:
        raise InvalidStateError("Quantity must be at least 1")

    result = await db.execute(
        update(Offer)
        .where(Offer.id == offer_id)
        .values(
            stock_qty=Offer.stock_qty + quantity,
            version=Offer.version + 1,
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError("Offer not found", {"offer_id": str(offer_id)})

    db.add(
        OfferStockMovement(
            offer_id=offer_id,
            variant_id=variant_id,
            movement_type=movement_type,
            quantity=quantity,
            reference_type=reference_type,
            reference_id=reference_id,
        )
    )
    await db.flush()
    await recompute_live_offer(db, variant_id)
    logger.info("Restocked offer %s by %d", offer_id, quantity)
