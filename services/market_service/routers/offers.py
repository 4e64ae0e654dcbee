"""Market offers router: public live offers and seller offer management."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_seller
from libs.auth.models import AuthUser
from libs.common.errors import NotFoundError
from libs.db.session import get_async_db
from services.market_service.schemas import (
    LiveOfferResponse,
    OfferResponse,
    OfferUpsertRequest,
)
from services.market_service.services import offer_ledger
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["offers"])


def _seller_id(user: AuthUser) -> uuid.UUID:
    try:
        return uuid.UUID(user.seller_id)
    except (TypeError, ValueError):
        raise NotFoundError("Seller not found") from None


@router.get("/variants/{variant_id}/live-offer", response_model=LiveOfferResponse)
async def get_live_offer(
    variant_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_db),
):
    """The offer a buyer gets right now; 404 means not purchasable."""
    live = await offer_ledger.get_live_offer(db, variant_id)
    if live is None:
        raise NotFoundError("No live offer for this variant")
    return LiveOfferResponse.model_validate(live)


@router.get("/seller/offers", response_model=list[OfferResponse])
async def list_my_offers(
    current_user: AuthUser = Depends(require_seller),
    db: AsyncSession = Depends(get_async_db),
):
    offers = await offer_ledger.list_seller_offers(
        db, seller_id=_seller_id(current_user)
    )
    return [OfferResponse.model_validate(offer) for offer in offers]


@router.put("/seller/offers", response_model=OfferResponse)
async def upsert_offer(
    payload: OfferUpsertRequest,
    current_user: AuthUser = Depends(require_seller),
    db: AsyncSession = Depends(get_async_db),
):
    offer = await offer_ledger.upsert_seller_offer(
        db, seller_id=_seller_id(current_user), **payload.model_dump()
    )
    return OfferResponse.model_validate(offer)


@router.post("/seller/offers/{offer_id}/deactivate", response_model=OfferResponse)
async def deactivate_offer(
    offer_id: uuid.UUID,
    current_user: AuthUser = Depends(require_seller),
    db: AsyncSession = Depends(get_async_db),
):
    offer = await offer_ledger.deactivate_offer(
        db, seller_id=_seller_id(current_user), offer_id=offer_id
    )
    return OfferResponse.model_validate(offer)
