"""Market checkout router: cart checkout and buy-now."""

from typing import Optional

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.market_service.routers.cart import get_cart_identity
from services.market_service.schemas import (
    BuyNowRequest,
    CheckoutRequest,
    OrderResponse,
)
from services.market_service.services.cart_store import CartIdentity
from services.market_service.services.checkout import (
    CheckoutContext,
    buy_now,
    checkout_cart,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["checkout"])


def get_checkout_context(
    identity: CartIdentity = Depends(get_cart_identity),
    current_user: Optional[AuthUser] = Depends(get_optional_user),
) -> CheckoutContext:
    return CheckoutContext(
        user_id=identity.user_id,
        guest_token=identity.guest_token,
        user_email=current_user.email if current_user else None,
    )


@router.post(
    "/checkout", response_model=OrderResponse, status_code=status.HTTP_201_CREATED
)
async def checkout(
    payload: CheckoutRequest,
    context: CheckoutContext = Depends(get_checkout_context),
    db: AsyncSession = Depends(get_async_db),
):
    """Settle the caller's cart into an order."""
    order = await checkout_cart(db, context, payload)
    return OrderResponse.model_validate(order)


@router.post(
    "/checkout/buy-now",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def checkout_buy_now(
    payload: BuyNowRequest,
    context: CheckoutContext = Depends(get_checkout_context),
    db: AsyncSession = Depends(get_async_db),
):
    order = await buy_now(db, context, payload)
    return OrderResponse.model_validate(order)
