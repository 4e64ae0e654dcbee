"""Market cart router: cart lookup and item mutations."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, Response
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.market_service.schemas import CartItemAdd, CartItemUpdate, CartResponse
from services.market_service.services import cart_store
from services.market_service.services.cart_store import (
    GUEST_TOKEN_HEADER,
    CartIdentity,
    CartSummary,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["cart"])


def get_cart_identity(
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    cart_token: Optional[str] = Header(None, alias=GUEST_TOKEN_HEADER),
) -> CartIdentity:
    return CartIdentity(
        user_id=current_user.user_id if current_user else None,
        guest_token=cart_token or None,
    )


def _cart_response(summary: CartSummary, response: Response) -> CartResponse:
    if summary.guest_token:
        response.headers[GUEST_TOKEN_HEADER] = summary.guest_token
    return CartResponse.model_validate(summary)


@router.get("/cart", response_model=CartResponse)
async def get_cart(
    response: Response,
    identity: CartIdentity = Depends(get_cart_identity),
    db: AsyncSession = Depends(get_async_db),
):
    """Return the caller's cart, creating a guest cart if needed."""
    summary = await cart_store.get_cart(db, identity)
    return _cart_response(summary, response)


@router.post("/cart/items", response_model=CartResponse)
async def add_cart_item(
    payload: CartItemAdd,
    response: Response,
    identity: CartIdentity = Depends(get_cart_identity),
    db: AsyncSession = Depends(get_async_db),
):
    summary = await cart_store.add_item(
        db, identity, variant_id=payload.variant_id, quantity=payload.quantity
    )
    return _cart_response(summary, response)


@router.patch("/cart/items/{variant_id}", response_model=CartResponse)
async def update_cart_item(
    variant_id: uuid.UUID,
    payload: CartItemUpdate,
    response: Response,
    identity: CartIdentity = Depends(get_cart_identity),
    db: AsyncSession = Depends(get_async_db),
):
    """Set a line's quantity; zero removes the line."""
    summary = await cart_store.update_item_quantity(
        db, identity, variant_id=variant_id, quantity=payload.quantity
    )
    return _cart_response(summary, response)


@router.delete("/cart/items/{variant_id}", response_model=CartResponse)
async def remove_cart_item(
    variant_id: uuid.UUID,
    response: Response,
    identity: CartIdentity = Depends(get_cart_identity),
    db: AsyncSession = Depends(get_async_db),
):
    summary = await cart_store.remove_item(db, identity, variant_id=variant_id)
    return _cart_response(summary, response)


@router.delete("/cart", response_model=CartResponse)
async def clear_cart(
    response: Response,
    identity: CartIdentity = Depends(get_cart_identity),
    db: AsyncSession = Depends(get_async_db),
):
    summary = await cart_store.clear_cart(db, identity)
    return _cart_response(summary, response)
