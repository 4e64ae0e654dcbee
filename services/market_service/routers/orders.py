"""Market orders router: history, lookup and cancellation."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import get_current_user, get_optional_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.market_service.schemas import OrderListResponse, OrderResponse
from services.market_service.services import orders as order_service
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["orders"])


def _viewer(current_user: Optional[AuthUser], email: Optional[str]) -> dict:
    return {
        "user_id": current_user.user_id if current_user else None,
        "email": email or (current_user.email if current_user else None),
    }


@router.get("/orders", response_model=OrderListResponse)
async def list_my_orders(
    cursor: Optional[uuid.UUID] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=50),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    orders, next_cursor = await order_service.list_orders_for_user(
        db, user_id=current_user.user_id, cursor=cursor, limit=limit
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        next_cursor=next_cursor,
    )


@router.get("/orders/lookup", response_model=OrderResponse)
async def lookup_guest_order(
    order_id: uuid.UUID = Query(...),
    email: str = Query(..., min_length=3),
    db: AsyncSession = Depends(get_async_db),
):
    """Guest order lookup by order id and checkout email."""
    order = await order_service.get_order_for_viewer(db, order_id, email=email)
    return OrderResponse.model_validate(order)


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    email: Optional[str] = Query(None),
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    order = await order_service.get_order_for_viewer(
        db, order_id, **_viewer(current_user, email)
    )
    return OrderResponse.model_validate(order)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: uuid.UUID,
    email: Optional[str] = Query(None),
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    order = await order_service.cancel_order(
        db, order_id, **_viewer(current_user, email)
    )
    return OrderResponse.model_validate(order)
