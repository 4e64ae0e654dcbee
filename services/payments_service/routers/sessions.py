"""Payment session creation and checkout confirmation."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.payments_service.razorpay_client import (
    RazorpayClient,
    get_razorpay_client,
)
from services.payments_service.schemas import (
    ConfirmPaymentRequest,
    CreateSessionRequest,
    PaymentConfirmationResponse,
    PaymentSessionResponse,
)
from services.payments_service.services.reconciler import (
    PaymentCaller,
    confirm_payment,
    create_payment_session,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])


def _caller(current_user: Optional[AuthUser], email: Optional[str]) -> PaymentCaller:
    return PaymentCaller(
        user_id=current_user.user_id if current_user else None,
        email=email or (current_user.email if current_user else None),
    )


@router.post("/orders/{order_id}/session", response_model=PaymentSessionResponse)
async def create_session(
    order_id: uuid.UUID,
    payload: Optional[CreateSessionRequest] = None,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    gateway: RazorpayClient = Depends(get_razorpay_client),
    db: AsyncSession = Depends(get_async_db),
):
    """Create or reuse the Razorpay order for a pending marketplace order."""
    session = await create_payment_session(
        db,
        gateway,
        order_id=order_id,
        caller=_caller(current_user, payload.email if payload else None),
    )
    return PaymentSessionResponse.model_validate(session)


@router.post(
    "/orders/{order_id}/confirm", response_model=PaymentConfirmationResponse
)
async def confirm(
    order_id: uuid.UUID,
    payload: ConfirmPaymentRequest,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    gateway: RazorpayClient = Depends(get_razorpay_client),
    db: AsyncSession = Depends(get_async_db),
):
    """Confirm the checkout callback; retrying with the same ids is safe."""
    confirmation = await confirm_payment(
        db,
        gateway,
        order_id=order_id,
        caller=_caller(current_user, payload.email),
        gateway_order_id=payload.razorpay_order_id,
        gateway_payment_id=payload.razorpay_payment_id,
        signature=payload.razorpay_signature,
    )
    return PaymentConfirmationResponse.model_validate(confirmation)
