"""Razorpay webhook endpoint."""

from fastapi import APIRouter, Depends, Request
from libs.db.session import get_async_db
from services.payments_service.razorpay_client import (
    RazorpayClient,
    get_razorpay_client,
)
from services.payments_service.schemas import WebhookAck
from services.payments_service.services.reconciler import handle_webhook
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhooks/razorpay", response_model=WebhookAck)
async def razorpay_webhook(
    request: Request,
    gateway: RazorpayClient = Depends(get_razorpay_client),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Razorpay webhook endpoint (no auth; verified by x-razorpay-signature).
    """
    result = await handle_webhook(
        db,
        gateway,
        body=await request.body(),
        signature=request.headers.get("x-razorpay-signature"),
        event_id=request.headers.get("x-razorpay-event-id"),
    )
    return WebhookAck(**result)
