"""Background reconciliation tasks for payments service."""

from __future__ import annotations

from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from services.payments_service.razorpay_client import RazorpayClient
from services.payments_service.services.reconciler import reconcile_pending_payments

logger = get_logger(__name__)


async def reconcile_pending_razorpay_payments() -> int:
    """Pull the gateway state of stale pending sessions and apply it."""
    gateway = RazorpayClient()
    async with AsyncSessionLocal() as db:
        applied = await reconcile_pending_payments(db, gateway)
    logger.info("Pending payment reconciliation applied %d updates", applied)
    return applied
