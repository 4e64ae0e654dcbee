"""Order emails. Best-effort: a failed send is logged and never raised."""

from typing import Optional

from libs.common.config import get_settings
from libs.common.currency import format_inr
from libs.common.emails.client import get_email_client
from libs.common.logging import get_logger
from services.market_service.models import Order, PaymentMode

logger = get_logger(__name__)
settings = get_settings()

ORDER_CONFIRMATION_TEMPLATE = "order_confirmation"
PAYMENT_CONFIRMATION_TEMPLATE = "payment_confirmation"


def display_order_number(order: Order) -> str:
    if order.order_number:
        return order.order_number
    return str(order.id).split("-")[0].upper()


def confirms_at_checkout(order: Order) -> bool:
    """COD and zero-total orders are confirmed immediately; prepaid ones wait
    for the payment confirmation."""
    return order.total_paise == 0 or order.payment_mode == PaymentMode.COD


def order_template_data(order: Order, *, payment_status_label: str) -> dict:
    return {
        "order_number": display_order_number(order),
        "order_url": f"{settings.FRONTEND_URL}/orders/{order.id}",
        "payment_mode": order.payment_mode.value,
        "payment_status": payment_status_label,
        "items": [
            {
                "name": item.product_name,
                "sku": item.sku,
                "size_ml": item.size_ml,
                "quantity": item.quantity,
                "unit_price": format_inr(item.unit_price_paise),
                "line_total": format_inr(item.line_total_paise),
            }
            for item in order.items
        ],
        "subtotal": format_inr(order.subtotal_paise),
        "tax": format_inr(order.tax_paise),
        "shipping": format_inr(order.shipping_paise),
        "discount": format_inr(order.discount_paise),
        "total": format_inr(order.total_paise),
    }


async def send_order_email(
    order: Order, *, template_type: str, payment_status_label: str
) -> Optional[str]:
    """Send an order email; returns the message id, or None if nothing was sent."""
    recipient = order.contact_email or order.guest_email
    if not recipient:
        logger.info("Order %s has no contact email; skipping %s", order.id, template_type)
        return None

    try:
        message_id = await get_email_client().send_template(
            template_type=template_type,
            to_email=recipient,
            template_data=order_template_data(
                order, payment_status_label=payment_status_label
            ),
        )
    except Exception:
        logger.exception("Failed to send %s email for order %s", template_type, order.id)
        return None

    logger.info("Sent %s email for order %s", template_type, order.id)
    return message_id


async def notify_order_placed(order: Order) -> Optional[str]:
    if not confirms_at_checkout(order):
        return None
    label = "Paid" if order.total_paise == 0 else "Pay on delivery"
    return await send_order_email(
        order,
        template_type=ORDER_CONFIRMATION_TEMPLATE,
        payment_status_label=label,
    )


async def notify_payment_confirmed(order: Order) -> Optional[str]:
    return await send_order_email(
        order,
        template_type=PAYMENT_CONFIRMATION_TEMPLATE,
        payment_status_label="Paid",
    )
