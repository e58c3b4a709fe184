"""Order confirmation email, sent through the Resend HTTP API."""

from html import escape
from typing import List

import httpx

from config import settings
from log import get_logger

logger = get_logger("notifications")

RESEND_URL = "https://api.resend.com/emails"


def render_confirmation(order: dict) -> str:
    rows: List[str] = []
    for item in order.get("items", []):
        rows.append(
            '<div style="display: flex; justify-content: space-between; margin-bottom: 10px;">'
            f"<span>{escape(item['name'])} (x{item['quantity']})</span>"
            f"<span>{item['price'] * item['quantity']:g}</span>"
            "</div>"
        )
    return (
        '<div style="font-family: sans-serif; max-width: 600px; margin: auto; padding: 20px;">'
        '<h1 style="color: #5B1A1A; text-align: center;">Thank You for Your Order!</h1>'
        f"<p>Hi {escape(order.get('user_name') or 'there')},</p>"
        "<p>We've received your order and we're getting it ready for shipment.</p>"
        f"<h3>Order Summary (#{escape(order['short_order_id'])})</h3>"
        + "".join(rows)
        + '<div style="display: flex; justify-content: space-between; font-weight: bold; margin-top: 20px;">'
        f"<span>Total</span><span>{order['total']:g}</span></div>"
        "</div>"
    )


def send_order_confirmation(order: dict) -> bool:
    """
    Best-effort confirmation email. Returns False instead of raising so that a
    mail outage never undoes an order that has already been paid for.
    """
    recipient = order.get("user_email")
    if not settings.resend_api_key or not recipient:
        logger.warning("confirmation_email_skipped", order_id=str(order.get("_id")), has_key=bool(settings.resend_api_key))
        return False

    payload = {
        "from": settings.mail_from,
        "to": [recipient],
        "subject": f"Your Order Confirmation (#{order['short_order_id']})",
        "html": render_confirmation(order),
    }
    try:
        response = httpx.post(
            RESEND_URL,
            json=payload,
            headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            timeout=10.0,
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("confirmation_email_failed", order_id=str(order.get("_id")), error=str(e))
        return False

    logger.info("confirmation_email_sent", order_id=str(order.get("_id")))
    return True
