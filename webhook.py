"""
Payment webhook: the only place an Order (and its Payment) comes into being.

Flow for ``checkout.session.completed``:

1. verify the Stripe signature (``payments.verify_event``)
2. decode the order intent carried in the session metadata
3. claim the session id in ``processed_payment`` so a redelivery is a no-op
4. snapshot current product data into line items and insert the order
5. decrement stock, count the coupon redemption, record the payment, email

Steps after the order insert are best effort: each failure is logged with the
order id and the processor still gets ``{"received": true}`` so it does not
keep redelivering an event whose order already exists.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

import catalog
import coupons
import notifications
import orders
import payments
from config import settings
from database import create_document, get_db, now_utc
from errors import MalformedMetadata, WebhookError
from log import get_logger
from schemas import OrderItem, Payment, ShippingAddress

logger = get_logger("webhook")

ADDRESS_FIELDS = ("line1", "line2", "city", "state", "postal_code", "country")


class OrderIntent(BaseModel):
    user_id: Optional[str] = None
    items: List[Tuple[str, int]]
    coupon_code: Optional[str] = None
    discount_amount: float = 0


def decode_metadata(metadata: Optional[Dict[str, Any]]) -> OrderIntent:
    metadata = metadata or {}
    try:
        raw_items = json.loads(metadata.get("items") or "[]")
        items = [(str(i["id"]), int(i["quantity"])) for i in raw_items]
        discount_amount = float(metadata.get("discount_amount") or 0)
    except (ValueError, TypeError, KeyError) as e:
        logger.error("webhook_metadata_malformed", error=str(e))
        raise MalformedMetadata("Malformed order metadata")

    if not items or any(qty <= 0 for _, qty in items):
        raise MalformedMetadata("Malformed order metadata")

    user_id = metadata.get("user_id") or None
    if user_id == "guest":
        user_id = None
    return OrderIntent(
        user_id=user_id,
        items=items,
        coupon_code=(metadata.get("coupon_code") or None),
        discount_amount=discount_amount,
    )


def claim_session(session_id: str) -> bool:
    try:
        get_db()["processed_payment"].insert_one({"_id": session_id, "created_at": now_utc()})
    except DuplicateKeyError:
        return False
    return True


def release_claim(session_id: str) -> None:
    get_db()["processed_payment"].delete_one({"_id": session_id})


def shipping_address(session: Dict[str, Any]) -> ShippingAddress:
    shipping = session.get("shipping_details") or (session.get("collected_information") or {}).get("shipping_details") or {}
    customer = session.get("customer_details") or {}
    address = shipping.get("address") or customer.get("address") or {}
    return ShippingAddress(**{field: address.get(field) or "" for field in ADDRESS_FIELDS})


def materialize_items(intent: OrderIntent) -> Tuple[List[OrderItem], List[str]]:
    """Snapshot the current product record for each ordered item; returns (items, missing ids)."""
    products = catalog.fetch_many(pid for pid, _ in intent.items)
    items, missing = [], []
    for pid, quantity in intent.items:
        product = products.get(pid)
        if product is None:
            missing.append(pid)
            continue
        images = product.get("images") or []
        items.append(OrderItem(
            product_id=pid,
            name=product.get("name", "Product"),
            price=float(product.get("price", 0)),
            quantity=quantity,
            image=images[0] if images else "",
        ))
    return items, missing


def expected_total(items: List[OrderItem], discount_amount: float) -> float:
    return round(sum(i.price * i.quantity for i in items) + settings.shipping_fee - discount_amount, 2)


def record_payment(order: dict, session: Dict[str, Any]) -> None:
    customer = session.get("customer_details") or {}
    short_id = order["short_order_id"]
    payment = Payment(
        user_id=order.get("user_id"),
        order_id=str(order["_id"]),
        amount=order["total"],
        currency=session.get("currency") or settings.currency,
        status="succeeded",
        payment_method="card",
        stripe_payment_id=order["stripe_payment_id"],
        stripe_customer_id=session.get("customer"),
        description=f"Payment for Order #{short_id}",
        metadata={
            "user_name": customer.get("name") or "",
            "user_email": customer.get("email") or "",
        },
    )
    create_document("payment", payment)


def fulfill_session(session: Dict[str, Any]) -> Optional[dict]:
    """Create the order for a completed checkout session. Returns None for a duplicate delivery."""
    intent = decode_metadata(session.get("metadata"))

    session_id = session.get("id")
    if not session_id:
        raise WebhookError("Missing checkout session id")
    log = logger.bind(session_id=session_id)

    if not claim_session(session_id):
        log.info("webhook_duplicate")
        return None

    items, missing = materialize_items(intent)
    if missing:
        log.error("order_items_missing", product_ids=missing)

    customer = session.get("customer_details") or {}
    total = payments.from_minor_units(session.get("amount_total"))
    expected = expected_total(items, intent.discount_amount)
    mismatch = abs(expected - total) > 0.005
    if mismatch:
        log.warning("order_total_mismatch", reported=total, expected=expected)

    try:
        order = orders.insert_order({
            "user_id": intent.user_id,
            "user_name": customer.get("name") or "Guest",
            "user_email": customer.get("email") or session.get("customer_email") or "",
            "items": items,
            "total": total,
            "status": "pending",
            "payment_status": "paid",
            "stripe_payment_id": session.get("payment_intent") or session_id,
            "stripe_session_id": session_id,
            "coupon_code": intent.coupon_code,
            "discount_amount": intent.discount_amount,
            "shipping_address": shipping_address(session),
            "needs_review": mismatch or bool(missing),
        })
    except Exception:
        release_claim(session_id)
        log.exception("order_creation_failed")
        return None

    order_id = str(order["_id"])
    log = log.bind(order_id=order_id)
    get_db()["processed_payment"].update_one({"_id": session_id}, {"$set": {"order_id": order_id}})
    log.info("order_created", short_order_id=order["short_order_id"], total=total, items=len(items))

    for item in items:
        try:
            catalog.decrement_stock(item.product_id, item.quantity)
        except Exception:
            log.exception("stock_decrement_failed", product_id=item.product_id)

    if intent.coupon_code and intent.discount_amount > 0:
        try:
            coupons.record_redemption(intent.coupon_code)
        except Exception:
            log.exception("coupon_redemption_failed", code=intent.coupon_code)

    try:
        record_payment(order, session)
    except Exception:
        log.exception("payment_record_failed")

    try:
        notifications.send_order_confirmation(order)
    except Exception:
        log.exception("confirmation_email_failed")
    return order


def handle_callback(payload: bytes, signature: Optional[str]) -> Dict[str, bool]:
    event = payments.verify_event(payload, signature)
    event_type = event.get("type")
    logger.info("webhook_received", event_type=event_type, event_id=event.get("id"))

    if event_type != payments.CHECKOUT_COMPLETED:
        logger.info("webhook_ignored", event_type=event_type)
        return {"received": True}

    session = (event.get("data") or {}).get("object") or {}
    fulfill_session(session)
    return {"received": True}
