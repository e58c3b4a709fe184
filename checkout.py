import json
from typing import Any, Dict, List, Optional

import cart
import payments
from config import settings
from coupons import evaluate_coupon
from errors import EmptyCart, InvalidCoupon
from log import get_logger
from schemas import CartItem

logger = get_logger("checkout")


def cart_subtotal(items: List[CartItem]) -> float:
    return sum(i.price * i.quantity for i in items)


def build_line_items(items: List[CartItem], discount_amount: float = 0, coupon_code: Optional[str] = None) -> List[Dict[str, Any]]:
    line_items = []
    for item in items:
        product_data: Dict[str, Any] = {"name": item.name}
        if item.image:
            product_data["images"] = [item.image]
        line_items.append({
            "price_data": {
                "currency": settings.currency,
                "product_data": product_data,
                "unit_amount": payments.to_minor_units(item.price),
            },
            "quantity": item.quantity,
        })

    if settings.shipping_fee > 0:
        line_items.append({
            "price_data": {
                "currency": settings.currency,
                "product_data": {"name": "Shipping"},
                "unit_amount": payments.to_minor_units(settings.shipping_fee),
            },
            "quantity": 1,
        })

    if discount_amount > 0:
        line_items.append({
            "price_data": {
                "currency": settings.currency,
                "product_data": {"name": f"Discount ({coupon_code})" if coupon_code else "Discount"},
                "unit_amount": -payments.to_minor_units(discount_amount),
            },
            "quantity": 1,
        })
    return line_items


def build_metadata(buyer_id: str, items: List[CartItem], coupon_code: Optional[str], discount_amount: float) -> Dict[str, str]:
    # Stripe keeps no cart; this bag is all the webhook gets to rebuild the order from
    return {
        "user_id": buyer_id,
        "items": json.dumps([{"id": i.product_id, "quantity": i.quantity} for i in items]),
        "coupon_code": coupon_code or "",
        "discount_amount": f"{discount_amount:g}",
    }


def resolve_discount(coupon_code: Optional[str], subtotal: float):
    """
    Returns ``(code, amount)``. An invalid or stale coupon at this point is
    dropped rather than blocking the purchase.
    """
    if not coupon_code:
        return None, 0.0
    try:
        quote = evaluate_coupon(coupon_code, subtotal)
    except InvalidCoupon as exc:
        logger.info("checkout_coupon_ignored", code=coupon_code, reason=exc.reason)
        return None, 0.0
    # the processor cannot charge a negative total
    return quote.code, min(quote.discount_amount, subtotal)


def start_checkout(items: List[CartItem], coupon_code: Optional[str], buyer: dict) -> Dict[str, str]:
    if not items:
        raise EmptyCart("No items in cart")

    buyer_id = str(buyer["_id"])
    subtotal = cart_subtotal(items)
    code, discount_amount = resolve_discount(coupon_code, subtotal)

    session = payments.create_checkout_session(
        line_items=build_line_items(items, discount_amount, code),
        customer_email=buyer.get("email"),
        metadata=build_metadata(buyer_id, items, code, discount_amount),
    )
    logger.info(
        "checkout_session_created",
        session_id=session["id"],
        user_id=buyer_id,
        subtotal=subtotal,
        discount_amount=discount_amount,
    )

    cart.clear_cart(buyer_id)
    return session
