"""
Coupon evaluation.

``check_coupon`` is pure: it validates a coupon document against an order
subtotal and computes the discount. It never touches ``used_count``; usage is
counted when a paid order is recorded (see ``webhook.py``).
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from database import as_utc, get_db, now_utc
from errors import (
    CouponExpired,
    CouponInactive,
    CouponMinimumNotMet,
    CouponNotFound,
    CouponNotYetValid,
    CouponUsageLimitReached,
    InvalidCoupon,
)
from log import get_logger

logger = get_logger("coupons")


class CouponQuote(BaseModel):
    code: str
    discount_type: str
    discount: float
    discount_amount: float
    final_amount: float


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def find_coupon(code: str) -> dict:
    coupon = get_db()["coupon"].find_one({"code": normalize_code(code)})
    if not coupon:
        raise CouponNotFound("Invalid coupon code")
    return coupon


def check_coupon(coupon: dict, order_amount: float, now: Optional[datetime] = None) -> CouponQuote:
    now = now or now_utc()

    if not coupon.get("is_active", False):
        raise CouponInactive("This coupon is not active")
    if now < as_utc(coupon["valid_from"]):
        raise CouponNotYetValid("This coupon is not yet valid")
    if now > as_utc(coupon["valid_until"]):
        raise CouponExpired("This coupon has expired")

    usage_limit = coupon.get("usage_limit", 0)
    if usage_limit > 0 and coupon.get("used_count", 0) >= usage_limit:
        raise CouponUsageLimitReached("This coupon has reached its usage limit")

    minimum = coupon.get("min_order_amount", 0)
    if order_amount < minimum:
        raise CouponMinimumNotMet(f"Minimum order amount of {minimum:g} required")

    value = float(coupon["discount"])
    if coupon["discount_type"] == "percentage":
        discount_amount = order_amount * value / 100
    else:
        # Not clamped: a fixed discount larger than the subtotal yields a negative final amount
        discount_amount = value

    return CouponQuote(
        code=coupon["code"],
        discount_type=coupon["discount_type"],
        discount=value,
        discount_amount=discount_amount,
        final_amount=order_amount - discount_amount,
    )


def evaluate_coupon(code: str, order_amount: float, now: Optional[datetime] = None) -> CouponQuote:
    coupon = find_coupon(code)
    try:
        return check_coupon(coupon, order_amount, now)
    except InvalidCoupon as exc:
        logger.info("coupon_rejected", code=coupon["code"], reason=exc.reason)
        raise


def record_redemption(code: str) -> None:
    get_db()["coupon"].update_one(
        {"code": normalize_code(code)},
        {"$inc": {"used_count": 1}, "$set": {"updated_at": now_utc()}},
    )
