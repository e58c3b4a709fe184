"""
Error taxonomy for the storefront API.

Every error raised by the service layer derives from ``StoreError`` and knows
the HTTP status it maps to; ``main.py`` renders them as ``{"error": message}``.
"""

from typing import Any, Optional


class StoreError(Exception):
    status_code = 400

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationFailed(StoreError):
    status_code = 400


class NotFound(StoreError):
    status_code = 404


class Unauthorized(StoreError):
    status_code = 401


class Forbidden(StoreError):
    status_code = 403


class ConfigurationError(StoreError):
    status_code = 500


class DatabaseUnavailable(StoreError):
    status_code = 503


# Coupons

class InvalidCoupon(StoreError):
    status_code = 400
    reason = "invalid"


class CouponNotFound(InvalidCoupon):
    status_code = 404
    reason = "not_found"


class CouponInactive(InvalidCoupon):
    reason = "inactive"


class CouponNotYetValid(InvalidCoupon):
    reason = "not_yet_valid"


class CouponExpired(InvalidCoupon):
    reason = "expired"


class CouponUsageLimitReached(InvalidCoupon):
    reason = "usage_limit_reached"


class CouponMinimumNotMet(InvalidCoupon):
    reason = "minimum_not_met"


# Checkout

class CheckoutError(StoreError):
    status_code = 400


class EmptyCart(CheckoutError):
    status_code = 400


class PaymentProviderError(CheckoutError):
    status_code = 502

    def __init__(self, message: str, kind: str = "unknown"):
        super().__init__(message, details={"kind": kind, "message": message})
        self.kind = kind


# Webhook

class WebhookError(StoreError):
    status_code = 400


class InvalidSignature(WebhookError):
    status_code = 400


class MalformedMetadata(WebhookError):
    status_code = 400


class Conflict(StoreError):
    status_code = 409
