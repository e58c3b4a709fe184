"""
Stripe integration: hosted checkout sessions and webhook verification.

Amounts cross this boundary in the processor's minor units (poisha/cents).
"""

import json
from typing import Any, Dict, List, Optional

import stripe

from config import settings
from errors import ConfigurationError, InvalidSignature, PaymentProviderError
from log import get_logger

logger = get_logger("payments")

CHECKOUT_COMPLETED = "checkout.session.completed"


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def from_minor_units(amount: Optional[int]) -> float:
    return (amount or 0) / 100


def create_checkout_session(
    line_items: List[Dict[str, Any]],
    customer_email: Optional[str],
    metadata: Dict[str, str],
) -> Dict[str, str]:
    if not settings.stripe_secret_key:
        raise ConfigurationError("Missing STRIPE_SECRET_KEY")

    try:
        session = stripe.checkout.Session.create(
            api_key=settings.stripe_secret_key,
            payment_method_types=["card"],
            mode="payment",
            line_items=line_items,
            success_url=f"{settings.public_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.public_url}/checkout/cancel",
            customer_email=customer_email or None,
            shipping_address_collection={"allowed_countries": settings.allowed_shipping_countries},
            metadata=metadata,
        )
    except stripe.StripeError as e:
        logger.error("checkout_failed", error=str(e), error_type=type(e).__name__)
        raise PaymentProviderError(e.user_message or str(e) or "Failed to create checkout session", kind=type(e).__name__)

    return {"id": session.id, "url": session.url}


def verify_event(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """Check the Stripe-Signature header against the raw body and return the decoded event."""
    if not settings.stripe_webhook_secret:
        logger.error("webhook_secret_missing")
        raise ConfigurationError("Server configuration error")

    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(
            body, signature or "", settings.stripe_webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
        )
        return json.loads(body)
    except stripe.SignatureVerificationError as e:
        logger.warning("webhook_signature_invalid", error=str(e))
        raise InvalidSignature("Invalid signature")
    except ValueError as e:
        # UnicodeDecodeError and JSONDecodeError are both ValueErrors
        logger.warning("webhook_payload_invalid", error=str(e))
        raise InvalidSignature("Invalid payload")
