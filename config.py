import os
from typing import List


def _csv(value: str) -> List[str]:
    return [v.strip().upper() for v in value.split(",") if v.strip()]


class Settings:
    """
    Runtime configuration read from the environment.

    Values are read when the object is built; tests override attributes on
    the shared ``settings`` instance directly.
    """

    def __init__(self):
        self.database_url = os.getenv("DATABASE_URL")
        self.database_name = os.getenv("DATABASE_NAME")

        self.stripe_secret_key = os.getenv("STRIPE_SECRET_KEY", "")
        self.stripe_webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET", "")

        self.resend_api_key = os.getenv("RESEND_API_KEY", "")
        self.mail_from = os.getenv("MAIL_FROM", "Cupid Crochy <onboarding@resend.dev>")

        self.public_url = os.getenv("PUBLIC_URL", "http://localhost:3000").rstrip("/")
        self.currency = os.getenv("CURRENCY", "bdt").lower()
        self.shipping_fee = float(os.getenv("SHIPPING_FEE", "0"))
        self.allowed_shipping_countries = _csv(os.getenv("ALLOWED_SHIPPING_COUNTRIES", "BD"))

        self.token_ttl_hours = int(os.getenv("TOKEN_TTL_HOURS", "72"))
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.port = int(os.getenv("PORT", 8000))


settings = Settings()
