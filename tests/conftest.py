import hashlib
import hmac
import json
import time
from datetime import timedelta
from types import SimpleNamespace

import mongomock
import pytest
import stripe
from fastapi.testclient import TestClient

import auth
import database
import main
import notifications
from config import settings
from database import create_document, now_utc

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(autouse=True)
def db(monkeypatch):
    mock_db = mongomock.MongoClient().db
    monkeypatch.setattr(database, "db", mock_db)
    database.ensure_indexes()
    return mock_db


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_dummy")
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "resend_api_key", "")
    monkeypatch.setattr(settings, "public_url", "http://shop.test")
    monkeypatch.setattr(settings, "currency", "bdt")
    monkeypatch.setattr(settings, "shipping_fee", 0.0)
    return settings


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []
    monkeypatch.setattr(notifications, "send_order_confirmation", sent.append)
    return sent


@pytest.fixture
def make_user(db):
    def _make(role="user", name=None, email=None):
        name = name or f"{role.title()} Person"
        email = email or f"{role}-{db['user'].count_documents({})}@example.com"
        uid = create_document("user", {
            "name": name,
            "email": email,
            "password_hash": "not-a-real-hash",
            "role": role,
            "is_active": True,
        })
        token = auth.create_token(uid)
        return SimpleNamespace(id=uid, email=email, name=name, role=role, token=token,
                               headers={"Authorization": f"Bearer {token}"})
    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Crochet Bunny", price=500.0, stock=10, images=None, **extra):
        data = {
            "name": name,
            "description": "Handmade",
            "price": price,
            "stock": stock,
            "category": "toys",
            "images": images if images is not None else [f"https://img.test/{name}.jpg"],
            "tags": [],
            "is_new_product": False,
            "is_sold_out": False,
            "rating": 0,
            "reviews": [],
        }
        data.update(extra)
        return create_document("product", data)
    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE20", discount=20, discount_type="percentage", **extra):
        data = {
            "code": code,
            "discount": discount,
            "discount_type": discount_type,
            "min_order_amount": 0,
            "usage_limit": 0,
            "used_count": 0,
            "valid_from": now_utc() - timedelta(days=1),
            "valid_until": now_utc() + timedelta(days=30),
            "is_active": True,
        }
        data.update(extra)
        create_document("coupon", data)
        return db["coupon"].find_one({"code": code})
    return _make


class FakeStripeSessions:
    def __init__(self):
        self.calls = []
        self.error = None

    def create(self, **params):
        if self.error is not None:
            raise self.error
        self.calls.append(params)
        sid = f"cs_test_{len(self.calls)}"
        return SimpleNamespace(id=sid, url=f"https://checkout.stripe.com/c/pay/{sid}")


@pytest.fixture
def stripe_sessions(monkeypatch):
    fake = FakeStripeSessions()
    monkeypatch.setattr(stripe.checkout.Session, "create", fake.create)
    return fake


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    ts = int(timestamp or time.time())
    mac = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def completed_event(session_id="cs_test_1", items=None, user_id="guest", amount_total=100000,
                    coupon_code="", discount_amount="0", event_type="checkout.session.completed", **session_extra):
    session = {
        "id": session_id,
        "object": "checkout.session",
        "amount_total": amount_total,
        "currency": "bdt",
        "payment_intent": f"pi_{session_id}",
        "customer": "cus_test",
        "customer_details": {
            "name": "Ayesha Rahman",
            "email": "ayesha@example.com",
            "address": {"line1": "House 12", "city": "Dhaka", "postal_code": "1207", "country": "BD"},
        },
        "metadata": {
            "user_id": user_id,
            "items": json.dumps(items or []),
            "coupon_code": coupon_code,
            "discount_amount": discount_amount,
        },
    }
    session.update(session_extra)
    return {"id": f"evt_{session_id}", "type": event_type, "data": {"object": session}}


def post_event(client, event, secret=WEBHOOK_SECRET, signature=None):
    body = json.dumps(event).encode("utf-8")
    return client.post(
        "/api/webhook/stripe",
        content=body,
        headers={"stripe-signature": signature if signature is not None else sign(body, secret),
                 "content-type": "application/json"},
    )
