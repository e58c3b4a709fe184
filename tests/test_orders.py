import re

import pytest

import invoices
import orders
from database import now_utc
from orders import SHORT_ID_ALPHABET, generate_short_order_id


@pytest.fixture
def make_order(db):
    def _make(user_id=None, status="pending", total=1000):
        return orders.insert_order({
            "user_id": user_id,
            "user_name": "Ayesha Rahman",
            "user_email": "ayesha@example.com",
            "items": [{"product_id": "p1", "name": "Crochet Bunny", "price": 500, "quantity": 2, "image": ""}],
            "total": total,
            "status": status,
            "payment_status": "paid",
            "stripe_payment_id": "pi_123",
            "shipping_address": {"line1": "House 12", "city": "Dhaka", "country": "BD"},
        })
    return _make


def test_short_order_id_alphabet():
    for _ in range(50):
        code = generate_short_order_id()
        assert len(code) == 8
        assert set(code) <= set(SHORT_ID_ALPHABET)
        assert not re.search(r"[01IO]", code)


def test_short_id_collision_is_retried(db, make_order, monkeypatch):
    taken = make_order()["short_order_id"]
    codes = iter([taken, "ZZZZ2222"])
    monkeypatch.setattr(orders, "generate_short_order_id", lambda: next(codes))
    assert make_order()["short_order_id"] == "ZZZZ2222"


def test_public_tracking_by_short_id_prefix(client, make_order):
    order = make_order()
    prefix = order["short_order_id"][:5].lower()

    res = client.get("/api/orders/track", params={"q": prefix})
    assert res.status_code == 200
    body = res.json()
    assert body["id"] == str(order["_id"])
    assert body["status"] == "pending"
    assert body["total"] == 1000
    assert body["city"] == "Dhaka"
    assert "user_email" not in body
    assert "shipping_address" not in body


def test_public_tracking_by_id(client, make_order):
    order = make_order()
    res = client.get(f"/api/orders/track/{order['_id']}")
    assert res.status_code == 200
    assert res.json()["short_order_id"] == order["short_order_id"]

    res = client.get("/api/orders/track", params={"q": str(order["_id"])})
    assert res.json()["short_order_id"] == order["short_order_id"]


def test_public_tracking_misses(client, make_order):
    make_order()
    assert client.get("/api/orders/track", params={"q": ""}).status_code == 400
    assert client.get("/api/orders/track", params={"q": ".*"}).status_code == 404
    assert client.get("/api/orders/track/not-an-id").status_code == 404


def test_full_order_is_owner_or_staff_only(client, make_user, make_order):
    owner = make_user()
    stranger = make_user()
    staff = make_user("staff")
    order = make_order(user_id=owner.id)
    url = f"/api/orders/{order['_id']}"

    assert client.get(url).status_code == 401
    assert client.get(url, headers=stranger.headers).status_code == 403

    res = client.get(url, headers=owner.headers)
    assert res.status_code == 200
    assert res.json()["shipping_address"]["line1"] == "House 12"

    assert client.get(url, headers=staff.headers).status_code == 200


def test_my_orders(client, make_user, make_order):
    owner = make_user()
    make_order(user_id=owner.id)
    make_order(user_id="someone-else")
    res = client.get("/api/orders/mine", headers=owner.headers)
    assert [o["user_id"] for o in res.json()] == [owner.id]


def test_staff_updates_status_without_ordering_rules(client, make_user, make_order):
    staff = make_user("staff")
    order = make_order(status="delivered")
    url = f"/api/orders/{order['_id']}"

    res = client.put(url, json={"status": "pending", "tracking_link": "https://track.test/1"}, headers=staff.headers)
    assert res.status_code == 200
    assert res.json()["status"] == "pending"
    assert res.json()["tracking_link"] == "https://track.test/1"

    assert client.put(url, json={"status": "lost"}, headers=staff.headers).status_code == 422


def test_update_unknown_order(client, make_user):
    staff = make_user("staff")
    res = client.put("/api/orders/64b000000000000000000000", json={"status": "shipped"}, headers=staff.headers)
    assert res.status_code == 404
    assert res.json() == {"error": "Order not found"}


def test_only_admin_deletes(client, make_user, make_order):
    staff = make_user("staff")
    admin = make_user("admin")
    order = make_order()
    url = f"/api/orders/{order['_id']}"

    assert client.delete(url, headers=staff.headers).status_code == 403
    assert client.delete(url, headers=admin.headers).status_code == 200
    assert client.delete(url, headers=admin.headers).status_code == 404


def test_order_listing_is_staff_only(client, make_user, make_order):
    make_order(status="shipped")
    make_order(status="pending")
    user = make_user()
    staff = make_user("staff")

    assert client.get("/api/orders", headers=user.headers).status_code == 403
    res = client.get("/api/orders", params={"status": "shipped"}, headers=staff.headers)
    assert [o["status"] for o in res.json()] == ["shipped"]


def test_payment_listings(client, db, make_user, make_order):
    owner = make_user()
    staff = make_user("staff")
    order = make_order(user_id=owner.id)
    db["payment"].insert_one({"user_id": owner.id, "order_id": str(order["_id"]), "amount": 1000, "status": "succeeded", "created_at": now_utc()})
    db["payment"].insert_one({"user_id": "other", "order_id": "x", "amount": 5, "status": "succeeded", "created_at": now_utc()})

    mine = client.get("/api/user/payments", headers=owner.headers).json()
    assert len(mine["payments"]) == 1
    assert mine["orders"] == [{"id": str(order["_id"]), "status": "pending"}]

    assert client.get("/api/payments", headers=owner.headers).status_code == 403
    assert len(client.get("/api/payments", headers=staff.headers).json()) == 2


def test_invoice_pdf_by_short_id_and_by_id(client, make_user, make_order):
    owner = make_user()
    staff = make_user("staff")
    order = make_order(user_id=owner.id)
    short_id = order["short_order_id"]

    res = client.get("/api/orders/invoice", params={"id": short_id.lower()}, headers=owner.headers)
    assert res.status_code == 200
    assert res.headers["content-type"] == "application/pdf"
    assert res.headers["content-disposition"] == f'attachment; filename="invoice-{short_id}.pdf"'
    assert res.content.startswith(b"%PDF")

    res = client.get("/api/orders/invoice", params={"id": str(order["_id"])}, headers=staff.headers)
    assert res.status_code == 200
    assert res.content.startswith(b"%PDF")


def test_invoice_access_and_misses(client, make_user, make_order):
    owner = make_user()
    stranger = make_user()
    order = make_order(user_id=owner.id)
    params = {"id": order["short_order_id"]}

    assert client.get("/api/orders/invoice", params=params).status_code == 401
    assert client.get("/api/orders/invoice", params=params, headers=stranger.headers).status_code == 403
    assert client.get("/api/orders/invoice", params={"id": "ZZZZ9999"}, headers=owner.headers).status_code == 404
    assert client.get("/api/orders/invoice", headers=owner.headers).status_code == 400


def test_invoice_renders_non_latin_text():
    order = {
        "short_order_id": "ABCD2345",
        "created_at": now_utc(),
        "status": "shipped",
        "user_name": "আয়েশা",
        "user_email": "ayesha@example.com",
        "items": [{"name": "Crochet Bunny ♥", "price": 500, "quantity": 2}],
        "discount_amount": 100,
        "coupon_code": "SAVE10",
        "total": 900,
        "shipping_address": {"line1": "House 12", "city": "Dhaka", "country": "BD"},
    }
    assert invoices.render_invoice(order).startswith(b"%PDF")
