from bson import ObjectId

import catalog
from catalog import add_review, decrement_stock, public_view
from schemas import Review


def test_public_view_floors_stock():
    view = public_view({"_id": ObjectId(), "name": "Tote", "stock": -3, "is_sold_out": False})
    assert view["stock"] == 0
    assert view["is_sold_out"] is True

    view = public_view({"_id": ObjectId(), "name": "Tote", "stock": 4, "is_sold_out": False})
    assert view["stock"] == 4
    assert view["is_sold_out"] is False


def test_decrement_stock_is_unguarded(db, make_product):
    pid = make_product(stock=1)
    assert decrement_stock(pid, 3) == -2
    doc = db["product"].find_one({"_id": ObjectId(pid)})
    assert doc["stock"] == -2
    assert doc["is_sold_out"] is True


def test_decrement_unknown_product(db):
    assert decrement_stock(str(ObjectId()), 1) is None


def test_listing_and_category_filter(client, make_product):
    make_product(name="Bunny", category="toys")
    make_product(name="Scarf", category="wear")
    res = client.get("/api/products", params={"category": "wear"})
    assert [p["name"] for p in res.json()] == ["Scarf"]
    assert client.get("/api/products/not-an-id").status_code == 404


def test_product_writes_are_role_gated(client, make_user):
    user = make_user()
    staff = make_user("staff")
    admin = make_user("admin")
    body = {"name": "Granny Square Bag", "description": "Cotton", "price": 1200, "stock": 3, "category": "bags"}

    assert client.post("/api/products", json=body).status_code == 401
    assert client.post("/api/products", json=body, headers=user.headers).status_code == 403

    res = client.post("/api/products", json=body, headers=staff.headers)
    assert res.status_code == 201
    product = res.json()
    assert product["rating"] == 0

    res = client.put(f"/api/products/{product['id']}", json={"price": 1300, "rating": 5}, headers=staff.headers)
    assert res.json()["price"] == 1300
    assert res.json()["rating"] == 0

    assert client.delete(f"/api/products/{product['id']}", headers=staff.headers).status_code == 403
    assert client.delete(f"/api/products/{product['id']}", headers=admin.headers).status_code == 200


def test_referenced_product_cannot_be_deleted(client, db, make_user, make_product):
    admin = make_user("admin")
    pid = make_product()
    db["order"].insert_one({"short_order_id": "ABCD2345", "items": [{"product_id": pid, "quantity": 1}]})
    res = client.delete(f"/api/products/{pid}", headers=admin.headers)
    assert res.status_code == 400
    assert db["product"].count_documents({"_id": ObjectId(pid)}) == 1


def test_rating_is_mean_of_reviews(client, make_user, make_product):
    buyer = make_user()
    pid = make_product()

    assert client.post(f"/api/products/{pid}/reviews", json={"rating": 5, "comment": "Lovely"}).status_code == 401

    client.post(f"/api/products/{pid}/reviews", json={"rating": 5, "comment": "Lovely"}, headers=buyer.headers)
    res = client.post(f"/api/products/{pid}/reviews", json={"rating": 2, "comment": "Small"}, headers=buyer.headers)

    assert res.status_code == 201
    body = res.json()
    assert body["rating"] == 3.5
    assert [r["rating"] for r in body["reviews"]] == [5, 2]
    assert body["reviews"][0]["user"] == buyer.name

    assert client.post(f"/api/products/{pid}/reviews", json={"rating": 6, "comment": "x"}, headers=buyer.headers).status_code == 422


def test_restock_clears_sold_out(client, db, make_user, make_product):
    staff = make_user("staff")
    pid = make_product(stock=1)
    decrement_stock(pid, 1)
    assert client.get(f"/api/products/{pid}").json()["is_sold_out"] is True

    res = client.put(f"/api/products/{pid}", json={"stock": 5}, headers=staff.headers)
    assert res.status_code == 200

    view = client.get(f"/api/products/{pid}").json()
    assert view["stock"] == 5
    assert view["is_sold_out"] is False
    assert db["product"].find_one({"_id": ObjectId(pid)})["is_sold_out"] is False


def test_manual_sold_out_flag_wins_over_stock(client, make_user, make_product):
    staff = make_user("staff")
    pid = make_product(stock=1)
    client.put(f"/api/products/{pid}", json={"stock": 5, "is_sold_out": True}, headers=staff.headers)
    assert client.get(f"/api/products/{pid}").json()["is_sold_out"] is True


class RacingProducts:
    """Product collection that slips in another review right after the first read."""

    def __init__(self, real, competing_review):
        self.real = real
        self.competing_review = competing_review

    def find_one(self, *args, **kwargs):
        doc = self.real.find_one(*args, **kwargs)
        if self.competing_review is not None:
            self.real.update_one({"_id": doc["_id"]}, {"$push": {"reviews": self.competing_review}})
            self.competing_review = None
        return doc

    def __getattr__(self, name):
        return getattr(self.real, name)


def test_concurrent_review_is_counted_in_rating(db, make_product, monkeypatch):
    pid = make_product()
    add_review(pid, Review(user="Rina", rating=5, comment="Lovely"))

    racing = RacingProducts(db["product"], {"user": "Tanvir", "rating": 1, "comment": "Late"})
    monkeypatch.setattr(catalog, "get_db", lambda: {"product": racing})
    product = add_review(pid, Review(user="Mita", rating=3, comment="Fine"))

    assert [r["rating"] for r in product["reviews"]] == [5, 1, 3]
    assert product["rating"] == 3
