import random
import re
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, get_documents, now_utc, to_object_id, to_str_id
from errors import NotFound, ValidationFailed
from schemas import Order

SHORT_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O, 1/I
SHORT_ID_LENGTH = 8
SHORT_ID_ATTEMPTS = 5

PUBLIC_FIELDS = ("short_order_id", "status", "items", "total", "created_at", "tracking_link")

_rng = random.SystemRandom()


def generate_short_order_id() -> str:
    return "".join(_rng.choice(SHORT_ID_ALPHABET) for _ in range(SHORT_ID_LENGTH))


def insert_order(data: dict) -> dict:
    """Persist an order, drawing a fresh short id until it is unique."""
    for _ in range(SHORT_ID_ATTEMPTS):
        data["short_order_id"] = generate_short_order_id()
        order = Order(**data)
        try:
            oid = create_document("order", order)
        except DuplicateKeyError:
            continue
        return get_order(oid)
    raise RuntimeError("Could not allocate a unique short order id")


def get_order(order_id: str) -> dict:
    doc = get_db()["order"].find_one({"_id": to_object_id(order_id, "Order")})
    if not doc:
        raise NotFound("Order not found")
    return doc


def find_for_invoice(identifier: str) -> dict:
    """Full order ids are 24 hex characters; anything shorter is a short order id."""
    identifier = (identifier or "").strip()
    if not identifier:
        raise ValidationFailed("Order id required")
    if len(identifier) < 24:
        doc = get_db()["order"].find_one({"short_order_id": identifier.upper()})
        if not doc:
            raise NotFound("Order not found")
        return doc
    return get_order(identifier)


def public_projection(doc: dict) -> dict:
    view = {"id": str(doc["_id"])}
    for field in PUBLIC_FIELDS:
        view[field] = doc.get(field)
    view["city"] = (doc.get("shipping_address") or {}).get("city", "")
    return view


def track(query: str) -> dict:
    """Public lookup by internal id or by (a prefix of) the short order id."""
    query = (query or "").strip()
    if not query:
        raise ValidationFailed("Search query required")

    doc = None
    database = get_db()
    if re.fullmatch(r"[0-9a-fA-F]{24}", query):
        doc = database["order"].find_one({"_id": to_object_id(query, "Order")})
    if doc is None:
        doc = database["order"].find_one(
            {"short_order_id": {"$regex": f"^{re.escape(query.upper())}"}}
        )
    if not doc:
        raise NotFound("Order not found")
    return public_projection(doc)


def list_orders(status: Optional[str] = None, limit: int = 100) -> List[dict]:
    filter_dict = {"status": status} if status else {}
    return [to_str_id(d) for d in get_documents("order", filter_dict, limit)]


def list_user_orders(user_id: str) -> List[dict]:
    return [to_str_id(d) for d in get_documents("order", {"user_id": user_id})]


def update_status(order_id: str, status: str, tracking_link: Optional[str] = None) -> dict:
    # No transition ordering: staff may move an order to any status
    changes = {"status": status, "updated_at": now_utc()}
    if tracking_link is not None:
        changes["tracking_link"] = tracking_link
    doc = get_db()["order"].find_one_and_update(
        {"_id": to_object_id(order_id, "Order")},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("Order not found")
    return doc


def delete_order(order_id: str) -> None:
    result = get_db()["order"].delete_one({"_id": to_object_id(order_id, "Order")})
    if result.deleted_count == 0:
        raise NotFound("Order not found")


def list_payments(user_id: Optional[str] = None, limit: int = 100) -> List[dict]:
    filter_dict = {"user_id": user_id} if user_id else {}
    return [to_str_id(d) for d in get_documents("payment", filter_dict, limit)]
