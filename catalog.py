from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument

from database import create_document, get_db, get_documents, now_utc, to_object_id, to_str_id
from errors import Conflict, NotFound, ValidationFailed
from log import get_logger
from schemas import Product, Review

logger = get_logger("catalog")

REVIEW_WRITE_ATTEMPTS = 5


def public_view(doc: dict) -> dict:
    """Catalog projection: raw stock may be negative after an oversell, never show it."""
    d = to_str_id(doc)
    stock = int(d.get("stock", 0))
    d["stock"] = max(0, stock)
    d["is_sold_out"] = bool(d.get("is_sold_out", False)) or stock <= 0
    return d


def list_products(category: Optional[str] = None, limit: int = 20) -> List[dict]:
    filter_dict = {}
    if category:
        filter_dict["category"] = category
    return [public_view(d) for d in get_documents("product", filter_dict, limit)]


def get_product(product_id: str) -> dict:
    doc = get_db()["product"].find_one({"_id": to_object_id(product_id, "Product")})
    if not doc:
        raise NotFound("Product not found")
    return doc


def create_product(product: Product) -> dict:
    data = product.model_dump()
    data["rating"] = 0
    data["reviews"] = []
    pid = create_document("product", data)
    return get_product(pid)


def update_product(product_id: str, changes: dict) -> dict:
    # rating and reviews are owned by add_review
    changes = {k: v for k, v in changes.items() if k not in ("rating", "reviews", "_id", "id")}
    if "stock" in changes and "is_sold_out" not in changes:
        changes["is_sold_out"] = changes["stock"] <= 0
    changes["updated_at"] = now_utc()
    doc = get_db()["product"].find_one_and_update(
        {"_id": to_object_id(product_id, "Product")},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("Product not found")
    return doc


def delete_product(product_id: str) -> None:
    oid = to_object_id(product_id, "Product")
    # order line items keep a product_id reference
    if get_db()["order"].find_one({"items.product_id": product_id}):
        raise ValidationFailed("Product is referenced by existing orders")
    result = get_db()["product"].delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise NotFound("Product not found")


def add_review(product_id: str, review: Review) -> dict:
    """
    Append a review and store the new mean rating in the same update.

    The write only applies if the review list still has the length that was
    read; reviews are append-only, so that pins the exact list the mean was
    computed from. A concurrent append makes the write miss and it is retried.
    """
    collection = get_db()["product"]
    oid = to_object_id(product_id, "Product")
    entry = review.model_dump()
    entry["created_at"] = entry.get("created_at") or now_utc()

    for _ in range(REVIEW_WRITE_ATTEMPTS):
        current = collection.find_one({"_id": oid})
        if not current:
            raise NotFound("Product not found")
        ratings = [r["rating"] for r in current.get("reviews", [])]
        unchanged = {"$size": len(ratings)} if "reviews" in current else {"$exists": False}
        rating = (sum(ratings) + entry["rating"]) / (len(ratings) + 1)

        result = collection.update_one(
            {"_id": oid, "reviews": unchanged},
            {"$push": {"reviews": entry}, "$set": {"rating": rating, "updated_at": now_utc()}},
        )
        if result.modified_count == 1:
            return get_product(product_id)
        logger.info("review_write_retry", product_id=product_id)

    raise Conflict("Product is being reviewed concurrently, try again")


def fetch_many(product_ids: Iterable[str]) -> Dict[str, dict]:
    """Resolve a batch of product ids in one query; unknown or malformed ids are left out."""
    oids = [ObjectId(pid) for pid in set(product_ids) if pid and ObjectId.is_valid(pid)]
    if not oids:
        return {}
    docs = get_db()["product"].find({"_id": {"$in": oids}})
    return {str(d["_id"]): d for d in docs}


def decrement_stock(product_id: str, quantity: int) -> Optional[int]:
    """
    Atomically subtract ``quantity`` from a product's stock.

    There is no floor check: a paid order is always recorded, so an oversell
    leaves negative stock and marks the product sold out. Returns the new stock,
    or None if the product no longer exists.
    """
    collection = get_db()["product"]
    oid = to_object_id(product_id, "Product")
    doc = collection.find_one_and_update(
        {"_id": oid},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        logger.error("stock_decrement_missing_product", product_id=product_id, quantity=quantity)
        return None

    stock = doc.get("stock", 0)
    if stock <= 0:
        collection.update_one({"_id": oid}, {"$set": {"is_sold_out": True}})
    if stock < 0:
        logger.warning("stock_oversold", product_id=product_id, stock=stock)
    return stock
