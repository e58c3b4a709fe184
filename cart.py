from typing import List

from database import create_document, get_db, now_utc
from schemas import Cart, CartItem


def merge_item(items: List[dict], item: CartItem) -> List[dict]:
    """Add ``item`` to ``items`` keyed by product id; a repeat add bumps the quantity."""
    merged = [dict(i) for i in items]
    for existing in merged:
        if existing["product_id"] == item.product_id:
            existing["quantity"] = int(existing.get("quantity", 0)) + item.quantity
            return merged
    merged.append(item.model_dump())
    return merged


def get_cart(user_id: str) -> dict:
    cart = get_db()["cart"].find_one({"user_id": user_id})
    if not cart:
        cid = create_document("cart", Cart(user_id=user_id, items=[]))
        return {"cart_id": cid, "items": []}
    return {"cart_id": str(cart["_id"]), "items": cart.get("items", [])}


def add_to_cart(user_id: str, item: CartItem) -> dict:
    cart = get_db()["cart"].find_one({"user_id": user_id})
    if not cart:
        cid = create_document("cart", Cart(user_id=user_id, items=[item]))
        return {"cart_id": cid, "items": [item.model_dump()]}
    items = merge_item(cart.get("items", []), item)
    get_db()["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": now_utc()}})
    return {"cart_id": str(cart["_id"]), "items": items}


def remove_from_cart(user_id: str, product_id: str) -> dict:
    get_db()["cart"].update_one(
        {"user_id": user_id},
        {"$pull": {"items": {"product_id": product_id}}, "$set": {"updated_at": now_utc()}},
    )
    return get_cart(user_id)


def clear_cart(user_id: str) -> None:
    get_db()["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": now_utc()}})
