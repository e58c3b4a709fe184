import os
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, Field
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import cart
import catalog
import checkout
import coupons
import database
import invoices
import orders
import webhook
from auth import (
    bearer,
    change_password,
    create_token,
    current_user,
    ensure_owner_or,
    hash_password,
    require,
    revoke_token,
    verify_password,
)
from config import settings
from database import create_document, get_db, get_documents, now_utc, to_object_id, to_str_id
from errors import NotFound, StoreError, Unauthorized, ValidationFailed
from log import configure_logging, get_logger
from schemas import CartItem, Coupon, DiscountType, OrderStatus, Product, Review, Role, User

configure_logging()
logger = get_logger("api")

app = FastAPI(title="Handmade Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    body = {"error": exc.message}
    if exc.details is not None:
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.on_event("startup")
def startup_event():
    if database.db is not None:
        database.ensure_indexes()


def public_user(doc: dict) -> dict:
    d = to_str_id(doc)
    d.pop("password_hash", None)
    return d


# Auth models
class SignupRequest(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AuthResponse(BaseModel):
    user_id: str
    name: str
    email: EmailStr
    role: Role
    token: str


@app.get("/")
def read_root():
    return {"message": "Handmade Storefront API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = database.db.name
            response["connection_status"] = "Connected"
            try:
                collections = database.db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:80]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth endpoints
@app.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(payload: SignupRequest):
    if get_db()["user"].find_one({"email": payload.email}):
        raise ValidationFailed("User already exists")

    user_doc = User(
        name=payload.name,
        email=payload.email,
        password_hash=hash_password(payload.password),
    )
    try:
        uid = create_document("user", user_doc)
    except DuplicateKeyError:
        raise ValidationFailed("User already exists")
    token = create_token(uid)
    return AuthResponse(user_id=uid, name=user_doc.name, email=user_doc.email, role=user_doc.role, token=token)


@app.post("/auth/login", response_model=AuthResponse)
def login(payload: LoginRequest):
    user = get_db()["user"].find_one({"email": payload.email})
    if not user or not user.get("is_active", True):
        raise Unauthorized("Invalid credentials")
    if not verify_password(payload.password, user.get("password_hash", "")):
        raise Unauthorized("Invalid credentials")
    uid = str(user["_id"])
    token = create_token(uid)
    return AuthResponse(user_id=uid, name=user["name"], email=user["email"], role=user.get("role", "user"), token=token)


@app.post("/auth/logout")
def logout(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)):
    if credentials is not None:
        revoke_token(credentials.credentials)
    return {"message": "Logged out"}


@app.get("/auth/me")
def me(user: dict = Depends(current_user)):
    return public_user(user)


# Products
@app.get("/api/products")
def list_products(category: Optional[str] = None, limit: int = 20):
    return catalog.list_products(category, limit)


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return catalog.public_view(catalog.get_product(product_id))


@app.post("/api/products", status_code=201)
def create_product(payload: Product, user: dict = Depends(require("product:write"))):
    return catalog.public_view(catalog.create_product(payload))


class UpdateProductRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    is_new_product: Optional[bool] = None
    is_sold_out: Optional[bool] = None


@app.put("/api/products/{product_id}")
def update_product(product_id: str, payload: UpdateProductRequest, user: dict = Depends(require("product:write"))):
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise ValidationFailed("No changes supplied")
    return catalog.public_view(catalog.update_product(product_id, changes))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, user: dict = Depends(require("product:delete"))):
    catalog.delete_product(product_id)
    return {"message": "Product deleted"}


class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


@app.post("/api/products/{product_id}/reviews", status_code=201)
def add_review(product_id: str, payload: ReviewRequest, user: dict = Depends(require("review:create"))):
    review = Review(
        user=user.get("name") or "Anonymous",
        user_image=user.get("image"),
        rating=payload.rating,
        comment=payload.comment,
    )
    return catalog.public_view(catalog.add_review(product_id, review))


# Cart
@app.get("/api/cart")
def get_cart(user: dict = Depends(require("cart"))):
    return cart.get_cart(str(user["_id"]))


@app.post("/api/cart/add")
def add_to_cart(payload: CartItem, user: dict = Depends(require("cart"))):
    return cart.add_to_cart(str(user["_id"]), payload)


@app.delete("/api/cart/{product_id}")
def remove_from_cart(product_id: str, user: dict = Depends(require("cart"))):
    return cart.remove_from_cart(str(user["_id"]), product_id)


# Coupons
class ValidateCouponRequest(BaseModel):
    code: Optional[str] = None
    order_amount: float = Field(..., ge=0)


@app.post("/api/coupons/validate")
def validate_coupon(payload: ValidateCouponRequest):
    if not payload.code or not payload.code.strip():
        raise ValidationFailed("Coupon code is required")
    return coupons.evaluate_coupon(payload.code, payload.order_amount)


class CreateCouponRequest(BaseModel):
    code: str = Field(..., min_length=1)
    discount: float = Field(..., gt=0)
    discount_type: DiscountType
    min_order_amount: float = Field(0, ge=0)
    usage_limit: int = Field(0, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: datetime


class UpdateCouponRequest(BaseModel):
    code: Optional[str] = None
    discount: Optional[float] = Field(None, gt=0)
    discount_type: Optional[DiscountType] = None
    min_order_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None


@app.get("/api/coupons")
def list_coupons(user: dict = Depends(require("coupon:manage"))):
    return [to_str_id(d) for d in get_documents("coupon")]


@app.post("/api/coupons", status_code=201)
def create_coupon(payload: CreateCouponRequest, user: dict = Depends(require("coupon:manage"))):
    data = payload.model_dump()
    data["valid_from"] = data["valid_from"] or now_utc()
    coupon = Coupon(**data)
    try:
        cid = create_document("coupon", coupon)
    except DuplicateKeyError:
        raise ValidationFailed("Coupon code already exists")
    return to_str_id(get_db()["coupon"].find_one({"_id": to_object_id(cid)}))


@app.put("/api/coupons/{coupon_id}")
def update_coupon(coupon_id: str, payload: UpdateCouponRequest, user: dict = Depends(require("coupon:manage"))):
    changes = payload.model_dump(exclude_none=True)
    if "code" in changes:
        changes["code"] = coupons.normalize_code(changes["code"])
    changes["updated_at"] = now_utc()
    try:
        doc = get_db()["coupon"].find_one_and_update(
            {"_id": to_object_id(coupon_id, "Coupon")},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise ValidationFailed("Coupon code already exists")
    if not doc:
        raise NotFound("Coupon not found")
    return to_str_id(doc)


@app.delete("/api/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, user: dict = Depends(require("coupon:manage"))):
    result = get_db()["coupon"].delete_one({"_id": to_object_id(coupon_id, "Coupon")})
    if result.deleted_count == 0:
        raise NotFound("Coupon not found")
    return {"message": "Coupon deleted"}


# Checkout
class CheckoutRequest(BaseModel):
    items: List[CartItem] = Field(default_factory=list)
    coupon_code: Optional[str] = None


@app.post("/api/checkout")
def create_checkout(payload: CheckoutRequest, user: dict = Depends(require("checkout"))):
    return checkout.start_checkout(payload.items, payload.coupon_code, user)


@app.post("/api/webhook/stripe")
async def stripe_webhook(request: Request):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    return await run_in_threadpool(webhook.handle_callback, payload, signature)


# Orders
@app.get("/api/orders/track")
def track_order(q: str = ""):
    return orders.track(q)


@app.get("/api/orders/track/{order_id}")
def track_order_by_id(order_id: str):
    return orders.public_projection(orders.get_order(order_id))


@app.get("/api/orders/invoice")
def order_invoice(id: str = "", user: dict = Depends(require("order:read_own"))):
    order = orders.find_for_invoice(id)
    ensure_owner_or(user, order.get("user_id"), "order:read_any")
    filename = f"invoice-{order['short_order_id']}.pdf"
    return Response(
        content=invoices.render_invoice(order),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/orders/mine")
def my_orders(user: dict = Depends(require("order:read_own"))):
    return orders.list_user_orders(str(user["_id"]))


@app.get("/api/orders")
def list_orders(status: Optional[OrderStatus] = None, limit: int = 100, user: dict = Depends(require("order:list"))):
    return orders.list_orders(status, limit)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(require("order:read_own"))):
    order = orders.get_order(order_id)
    ensure_owner_or(user, order.get("user_id"), "order:read_any")
    return to_str_id(order)


class UpdateOrderRequest(BaseModel):
    status: OrderStatus
    tracking_link: Optional[str] = None


@app.put("/api/orders/{order_id}")
def update_order(order_id: str, payload: UpdateOrderRequest, user: dict = Depends(require("order:update_status"))):
    order = orders.update_status(order_id, payload.status, payload.tracking_link)
    logger.info("order_status_updated", order_id=order_id, status=payload.status, by=str(user["_id"]))
    return to_str_id(order)


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str, user: dict = Depends(require("order:delete"))):
    orders.delete_order(order_id)
    logger.info("order_deleted", order_id=order_id, by=str(user["_id"]))
    return {"message": "Order deleted"}


# Payments
@app.get("/api/payments")
def list_payments(limit: int = 100, user: dict = Depends(require("payment:list"))):
    return orders.list_payments(limit=limit)


@app.get("/api/user/payments")
def my_payments(user: dict = Depends(require("payment:read_own"))):
    uid = str(user["_id"])
    order_refs = [{"id": o["id"], "status": o["status"]} for o in orders.list_user_orders(uid)]
    return {"payments": orders.list_payments(user_id=uid), "orders": order_refs}


# Users
class UpdateRoleRequest(BaseModel):
    role: Role


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    image: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


@app.put("/api/users/profile")
def update_profile(payload: UpdateProfileRequest, user: dict = Depends(current_user)):
    changes = payload.model_dump(exclude_none=True)
    changes["updated_at"] = now_utc()
    doc = get_db()["user"].find_one_and_update(
        {"_id": user["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("User not found")
    return {"message": "Profile updated successfully", "user": {"name": doc["name"], "image": doc.get("image")}}


@app.put("/api/users/password")
def update_password(payload: ChangePasswordRequest, user: dict = Depends(current_user)):
    change_password(user, payload.current_password, payload.new_password)
    logger.info("password_changed", user_id=str(user["_id"]))
    return {"message": "Password updated successfully."}


@app.get("/api/users")
def list_users(limit: int = 100, user: dict = Depends(require("user:manage"))):
    return [public_user(d) for d in get_documents("user", {}, limit)]


@app.put("/api/users/{user_id}/role")
def update_user_role(user_id: str, payload: UpdateRoleRequest, user: dict = Depends(require("user:manage"))):
    doc = get_db()["user"].find_one_and_update(
        {"_id": to_object_id(user_id, "User")},
        {"$set": {"role": payload.role, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("User not found")
    return public_user(doc)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
