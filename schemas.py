"""
Database Schemas for the Handmade Storefront

Each Pydantic model represents a collection in MongoDB. The collection name is the
lowercase of the class name (e.g., Product -> "product").
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

Role = Literal["user", "staff", "admin"]
DiscountType = Literal["percentage", "fixed"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
OrderPaymentStatus = Literal["pending", "paid", "failed", "refunded"]
PaymentStatus = Literal["pending", "succeeded", "failed", "refunded", "partially_refunded"]


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Hashed password")
    image: Optional[str] = Field(None, description="Avatar URL")
    role: Role = Field("user", description="Access role")
    is_active: bool = Field(True, description="Whether user is active")


class Review(BaseModel):
    user: str
    user_image: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: str
    created_at: Optional[datetime] = None


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"

    ``rating`` is derived from ``reviews`` and only written by the review append.
    """
    name: str = Field(..., description="Product name")
    description: str = Field(..., description="Product description")
    price: float = Field(..., ge=0, description="Unit price in store currency")
    stock: int = Field(0, ge=0, description="Units on hand")
    category: str = Field(..., description="Product category")
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    is_new_product: bool = False
    is_sold_out: bool = False


class Coupon(BaseModel):
    """
    Coupons collection schema
    Collection name: "coupon"
    """
    code: str = Field(..., min_length=1, description="Unique code, stored upper-case")
    discount: float = Field(..., gt=0, description="Percent or fixed amount, per discount_type")
    discount_type: DiscountType
    min_order_amount: float = Field(0, ge=0)
    usage_limit: int = Field(0, ge=0, description="0 means unlimited")
    used_count: int = Field(0, ge=0)
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class CartItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., gt=0)
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None


class Cart(BaseModel):
    """
    Shopping cart collection schema
    Collection name: "cart"
    """
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int
    image: str = ""


class ShippingAddress(BaseModel):
    line1: str = ""
    line2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"

    ``total`` is the processor-reported amount, fixed at creation.
    """
    user_id: Optional[str] = None
    user_name: str
    user_email: str
    items: List[OrderItem]
    total: float
    status: OrderStatus = "pending"
    payment_status: OrderPaymentStatus = "pending"
    short_order_id: str
    stripe_payment_id: Optional[str] = None
    stripe_session_id: Optional[str] = None
    coupon_code: Optional[str] = None
    discount_amount: float = 0
    shipping_address: ShippingAddress = Field(default_factory=ShippingAddress)
    tracking_link: Optional[str] = None
    needs_review: bool = False


class Payment(BaseModel):
    """
    Payments collection schema
    Collection name: "payment"
    """
    user_id: Optional[str] = None
    order_id: str
    amount: float
    currency: str
    status: PaymentStatus = "pending"
    payment_method: str
    stripe_payment_id: str
    stripe_customer_id: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
