"""
Database Schemas for the Electronics Store

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
Money is kept as two-place decimal strings ("500.00") so totals stay exact.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import List, Optional, Literal

from pydantic import BaseModel, Field, EmailStr, field_validator

CENTS = Decimal("0.01")
# largest price or order total accepted; keeps quantize inside the 28-digit context
MAX_MONEY = Decimal("999999999999.99")

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
ProductStatus = Literal["active", "inactive", "draft"]


def parse_money(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Invalid amount: {value!r}")
    if amount > MAX_MONEY:
        raise ValueError(f"Amount too large: {value!r}")
    return amount


def format_money(amount: Decimal) -> str:
    try:
        return str(amount.quantize(CENTS, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        raise ValueError(f"Amount too large: {amount}")


class User(BaseModel):
    email: EmailStr
    password_hash: Optional[str] = Field(None, description="Salted hash, empty for accounts created by an admin")
    first_name: str
    last_name: Optional[str] = None
    role: Literal["user", "admin"] = "user"
    profile_image_url: Optional[str] = None
    auth_provider: str = "local"
    is_email_verified: bool = False


class Category(BaseModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: str
    category_id: Optional[str] = None
    stock: int = Field(0, ge=0)
    images: List[str] = []
    sku: Optional[str] = None
    rating: Optional[str] = Field(None, description="Derived from reviews")
    review_count: int = Field(0, ge=0, description="Derived from reviews")
    status: ProductStatus = "active"

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, v):
        return format_money(parse_money(v))


class OrderItem(BaseModel):
    id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    price_at_time: str


class Order(BaseModel):
    user_id: str
    status: OrderStatus = "pending"
    total: str
    shipping_address: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    payment_method: Literal["cash_on_delivery"] = "cash_on_delivery"
    notes: Optional[str] = None
    items: List[OrderItem]


class Review(BaseModel):
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = None
    verified: bool = False
    helpful: int = Field(0, ge=0)


class Session(BaseModel):
    sid: str
    user_id: str
    expires_at: datetime
