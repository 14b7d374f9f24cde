"""
Database Schemas for the Thrifty Steps storefront

Each Pydantic model in the first half corresponds to a MongoDB collection. The collection name is the lowercase of the class name.

Example: class PromoCode -> collection "promocode"

The second half holds the request bodies accepted by the API.
"""
from typing import List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator, model_validator
from datetime import datetime

from database import as_utc

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
PaymentMethod = Literal["stripe", "cash_on_delivery", "paypal", "cod"]
DiscountType = Literal["percentage", "fixed"]

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")

# Core domain models

class Address(BaseModel):
    full_name: str = Field(..., min_length=1)
    line1: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)

class CartItem(BaseModel):
    item_id: str
    product_id: str
    quantity: int = Field(1, ge=1)
    size: str
    color: str

class User(BaseModel):
    name: str
    email: EmailStr
    hashed_password: str
    is_active: bool = True
    is_admin: bool = False
    cart: List[CartItem] = Field(default_factory=list)

class Category(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    is_active: bool = True

class Product(BaseModel):
    title: str = Field(..., max_length=200)
    brand: Optional[str] = Field(None, max_length=50)
    price: float = Field(..., ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    sizes: List[str] = Field(..., min_length=1)
    colors: List[str] = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    category_id: str
    images: List[str] = Field(..., min_length=1)
    description: str = Field(..., max_length=2000)
    rating: float = Field(0, ge=0, le=5)
    num_reviews: int = 0
    is_featured: bool = False
    is_active: bool = True

    @model_validator(mode="after")
    def check_discount(self):
        if self.discount_price is not None and self.discount_price >= self.price:
            raise ValueError("Discount price must be less than regular price")
        return self

class Review(BaseModel):
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=500)

class OrderItem(BaseModel):
    """Line item snapshot, frozen at purchase time."""
    product_id: str
    title: str
    image: str
    size: str
    color: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)

class Order(BaseModel):
    user_id: str
    items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: Address
    payment_method: PaymentMethod = "stripe"
    payment_status: PaymentStatus = "pending"
    payment_intent_id: Optional[str] = None
    order_status: OrderStatus = "pending"
    subtotal: float = Field(..., ge=0)
    total_amount: float = Field(..., ge=0)
    shipping_cost: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    promo_code: Optional[str] = None
    promo_code_discount: float = Field(0, ge=0)

class PromoCode(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    description: Optional[str] = Field(None, max_length=200)
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    min_purchase_amount: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    valid_from: datetime
    valid_until: datetime
    usage_limit: Optional[int] = Field(None, ge=1)
    used_count: int = Field(0, ge=0)
    is_active: bool = True
    # stored for the dashboard, not enforced when pricing an order
    applicable_categories: List[str] = Field(default_factory=list)
    applicable_products: List[str] = Field(default_factory=list)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("valid_from", "valid_until")
    @classmethod
    def naive_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def check_rules(self):
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("Percentage discount must be between 0 and 100")
        if self.valid_until <= self.valid_from:
            raise ValueError("Valid until date must be after valid from date")
        return self


# Request bodies

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None


class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    size: str
    color: str


class CartItemUpdate(BaseModel):
    quantity: int


class ProductIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    brand: Optional[str] = Field(None, max_length=50)
    price: float = Field(..., ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    sizes: List[str] = Field(..., min_length=1)
    colors: List[str] = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    category_id: str
    images: List[str] = Field(..., min_length=1)
    description: str = Field(..., min_length=1, max_length=2000)
    is_featured: bool = False

    @model_validator(mode="after")
    def check_discount(self):
        if self.discount_price is not None and self.discount_price >= self.price:
            raise ValueError("Discount price must be less than regular price")
        return self


class ProductUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    brand: Optional[str] = Field(None, max_length=50)
    price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    sizes: Optional[List[str]] = Field(None, min_length=1)
    colors: Optional[List[str]] = Field(None, min_length=1)
    stock: Optional[int] = Field(None, ge=0)
    category_id: Optional[str] = None
    images: Optional[List[str]] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    size: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)


class OrderCreate(BaseModel):
    # unknown fields (payment_status, total_amount...) are dropped on purpose
    model_config = ConfigDict(extra="ignore")

    items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: Address
    payment_method: PaymentMethod = "stripe"
    payment_intent_id: Optional[str] = None
    promo_code: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    order_status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None


class PaymentIntentRequest(BaseModel):
    amount: float = Field(..., gt=0, description="Amount in minor currency units")
    currency: str = "usd"
    description: Optional[str] = None


class PromoCodeUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    description: Optional[str] = Field(None, max_length=200)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, ge=0)
    min_purchase_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None
    applicable_categories: Optional[List[str]] = None
    applicable_products: Optional[List[str]] = None


class PromoValidateRequest(BaseModel):
    code: str = Field(..., min_length=1)
    subtotal: float = Field(0, ge=0)


class ReviewIn(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=500)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, min_length=1, max_length=500)


class RoleUpdate(BaseModel):
    is_admin: bool
