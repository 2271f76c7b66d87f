"""
Database Schemas for the shop back office

Each Pydantic model represents a collection in MongoDB. The collection name is the
lowercase of the class name (e.g., User -> "user"). Monetary fields are Decimal and
are written as Decimal128 by `database.create_document`.

`ApiModel` is the base for request bodies: fields are snake_case in Python and
camelCase on the wire.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Role = Literal["user", "admin", "super-admin"]
DiscountType = Literal["flat", "percentage"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
OrderStatus = Literal["pending", "confirmed", "shipped", "delivered", "cancelled"]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Address(ApiModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = "India"
    is_default: bool = False


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercase")
    password_hash: str = Field(..., description="Hashed password")
    phone: Optional[str] = None
    role: Role = Field("user", description="user | admin | super-admin")
    addresses: List[Address] = Field(default_factory=list)
    is_active: bool = Field(True, description="Whether user is active")
    last_login_at: Optional[datetime] = None


class Session(BaseModel):
    """
    Issued bearer tokens
    Collection name: "session"
    """
    token: str
    user_id: str
    expires_at: datetime


class ProductImage(ApiModel):
    url: str
    public_id: Optional[str] = None


class Category(BaseModel):
    """
    Product categories
    Collection name: "category"
    """
    name: str = Field(..., description="Unique display name")
    slug: str = Field(..., description="Unique URL key")
    description: Optional[str] = None
    image: Optional[ProductImage] = None
    is_active: bool = True


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    sku: Optional[str] = Field(None, description="Stock keeping unit, unique when set")
    name: str = Field(..., description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    price: Decimal = Field(..., gt=0, description="Unit price")
    stock: int = Field(..., ge=0, description="Units available")
    images: List[ProductImage] = Field(default_factory=list)
    category: Optional[str] = Field(None, description="Category id")
    ratings: float = Field(0, description="Average review rating")
    num_reviews: int = 0
    is_featured: bool = False
    sold_count: int = 0
    last_sold_at: Optional[datetime] = None
    hot_deal_date: Optional[datetime] = Field(None, description="Day this product is the hot deal")
    is_active: bool = Field(True, description="Soft-delete flag")


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: Decimal = Field(..., description="Unit price captured when the line was last touched")


class Cart(BaseModel):
    """
    Shopping cart collection schema
    Collection name: "cart"
    """
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    total_price: Decimal = Decimal("0.00")


class Coupon(BaseModel):
    """
    Coupons collection schema
    Collection name: "coupon"
    """
    code: str = Field(..., description="Unique, stored uppercase")
    description: str = ""
    discount_type: DiscountType
    discount_value: Decimal
    min_order_value: Decimal = Decimal("0.00")
    max_discount: Optional[Decimal] = Field(None, description="Cap for percentage coupons")
    valid_from: datetime
    valid_until: datetime
    max_uses: Optional[int] = Field(None, description="None means unlimited")
    used_count: int = 0
    is_active: bool = True


class CouponSnapshot(BaseModel):
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    discount_amount: Decimal


class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int
    price: Decimal


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    user_id: str
    items: List[OrderItem]
    shipping_address: Address
    payment_method: str
    payment_status: PaymentStatus = "pending"
    order_status: OrderStatus = "pending"
    sub_total: Decimal
    discount: Decimal
    total_amount: Decimal
    coupon: Optional[CouponSnapshot] = None
    payment_order_id: str
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    stock_shortfalls: List[str] = Field(default_factory=list)


class Review(BaseModel):
    """
    Reviews collection schema
    Collection name: "review"
    """
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class Banner(ApiModel):
    desktop_image_url: str
    mobile_image_url: str
    redirect_url: str = ""
    title: Optional[str] = None
    subtitle: Optional[str] = None
    is_active: bool = True


class HomeConfig(BaseModel):
    """
    Home page configuration, a single document
    Collection name: "homeconfig"
    """
    banners: List[Banner] = Field(default_factory=list)
    video_iframe_url: str = ""
    is_active: bool = True
