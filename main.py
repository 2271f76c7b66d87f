import logging
import os
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import cart
import catalog
import checkout
import coupons
import database
import orders
import users
from auth import (
    bearer_token,
    change_password,
    get_current_user,
    login,
    logout,
    promote_to_admin,
    require_admin,
    require_super_admin,
    signup,
)
from database import get_db
from errors import (
    AddressNotFound,
    AlreadyPaid,
    AlreadyReviewed,
    CategoryExists,
    CategoryNotFound,
    CouponExists,
    CouponMissing,
    CouponNotFound,
    EmailTaken,
    EmptyCart,
    Forbidden,
    InsufficientStock,
    InvalidAmount,
    InvalidRequest,
    InvalidStatusTransition,
    ItemNotInCart,
    MinOrderNotMet,
    NotFound,
    OrderNotFound,
    PaymentRejected,
    ProductInactive,
    ProductUnavailable,
    ReviewNotFound,
    ShopError,
    Unauthorized,
    UsageLimitReached,
    UserNotFound,
)
from schemas import Address, ApiModel, Banner, ProductImage

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Shop Back Office API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error handling ---


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: Dict[type, int] = {
    InvalidRequest: 400,
    InvalidAmount: 400,
    CouponNotFound: 400,
    MinOrderNotMet: 400,
    UsageLimitReached: 400,
    CouponExists: 400,
    InsufficientStock: 400,
    EmptyCart: 400,
    ProductInactive: 400,
    PaymentRejected: 400,
    AlreadyPaid: 400,
    InvalidStatusTransition: 400,
    AlreadyReviewed: 400,
    EmailTaken: 400,
    CategoryExists: 400,
    Unauthorized: 401,
    Forbidden: 403,
    NotFound: 404,
    ProductUnavailable: 404,
    ItemNotInCart: 404,
    OrderNotFound: 404,
    CouponMissing: 404,
    ReviewNotFound: 404,
    UserNotFound: 404,
    CategoryNotFound: 404,
    AddressNotFound: 404,
}


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    """Map ShopError subclasses to `{"message": ...}` responses."""
    status_code = next((ERROR_STATUS_CODES[cls] for cls in type(exc).__mro__ if cls in ERROR_STATUS_CODES), 500)
    if status_code == 500:
        logger.error("%s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=500, content={"message": "Server error"})
    return JSONResponse(status_code=status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"message": "Invalid request"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Server error"})


# --- Request models ---


class SignupRequest(ApiModel):
    name: str
    email: EmailStr
    password: str
    phone: Optional[str] = None


class LoginRequest(ApiModel):
    email: EmailStr
    password: str


class PromoteRequest(ApiModel):
    email: EmailStr


class ChangePasswordRequest(ApiModel):
    old_password: str
    new_password: str


class ProfileUpdateRequest(ApiModel):
    name: Optional[str] = None
    phone: Optional[str] = None


class AddressUpdateRequest(ApiModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    is_default: Optional[bool] = None


class AdminUserUpdateRequest(ApiModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None


class CategoryCreateRequest(ApiModel):
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None


class CategoryUpdateRequest(ApiModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    image: Optional[ProductImage] = None
    is_active: Optional[bool] = None


class ProductCreateRequest(ApiModel):
    sku: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Decimal = Field(..., gt=0)
    stock: int = Field(..., ge=0)
    images: List[ProductImage] = Field(default_factory=list)
    category: Optional[str] = None
    is_featured: bool = False


class ProductUpdateRequest(ApiModel):
    sku: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    stock: Optional[int] = None
    images: Optional[List[ProductImage]] = None
    category: Optional[str] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None


class CartItemRequest(ApiModel):
    product_id: str
    quantity: int = 1


class CouponCreateRequest(ApiModel):
    code: str
    description: str = ""
    discount_type: str
    discount_value: Decimal
    min_order_value: Decimal = Decimal("0")
    max_discount: Optional[Decimal] = None
    valid_from: datetime
    valid_until: datetime
    max_uses: Optional[int] = None
    is_active: bool = True


class CouponApplyRequest(ApiModel):
    code: str
    amount: Decimal


class CheckoutRequest(ApiModel):
    payment_method: str
    shipping_address: Address
    coupon_code: Optional[str] = None


class PaymentConfirmRequest(ApiModel):
    order_id: str
    payment_id: Optional[str] = None
    signature: Optional[str] = None


class OrderStatusRequest(ApiModel):
    status: str


class ReviewRequest(ApiModel):
    product_id: str
    rating: int
    comment: Optional[str] = None


class HomeConfigRequest(ApiModel):
    banners: List[Banner] = Field(default_factory=list)
    video_iframe_url: str = ""


def _user_id(user: Dict[str, Any]) -> str:
    return str(user["_id"])


# --- Diagnostics ---


@app.get("/")
def read_root():
    return {"message": "Shop API running"}


@app.get("/test")
def test_database():
    """Report whether the MongoDB connection is configured and answering."""
    response = {
        "backend": "running",
        "database": "not configured",
        "databaseUrlSet": bool(os.getenv("DATABASE_URL")),
        "databaseName": None,
        "collections": [],
    }
    if database.db is None:
        return response

    response["databaseName"] = database.db.name
    try:
        response["collections"] = database.db.list_collection_names()[:10]
        response["database"] = "connected"
    except PyMongoError as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = "unreachable"
    return response


# --- Auth ---


@app.post("/api/auth/signup", status_code=201)
def signup_user(payload: SignupRequest, db: Database = Depends(get_db)):
    result = signup(db, payload.name, payload.email, payload.password, payload.phone)
    return {"success": True, "userId": result["user_id"], "name": result["name"], "email": result["email"], "token": result["token"]}


@app.post("/api/auth/login")
def login_user(payload: LoginRequest, db: Database = Depends(get_db)):
    result = login(db, payload.email, payload.password)
    return {"success": True, "userId": result["user_id"], "name": result["name"], "email": result["email"], "token": result["token"]}


@app.put("/api/auth/change-password")
def change_user_password(
    payload: ChangePasswordRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    change_password(db, user, payload.old_password, payload.new_password)
    return {"success": True, "message": "Password changed successfully"}


@app.post("/api/auth/logout")
def logout_user(
    authorization: Optional[str] = Header(None),
    _: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    logout(db, bearer_token(authorization))
    return {"success": True, "message": "Logged out successfully"}


# --- User ---


@app.get("/api/user/profile")
def get_profile(user: Dict[str, Any] = Depends(get_current_user)):
    return {"success": True, "user": users.public_profile(user)}


@app.put("/api/user/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    profile = users.update_profile(db, _user_id(user), payload.name, payload.phone)
    return {"success": True, "message": "Profile updated", "user": profile}


@app.post("/api/user/address", status_code=201)
def add_address(payload: Address, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "addresses": users.add_address(db, _user_id(user), payload)}


@app.put("/api/user/address/{index}")
def update_address(
    index: int,
    payload: AddressUpdateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    addresses = users.update_address(db, _user_id(user), index, payload.model_dump(exclude_unset=True))
    return {"success": True, "addresses": addresses}


@app.delete("/api/user/address/{index}")
def delete_address(index: int, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "addresses": users.delete_address(db, _user_id(user), index)}


@app.get("/api/user/role")
def get_role(user: Dict[str, Any] = Depends(get_current_user)):
    return {"success": True, "role": user.get("role", "user")}


@app.get("/api/user/orders")
def get_my_orders(user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "orders": orders.list_user_orders(db, _user_id(user))}


@app.get("/api/user/orders/{order_id}")
def get_my_order(order_id: str, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "order": orders.get_user_order(db, _user_id(user), order_id)}


@app.put("/api/user/create-admin")
def create_admin(payload: PromoteRequest, _: Dict[str, Any] = Depends(require_super_admin), db: Database = Depends(get_db)):
    return {"success": True, **promote_to_admin(db, payload.email)}


# --- Products ---


@app.get("/api/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    category: Optional[str] = None,
    db: Database = Depends(get_db),
):
    return {"success": True, **catalog.list_products(db, page, limit, search, category)}


@app.get("/api/products/featured")
def get_featured_products(limit: int = Query(10, ge=1, le=100), db: Database = Depends(get_db)):
    return {"success": True, "products": catalog.featured_products(db, limit)}


@app.get("/api/products/trending")
def get_trending_products(limit: int = Query(10, ge=1, le=100), db: Database = Depends(get_db)):
    products = catalog.trending_products(db, limit)
    return {"success": True, "count": len(products), "products": products}


@app.get("/api/products/hot-deal")
def get_hot_deal(db: Database = Depends(get_db)):
    return {"success": True, "product": catalog.get_hot_deal(db)}


@app.get("/api/products/category/{category_id}")
def get_products_by_category(category_id: str, db: Database = Depends(get_db)):
    return {"success": True, "products": catalog.list_products_by_category(db, category_id)}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return {"success": True, "product": catalog.get_product(db, product_id)}


@app.post("/api/products", status_code=201)
def create_product(payload: ProductCreateRequest, _: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, "product": catalog.create_product(db, payload.model_dump())}


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdateRequest,
    _: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True)
    return {"success": True, "product": catalog.update_product(db, product_id, updates)}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, _: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"success": True, "message": "Product deleted successfully"}


@app.put("/api/products/{product_id}/hot-deal")
def set_hot_deal(product_id: str, _: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    product = catalog.set_hot_deal(db, product_id)
    return {"success": True, "message": "Today's hot deal set successfully", "productId": product["id"]}


# --- Categories ---


@app.get("/api/categories")
def list_categories(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    status: str = "active",
    db: Database = Depends(get_db),
):
    return {"success": True, "data": catalog.list_categories(db, page, limit, search, status)}


@app.post("/api/categories", status_code=201)
def create_category(payload: CategoryCreateRequest, _: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    category = catalog.create_category(db, payload.name, payload.slug, payload.description)
    return {"success": True, "category": category}


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: str,
    payload: CategoryUpdateRequest,
    _: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
):
    category = catalog.update_category(db, category_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "category": category}


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, _: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    catalog.delete_category(db, category_id)
    return {"success": True, "message": "Category deleted"}


# --- Cart ---


@app.get("/api/cart")
def get_cart(user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "cart": cart.view_cart(db, _user_id(user))}


@app.post("/api/cart/add")
def add_to_cart(payload: CartItemRequest, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "cart": cart.add_item(db, _user_id(user), payload.product_id, payload.quantity)}


@app.put("/api/cart/update")
def update_cart_item(payload: CartItemRequest, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "cart": cart.update_item(db, _user_id(user), payload.product_id, payload.quantity)}


@app.delete("/api/cart/remove/{product_id}")
def remove_from_cart(product_id: str, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "cart": cart.remove_item(db, _user_id(user), product_id)}


@app.delete("/api/cart/clear")
def clear_cart(user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    cart.clear_cart(db, _user_id(user))
    return {"success": True, "message": "Cart cleared"}


# --- Coupons ---


@app.post("/api/coupons", status_code=201)
def create_coupon(payload: CouponCreateRequest, _: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    coupon = coupons.create_coupon(db, **payload.model_dump())
    return {"success": True, "coupon": coupon}


@app.get("/api/coupons")
def list_coupons(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    status: str = "all",
    _: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return {"success": True, "data": coupons.list_coupons(db, page, limit, search, status)}


@app.post("/api/coupons/apply")
def apply_coupon(payload: CouponApplyRequest, _: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, **coupons.apply_preview(db, payload.code, payload.amount)}


@app.delete("/api/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, _: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    coupons.deactivate_coupon(db, coupon_id)
    return {"success": True, "message": "Coupon deactivated successfully"}


# --- Payment ---


@app.post("/api/payment/create-intent")
def create_payment_intent(payload: CheckoutRequest, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    result = checkout.create_intent(
        db,
        _user_id(user),
        payload.shipping_address,
        payload.payment_method,
        payload.coupon_code,
    )
    return {"success": True, **result}


@app.post("/api/payment/verify")
def verify_payment(payload: PaymentConfirmRequest, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    result = checkout.confirm_payment(db, _user_id(user), payload.order_id, payload.payment_id, payload.signature)
    return {"success": True, **result}


# --- Reviews ---


@app.post("/api/reviews", status_code=201)
def add_review(payload: ReviewRequest, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    review = catalog.add_review(db, _user_id(user), payload.product_id, payload.rating, payload.comment)
    return {"success": True, "review": review}


@app.get("/api/reviews/{product_id}")
def get_reviews(product_id: str, db: Database = Depends(get_db)):
    return {"success": True, "reviews": catalog.list_reviews(db, product_id)}


@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    catalog.delete_review(db, user, review_id)
    return {"success": True, "message": "Review deleted"}


# --- Home page ---


@app.get("/api/home")
def get_home(db: Database = Depends(get_db)):
    return {"success": True, "config": catalog.get_home_config(db)}


@app.put("/api/home")
def update_home(payload: HomeConfigRequest, _: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, "config": catalog.save_home_config(db, payload.banners, payload.video_iframe_url)}


# --- Admin ---


@app.get("/api/admin/dashboard/stats")
def get_dashboard_stats(_: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, "data": orders.dashboard_stats(db)}


@app.get("/api/admin/orders")
def get_admin_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    _: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return {"success": True, "data": orders.list_orders(db, page, limit, status)}


@app.patch("/api/admin/orders/{order_id}")
def update_order_status(
    order_id: str,
    payload: OrderStatusRequest,
    _: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return {"success": True, "order": orders.update_order_status(db, order_id, payload.status)}


@app.get("/api/admin/reviews")
def get_admin_reviews(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    rating: Optional[int] = Query(None, ge=1, le=5),
    _: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return {"success": True, "data": catalog.list_all_reviews(db, page, limit, search, rating)}


@app.get("/api/admin/users")
def get_admin_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    _: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return {"success": True, "data": users.list_users(db, page, limit, search)}


@app.put("/api/admin/users/{user_id}")
def update_admin_user(
    user_id: str,
    payload: AdminUserUpdateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
):
    user = users.update_user(db, admin, user_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "user": user}


@app.delete("/api/admin/users/{user_id}")
def delete_admin_user(user_id: str, admin: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    users.delete_user(db, admin, user_id)
    return {"success": True, "message": "User deleted"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
