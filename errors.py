"""Custom exceptions for the shop API."""


class ShopError(Exception):
    """Base exception for all shop errors."""

    def __init__(self, message: str = "Server error"):
        self.message = message
        super().__init__(message)


# --- 400 ---


class InvalidRequest(ShopError):
    """Raised when request input is malformed or violates a business rule."""

    def __init__(self, message: str = "Invalid request"):
        super().__init__(message)


class InvalidAmount(InvalidRequest):
    """Raised when a monetary value is not a finite number."""

    def __init__(self, value=None):
        self.value = value
        super().__init__(f"Invalid amount: {value!r}")


class CouponNotFound(InvalidRequest):
    """Raised when a coupon is missing, inactive or outside its validity window."""

    def __init__(self, code: str | None = None):
        self.code = code
        super().__init__("Invalid or expired coupon")


class MinOrderNotMet(InvalidRequest):
    def __init__(self, min_order_value):
        self.min_order_value = min_order_value
        super().__init__(f"Minimum order value is {min_order_value:.2f}")


class UsageLimitReached(InvalidRequest):
    def __init__(self, code: str):
        self.code = code
        super().__init__("Coupon usage limit reached")


class CouponExists(InvalidRequest):
    def __init__(self, code: str):
        self.code = code
        super().__init__("Coupon already exists")


class InsufficientStock(InvalidRequest):
    """Raised when a requested quantity exceeds the product's stock."""

    def __init__(self, product_name: str | None = None):
        self.product_name = product_name
        msg = "Insufficient stock"
        if product_name:
            msg = f"Insufficient stock for {product_name}"
        super().__init__(msg)


class EmptyCart(InvalidRequest):
    def __init__(self):
        super().__init__("Cart is empty")


class ProductInactive(InvalidRequest):
    """Raised at checkout when a cart line points at a missing or deactivated product."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__("Invalid product in cart")


class PaymentRejected(InvalidRequest):
    def __init__(self, reason: str = "Payment failed"):
        super().__init__(reason)


class AlreadyPaid(InvalidRequest):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Order already paid")


class InvalidStatusTransition(InvalidRequest):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change order status from {current} to {requested}")


class AlreadyReviewed(InvalidRequest):
    def __init__(self):
        super().__init__("Already reviewed")


class EmailTaken(InvalidRequest):
    def __init__(self, email: str):
        self.email = email
        super().__init__("User already exists")


class CategoryExists(InvalidRequest):
    def __init__(self, name: str):
        self.name = name
        super().__init__("Category already exists")


# --- 401 / 403 ---


class Unauthorized(ShopError):
    """Raised when no valid bearer token accompanies the request."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class Forbidden(ShopError):
    def __init__(self, message: str = "Admin access required"):
        super().__init__(message)


# --- 404 ---


class NotFound(ShopError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ProductUnavailable(NotFound):
    """Raised when a product is missing or has been deactivated."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__("Product not found")


class ItemNotInCart(NotFound):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__("Item not in cart")


class OrderNotFound(NotFound):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Order not found")


class CouponMissing(NotFound):
    """Raised by coupon administration when an id does not resolve."""

    def __init__(self, coupon_id: str):
        self.coupon_id = coupon_id
        super().__init__("Coupon not found")


class ReviewNotFound(NotFound):
    def __init__(self, review_id: str):
        self.review_id = review_id
        super().__init__("Review not found")


class UserNotFound(NotFound):
    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__("User not found")


class CategoryNotFound(NotFound):
    def __init__(self, category_id: str):
        self.category_id = category_id
        super().__init__("Category not found")


class AddressNotFound(NotFound):
    def __init__(self, index: int):
        self.index = index
        super().__init__("Address not found")
