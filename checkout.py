"""
Two-phase checkout: create a pending order from the cart, then confirm it once
the payment gateway reports success.

Stock is checked in `create_intent` but only decremented in `confirm_payment`.
Nothing is reserved in between, so two checkouts can both pass the check for
the last unit; the guarded decrement keeps stock from going negative and the
lines it could not fill are recorded on the order as stock shortfalls.
"""

import hashlib
import hmac
import logging
import os
import uuid
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

import coupons
from cart import clear_cart
from database import create_document, parse_object_id, utcnow
from errors import (
    AlreadyPaid,
    EmptyCart,
    InsufficientStock,
    OrderNotFound,
    PaymentRejected,
    ProductInactive,
)
from pricing import ZERO, as_amount, from_decimal, quantize, to_minor_units
from schemas import Address, Order, OrderItem

logger = logging.getLogger(__name__)

PAYMENT_KEY_SECRET = os.getenv("PAYMENT_KEY_SECRET", "")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")


def sign_payment(secret: str, payment_order_id: str, payment_id: str) -> str:
    """Gateway signature over `<payment order id>|<payment id>`."""
    message = f"{payment_order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_payment_proof(order: Dict[str, Any], payment_id: Optional[str], signature: Optional[str]) -> None:
    if not payment_id:
        raise PaymentRejected()
    if not PAYMENT_KEY_SECRET:
        # no gateway secret configured: mock mode, a payment id is enough
        logger.warning("PAYMENT_KEY_SECRET not set, accepting payment %s without signature check", payment_id)
        return
    expected = sign_payment(PAYMENT_KEY_SECRET, order["payment_order_id"], payment_id)
    if not signature or not hmac.compare_digest(expected, signature):
        raise PaymentRejected("Invalid payment signature")


def _price_cart(db: Database, cart: Dict[str, Any]) -> tuple:
    """Reprice every cart line from the live catalog."""
    ids = [parse_object_id(it["product_id"]) for it in cart["items"]]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})}

    subtotal = ZERO
    items: List[OrderItem] = []
    for line in cart["items"]:
        product = products.get(line["product_id"])
        if not product or not product.get("is_active", True):
            raise ProductInactive(line["product_id"])
        if line["quantity"] > product.get("stock", 0):
            raise InsufficientStock(product.get("name"))

        price = as_amount(product["price"])
        subtotal += price * line["quantity"]
        items.append(OrderItem(
            product_id=line["product_id"],
            name=product["name"],
            quantity=line["quantity"],
            price=price,
        ))
    return quantize(subtotal), items


def create_intent(
    db: Database,
    user_id: str,
    shipping_address: Address,
    payment_method: str,
    coupon_code: Optional[str] = None,
) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart or not cart.get("items"):
        raise EmptyCart()

    subtotal, items = _price_cart(db, cart)

    discount = ZERO
    snapshot = None
    if coupon_code and coupon_code.strip():
        result = coupons.evaluate(db, coupon_code, subtotal)
        discount = result.discount
        snapshot = result.snapshot

    total = max(subtotal - discount, ZERO)
    payment_order_id = f"pay_{uuid.uuid4().hex}"

    order = Order(
        user_id=user_id,
        items=items,
        shipping_address=shipping_address,
        payment_method=payment_method,
        sub_total=subtotal,
        discount=discount,
        total_amount=total,
        coupon=snapshot,
        payment_order_id=payment_order_id,
    )
    order_id = create_document(db, "order", order)
    logger.info("Order %s created for user %s, total %s", order_id, user_id, total)

    return {
        "orderId": order_id,
        "paymentOrder": {
            "id": payment_order_id,
            "amount": to_minor_units(total),
            "currency": PAYMENT_CURRENCY,
        },
        "pricing": {
            "subTotal": from_decimal(subtotal),
            "discount": from_decimal(discount),
            "totalAmount": from_decimal(total),
        },
    }


def _decrement_stock(db: Database, order: Dict[str, Any]) -> List[str]:
    """Guarded per-line decrement. Returns the product ids that could not be filled."""
    shortfalls = []
    now = utcnow()
    for item in order["items"]:
        updated = db["product"].find_one_and_update(
            {"_id": parse_object_id(item["product_id"]), "stock": {"$gte": item["quantity"]}},
            {
                "$inc": {"stock": -item["quantity"], "sold_count": item["quantity"]},
                "$set": {"last_sold_at": now},
            },
        )
        if updated is None:
            shortfalls.append(item["product_id"])
    return shortfalls


def confirm_payment(
    db: Database,
    user_id: str,
    order_id: str,
    payment_id: Optional[str],
    signature: Optional[str],
) -> Dict[str, Any]:
    oid = parse_object_id(order_id, "order ID")
    order = db["order"].find_one({"_id": oid})
    if not order or order.get("user_id") != user_id:
        raise OrderNotFound(order_id)
    if order.get("payment_status") == "paid":
        raise AlreadyPaid(order_id)

    try:
        verify_payment_proof(order, payment_id, signature)
    except PaymentRejected:
        db["order"].update_one(
            {"_id": oid, "payment_status": {"$ne": "paid"}},
            {"$set": {"payment_status": "failed", "updated_at": utcnow()}},
        )
        logger.warning("Payment rejected for order %s", order_id)
        raise

    now = utcnow()
    order = db["order"].find_one_and_update(
        {"_id": oid, "payment_status": {"$ne": "paid"}},
        {"$set": {
            "payment_status": "paid",
            "order_status": "confirmed",
            "payment_id": payment_id,
            "paid_at": now,
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if order is None:
        # another confirmation won the race
        raise AlreadyPaid(order_id)

    shortfalls = _decrement_stock(db, order)
    if shortfalls:
        db["order"].update_one({"_id": oid}, {"$set": {"stock_shortfalls": shortfalls}})
        logger.warning("Order %s confirmed with stock shortfalls: %s", order_id, ", ".join(shortfalls))

    if order.get("coupon") and not coupons.redeem(db, order["coupon"]["code"]):
        logger.warning("Coupon %s could not be counted for order %s", order["coupon"]["code"], order_id)

    clear_cart(db, user_id)
    logger.info("Payment %s confirmed for order %s", payment_id, order_id)
    return {
        "message": "Payment verified and order placed",
        "stockShortfalls": shortfalls,
    }
