"""
Per-user cart.

Each line keeps the unit price seen when it was last added or updated. The
stored total_price is recomputed from those snapshots after every mutation and
is never derived on read; checkout reprices from the catalog separately.
"""

from decimal import Decimal
from typing import Any, Dict, List

from pymongo import ReturnDocument
from pymongo.database import Database

from database import encode, parse_object_id, to_response, utcnow
from errors import InsufficientStock, InvalidRequest, ItemNotInCart, ProductUnavailable
from pricing import ZERO, as_amount, from_decimal, quantize, to_decimal
from schemas import CartItem


def recalculate_total(items: List[Dict[str, Any]]) -> Decimal:
    total = ZERO
    for item in items:
        total += as_amount(item["price"]) * item["quantity"]
    return quantize(total)


def load_active_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product ID")})
    if not product or not product.get("is_active", True):
        raise ProductUnavailable(product_id)
    return product


def _load_items(cart: Dict[str, Any] | None) -> List[Dict[str, Any]]:
    if not cart:
        return []
    return [
        CartItem(product_id=it["product_id"], quantity=it["quantity"], price=as_amount(it["price"])).model_dump()
        for it in cart.get("items", [])
    ]


def _save(db: Database, user_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
    now = utcnow()
    return db["cart"].find_one_and_update(
        {"user_id": user_id},
        {
            "$set": {
                "items": encode(items),
                "total_price": to_decimal(recalculate_total(items)),
                "updated_at": now,
            },
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def present(db: Database, cart: Dict[str, Any] | None) -> Dict[str, Any]:
    """Display form: plain numbers, lines enriched with the live product."""
    if not cart:
        return {"items": [], "totalPrice": 0}

    ids = [parse_object_id(it["product_id"]) for it in cart.get("items", [])]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})} if ids else {}

    items = []
    for it in cart.get("items", []):
        product = products.get(it["product_id"], {})
        items.append({
            "productId": it["product_id"],
            "name": product.get("name"),
            "images": to_response(product.get("images", [])),
            "stock": product.get("stock", 0),
            "quantity": it["quantity"],
            "price": from_decimal(it["price"]),
        })
    return {
        "id": str(cart["_id"]),
        "items": items,
        "totalPrice": from_decimal(cart.get("total_price")),
    }


def view_cart(db: Database, user_id: str) -> Dict[str, Any]:
    return present(db, db["cart"].find_one({"user_id": user_id}))


def add_item(db: Database, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
    if quantity < 1:
        raise InvalidRequest("Quantity must be at least 1")
    product = load_active_product(db, product_id)

    items = _load_items(db["cart"].find_one({"user_id": user_id}))
    existing = next((it for it in items if it["product_id"] == product_id), None)
    new_quantity = quantity + (existing["quantity"] if existing else 0)
    if new_quantity > product.get("stock", 0):
        raise InsufficientStock(product.get("name"))

    price = as_amount(product["price"])
    if existing:
        existing["quantity"] = new_quantity
        existing["price"] = price
    else:
        items.append(CartItem(product_id=product_id, quantity=quantity, price=price).model_dump())

    return present(db, _save(db, user_id, items))


def update_item(db: Database, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
    """Set a line's quantity; zero removes the line."""
    if quantity < 0:
        raise InvalidRequest("Quantity cannot be negative")
    parse_object_id(product_id, "product ID")

    items = _load_items(db["cart"].find_one({"user_id": user_id}))
    line = next((it for it in items if it["product_id"] == product_id), None)
    if line is None:
        raise ItemNotInCart(product_id)

    if quantity == 0:
        items.remove(line)
    else:
        product = load_active_product(db, product_id)
        if quantity > product.get("stock", 0):
            raise InsufficientStock(product.get("name"))
        line["quantity"] = quantity
        line["price"] = as_amount(product["price"])

    return present(db, _save(db, user_id, items))


def remove_item(db: Database, user_id: str, product_id: str) -> Dict[str, Any]:
    """Drop a line if present. Removing a missing line leaves the cart as it was."""
    parse_object_id(product_id, "product ID")
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        return present(db, None)

    items = [it for it in _load_items(cart) if it["product_id"] != product_id]
    return present(db, _save(db, user_id, items))


def clear_cart(db: Database, user_id: str) -> None:
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": [], "total_price": to_decimal(0), "updated_at": utcnow()}},
    )
