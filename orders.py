"""Order history, the admin status workflow and dashboard figures."""

import logging
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import get_documents, paginate, parse_object_id, to_response, utcnow
from errors import InvalidRequest, InvalidStatusTransition, OrderNotFound
from pricing import ZERO, as_amount, from_decimal

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "confirmed", "shipped", "delivered", "cancelled")

# allowed next states for each order status
TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("shipped", "cancelled"),
    "shipped": ("delivered",),
    "delivered": (),
    "cancelled": (),
}


def list_user_orders(db: Database, user_id: str):
    return to_response(get_documents(db, "order", {"user_id": user_id}, sort=[("created_at", -1)]))


def get_user_order(db: Database, user_id: str, order_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "order ID")})
    if not order or order.get("user_id") != user_id:
        raise OrderNotFound(order_id)
    return to_response(order)


def list_orders(db: Database, page: int = 1, limit: int = 10, status: Optional[str] = None) -> Dict[str, Any]:
    query = {}
    if status:
        if status not in ORDER_STATUSES:
            raise InvalidRequest("Invalid status filter")
        query["order_status"] = status

    result = paginate(db, "order", query, page, limit)
    orders = result.pop("items")
    user_ids = list({parse_object_id(o["user_id"]) for o in orders})
    users = {
        str(u["_id"]): {"name": u.get("name"), "email": u.get("email")}
        for u in db["user"].find({"_id": {"$in": user_ids}})
    } if user_ids else {}

    result["orders"] = []
    for order in orders:
        data = to_response(order)
        data["user"] = users.get(order["user_id"])
        result["orders"].append(data)
    return result


def update_order_status(db: Database, order_id: str, status: str) -> Dict[str, Any]:
    if status not in ORDER_STATUSES:
        raise InvalidRequest("Invalid order status")
    oid = parse_object_id(order_id, "order ID")
    order = db["order"].find_one({"_id": oid})
    if not order:
        raise OrderNotFound(order_id)

    current = order.get("order_status", "pending")
    if status not in TRANSITIONS[current]:
        raise InvalidStatusTransition(current, status)
    if status == "confirmed" and order.get("payment_status") != "paid":
        raise InvalidStatusTransition(current, status)

    changes = {"order_status": status, "updated_at": utcnow()}
    if status == "cancelled" and order.get("payment_status") == "paid":
        changes["payment_status"] = "refunded"

    # guard on the status we validated against
    updated = db["order"].find_one_and_update(
        {"_id": oid, "order_status": current},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidStatusTransition(current, status)
    logger.info("Order %s moved from %s to %s", order_id, current, status)
    return to_response(updated)


def dashboard_stats(db: Database) -> Dict[str, Any]:
    revenue = ZERO
    for order in db["order"].find({"order_status": "delivered"}, {"total_amount": 1}):
        revenue += as_amount(order.get("total_amount"))

    return {
        "totalUsers": db["user"].count_documents({}),
        "activeUsers": db["user"].count_documents({"is_active": True}),
        "totalProducts": db["product"].count_documents({}),
        "activeProducts": db["product"].count_documents({"is_active": True}),
        "totalOrders": db["order"].count_documents({}),
        "pendingOrders": db["order"].count_documents({"order_status": "pending"}),
        "totalReviews": db["review"].count_documents({}),
        "totalRevenue": from_decimal(revenue),
    }
