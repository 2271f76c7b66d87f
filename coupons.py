"""
Coupon evaluation and administration.

`evaluate` is the only place discounts are computed; both the apply-preview
endpoint and checkout go through it. Evaluation trusts persisted data: the
value constraints are enforced once, in `create_coupon`.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pymongo.database import Database

from database import as_utc, create_document, paginate, parse_object_id, query_time, to_response, utcnow
from errors import (
    CouponExists,
    CouponMissing,
    CouponNotFound,
    InvalidRequest,
    MinOrderNotMet,
    UsageLimitReached,
)
from pricing import ZERO, as_amount, from_decimal, quantize
from schemas import Coupon, CouponSnapshot

logger = logging.getLogger(__name__)

DISCOUNT_TYPES = ("flat", "percentage")
COUPON_STATUSES = ("all", "active", "expired", "upcoming")


@dataclass(frozen=True)
class CouponEvaluation:
    discount: Decimal
    snapshot: CouponSnapshot


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def compute_discount(coupon: Dict[str, Any], subtotal: Decimal) -> Decimal:
    value = as_amount(coupon["discount_value"])
    if coupon["discount_type"] == "flat":
        discount = value
    else:
        discount = quantize(subtotal * value / 100)
        if coupon.get("max_discount") is not None:
            discount = min(discount, as_amount(coupon["max_discount"]))
    # a discount never takes the total below zero
    return max(min(discount, subtotal), ZERO)


def evaluate(db: Database, code: str, subtotal: Any, now: Optional[datetime] = None) -> CouponEvaluation:
    code = normalize_code(code)
    subtotal = quantize(subtotal)
    now = as_utc(now or utcnow())

    coupon = db["coupon"].find_one({"code": code}) if code else None
    if (
        not coupon
        or not coupon.get("is_active", False)
        or not as_utc(coupon["valid_from"]) <= now <= as_utc(coupon["valid_until"])
    ):
        raise CouponNotFound(code)

    min_order_value = as_amount(coupon.get("min_order_value"))
    if subtotal < min_order_value:
        raise MinOrderNotMet(min_order_value)

    max_uses = coupon.get("max_uses")
    if max_uses is not None and coupon.get("used_count", 0) >= max_uses:
        raise UsageLimitReached(code)

    discount = compute_discount(coupon, subtotal)
    snapshot = CouponSnapshot(
        code=coupon["code"],
        discount_type=coupon["discount_type"],
        discount_value=as_amount(coupon["discount_value"]),
        discount_amount=discount,
    )
    return CouponEvaluation(discount=discount, snapshot=snapshot)


def apply_preview(db: Database, code: str, amount: Any) -> Dict[str, Any]:
    amount = quantize(amount)
    if amount <= 0:
        raise InvalidRequest()
    result = evaluate(db, code, amount)
    return {
        "discount": from_decimal(result.discount),
        "discountedAmount": from_decimal(amount - result.discount),
    }


def redeem(db: Database, code: str) -> bool:
    """
    Count one use of a coupon.

    A single conditional update, so concurrent redemptions cannot push
    used_count past max_uses. Returns False when the coupon is gone or already
    used up.
    """
    result = db["coupon"].update_one(
        {
            "code": code,
            "$or": [
                {"max_uses": None},
                {"$expr": {"$lt": ["$used_count", "$max_uses"]}},
            ],
        },
        {"$inc": {"used_count": 1}, "$set": {"updated_at": utcnow()}},
    )
    return result.modified_count == 1


def create_coupon(
    db: Database,
    code: str,
    discount_type: str,
    discount_value: Any,
    valid_from: datetime,
    valid_until: datetime,
    description: str = "",
    min_order_value: Any = 0,
    max_discount: Any = None,
    max_uses: Optional[int] = None,
    is_active: bool = True,
) -> Dict[str, Any]:
    code = normalize_code(code)
    if not code or not discount_type or discount_value is None or not valid_from or not valid_until:
        raise InvalidRequest("Required fields missing")
    if discount_type not in DISCOUNT_TYPES:
        raise InvalidRequest("Invalid discount type")

    value = quantize(discount_value)
    if value <= 0:
        raise InvalidRequest("Discount must be positive")
    if discount_type == "percentage" and value > 100:
        raise InvalidRequest("Percentage cannot exceed 100")
    if as_utc(valid_from) >= as_utc(valid_until):
        raise InvalidRequest("Invalid validity period")

    min_order = quantize(min_order_value or 0)
    cap = quantize(max_discount) if max_discount is not None else None
    if min_order < 0 or (cap is not None and cap < 0):
        raise InvalidRequest("Amounts cannot be negative")
    if max_uses is not None and max_uses < 1:
        raise InvalidRequest("Max uses must be at least 1")

    if db["coupon"].find_one({"code": code}):
        raise CouponExists(code)

    coupon = Coupon(
        code=code,
        description=description or "",
        discount_type=discount_type,
        discount_value=value,
        min_order_value=min_order,
        max_discount=cap,
        valid_from=as_utc(valid_from),
        valid_until=as_utc(valid_until),
        max_uses=max_uses,
        is_active=is_active,
    )
    cid = create_document(db, "coupon", coupon)
    logger.info("Coupon %s created (%s %s)", code, discount_type, value)
    return to_response(db["coupon"].find_one({"_id": parse_object_id(cid)}))


def list_coupons(db: Database, page: int = 1, limit: int = 10, search: str = "", status: str = "all") -> Dict[str, Any]:
    if status not in COUPON_STATUSES:
        raise InvalidRequest("Invalid status filter")

    now = query_time(utcnow())
    clauses = []
    if search:
        pattern = re.escape(search)
        clauses.append({"$or": [
            {"code": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]})
    if status == "active":
        clauses.append({"is_active": True, "valid_from": {"$lte": now}, "valid_until": {"$gte": now}})
    elif status == "expired":
        clauses.append({"$or": [{"valid_until": {"$lt": now}}, {"is_active": False}]})
    elif status == "upcoming":
        clauses.append({"valid_from": {"$gt": now}})

    query = {"$and": clauses} if clauses else {}
    result = paginate(db, "coupon", query, page, limit)
    result["coupons"] = to_response(result.pop("items"))
    return result


def deactivate_coupon(db: Database, coupon_id: str) -> None:
    result = db["coupon"].update_one(
        {"_id": parse_object_id(coupon_id, "coupon ID")},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise CouponMissing(coupon_id)
    logger.info("Coupon %s deactivated", coupon_id)
