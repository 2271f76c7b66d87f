"""
Categories, products, reviews and the home page configuration.

Products are never removed: deleting one clears `is_active`, which hides it
from listings and makes carts and checkout reject it.
"""

import logging
import re
from datetime import datetime, time
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, encode, get_documents, paginate, parse_object_id, to_response, utcnow
from errors import (
    AlreadyReviewed,
    CategoryExists,
    CategoryNotFound,
    Forbidden,
    InvalidRequest,
    ProductUnavailable,
    ReviewNotFound,
)
from pricing import quantize
from schemas import Banner, Category, HomeConfig, Product, Review

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = ("sku", "name", "description", "price", "stock", "images", "category", "is_featured", "is_active")

CATEGORY_FIELDS = ("name", "slug", "description", "image", "is_active")
CATEGORY_STATUSES = ("active", "inactive", "all")
TRENDING_MINIMUM = 5


# --- Categories ---


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _check_category_unique(db: Database, name: Optional[str], slug: Optional[str], exclude=None) -> None:
    clauses = []
    if name:
        clauses.append({"name": name})
    if slug:
        clauses.append({"slug": slug})
    if not clauses:
        return
    query: Dict[str, Any] = {"$or": clauses}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    if db["category"].find_one(query):
        raise CategoryExists(name or slug)


def _check_category(db: Database, category_id: Optional[str]) -> None:
    """Products may only point at an existing, active category."""
    if not category_id:
        return
    oid = parse_object_id(category_id, "category ID")
    if not db["category"].find_one({"_id": oid, "is_active": True}):
        raise CategoryNotFound(category_id)


def list_categories(
    db: Database,
    page: int = 1,
    limit: int = 10,
    search: str = "",
    status: str = "active",
) -> Dict[str, Any]:
    if status not in CATEGORY_STATUSES:
        raise InvalidRequest("Invalid status filter")
    query: Dict[str, Any] = {}
    if status != "all":
        query["is_active"] = status == "active"
    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}

    result = paginate(db, "category", query, page, limit)
    result["categories"] = to_response(result.pop("items"))
    return result


def create_category(db: Database, name: str, slug: Optional[str] = None, description: Optional[str] = None) -> Dict[str, Any]:
    name = (name or "").strip()
    if not name:
        raise InvalidRequest("Category name is required")
    category = Category(name=name, slug=slugify(slug or name), description=description)
    if not category.slug:
        raise InvalidRequest("Invalid category slug")
    _check_category_unique(db, category.name, category.slug)

    cid = create_document(db, "category", category)
    logger.info("Category %s created", cid)
    return to_response(db["category"].find_one({"_id": parse_object_id(cid)}))


def update_category(db: Database, category_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    oid = parse_object_id(category_id, "category ID")
    if not db["category"].find_one({"_id": oid}):
        raise CategoryNotFound(category_id)

    changes = {k: v for k, v in updates.items() if k in CATEGORY_FIELDS}
    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()
        if not changes["name"]:
            raise InvalidRequest("Category name is required")
    if changes.get("slug"):
        changes["slug"] = slugify(changes["slug"])
    if changes.get("image") is not None:
        changes["image"] = dict(changes["image"])
    _check_category_unique(db, changes.get("name"), changes.get("slug"), exclude=oid)

    changes["updated_at"] = utcnow()
    category = db["category"].find_one_and_update(
        {"_id": oid},
        {"$set": encode(changes)},
        return_document=ReturnDocument.AFTER,
    )
    return to_response(category)


def delete_category(db: Database, category_id: str) -> None:
    result = db["category"].update_one(
        {"_id": parse_object_id(category_id, "category ID")},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise CategoryNotFound(category_id)
    logger.info("Category %s deactivated", category_id)


# --- Products ---


def _check_sku(db: Database, sku: Optional[str], exclude=None) -> None:
    if not sku:
        return
    query = {"sku": sku}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    if db["product"].find_one(query):
        raise InvalidRequest("SKU already exists")


def list_products(
    db: Database,
    page: int = 1,
    limit: int = 10,
    search: str = "",
    category: Optional[str] = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {"is_active": True}
    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}
    if category:
        query["category"] = category

    result = paginate(db, "product", query, page, limit)
    return {
        "page": result["page"],
        "totalPages": result["totalPages"],
        "totalProducts": result["totalItems"],
        "products": to_response(result["items"]),
    }


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product ID"), "is_active": True})
    if not product:
        raise ProductUnavailable(product_id)
    return to_response(product)


def create_product(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    product = Product(**data)
    product.price = quantize(product.price)
    if product.price <= 0:
        raise InvalidRequest("Price must be positive")
    _check_category(db, product.category)
    _check_sku(db, product.sku)

    pid = create_document(db, "product", product)
    logger.info("Product %s created", pid)
    return to_response(db["product"].find_one({"_id": parse_object_id(pid)}))


def update_product(db: Database, product_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    oid = parse_object_id(product_id, "product ID")
    current = db["product"].find_one({"_id": oid})
    if not current:
        raise ProductUnavailable(product_id)

    changes = {k: v for k, v in updates.items() if k in PRODUCT_FIELDS}
    if "price" in changes:
        changes["price"] = quantize(changes["price"])
        if changes["price"] <= 0:
            raise InvalidRequest("Price must be positive")
    if "stock" in changes and changes["stock"] < 0:
        raise InvalidRequest("Stock cannot be negative")
    _check_category(db, changes.get("category"))
    if "images" in changes:
        changes["images"] = [dict(img) for img in changes["images"] or []]
    _check_sku(db, changes.get("sku"), exclude=oid)

    changes["updated_at"] = utcnow()
    product = db["product"].find_one_and_update(
        {"_id": oid},
        {"$set": encode(changes)},
        return_document=ReturnDocument.AFTER,
    )
    return to_response(product)


def delete_product(db: Database, product_id: str) -> None:
    result = db["product"].update_one(
        {"_id": parse_object_id(product_id, "product ID")},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise ProductUnavailable(product_id)
    logger.info("Product %s deactivated", product_id)


def list_products_by_category(db: Database, category_id: str) -> List[Dict[str, Any]]:
    parse_object_id(category_id, "category ID")
    products = get_documents(db, "product", {"category": category_id, "is_active": True}, sort=[("created_at", -1)])
    return to_response(products)


def featured_products(db: Database, limit: int = 10) -> List[Dict[str, Any]]:
    products = get_documents(
        db,
        "product",
        {"is_active": True, "is_featured": True},
        limit=limit,
        sort=[("created_at", -1)],
    )
    return to_response(products)


def trending_products(db: Database, limit: int = 10) -> List[Dict[str, Any]]:
    """Best sellers first; newest products fill the list up to TRENDING_MINIMUM."""
    limit = max(limit, TRENDING_MINIMUM)
    products = get_documents(
        db,
        "product",
        {"is_active": True, "sold_count": {"$gt": 0}},
        limit=limit,
        sort=[("sold_count", -1), ("last_sold_at", -1)],
    )
    if len(products) < TRENDING_MINIMUM:
        products += get_documents(
            db,
            "product",
            {"is_active": True, "_id": {"$nin": [p["_id"] for p in products]}},
            limit=TRENDING_MINIMUM - len(products),
            sort=[("created_at", -1)],
        )
    return to_response(products)


def _today() -> datetime:
    # naive UTC midnight, the form datetimes are stored in
    return datetime.combine(utcnow().date(), time.min)


def set_hot_deal(db: Database, product_id: str) -> Dict[str, Any]:
    """Make a product today's hot deal, replacing any other."""
    oid = parse_object_id(product_id, "product ID")
    if not db["product"].find_one({"_id": oid, "is_active": True}):
        raise ProductUnavailable(product_id)

    today = _today()
    db["product"].update_many({"hot_deal_date": today, "_id": {"$ne": oid}}, {"$set": {"hot_deal_date": None}})
    product = db["product"].find_one_and_update(
        {"_id": oid},
        {"$set": {"hot_deal_date": today, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Product %s is the hot deal for %s", product_id, today.date())
    return to_response(product)


def get_hot_deal(db: Database) -> Optional[Dict[str, Any]]:
    product = db["product"].find_one({"is_active": True, "hot_deal_date": _today()})
    return to_response(product) if product else None


# --- Reviews ---


def _refresh_rating(db: Database, product_id: str) -> None:
    ratings = [r["rating"] for r in db["review"].find({"product_id": product_id}, {"rating": 1})]
    average = round(sum(ratings) / len(ratings), 1) if ratings else 0
    db["product"].update_one(
        {"_id": parse_object_id(product_id)},
        {"$set": {"ratings": average, "num_reviews": len(ratings)}},
    )


def add_review(db: Database, user_id: str, product_id: str, rating: int, comment: Optional[str] = None) -> Dict[str, Any]:
    if rating < 1 or rating > 5:
        raise InvalidRequest("Rating must be between 1 and 5")
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product ID")})
    if not product or not product.get("is_active", True):
        raise ProductUnavailable(product_id)
    if db["review"].find_one({"user_id": user_id, "product_id": product_id}):
        raise AlreadyReviewed()

    rid = create_document(db, "review", Review(user_id=user_id, product_id=product_id, rating=rating, comment=comment))
    _refresh_rating(db, product_id)
    return to_response(db["review"].find_one({"_id": parse_object_id(rid)}))


def list_reviews(db: Database, product_id: str) -> List[Dict[str, Any]]:
    parse_object_id(product_id, "product ID")
    reviews = list(db["review"].find({"product_id": product_id}).sort("created_at", -1))
    user_ids = list({parse_object_id(r["user_id"]) for r in reviews})
    names = {str(u["_id"]): u.get("name") for u in db["user"].find({"_id": {"$in": user_ids}})} if user_ids else {}

    out = []
    for review in reviews:
        data = to_response(review)
        data["user"] = {"id": review["user_id"], "name": names.get(review["user_id"])}
        out.append(data)
    return out


def delete_review(db: Database, user: Dict[str, Any], review_id: str) -> None:
    """Authors delete their own reviews; admins may delete any."""
    oid = parse_object_id(review_id, "review ID")
    review = db["review"].find_one({"_id": oid})
    if not review:
        raise ReviewNotFound(review_id)
    if review["user_id"] != str(user["_id"]) and user.get("role") not in ("admin", "super-admin"):
        raise Forbidden("Not authorized")

    db["review"].delete_one({"_id": oid})
    _refresh_rating(db, review["product_id"])


def list_all_reviews(
    db: Database,
    page: int = 1,
    limit: int = 10,
    search: str = "",
    rating: Optional[int] = None,
) -> Dict[str, Any]:
    """Admin view of every review with its author and product attached."""
    query: Dict[str, Any] = {}
    if rating is not None:
        query["rating"] = rating
    if search:
        query["comment"] = {"$regex": re.escape(search), "$options": "i"}

    result = paginate(db, "review", query, page, limit)
    reviews = result.pop("items")
    user_ids = list({parse_object_id(r["user_id"]) for r in reviews})
    product_ids = list({parse_object_id(r["product_id"]) for r in reviews})
    users = {
        str(u["_id"]): {"name": u.get("name"), "email": u.get("email")}
        for u in db["user"].find({"_id": {"$in": user_ids}})
    } if user_ids else {}
    products = {
        str(p["_id"]): {"name": p.get("name")}
        for p in db["product"].find({"_id": {"$in": product_ids}})
    } if product_ids else {}

    result["reviews"] = []
    for review in reviews:
        data = to_response(review)
        data["user"] = users.get(review["user_id"])
        data["product"] = products.get(review["product_id"])
        result["reviews"].append(data)
    return result


# --- Home page ---


def get_home_config(db: Database) -> Dict[str, Any]:
    config = db["homeconfig"].find_one({"is_active": True})
    if not config:
        return to_response(HomeConfig().model_dump())
    config = to_response(config)
    config["banners"] = [b for b in config.get("banners", []) if b.get("isActive", True)]
    return config


def save_home_config(db: Database, banners: List[Banner], video_iframe_url: str = "") -> Dict[str, Any]:
    config = HomeConfig(banners=banners, video_iframe_url=video_iframe_url)
    now = utcnow()
    saved = db["homeconfig"].find_one_and_update(
        {"is_active": True},
        {"$set": {**config.model_dump(), "updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return to_response(saved)
