"""
Profiles, the address book and admin user management.

Addresses live inside the user document as an ordered list and are addressed
by position. At most one of them is the default.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import encode, paginate, parse_object_id, to_response, utcnow
from errors import AddressNotFound, Forbidden, InvalidRequest, UserNotFound
from schemas import Address

logger = logging.getLogger(__name__)

ADMIN_EDITABLE_FIELDS = ("name", "phone", "role", "is_active")
ASSIGNABLE_ROLES = ("user", "admin")


def public_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    return to_response({k: v for k, v in user.items() if k != "password_hash"})


def _load_user(db: Database, user_id: str) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": parse_object_id(user_id, "user ID")})
    if not user:
        raise UserNotFound(user_id)
    return user


def update_profile(db: Database, user_id: str, name: Optional[str] = None, phone: Optional[str] = None) -> Dict[str, Any]:
    changes: Dict[str, Any] = {"updated_at": utcnow()}
    if name:
        changes["name"] = name.strip()
    if phone:
        changes["phone"] = phone.strip()

    user = db["user"].find_one_and_update(
        {"_id": parse_object_id(user_id, "user ID")},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise UserNotFound(user_id)
    return public_profile(user)


# --- Address book ---


def _save_addresses(db: Database, user_id: str, addresses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    db["user"].update_one(
        {"_id": parse_object_id(user_id)},
        {"$set": {"addresses": encode(addresses), "updated_at": utcnow()}},
    )
    return to_response(addresses)


def _clear_default(addresses: List[Dict[str, Any]]) -> None:
    for address in addresses:
        address["is_default"] = False


def add_address(db: Database, user_id: str, address: Address) -> List[Dict[str, Any]]:
    addresses = list(_load_user(db, user_id).get("addresses") or [])
    if address.is_default:
        _clear_default(addresses)
    addresses.append(address.model_dump())
    return _save_addresses(db, user_id, addresses)


def update_address(db: Database, user_id: str, index: int, updates: Dict[str, Any]) -> List[Dict[str, Any]]:
    addresses = list(_load_user(db, user_id).get("addresses") or [])
    if index < 0 or index >= len(addresses):
        raise AddressNotFound(index)

    if updates.get("is_default"):
        _clear_default(addresses)
    merged = Address(**{**addresses[index], **updates})
    addresses[index] = merged.model_dump()
    return _save_addresses(db, user_id, addresses)


def delete_address(db: Database, user_id: str, index: int) -> List[Dict[str, Any]]:
    addresses = list(_load_user(db, user_id).get("addresses") or [])
    if index < 0 or index >= len(addresses):
        raise AddressNotFound(index)
    del addresses[index]
    return _save_addresses(db, user_id, addresses)


# --- Admin ---


def list_users(db: Database, page: int = 1, limit: int = 10, search: str = "") -> Dict[str, Any]:
    query = {"email": {"$regex": re.escape(search), "$options": "i"}} if search else {}
    result = paginate(db, "user", query, page, limit)
    result["users"] = [public_profile(u) for u in result.pop("items")]
    return result


def _check_manageable(admin: Dict[str, Any], target: Dict[str, Any]) -> None:
    if target["_id"] == admin["_id"]:
        raise InvalidRequest("Use the profile routes for your own account")
    if target.get("role") == "super-admin" and admin.get("role") != "super-admin":
        raise Forbidden("Not authorized")


def update_user(db: Database, admin: Dict[str, Any], user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    target = _load_user(db, user_id)
    _check_manageable(admin, target)

    changes = {k: v for k, v in updates.items() if k in ADMIN_EDITABLE_FIELDS}
    if "role" in changes and changes["role"] not in ASSIGNABLE_ROLES:
        raise InvalidRequest("Invalid role")
    changes["updated_at"] = utcnow()

    user = db["user"].find_one_and_update(
        {"_id": target["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if changes.get("is_active") is False:
        db["session"].delete_many({"user_id": user_id})
    logger.info("User %s updated by %s", user_id, admin["_id"])
    return public_profile(user)


def delete_user(db: Database, admin: Dict[str, Any], user_id: str) -> None:
    """Remove a user along with their sessions and cart. Orders and reviews stay."""
    target = _load_user(db, user_id)
    _check_manageable(admin, target)

    db["user"].delete_one({"_id": target["_id"]})
    db["session"].delete_many({"user_id": user_id})
    db["cart"].delete_one({"user_id": user_id})
    logger.info("User %s deleted by %s", user_id, admin["_id"])
