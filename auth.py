"""Password hashing, bearer tokens and the user-identity dependencies."""

import logging
import os
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, Header
from passlib.context import CryptContext
from pymongo.database import Database

from database import as_utc, create_document, get_db, parse_object_id, utcnow
from errors import EmailTaken, Forbidden, InvalidRequest, Unauthorized, UserNotFound
from schemas import Session, User

logger = logging.getLogger(__name__)

TOKEN_TTL_DAYS = int(os.getenv("TOKEN_TTL_DAYS", 7))
ADMIN_ROLES = ("admin", "super-admin")

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_token(db: Database, user_id: str) -> str:
    token = f"tok_{user_id}_{secrets.token_hex(16)}"
    session = Session(
        token=token,
        user_id=user_id,
        expires_at=utcnow() + timedelta(days=TOKEN_TTL_DAYS),
    )
    create_document(db, "session", session)
    return token


def signup(db: Database, name: str, email: str, password: str, phone: Optional[str] = None) -> Dict[str, Any]:
    if len(password) < 6:
        raise InvalidRequest("Password must be at least 6 characters")
    email = email.lower()
    if db["user"].find_one({"email": email}):
        raise EmailTaken(email)

    user_doc = User(
        name=name,
        email=email,
        phone=phone,
        password_hash=hash_password(password),
    )
    uid = create_document(db, "user", user_doc)
    logger.info("User %s signed up", uid)
    return {"user_id": uid, "name": user_doc.name, "email": user_doc.email, "token": create_token(db, uid)}


def login(db: Database, email: str, password: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise Unauthorized("Invalid credentials")
    if not user.get("is_active", True):
        raise Forbidden("Account disabled")

    uid = str(user["_id"])
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login_at": utcnow()}})
    return {"user_id": uid, "name": user.get("name"), "email": user.get("email"), "token": create_token(db, uid)}


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized()
    return authorization[len("Bearer "):].strip()


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    """Resolve the `Authorization: Bearer <token>` header to a user document."""
    token = bearer_token(authorization)

    session = db["session"].find_one({"token": token})
    if not session or as_utc(session["expires_at"]) < utcnow():
        raise Unauthorized("Invalid or expired token")

    user = db["user"].find_one({"_id": parse_object_id(session["user_id"], "user ID")})
    if not user or not user.get("is_active", True):
        raise Unauthorized("Invalid or expired token")
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") not in ADMIN_ROLES:
        raise Forbidden()
    return user


def require_super_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "super-admin":
        raise Forbidden("Super admin access required")
    return user


def promote_to_admin(db: Database, email: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email.lower()})
    if not user:
        raise UserNotFound(email)
    if user.get("role", "user") == "user":
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": "admin", "updated_at": utcnow()}})
        user["role"] = "admin"
        logger.info("User %s promoted to admin", user["_id"])
    return {"user_id": str(user["_id"]), "email": user["email"], "role": user["role"]}


def change_password(db: Database, user: Dict[str, Any], old_password: str, new_password: str) -> None:
    if not old_password or not new_password:
        raise InvalidRequest("Old password and new password are required")
    if len(new_password) < 6:
        raise InvalidRequest("New password must be at least 6 characters")
    if not verify_password(old_password, user.get("password_hash", "")):
        raise InvalidRequest("Incorrect old password")

    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}},
    )
    logger.info("User %s changed password", user["_id"])


def logout(db: Database, token: str) -> None:
    db["session"].delete_one({"token": token})
