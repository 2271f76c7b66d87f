"""Pytest fixtures for the shop API tests."""

from datetime import timedelta
from decimal import Decimal

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth import create_token
from database import create_document, get_db, utcnow
from schemas import Product, User


@pytest.fixture
def db():
    """Fresh in-memory database."""
    return mongomock.MongoClient()["shop_test"]


@pytest.fixture
def client(db):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, name="Test User", email="user@test.com", role="user") -> str:
    # password hashing is exercised by the auth tests; a dummy hash keeps fixtures fast
    return create_document(db, "user", User(name=name, email=email, password_hash="x", role=role))


def make_product(db, name="Widget", price="100.00", stock=5, is_active=True) -> str:
    return create_document(
        db,
        "product",
        Product(name=name, price=Decimal(price), stock=stock, is_active=is_active),
    )


def make_coupon(db, code="SAVE10", discount_type="percentage", discount_value="10", **overrides) -> str:
    now = utcnow()
    doc = {
        "code": code,
        "description": "",
        "discount_type": discount_type,
        "discount_value": Decimal(discount_value),
        "min_order_value": Decimal("0"),
        "max_discount": None,
        "valid_from": now - timedelta(days=1),
        "valid_until": now + timedelta(days=1),
        "max_uses": None,
        "used_count": 0,
        "is_active": True,
    }
    doc.update(overrides)
    return create_document(db, "coupon", doc)


def stock_of(db, product_id: str) -> int:
    return db["product"].find_one({"_id": ObjectId(product_id)})["stock"]


@pytest.fixture
def user_id(db):
    return make_user(db)


@pytest.fixture
def auth_headers(db, user_id):
    return {"Authorization": f"Bearer {create_token(db, user_id)}"}


@pytest.fixture
def admin_headers(db):
    admin_id = make_user(db, name="Admin", email="admin@test.com", role="admin")
    return {"Authorization": f"Bearer {create_token(db, admin_id)}"}


@pytest.fixture
def product_id(db):
    return make_product(db)
