"""Tests for profiles, the address book and admin user management."""

import pytest
from bson import ObjectId

import cart
import users
from auth import create_token
from errors import AddressNotFound, Forbidden, InvalidRequest, UserNotFound
from schemas import Address

from .conftest import make_user


def load_user(db, user_id):
    return db["user"].find_one({"_id": ObjectId(user_id)})


class TestProfile:
    def test_update_name_and_phone(self, db, user_id):
        profile = users.update_profile(db, user_id, name="Asha", phone="99999")
        assert profile["name"] == "Asha"
        assert profile["phone"] == "99999"
        assert "passwordHash" not in profile

    def test_blank_fields_keep_current_values(self, db, user_id):
        profile = users.update_profile(db, user_id, name="", phone=None)
        assert profile["name"] == "Test User"

    def test_unknown_user(self, db):
        with pytest.raises(UserNotFound):
            users.update_profile(db, str(ObjectId()), name="Ghost")


class TestAddressBook:
    def test_add_addresses(self, db, user_id):
        users.add_address(db, user_id, Address(city="Pune"))
        addresses = users.add_address(db, user_id, Address(city="Goa"))
        assert [a["city"] for a in addresses] == ["Pune", "Goa"]
        assert addresses[0]["country"] == "India"

    def test_single_default(self, db, user_id):
        users.add_address(db, user_id, Address(city="Pune", is_default=True))
        addresses = users.add_address(db, user_id, Address(city="Goa", is_default=True))
        assert [a["isDefault"] for a in addresses] == [False, True]

        addresses = users.update_address(db, user_id, 0, {"is_default": True})
        assert [a["isDefault"] for a in addresses] == [True, False]

    def test_update_merges_fields(self, db, user_id):
        users.add_address(db, user_id, Address(city="Pune", line1="1 Main St"))
        addresses = users.update_address(db, user_id, 0, {"city": "Mumbai"})
        assert addresses[0]["city"] == "Mumbai"
        assert addresses[0]["line1"] == "1 Main St"
        assert load_user(db, user_id)["addresses"][0]["city"] == "Mumbai"

    def test_delete(self, db, user_id):
        users.add_address(db, user_id, Address(city="Pune"))
        users.add_address(db, user_id, Address(city="Goa"))
        addresses = users.delete_address(db, user_id, 0)
        assert [a["city"] for a in addresses] == ["Goa"]

    @pytest.mark.parametrize("index", [0, 3, -1])
    def test_unknown_index(self, db, user_id, index):
        with pytest.raises(AddressNotFound):
            users.update_address(db, user_id, index, {"city": "X"})
        with pytest.raises(AddressNotFound):
            users.delete_address(db, user_id, index)


class TestAdminUsers:
    @pytest.fixture
    def admin(self, db):
        return load_user(db, make_user(db, name="Admin", email="admin@test.com", role="admin"))

    def test_list_and_search(self, db, user_id, admin):
        make_user(db, name="Other", email="other@shop.com")
        data = users.list_users(db, search="test.com")
        assert data["totalItems"] == 2
        assert all("passwordHash" not in u for u in data["users"])

    def test_update_role_and_status(self, db, user_id, admin):
        create_token(db, user_id)
        user = users.update_user(db, admin, user_id, {"role": "admin", "is_active": False, "email": "x@y.com"})
        assert user["role"] == "admin"
        assert user["isActive"] is False
        assert user["email"] == "user@test.com"
        assert db["session"].count_documents({"user_id": user_id}) == 0

    def test_cannot_grant_super_admin(self, db, user_id, admin):
        with pytest.raises(InvalidRequest):
            users.update_user(db, admin, user_id, {"role": "super-admin"})

    def test_admin_cannot_touch_super_admin(self, db, admin):
        root = make_user(db, name="Root", email="root@test.com", role="super-admin")
        with pytest.raises(Forbidden):
            users.update_user(db, admin, root, {"name": "Nope"})
        with pytest.raises(Forbidden):
            users.delete_user(db, admin, root)

    def test_cannot_manage_self(self, db, admin):
        with pytest.raises(InvalidRequest):
            users.delete_user(db, admin, str(admin["_id"]))

    def test_delete_removes_sessions_and_cart(self, db, user_id, admin, product_id):
        cart.add_item(db, user_id, product_id, 1)
        create_token(db, user_id)
        users.delete_user(db, admin, user_id)
        assert load_user(db, user_id) is None
        assert db["session"].count_documents({"user_id": user_id}) == 0
        assert db["cart"].count_documents({"user_id": user_id}) == 0

    def test_delete_unknown(self, db, admin):
        with pytest.raises(UserNotFound):
            users.delete_user(db, admin, str(ObjectId()))
