"""Tests for the HTTP surface: routes, auth guards and error responses."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import checkout
import database
from database import get_db, utcnow
from main import app

from .conftest import make_coupon, stock_of

ADDRESS = {"fullName": "Asha Rao", "line1": "12 MG Road", "city": "Bengaluru", "postalCode": "560001"}


@pytest.fixture(autouse=True)
def mock_gateway(monkeypatch):
    monkeypatch.setattr(checkout, "PAYMENT_KEY_SECRET", "")


class TestDiagnostics:
    def test_root(self, client):
        assert client.get("/").json() == {"message": "Shop API running"}

    def test_database_report(self, client, monkeypatch):
        monkeypatch.setattr(database, "db", None)
        data = client.get("/test").json()
        assert data["backend"] == "running"
        assert data["database"] == "not configured"
        assert data["collections"] == []

    def test_unconfigured_database_is_server_error(self, monkeypatch):
        monkeypatch.setattr(database, "db", None)
        response = TestClient(app).get("/api/products")
        assert response.status_code == 500
        assert response.json() == {"message": "Server error"}


class TestErrorShape:
    def test_validation_error(self, client, auth_headers):
        response = client.post("/api/cart/add", json={"quantity": 1}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"message": "Invalid request"}

    def test_unknown_route(self, client):
        response = client.get("/api/nowhere")
        assert response.status_code == 404
        assert "message" in response.json()

    def test_unexpected_error(self, db):
        def broken_db():
            raise RuntimeError("boom")

        app.dependency_overrides[get_db] = broken_db
        try:
            response = TestClient(app, raise_server_exceptions=False).get("/api/products")
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 500
        assert response.json() == {"message": "Server error"}

    def test_missing_token(self, client):
        response = client.get("/api/cart")
        assert response.status_code == 401
        assert response.json() == {"message": "Not authenticated"}

    def test_admin_route_forbidden_for_users(self, client, auth_headers):
        response = client.get("/api/admin/orders", headers=auth_headers)
        assert response.status_code == 403
        assert response.json() == {"message": "Admin access required"}

    def test_invalid_id(self, client):
        response = client.get("/api/products/not-an-id")
        assert response.status_code == 400
        assert response.json() == {"message": "Invalid product ID"}


class TestAuthRoutes:
    def test_signup_then_login(self, client):
        response = client.post("/api/auth/signup", json={"name": "Asha", "email": "asha@example.com", "password": "secret1"})
        assert response.status_code == 201
        token = response.json()["token"]

        response = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "secret1"})
        assert response.status_code == 200

        profile = client.get("/api/user/profile", headers={"Authorization": f"Bearer {token}"}).json()["user"]
        assert profile["email"] == "asha@example.com"
        assert "passwordHash" not in profile

    def test_duplicate_signup(self, client):
        body = {"name": "Asha", "email": "asha@example.com", "password": "secret1"}
        client.post("/api/auth/signup", json=body)
        response = client.post("/api/auth/signup", json=body)
        assert response.status_code == 400
        assert response.json() == {"message": "User already exists"}

    def test_bad_login(self, client):
        response = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "secret1"})
        assert response.status_code == 401

    def test_role(self, client, auth_headers):
        assert client.get("/api/user/role", headers=auth_headers).json()["role"] == "user"


class TestShopping:
    def test_cart_routes(self, client, auth_headers, product_id):
        response = client.post("/api/cart/add", json={"productId": product_id, "quantity": 2}, headers=auth_headers)
        assert response.json()["cart"]["totalPrice"] == 200.0

        response = client.put("/api/cart/update", json={"productId": product_id, "quantity": 3}, headers=auth_headers)
        assert response.json()["cart"]["totalPrice"] == 300.0

        response = client.post("/api/cart/add", json={"productId": product_id, "quantity": 10}, headers=auth_headers)
        assert response.status_code == 400

        response = client.delete(f"/api/cart/remove/{product_id}", headers=auth_headers)
        cart = response.json()["cart"]
        assert cart["items"] == []
        assert cart["totalPrice"] == 0

    def test_coupon_preview(self, client, db, auth_headers):
        make_coupon(db, "SAVE10")
        response = client.post("/api/coupons/apply", json={"code": "save10", "amount": 250}, headers=auth_headers)
        assert response.json() == {"success": True, "discount": 25.0, "discountedAmount": 225.0}

        response = client.post("/api/coupons/apply", json={"code": "NOPE", "amount": 250}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"message": "Invalid or expired coupon"}

    @pytest.mark.parametrize("amount", [1e30, 1e40])
    def test_coupon_preview_huge_amount_is_client_error(self, client, auth_headers, amount):
        response = client.post("/api/coupons/apply", json={"code": "NOPE", "amount": amount}, headers=auth_headers)
        assert response.status_code == 400

    def test_checkout_flow(self, client, db, auth_headers, product_id):
        make_coupon(db, "SAVE10")
        client.post("/api/cart/add", json={"productId": product_id, "quantity": 2}, headers=auth_headers)

        response = client.post(
            "/api/payment/create-intent",
            json={"paymentMethod": "card", "shippingAddress": ADDRESS, "couponCode": "SAVE10"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        intent = response.json()
        assert intent["pricing"] == {"subTotal": 200.0, "discount": 20.0, "totalAmount": 180.0}

        response = client.post(
            "/api/payment/verify",
            json={"orderId": intent["orderId"], "paymentId": "pay_1"},
            headers=auth_headers,
        )
        assert response.json()["message"] == "Payment verified and order placed"
        assert stock_of(db, product_id) == 3

        response = client.post("/api/payment/verify", json={"orderId": intent["orderId"], "paymentId": "pay_1"}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"message": "Order already paid"}

        orders = client.get("/api/user/orders", headers=auth_headers).json()["orders"]
        assert orders[0]["orderStatus"] == "confirmed"
        assert orders[0]["coupon"]["code"] == "SAVE10"

    def test_checkout_empty_cart(self, client, auth_headers):
        response = client.post(
            "/api/payment/create-intent",
            json={"paymentMethod": "card", "shippingAddress": ADDRESS},
            headers=auth_headers,
        )
        assert response.status_code == 400
        assert response.json() == {"message": "Cart is empty"}

    def test_reviews(self, client, auth_headers, product_id):
        response = client.post("/api/reviews", json={"productId": product_id, "rating": 4}, headers=auth_headers)
        assert response.status_code == 201
        reviews = client.get(f"/api/reviews/{product_id}").json()["reviews"]
        assert reviews[0]["rating"] == 4


class TestAdminRoutes:
    def test_product_crud(self, client, admin_headers):
        response = client.post("/api/products", json={"name": "Lamp", "price": 49.5, "stock": 4}, headers=admin_headers)
        assert response.status_code == 201
        pid = response.json()["product"]["id"]

        response = client.put(f"/api/products/{pid}", json={"stock": 8, "isFeatured": True}, headers=admin_headers)
        product = response.json()["product"]
        assert product["stock"] == 8
        assert product["isFeatured"] is True

        assert client.get("/api/products").json()["totalProducts"] == 1
        client.delete(f"/api/products/{pid}", headers=admin_headers)
        assert client.get(f"/api/products/{pid}").status_code == 404

    def test_coupon_admin(self, client, admin_headers):
        now = utcnow()
        body = {
            "code": "welcome",
            "discountType": "flat",
            "discountValue": 50,
            "validFrom": now.isoformat(),
            "validUntil": (now + timedelta(days=7)).isoformat(),
        }
        response = client.post("/api/coupons", json=body, headers=admin_headers)
        assert response.status_code == 201
        coupon = response.json()["coupon"]
        assert coupon["code"] == "WELCOME"

        assert client.post("/api/coupons", json=body, headers=admin_headers).status_code == 400

        data = client.get("/api/coupons?status=active", headers=admin_headers).json()["data"]
        assert data["totalItems"] == 1

        response = client.delete(f"/api/coupons/{coupon['id']}", headers=admin_headers)
        assert response.json()["message"] == "Coupon deactivated successfully"

    def test_order_workflow(self, client, db, auth_headers, admin_headers, product_id):
        client.post("/api/cart/add", json={"productId": product_id, "quantity": 1}, headers=auth_headers)
        intent = client.post(
            "/api/payment/create-intent",
            json={"paymentMethod": "card", "shippingAddress": ADDRESS},
            headers=auth_headers,
        ).json()

        response = client.patch(f"/api/admin/orders/{intent['orderId']}", json={"status": "confirmed"}, headers=admin_headers)
        assert response.status_code == 400

        client.post("/api/payment/verify", json={"orderId": intent["orderId"], "paymentId": "pay_1"}, headers=auth_headers)
        response = client.patch(f"/api/admin/orders/{intent['orderId']}", json={"status": "shipped"}, headers=admin_headers)
        assert response.json()["order"]["orderStatus"] == "shipped"

        data = client.get("/api/admin/orders", headers=admin_headers).json()["data"]
        assert data["orders"][0]["user"]["email"] == "user@test.com"

        stats = client.get("/api/admin/dashboard/stats", headers=admin_headers).json()["data"]
        assert stats["totalOrders"] == 1

    def test_home_config(self, client, admin_headers):
        body = {"banners": [{"desktopImageUrl": "d", "mobileImageUrl": "m", "title": "Sale"}], "videoIframeUrl": "v"}
        assert client.put("/api/home", json=body, headers=admin_headers).status_code == 200
        config = client.get("/api/home").json()["config"]
        assert config["banners"][0]["title"] == "Sale"
        assert config["videoIframeUrl"] == "v"

    def test_create_admin_requires_super_admin(self, client, admin_headers):
        response = client.put("/api/user/create-admin", json={"email": "user@test.com"}, headers=admin_headers)
        assert response.status_code == 403

    def test_category_routes(self, client, admin_headers, auth_headers):
        response = client.post("/api/categories", json={"name": "Lamps"}, headers=auth_headers)
        assert response.status_code == 403

        response = client.post("/api/categories", json={"name": "Lamps"}, headers=admin_headers)
        assert response.status_code == 201
        cid = response.json()["category"]["id"]

        response = client.post("/api/categories", json={"name": "Lamps"}, headers=admin_headers)
        assert response.json() == {"message": "Category already exists"}

        client.post("/api/products", json={"name": "Desk Lamp", "price": 20, "stock": 2, "category": cid}, headers=admin_headers)
        products = client.get(f"/api/products/category/{cid}").json()["products"]
        assert [p["name"] for p in products] == ["Desk Lamp"]

        client.put(f"/api/categories/{cid}", json={"description": "Light"}, headers=admin_headers)
        client.delete(f"/api/categories/{cid}", headers=admin_headers)
        data = client.get("/api/categories?status=inactive").json()["data"]
        assert data["categories"][0]["description"] == "Light"

    def test_product_listings(self, client, admin_headers, product_id):
        assert client.get("/api/products/featured").json()["products"] == []
        assert client.get("/api/products/trending").json()["count"] == 1
        assert client.get("/api/products/hot-deal").json()["product"] is None

        response = client.put(f"/api/products/{product_id}/hot-deal", headers=admin_headers)
        assert response.json()["productId"] == product_id
        assert client.get("/api/products/hot-deal").json()["product"]["id"] == product_id

    def test_user_and_review_admin(self, client, admin_headers, auth_headers, user_id, product_id):
        client.post("/api/reviews", json={"productId": product_id, "rating": 5, "comment": "Nice"}, headers=auth_headers)
        reviews = client.get("/api/admin/reviews?rating=5", headers=admin_headers).json()["data"]["reviews"]
        assert reviews[0]["product"]["name"] == "Widget"

        data = client.get("/api/admin/users?search=user@", headers=admin_headers).json()["data"]
        assert [u["email"] for u in data["users"]] == ["user@test.com"]

        response = client.put(f"/api/admin/users/{user_id}", json={"isActive": False}, headers=admin_headers)
        assert response.json()["user"]["isActive"] is False
        assert client.get("/api/cart", headers=auth_headers).status_code == 401

        response = client.delete(f"/api/admin/users/{user_id}", headers=admin_headers)
        assert response.json()["message"] == "User deleted"
        assert client.delete(f"/api/admin/users/{user_id}", headers=admin_headers).status_code == 404


class TestAccountRoutes:
    def test_profile_and_addresses(self, client, auth_headers):
        response = client.put("/api/user/profile", json={"name": "Asha"}, headers=auth_headers)
        assert response.json()["user"]["name"] == "Asha"

        response = client.post("/api/user/address", json={**ADDRESS, "isDefault": True}, headers=auth_headers)
        assert response.status_code == 201
        client.post("/api/user/address", json={"city": "Goa", "isDefault": True}, headers=auth_headers)

        response = client.put("/api/user/address/0", json={"postalCode": "560002"}, headers=auth_headers)
        addresses = response.json()["addresses"]
        assert addresses[0]["postalCode"] == "560002"
        assert [a["isDefault"] for a in addresses] == [False, True]

        response = client.delete("/api/user/address/5", headers=auth_headers)
        assert response.status_code == 404
        assert response.json() == {"message": "Address not found"}

        addresses = client.delete("/api/user/address/0", headers=auth_headers).json()["addresses"]
        assert [a["city"] for a in addresses] == ["Goa"]

    def test_change_password_and_logout(self, client):
        token = client.post(
            "/api/auth/signup",
            json={"name": "Asha", "email": "asha@example.com", "password": "secret1"},
        ).json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        response = client.put(
            "/api/auth/change-password",
            json={"oldPassword": "wrong-one", "newPassword": "better-secret"},
            headers=headers,
        )
        assert response.status_code == 400
        response = client.put(
            "/api/auth/change-password",
            json={"oldPassword": "secret1", "newPassword": "better-secret"},
            headers=headers,
        )
        assert response.json()["message"] == "Password changed successfully"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/user/profile", headers=headers).status_code == 401
        login = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "better-secret"})
        assert login.status_code == 200
