"""Tests for the HTTP API."""

from datetime import datetime, timedelta, timezone

from bson import ObjectId

from conftest import make_token
from database import ORDERS, REVOKED_TOKENS, RUGS

EMAIL = "bilal@dastkar.pk"


def place_order(client, rug_id, quantity=1, email=EMAIL):
    return client.post("/orders", json={
        "email": email,
        "username": "Bilal",
        "country": "Pakistan",
        "items": [{"productId": rug_id, "quantity": quantity}],
    })


class TestBasics:
    def test_root(self, client):
        assert client.get("/").status_code == 200

    def test_health_without_database(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["database"] == "disconnected"

    def test_database_not_configured(self):
        from fastapi.testclient import TestClient

        from main import app

        response = TestClient(app).get("/cart", headers={"sessionid": "s1"})
        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "Database not configured"}


class TestCartRoutes:
    def test_session_cookie_is_issued(self, client):
        response = client.get("/cart")
        assert response.status_code == 200
        assert "session_id" in response.cookies
        assert response.json()["cart"]["sessionId"] == response.cookies["session_id"]

    def test_header_wins_over_cookie(self, client):
        response = client.get("/cart", headers={"sessionid": "from-header", "Cookie": "session_id=from-cookie"})
        assert response.json()["cart"]["sessionId"] == "from-header"

    def test_cookie_session(self, client):
        response = client.get("/cart", headers={"Cookie": "session_id=from-cookie"})
        assert response.json()["cart"]["sessionId"] == "from-cookie"

    def test_add_update_remove(self, client, make_rug):
        rug = make_rug(originalPrice=2500, stock=5)
        headers = {"sessionid": "s-1"}

        response = client.post("/cart", json={"productId": rug, "quantity": 2}, headers=headers)
        assert response.json() == {"success": True, "message": "Product added to cart successfully"}

        cart = client.get("/cart", headers=headers).json()["cart"]
        assert cart["totalPrice"] == 5000
        item_id = cart["products"][0]["id"]

        response = client.put(f"/cart/item/{item_id}", json={"quantity": 3}, headers=headers)
        assert response.json()["message"] == "Cart item updated"
        assert response.json()["cart"]["totalPrice"] == 7500

        response = client.delete(f"/cart/item/{item_id}", headers=headers)
        assert response.json()["cart"]["products"] == []

        assert client.delete("/cart", headers=headers).status_code == 200
        assert client.delete("/cart", headers=headers).status_code == 404

    def test_insufficient_stock_is_400(self, client, make_rug):
        rug = make_rug(stock=1)
        response = client.post("/cart", json={"productId": rug, "quantity": 2}, headers={"sessionid": "s-2"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Insufficient stock. Only 1 items available."}

    def test_malformed_body_is_400(self, client):
        response = client.post("/cart", json={"quantity": 1}, headers={"sessionid": "s-3"})
        assert response.status_code == 400
        assert response.json()["success"] is False


class TestOrderRoutes:
    def test_create_order_sends_confirmation(self, client, db, notifier, make_rug, pakistan_shipping):
        rug = make_rug(originalPrice=10000, stock=10)
        response = place_order(client, rug)
        assert response.status_code == 201
        order = response.json()["order"]
        assert order["totalPrice"] == 10500
        assert order["shippingFee"] == 500
        assert db[RUGS].find_one({"_id": ObjectId(rug)})["stock"] == 9
        assert [o["email"] for o in notifier.confirmations] == [EMAIL]

    def test_failed_notification_does_not_fail_order(self, client, notifier, make_rug):
        async def broken(order):
            raise RuntimeError("smtp down")

        notifier.send_order_confirmation = broken
        assert place_order(client, make_rug()).status_code == 201

    def test_list_and_cancel_own_order(self, client, make_rug):
        order_id = place_order(client, make_rug()).json()["order"]["id"]

        orders = client.get("/orders", params={"email": EMAIL}).json()["orders"]
        assert [o["id"] for o in orders] == [order_id]

        response = client.patch(f"/orders/{order_id}/cancel", params={"email": EMAIL},
                                json={"cancelReason": "changed my mind"})
        assert response.status_code == 200
        assert response.json()["order"]["status"] == "cancelled"

        response = client.patch(f"/orders/{order_id}/cancel", params={"email": EMAIL})
        assert response.status_code == 400

    def test_list_requires_email(self, client):
        response = client.get("/orders")
        assert response.status_code == 400
        assert response.json()["message"] == "Email is required"


class TestAdminRoutes:
    def test_requires_token(self, client):
        response = client.get("/admin/orders")
        assert response.status_code == 401
        assert response.json()["message"] == "No token provided. Please login first."

    def test_rejects_non_admin(self, client):
        headers = {"Authorization": f"Bearer {make_token(isAdmin=False)}"}
        response = client.get("/admin/orders", headers=headers)
        assert response.status_code == 403

    def test_rejects_expired_token(self, client):
        token = make_token(exp=datetime.now(timezone.utc) - timedelta(minutes=1))
        response = client.get("/admin/orders", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_logout_revokes_token(self, client, db, admin_headers):
        assert client.post("/auth/logout", headers=admin_headers).status_code == 200
        assert db[REVOKED_TOKENS].count_documents({}) == 1
        response = client.get("/admin/orders", headers=admin_headers)
        assert response.status_code == 401
        assert response.json()["message"] == "Token has been revoked. Please login again."

    def test_status_flow_and_delivered_email(self, client, notifier, admin_headers, make_rug):
        order_id = place_order(client, make_rug()).json()["order"]["id"]
        url = f"/admin/orders/{order_id}/status"

        response = client.patch(url, json={"status": "delivered"}, headers=admin_headers)
        assert response.status_code == 400
        assert notifier.delivered == []

        response = client.patch(url, json={"status": "delivered", "trackingNumber": "TRK-42"},
                                headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["order"]["trackingNumber"] == "TRK-42"
        assert len(notifier.delivered) == 1

        client.patch(url, json={"status": "completed"}, headers=admin_headers)
        assert client.patch(url, json={"status": "failed"}, headers=admin_headers).status_code == 400
        assert client.patch(url, json={"status": "refund"}, headers=admin_headers).status_code == 200

    def test_list_and_get_orders(self, client, admin_headers, make_rug):
        order_id = place_order(client, make_rug()).json()["order"]["id"]
        data = client.get("/admin/orders", params={"status": "confirm"}, headers=admin_headers).json()
        assert data["pagination"]["total"] == 1
        assert data["orders"][0]["user"]["email"] == EMAIL

        order = client.get(f"/admin/orders/{order_id}", headers=admin_headers).json()["order"]
        assert order["id"] == order_id
        assert client.get(f"/admin/orders/{ObjectId()}", headers=admin_headers).status_code == 404

    def test_recover_stock(self, client, db, admin_headers, make_rug):
        rug = make_rug(stock=2)
        db[ORDERS].insert_one({
            "email": EMAIL, "status": "confirm", "stockCommitted": False, "stockApplied": [0],
            "items": [{"productId": ObjectId(rug), "quantity": 3}],
            "createdAt": datetime.now(timezone.utc) - timedelta(hours=2),
        })
        response = client.post("/admin/orders/recover-stock", headers=admin_headers)
        assert response.status_code == 200
        assert len(response.json()["orders"]) == 1
        assert db[RUGS].find_one({"_id": ObjectId(rug)})["stock"] == 5

    def test_shipping_fee_upsert(self, client, admin_headers):
        body = {"freeShippingThreshold": 20000, "shippingFee": 500, "country": "Pakistan"}
        response = client.post("/admin/shipping-fee", json=body, headers=admin_headers)
        assert response.json()["message"] == "Shipping fee created successfully"

        body["shippingFee"] = 700
        response = client.post("/admin/shipping-fee", json=body, headers=admin_headers)
        assert response.json()["message"] == "Shipping fee updated successfully"

        data = client.get("/shipping-fee").json()
        assert data["shippingFee"]["shippingFee"] == 700
        assert client.get("/shipping-fee", params={"country": "Nepal"}).status_code == 404

    def test_analytics_overview(self, client, admin_headers, make_rug):
        place_order(client, make_rug(originalPrice=3000))
        data = client.get("/admin/analytics/overview", params={"time": "today"}, headers=admin_headers).json()
        assert data["totalOrders"] == 1
        assert data["customerCount"] == 1
        assert data["totalRevenue"] == 0

        response = client.get("/admin/analytics/overview", params={"time": "yesterday"}, headers=admin_headers)
        assert response.status_code == 400


class TestRugRoutes:
    def test_public_listing_hides_inactive(self, client, make_rug):
        visible = make_rug()
        make_rug(isActive=False)
        data = client.get("/rugs").json()
        assert [r["id"] for r in data["rugs"]] == [visible]

    def test_get_rug(self, client, make_rug):
        rug = make_rug()
        assert client.get(f"/rugs/{rug}").json()["rug"]["id"] == rug
        assert client.get("/rugs/bad-id").status_code == 400
        assert client.get(f"/rugs/{ObjectId()}").status_code == 404

    def test_admin_crud(self, client, admin_headers):
        body = {
            "title": "Bokhara", "brand": "Dastkar", "images": ["https://cdn.example.com/b.jpg"],
            "category": "Tribal", "originalPrice": 8000, "discountPercent": 25, "stock": 3,
        }
        assert client.post("/rugs", json=body).status_code == 401

        response = client.post("/rugs", json=body, headers=admin_headers)
        assert response.status_code == 201
        rug = response.json()["rug"]
        assert rug["salePrice"] == 6000

        response = client.put(f"/rugs/{rug['id']}", json={"isActive": False}, headers=admin_headers)
        assert response.json()["rug"]["isActive"] is False
        assert client.get("/rugs").json()["rugs"] == []

        admin_list = client.get("/admin/rugs", headers=admin_headers).json()
        assert admin_list["pagination"]["total"] == 1

        assert client.delete(f"/rugs/{rug['id']}", headers=admin_headers).status_code == 200

    def test_overlong_rug_fields_are_400(self, client, admin_headers, make_rug):
        body = {
            "title": "T" * 300, "brand": "Dastkar", "images": ["https://cdn.example.com/b.jpg"],
            "category": "Tribal", "originalPrice": 8000,
        }
        response = client.post("/rugs", json=body, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["message"].startswith("Validation error: title:")

        rug = make_rug()
        response = client.put(f"/rugs/{rug}", json={"category": "C" * 150}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["message"].startswith("Validation error: category:")

    def test_overlong_shipping_country_is_400(self, client, admin_headers):
        body = {"freeShippingThreshold": 20000, "shippingFee": 500, "country": "X" * 150}
        response = client.post("/admin/shipping-fee", json=body, headers=admin_headers)
        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "message": "Validation error: country: String should have at most 100 characters",
        }
