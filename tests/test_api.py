from conftest import RecordingNotifier, auth_headers, customer_details, shipping_address
from storefront.api.deps import get_order_manager
from storefront.application.order_service import OrderLifecycleManager
from storefront.domain.models import Order
from storefront.infrastructure.db import SessionLocal
from storefront.main import app


def create_order(client, headers, products, payment_method="cod"):
    return client.post("/orders/", headers=headers, json={
        "items": [
            {"product_id": products["apples"], "quantity": 2},
            {"product_id": products["bananas"], "quantity": 1},
        ],
        "shipping_address": shipping_address(),
        "payment_method": payment_method,
    })


def create_subscription(client, headers, products, email="alice@example.com"):
    return client.post("/subscriptions/", headers=headers, json={
        "name": "Weekly Fruit Box",
        "type": "weekly",
        "items": [{"product_id": products["apples"], "quantity": 1}],
        "customer_details": customer_details(email),
        "start_date": "2024-01-01T00:00:00",
    })


def test_health_endpoints(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["service"] == "storefront-service"

    assert client.get("/health/live").json() == {"status": "alive"}

    ready = client.get("/health/ready")
    assert ready.status_code in [200, 503]
    checks = ready.json()["checks"]
    assert checks["database:connectivity"]["status"] == "pass"
    assert "scheduler:expiry_sweep" in checks


def test_metrics_and_info(client):
    assert "uptime_seconds" in client.get("/metrics").json()
    assert client.get("/info").json()["endpoints"]["orders"] == "/orders"


def test_missing_and_invalid_tokens(client):
    assert client.get("/orders/").status_code == 401
    resp = client.get("/orders/", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid token"


def test_order_flow(client, user_headers, products):
    resp = create_order(client, user_headers, products)
    assert resp.status_code == 201
    order = resp.json()
    assert order["pricing"]["subtotal"] == 25.0
    assert order["pricing"]["total"] == 25.0
    assert order["order_status"] == "pending"
    assert order["order_number"].startswith("FM")
    assert len(order["status_history"]) == 1
    assert resp.headers["X-Request-ID"]

    listing = client.get("/orders/", headers=user_headers).json()
    assert listing["pagination"]["total_orders"] == 1
    assert listing["orders"][0]["id"] == order["id"]

    resp = client.patch(f"/orders/{order['id']}/cancel", headers=user_headers, json={"reason": "Wrong address"})
    assert resp.status_code == 200
    cancelled = resp.json()
    assert cancelled["order_status"] == "cancelled"
    assert cancelled["status_history"][-1]["note"] == "Wrong address"

    resp = client.patch(f"/orders/{order['id']}/cancel", headers=user_headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Cannot cancel order that is cancelled"


def test_insufficient_stock_is_a_client_error(client, user_headers, products):
    resp = client.post("/orders/", headers=user_headers, json={
        "items": [{"product_id": products["apples"], "quantity": 9}],
        "shipping_address": shipping_address(),
        "payment_method": "cod",
    })
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Insufficient stock for Apple Box. Available: 5, Requested: 9"


def test_orders_are_private(client, user_headers, products):
    order = create_order(client, user_headers, products).json()
    stranger = auth_headers("user-2", "bob@example.com")
    assert client.get(f"/orders/{order['id']}", headers=stranger).status_code == 403
    assert client.get("/orders/12345", headers=user_headers).status_code == 404


def test_status_update_and_unknown_status(client, user_headers, products):
    order = create_order(client, user_headers, products).json()

    resp = client.patch(f"/orders/{order['id']}/status", headers=user_headers, json={"status": "shipped"})
    assert resp.status_code == 200
    assert resp.json()["order_status"] == "shipped"

    resp = client.patch(f"/orders/{order['id']}/status", headers=user_headers, json={"status": "lost"})
    assert resp.status_code == 400


def test_stale_status_update_is_a_conflict(client, user_headers, products):
    order = create_order(client, user_headers, products).json()

    stale_session = SessionLocal()
    try:
        stale_session.get(Order, order["id"])
        resp = client.patch(f"/orders/{order['id']}/status", headers=user_headers, json={"status": "confirmed"})
        assert resp.status_code == 200

        # Serve the next request from the session still holding the pre-update row
        app.dependency_overrides[get_order_manager] = lambda: OrderLifecycleManager(
            stale_session, notifier=RecordingNotifier()
        )
        resp = client.patch(f"/orders/{order['id']}/status", headers=user_headers, json={"status": "processing"})
        assert resp.status_code == 409
        assert "modified by another request" in resp.json()["detail"]
    finally:
        app.dependency_overrides.clear()
        stale_session.close()

    current = client.get(f"/orders/{order['id']}", headers=user_headers).json()
    assert current["order_status"] == "confirmed"
    assert len(current["status_history"]) == 2


def test_payment_verification(client, user_headers, products):
    order = create_order(client, user_headers, products, payment_method="razorpay").json()
    resp = client.post("/orders/payment/verify", headers=user_headers, json={
        "order_id": order["id"],
        "razorpay_order_id": "order_rzp_1",
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": "sig",
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["payment_status"] == "completed"
    assert body["order_status"] == "confirmed"

    stats = client.get("/orders/stats", headers=user_headers).json()
    assert stats["total_orders"] == 1
    assert stats["total_spent"] == 25.0


def test_cash_settlement_is_admin_only(client, user_headers, admin_headers, products):
    order = create_order(client, user_headers, products).json()
    assert client.patch(f"/orders/{order['id']}/settle", headers=user_headers).status_code == 403

    resp = client.patch(f"/orders/{order['id']}/settle", headers=admin_headers, json={"note": "Paid in cash"})
    assert resp.status_code == 200
    assert resp.json()["payment_status"] == "completed"


def test_subscription_admin_routes(client, user_headers, admin_headers, products):
    assert create_subscription(client, user_headers, products).status_code == 403

    resp = create_subscription(client, admin_headers, products)
    assert resp.status_code == 201
    sub = resp.json()
    assert sub["end_date"].startswith("2024-01-08")
    assert sub["next_delivery_date"].startswith("2024-01-02")
    assert sub["customer_details"]["email"] == "alice@example.com"

    page = client.get("/subscriptions/", headers=admin_headers, params={"type": "weekly"}).json()
    assert page["pagination"]["total"] == 1

    due = client.get(
        "/subscriptions/admin/due", headers=admin_headers, params={"start": "2024-01-02"}
    ).json()
    assert due["count"] == 1

    stats = client.get("/subscriptions/admin/stats", headers=admin_headers).json()
    assert stats["status_stats"]["active"] == 1

    sweep = client.patch("/subscriptions/admin/check-expired", headers=admin_headers).json()
    assert sweep == {"message": "1 subscriptions marked as expired", "count": 1}

    assert client.delete(f"/subscriptions/{sub['id']}", headers=admin_headers).status_code == 204
    assert client.get(f"/subscriptions/{sub['id']}", headers=admin_headers).status_code == 404


def test_customer_subscription_actions(client, user_headers, admin_headers, products):
    sub = create_subscription(client, admin_headers, products).json()

    mine = client.get("/subscriptions/my-subscriptions", headers=user_headers).json()
    assert [s["id"] for s in mine["subscriptions"]] == [sub["id"]]

    resp = client.patch(f"/subscriptions/{sub['id']}/pause", headers=user_headers)
    assert resp.json()["status"] == "paused"
    resp = client.patch(f"/subscriptions/{sub['id']}/pause", headers=user_headers)
    assert resp.status_code == 400
    resp = client.patch(f"/subscriptions/{sub['id']}/resume", headers=user_headers)
    assert resp.json()["status"] == "active"

    stranger = auth_headers("user-2", "bob@example.com")
    assert client.patch(f"/subscriptions/{sub['id']}/cancel", headers=stranger).status_code == 403

    resp = client.put(f"/subscriptions/{sub['id']}", headers=user_headers, json={"delivery_instructions": "Back porch"})
    assert resp.json()["delivery_instructions"] == "Back porch"

    resp = client.patch(f"/subscriptions/{sub['id']}/cancel", headers=user_headers)
    assert resp.json()["status"] == "cancelled"


def test_complete_delivery_route(client, admin_headers, products):
    sub = create_subscription(client, admin_headers, products).json()
    resp = client.patch(f"/subscriptions/{sub['id']}/complete-delivery", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["last_delivery_date"] is not None


def test_store_activation(client, user_headers, admin_headers, store_profiles):
    assert client.get("/store/active").json()["id"] == store_profiles[0]
    assert client.patch(f"/store/{store_profiles[1]}/activate", headers=user_headers).status_code == 403

    resp = client.patch(f"/store/{store_profiles[1]}/activate", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["is_active"] is True
    assert client.get("/store/active").json()["id"] == store_profiles[1]


def test_subscription_rejects_unknown_payment_method(client, admin_headers, products):
    resp = client.post("/subscriptions/", headers=admin_headers, json={
        "name": "Weekly Fruit Box",
        "type": "weekly",
        "items": [{"product_id": products["apples"], "quantity": 1}],
        "customer_details": customer_details(),
        "payment_method": "bitcoin",
    })
    assert resp.status_code == 422

    sub = create_subscription(client, admin_headers, products).json()
    assert sub["payment_method"] == "cod"
    resp = client.put(f"/subscriptions/{sub['id']}", headers=admin_headers, json={"payment_method": "iou"})
    assert resp.status_code == 422
