import pytest
from fastapi.testclient import TestClient

from campus_store.api.deps import get_auto_confirm_task, get_mailer, get_publisher
from campus_store.database import get_db
from campus_store.main import app, build_auto_confirm_task
from campus_store.services.auth_service import create_access_token


@pytest.fixture
def engine(file_engine):
    return file_engine


@pytest.fixture
def client(session_factory, publisher, mailer):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    task = build_auto_confirm_task(session_factory, publisher, mailer)
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_publisher] = lambda: publisher
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_auto_confirm_task] = lambda: task
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


def checkout(client, user, **body):
    body.setdefault("payment_method", "cash")
    return client.post("/api/v1/checkout", json=body, headers=auth(user))


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_checkout_requires_login(client):
    r = client.post("/api/v1/checkout", json={"payment_method": "cash"})
    assert r.status_code == 401
    assert r.json()["error"] == "not_authenticated"


def test_bad_token_rejected(client):
    r = client.get("/api/v1/orders/mine", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_token_cookie_is_accepted(client, student):
    r = client.get("/api/v1/orders/mine", headers={"Cookie": f"token={create_access_token(student)}"})
    assert r.status_code == 200


def test_buy_now_checkout(client, db, student, admin, shirt, size, publisher):
    medium = size(shirt, "M")
    r = checkout(client, student, products=[{"product_id": shirt.id, "size_id": medium.id, "quantity": 2}])

    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    assert body["orderNumber"].startswith("ORD")
    assert body["total_amount"] == 500.0
    assert body["payment_method"] == "cash"
    assert body["payment_status"] == "pending"
    assert all(e["ok"] for e in body["effects"])

    db.expire_all()
    assert medium.stock == 3


def test_checkout_insufficient_stock(client, student, shirt, size):
    r = checkout(client, student, products=[{"product_id": shirt.id, "size_id": size(shirt, "XL").id, "quantity": 3}])
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "insufficient_stock"
    assert body["product"] == "Uniform Shirt (XL)"
    assert body["available"] == 2


def test_checkout_empty_cart(client, student):
    r = checkout(client, student)
    assert r.status_code == 400
    assert r.json()["error"] == "empty_cart"


def test_malformed_body_is_a_400(client, student, mug):
    r = checkout(client, student, products=[{"product_id": mug.id, "quantity": "lots"}])
    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"


def test_cart_then_checkout_selected_items(client, student, mug, shirt, size):
    h = auth(student)
    r = client.post("/api/v1/cart", json={"product_id": mug.id, "quantity": 2}, headers=h)
    assert r.status_code == 201
    r = client.post("/api/v1/cart", json={"variant_id": size(shirt, "S").id, "quantity": 1}, headers=h)
    cart = r.json()
    assert cart["item_count"] == 3
    assert cart["subtotal"] == 490.0

    shirt_line = next(i for i in cart["items"] if i["size"] == "S")
    r = checkout(client, student, cart_item_ids=[shirt_line["id"]])
    assert r.status_code == 201
    assert r.json()["total_amount"] == 250.0

    remaining = client.get("/api/v1/cart", headers=h).json()["items"]
    assert [i["product_name"] for i in remaining] == ["Campus Mug"]


def test_cart_rejects_more_than_stock(client, student, shirt, size):
    r = client.post("/api/v1/cart", json={"variant_id": size(shirt, "XL").id, "quantity": 3}, headers=auth(student))
    assert r.status_code == 400
    assert r.json()["error"] == "insufficient_stock"


def test_cart_update_and_remove(client, student, mug):
    h = auth(student)
    item_id = client.post("/api/v1/cart", json={"product_id": mug.id}, headers=h).json()["items"][0]["id"]

    r = client.patch(f"/api/v1/cart/{item_id}", json={"quantity": 4}, headers=h)
    assert r.json()["items"][0]["quantity"] == 4

    assert client.delete(f"/api/v1/cart/{item_id}", headers=h).status_code == 204
    assert client.get("/api/v1/cart", headers=h).json()["items"] == []
    assert client.delete(f"/api/v1/cart/{item_id}", headers=h).status_code == 404


def test_admin_status_flow(client, db, student, admin, mug):
    order_id = checkout(client, student, products=[{"product_id": mug.id, "quantity": 1}]).json()["orderId"]

    r = client.patch(f"/api/v1/orders/{order_id}/status", json={"status": "delivered"}, headers=auth(student))
    assert r.status_code == 403

    r = client.patch(f"/api/v1/orders/{order_id}/status", json={"status": "shipped"}, headers=auth(admin))
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_status"
    assert "refunded" in r.json()["validStatuses"]

    r = client.patch(
        f"/api/v1/orders/{order_id}/status", json={"status": "delivered", "notes": "Handed over"}, headers=auth(admin)
    )
    assert r.status_code == 200
    body = r.json()
    assert (body["previousStatus"], body["newStatus"]) == ("pending", "delivered")
    assert body["salesLogged"] and body["paymentStatusUpdated"]
    assert body["paymentStatus"] == "paid"

    r = client.patch(f"/api/v1/orders/{order_id}/status", json={"status": "pending"}, headers=auth(admin))
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_transition"
    assert r.json()["allowedStatuses"] == ["cancelled", "claimed", "completed", "refunded"]

    detail = client.get(f"/api/v1/orders/{order_id}", headers=auth(student)).json()
    assert detail["status"] == "delivered"
    assert [(log["old_status"], log["new_status"]) for log in detail["status_logs"]] == [("pending", "delivered")]
    assert detail["items"][0]["product_name"] == "Campus Mug"


def test_orders_are_private(client, student, other_student, admin, mug):
    order_id = checkout(client, student, products=[{"product_id": mug.id, "quantity": 1}]).json()["orderId"]
    assert client.get(f"/api/v1/orders/{order_id}", headers=auth(other_student)).status_code == 404
    assert client.get(f"/api/v1/orders/{order_id}", headers=auth(admin)).status_code == 200
    assert client.get("/api/v1/orders/mine", headers=auth(other_student)).json() == []
    assert len(client.get("/api/v1/orders", headers=auth(admin)).json()) == 1
    assert client.get("/api/v1/orders", headers=auth(student)).status_code == 403


def test_customer_cancel_restores_stock(client, db, student, mug):
    order_id = checkout(client, student, products=[{"product_id": mug.id, "quantity": 3}]).json()["orderId"]
    r = client.post(f"/api/v1/orders/{order_id}/cancel", json={"reason": "Changed my mind"}, headers=auth(student))
    assert r.status_code == 200
    assert r.json()["inventoryUpdated"] is True

    db.expire_all()
    assert mug.stock == 10
    r = client.post(f"/api/v1/orders/{order_id}/cancel", headers=auth(student))
    assert r.status_code == 400


def test_user_and_admin_confirm(client, student, admin, mug, mailer):
    h_admin = auth(admin)
    first = checkout(client, student, products=[{"product_id": mug.id, "quantity": 1}]).json()["orderId"]
    second = checkout(client, student, products=[{"product_id": mug.id, "quantity": 1}]).json()["orderId"]

    client.patch(f"/api/v1/orders/{first}/status", json={"status": "ready_for_pickup"}, headers=h_admin)
    r = client.post(f"/api/v1/orders/{first}/user-confirm", headers=auth(student))
    assert r.status_code == 200
    assert r.json()["newStatus"] == "completed"

    r = client.post(f"/api/v1/orders/{second}/admin-confirm", headers=h_admin)
    assert r.status_code == 400
    client.patch(f"/api/v1/orders/{second}/status", json={"status": "delivered"}, headers=h_admin)
    r = client.post(f"/api/v1/orders/{second}/admin-confirm", headers=h_admin)
    assert r.json()["newStatus"] == "completed"

    assert len(mailer.sent) == 2


def test_product_admin_and_stock_movements(client, student, admin):
    h = auth(admin)
    r = client.post("/api/v1/products", json={"name": "Lanyard", "price": 50}, headers=auth(student))
    assert r.status_code == 403

    r = client.post(
        "/api/v1/products",
        json={"name": "PE Shorts", "price": 180, "cost_price": 90, "variants": [{"size": "S", "stock": 4}]},
        headers=h,
    )
    assert r.status_code == 201
    product = r.json()
    variant_id = product["variants"][0]["id"]
    assert product["variants"][0]["stock"] == 4

    r = client.post(f"/api/v1/products/{product['id']}/variants", json={"size": "M", "stock": 6}, headers=h)
    assert r.status_code == 201
    r = client.post(f"/api/v1/products/{product['id']}/variants", json={"size": "m"}, headers=h)
    assert r.status_code == 400

    r = client.post(
        "/api/v1/stock-movements",
        json={"product_id": product["id"], "variant_id": variant_id, "movement_type": "stock_in",
              "quantity": 6, "reason": "restock", "supplier": "Campus Textiles"},
        headers=h,
    )
    assert r.status_code == 201
    assert (r.json()["previous_stock"], r.json()["new_stock"]) == (4, 10)

    r = client.post(
        "/api/v1/stock-movements",
        json={"product_id": product["id"], "variant_id": variant_id, "movement_type": "stock_out", "quantity": 11,
              "reason": "damaged"},
        headers=h,
    )
    assert r.status_code == 400

    r = client.post(
        "/api/v1/stock-movements",
        json={"product_id": product["id"], "movement_type": "stock_in", "quantity": 1, "reason": "restock"},
        headers=h,
    )
    assert r.status_code == 400

    summary = {row["movement_type"]: row for row in client.get("/api/v1/stock-movements/summary", headers=h).json()}
    assert summary["stock_in"]["units"] == 16  # 4 + 6 initial, 6 restock

    assert client.delete(f"/api/v1/products/{product['id']}", headers=h).status_code == 200
    assert client.get(f"/api/v1/products/{product['id']}").status_code == 404
    assert all(p["id"] != product["id"] for p in client.get("/api/v1/products").json())


def test_notifications(client, student, admin, mug):
    checkout(client, student, products=[{"product_id": mug.id, "quantity": 1}])
    h = auth(student)
    [note] = client.get("/api/v1/notifications", headers=h).json()
    assert note["title"] == "Order Placed"
    assert "1x Campus Mug" in note["message"]

    r = client.post(f"/api/v1/notifications/{note['id']}/read", headers=h)
    assert r.json()["is_read"] is True
    assert client.get("/api/v1/notifications?unread_only=true", headers=h).json() == []
    assert client.post(f"/api/v1/notifications/{note['id']}/read", headers=auth(admin)).status_code == 404


def test_auto_confirm_endpoints(client, admin, student):
    h = auth(admin)
    assert client.post("/api/v1/auto-confirm/run", headers=auth(student)).status_code == 403

    r = client.post("/api/v1/auto-confirm/run", headers=h)
    assert r.status_code == 200
    assert r.json()["found"] == 0

    stats = client.get("/api/v1/auto-confirm/stats", headers=h).json()
    assert stats["totalClaimed"] == 0
    assert stats["graceDays"] == 3
    assert stats["lastRunAt"] is not None


def test_admin_reports(client, student, admin, shirt, mug):
    h = auth(admin)
    assert client.get("/api/v1/products/low-stock", headers=auth(student)).status_code == 403
    low = client.get("/api/v1/products/low-stock", headers=h).json()
    assert [(r["size"], r["stock"]) for r in low] == [("XL", 2), ("M", 5), ("S", 5)]

    r = client.post(
        "/api/v1/stock-movements",
        json={"product_id": mug.id, "movement_type": "stock_adjustment", "quantity": 8, "reason": "audit"},
        headers=h,
    )
    movement_id = r.json()["id"]
    r = client.get(f"/api/v1/stock-movements/{movement_id}", headers=h)
    assert (r.json()["previous_stock"], r.json()["new_stock"]) == (10, 8)
    assert client.get("/api/v1/stock-movements/missing", headers=h).status_code == 404

    order_id = checkout(client, student, products=[{"product_id": mug.id, "quantity": 2}]).json()["orderId"]
    client.patch(f"/api/v1/orders/{order_id}/status", json={"status": "delivered"}, headers=h)
    stats = client.get("/api/v1/orders/stats?days=1", headers=h).json()
    assert stats["totalOrders"] == 1
    assert stats["byStatus"]["delivered"] == 1
    assert stats["netRevenue"] == 240.0


def test_unread_count_and_read_all(client, student, admin, mug):
    checkout(client, student, products=[{"product_id": mug.id, "quantity": 1}])
    h = auth(student)
    assert client.get("/api/v1/notifications/unread-count", headers=h).json() == {"count": 1}

    assert client.post("/api/v1/notifications/read-all", headers=h).json() == {"updated": 1}
    assert client.get("/api/v1/notifications/unread-count", headers=h).json() == {"count": 0}
    assert client.get("/api/v1/notifications/unread-count", headers=auth(admin)).json() == {"count": 1}
