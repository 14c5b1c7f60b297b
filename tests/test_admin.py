from decimal import Decimal

import pytest

from storefront.models.order import Order, OrderItem
from storefront.models.order_status_log import OrderStatusLog
from storefront.models.user import User
from storefront.services.admin_sessions import AdminSession, InMemorySessionStore
from storefront.utils.security import hash_password, verify_password

ADMIN = {"x-admin-key": "test-admin-key"}


def test_password_hashing():
    hashed = hash_password("s3cret")
    assert hashed.startswith("pbkdf2_sha256$")
    assert verify_password("s3cret", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("s3cret", "garbage")


def test_session_store_expires():
    now = [1000.0]
    store = InMemorySessionStore(ttl=60, clock=lambda: now[0])
    token = store.create(AdminSession(user_id=1, username="admin", role="admin"))
    other = store.create(AdminSession(user_id=2, username="ops", role="admin"))

    assert store.get(token).username == "admin"
    now[0] += 59
    assert store.get(token) is not None
    now[0] += 1
    assert store.get(token) is None
    assert store.sweep() == 0
    assert store.get(other) is None


def test_session_store_invalidate():
    store = InMemorySessionStore(ttl=60)
    token = store.create(AdminSession(user_id=1, username="admin", role="admin"))
    store.invalidate(token)
    store.invalidate(token)
    assert store.get(token) is None
    assert store.get("") is None


@pytest.fixture
def admin_user(db):
    db.add(User(username="admin", password_hash=hash_password("123456"), role="admin"))
    db.add(User(username="shopper", password_hash=hash_password("123456"), role="customer"))
    db.commit()


def test_login_session_logout(client, admin_user):
    resp = client.post("/api/admin/login", data={"username": "admin", "password": "123456"})
    assert resp.status_code == 200
    token = resp.json()["sessionId"]

    h = {"admin-session-id": token}
    assert client.get("/api/admin/session", headers=h).json()["user"]["username"] == "admin"
    assert client.get("/api/admin/orders", headers={"Authorization": f"Bearer {token}"}).status_code == 200

    client.post("/api/admin/logout", headers=h)
    assert client.get("/api/admin/session", headers=h).status_code == 403


def test_login_rejects(client, admin_user):
    bad = client.post("/api/admin/login", data={"username": "admin", "password": "nope"})
    assert bad.status_code == 401
    customer = client.post("/api/admin/login", data={"username": "shopper", "password": "123456"})
    assert customer.status_code == 403


def test_login_rate_limit(client, admin_user):
    for _ in range(5):
        client.post("/api/admin/login", data={"username": "admin", "password": "nope"})
    resp = client.post("/api/admin/login", data={"username": "admin", "password": "123456"})
    assert resp.status_code == 429


def test_admin_routes_need_credentials(client):
    for path in ("/api/admin/orders", "/api/admin/settings", "/api/admin/outbox"):
        resp = client.get(path)
        assert resp.status_code == 403
        assert resp.json() == {"success": False, "message": "Admin access required"}
    assert client.get("/api/admin/orders", headers={"x-admin-key": "wrong"}).status_code == 403
    assert client.get("/api/admin/orders", headers=ADMIN).status_code == 200


@pytest.fixture
def order(db):
    o = Order(
        order_number="ORD1234567890ABCDEF0123",
        email="meena@example.com",
        status="processing",
        payment_status="completed",
        payment_method="razorpay",
        subtotal_amount=Decimal("1200"),
        tax_amount=Decimal("60"),
        shipping_amount=Decimal("0"),
        total_amount=Decimal("1260"),
        shipping_address="3 Temple St, Erode, Tamil Nadu, 638001, India",
    )
    db.add(o)
    db.flush()
    db.add(OrderItem(order_id=o.id, product_id=1, name="Watch", price=Decimal("600"), quantity=2,
                     subtotal=Decimal("1200")))
    db.commit()
    return o


def test_patch_completed_with_tracking_sends_email(client, db, order, mailer):
    resp = client.patch(f"/api/admin/orders/{order.id}", json={"status": "completed", "trackingId": "TRK42"},
                        headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["order"]["status"] == "completed"
    assert resp.json()["order"]["trackingId"] == "TRK42"

    (mail,) = mailer.sent
    assert "Shipped" in mail["subject"]
    assert "TRK42" in mail["html"]

    history = client.get(f"/api/admin/orders/{order.id}/history", headers=ADMIN).json()["history"]
    assert [(h["oldStatus"], h["newStatus"], h["user"]) for h in history] == [
        ("processing", "completed", "admin:api-key"),
    ]


def test_patch_illegal_transition(client, db, order):
    resp = client.patch(f"/api/admin/orders/{order.id}", json={"status": "pending"}, headers=ADMIN)
    assert resp.status_code == 409
    assert resp.json()["message"] == "Cannot change order status from processing to pending"
    db.expire_all()
    assert db.get(Order, order.id).status == "processing"


def test_order_detail_and_delete(client, db, order):
    detail = client.get(f"/api/admin/orders/{order.id}", headers=ADMIN).json()["order"]
    assert detail["items"][0]["name"] == "Watch"

    client.patch(f"/api/admin/orders/{order.id}", json={"status": "cancelled"}, headers=ADMIN)
    assert client.delete(f"/api/admin/orders/{order.id}", headers=ADMIN).status_code == 200

    assert db.query(Order).count() == 0
    assert db.query(OrderItem).count() == 0
    assert db.query(OrderStatusLog).count() == 0
    assert client.get(f"/api/admin/orders/{order.id}", headers=ADMIN).status_code == 404


def test_list_filters_by_status(client, order):
    assert len(client.get("/api/admin/orders", params={"status": "processing"}, headers=ADMIN).json()["orders"]) == 1
    assert client.get("/api/admin/orders", params={"status": "failed"}, headers=ADMIN).json()["orders"] == []


def test_settings_drive_totals(client, make_product, checkout_body):
    assert client.put("/api/admin/settings/tax_rate", json={"value": "-1"}, headers=ADMIN).status_code == 400
    assert client.put("/api/admin/settings/tax_rate", json={"value": "12"}, headers=ADMIN).status_code == 200
    client.put("/api/admin/settings/free_shipping_threshold", json={"value": "5000"}, headers=ADMIN)

    assert client.get("/api/admin/settings/tax_rate", headers=ADMIN).json()["setting"]["value"] == "12"
    assert client.get("/api/admin/settings/nope", headers=ADMIN).status_code == 404
    keys = [s["key"] for s in client.get("/api/admin/settings", headers=ADMIN).json()["settings"]]
    assert sorted(keys) == ["free_shipping_threshold", "tax_rate"]

    p = make_product(price="1000")
    client.post("/api/cart", json={"productId": p.id}, headers={"session-id": "rates"})
    order = client.post("/api/checkout", json=checkout_body("cod"), headers={"session-id": "rates"}).json()["order"]
    assert (order["taxAmount"], order["shippingAmount"], order["totalAmount"]) == ("120.00", "50.00", "1170.00")


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
