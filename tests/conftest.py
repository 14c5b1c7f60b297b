import hashlib
import hmac
import json
import os
import tempfile
from decimal import Decimal

# база и ключи для тестов задаются до импорта приложения
_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["ADMIN_KEY"] = "test-admin-key"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from storefront.db import Base, SessionLocal, engine  # noqa: E402
from storefront.errors import UpstreamError  # noqa: E402
from storefront.gateways.razorpay import RazorpayGateway, get_payment_gateway  # noqa: E402
from storefront.gateways.shiprocket import ShiprocketClient, get_courier  # noqa: E402
from storefront.main import app  # noqa: E402
from storefront.models.catalog import Product  # noqa: E402
from storefront.models.setting import Setting  # noqa: E402
from storefront.notify.mailer import Mailer, SendResult  # noqa: E402
from storefront.notify.mailer import get_mailer  # noqa: E402
from storefront.routers import auth as auth_router  # noqa: E402
from storefront.services import admin_sessions  # noqa: E402

GATEWAY_SECRET = "test_secret"
ADMIN_HEADERS = {"x-admin-key": "test-admin-key"}


class FakeRazorpay(RazorpayGateway):
    """Real client logic, canned HTTP answers."""

    def __init__(self):
        super().__init__(key_id="rzp_test_key", key_secret=GATEWAY_SECRET, api_url="https://gateway.test/v1")
        self.calls = []
        self.fail = None
        self.order_status = "created"
        self.payments = []
        self._seq = 0

    def _request(self, method, path, **kwargs):
        self.calls.append((method, path, kwargs.get("json")))
        if self.fail:
            raise UpstreamError(self.fail)
        if method == "POST" and path == "/orders":
            self._seq += 1
            body = kwargs["json"]
            return {
                "id": f"order_TEST{self._seq:04d}",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "status": "created",
            }
        if path.endswith("/payments"):
            return {"items": self.payments}
        if path.startswith("/orders/"):
            return {"id": path.split("/")[2], "status": self.order_status}
        if path.endswith("/refund"):
            return {"id": "rfnd_TEST0001", "amount": (kwargs.get("json") or {}).get("amount")}
        return {}

    def sign(self, order_id, payment_id):
        body = f"{order_id}|{payment_id}".encode()
        return hmac.new(GATEWAY_SECRET.encode(), body, hashlib.sha256).hexdigest()


class FakeShiprocket(ShiprocketClient):
    def __init__(self):
        super().__init__(email="ops@example.com", password="pw", api_url="https://courier.test/v1")
        self.calls = []
        self.fail = None
        self.awb_code = "AWB123456789"

    def _call(self, method, path, **kwargs):
        self.calls.append((method, path, kwargs.get("json")))
        if self.fail:
            raise UpstreamError(self.fail)
        if path == "/settings/company/pickup":
            return {"data": {"shipping_address": [{"pickup_location": "Primary"}]}}
        if path == "/orders/create/adhoc":
            return {
                "order_id": 9001,
                "shipment_id": 7001,
                "awb_code": self.awb_code,
                "courier_name": "Delhivery",
            }
        if path.startswith("/courier/track/awb/"):
            return {"tracking_data": {"awb": path.rsplit("/", 1)[-1], "shipment_status": 6}}
        if path == "/courier/assign/awb":
            return {"awb_assign_status": 1, "response": {"data": kwargs.get("json")}}
        if path == "/courier/serviceability/":
            return {"data": {"available_courier_companies": []}, "params": kwargs.get("params")}
        return {}

    @property
    def created_payload(self):
        return next(body for method, path, body in self.calls if path == "/orders/create/adhoc")


class FakeMailer(Mailer):
    def __init__(self):
        super().__init__(host="smtp.test", port=25, user="", password="", sender="shop@example.com")
        self.sent = []
        self.fail = False

    def send(self, to, subject, html):
        if self.fail:
            return SendResult(success=False, error="SMTP unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return SendResult(success=True, message_id=f"<{len(self.sent)}@test>")


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    auth_router.login_attempts.clear()
    admin_sessions._store._sessions.clear()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeRazorpay()


@pytest.fixture
def courier():
    return FakeShiprocket()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(gateway, courier, mailer):
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_courier] = lambda: courier
    app.dependency_overrides[get_mailer] = lambda: mailer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_product(db):
    def _make(name="Classic Steel Watch", price="500.00", variant_prices=None, slug=None):
        product = Product(
            name=name,
            slug=slug or name.lower().replace(" ", "-"),
            price=Decimal(price),
            variant_prices=json.dumps(variant_prices) if variant_prices else None,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product
    return _make


@pytest.fixture
def set_setting(db):
    def _set(key, value):
        db.add(Setting(key=key, value=value, group="store"))
        db.commit()
    return _set


@pytest.fixture
def checkout_body():
    def _body(payment_method="cod", **overrides):
        body = {
            "email": "priya.s@example.com",
            "phone": "+91 98765 43210",
            "shippingAddress": "12 Gandhi Road",
            "shippingCity": "Coimbatore",
            "shippingState": "Tamil Nadu",
            "shippingZip": "641001",
            "paymentMethod": payment_method,
        }
        body.update(overrides)
        return body
    return _body
