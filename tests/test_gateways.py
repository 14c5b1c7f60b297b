import hashlib
import hmac
from datetime import datetime, timedelta

import pytest
import requests

from storefront.errors import UpstreamError
from storefront.gateways.razorpay import RazorpayGateway, get_payment_gateway
from storefront.gateways.shiprocket import ShiprocketClient
from storefront.main import app
from storefront.models.order import Order


def _response(status_code=200, body=b"<html><body>Bad Gateway</body></html>", content_type="text/html"):
    resp = requests.Response()
    resp.status_code = status_code
    resp._content = body
    resp.headers["Content-Type"] = content_type
    return resp


def _razorpay(monkeypatch, resp):
    gw = RazorpayGateway(key_id="rzp_test_key", key_secret="secret", api_url="https://gateway.test/v1")
    monkeypatch.setattr(gw.http, "request", lambda *a, **kw: resp)
    return gw


def _shiprocket(monkeypatch, resp, logged_in=True):
    client = ShiprocketClient(email="ops@example.com", password="pw", api_url="https://courier.test/v1")
    if logged_in:
        client._token = "tok"
        client._token_expiry = datetime.utcnow() + timedelta(days=1)
    monkeypatch.setattr(client.http, "request", lambda *a, **kw: resp)
    monkeypatch.setattr(client.http, "post", lambda *a, **kw: resp)
    return client


def test_razorpay_html_body_is_upstream_error(monkeypatch):
    gw = _razorpay(monkeypatch, _response())
    with pytest.raises(UpstreamError) as exc:
        gw.fetch_order_status("order_X")
    assert "non-JSON" in exc.value.message


def test_razorpay_order_without_id(monkeypatch):
    gw = _razorpay(monkeypatch, _response(body=b'{"status": "created"}', content_type="application/json"))
    with pytest.raises(UpstreamError):
        gw.create_order("575.00", "ORD-1")


def test_razorpay_signature():
    gw = RazorpayGateway(key_id="rzp_test_key", key_secret="test_secret", api_url="https://gateway.test/v1")
    good = hmac.new(b"test_secret", b"order_A|pay_B", hashlib.sha256).hexdigest()
    assert gw.verify_signature("order_A", "pay_B", good) is True
    assert gw.verify_signature("order_A", "pay_C", good) is False
    assert gw.verify_signature("order_A", "pay_B", "") is False


def test_shiprocket_login_html_body(monkeypatch):
    client = _shiprocket(monkeypatch, _response(), logged_in=False)
    with pytest.raises(UpstreamError) as exc:
        client.token()
    assert "non-JSON" in exc.value.message


def test_shiprocket_call_html_body(monkeypatch):
    client = _shiprocket(monkeypatch, _response())
    with pytest.raises(UpstreamError):
        client.track("AWB1")


def test_checkout_with_html_gateway_reply(client, db, make_product, checkout_body, monkeypatch):
    p = make_product(price="500.00")
    h = {"session-id": "html-1"}
    client.post("/api/cart", json={"productId": p.id}, headers=h)

    gw = _razorpay(monkeypatch, _response(status_code=200))
    app.dependency_overrides[get_payment_gateway] = lambda: gw

    resp = client.post("/api/checkout", json=checkout_body("razorpay"), headers=h)
    assert resp.status_code == 502
    assert resp.json() == {"success": False, "message": "Payment gateway returned a non-JSON response"}

    order = db.query(Order).one()
    assert (order.status, order.payment_status) == ("failed", "failed")
