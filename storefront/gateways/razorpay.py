# storefront/gateways/razorpay.py
import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import requests

from storefront import config
from storefront.errors import UpstreamError
from storefront.services.order_state import normalize_gateway_status
from storefront.utils.enums import PaymentStatus

logger = logging.getLogger(__name__)


@dataclass
class GatewayOrder:
    order_id: str
    amount: Decimal      # в рупиях
    currency: str
    receipt: str


def to_paise(amount) -> int:
    return int((Decimal(str(amount)) * 100).to_integral_value())


def _upstream_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or resp.reason or "unknown error"
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict) and err.get("description"):
        return err["description"]
    return resp.reason or "unknown error"


class RazorpayGateway:
    """Thin client over the Razorpay REST API (orders, payments, refunds)."""

    def __init__(
        self,
        key_id: str = config.RAZORPAY_KEY_ID,
        key_secret: str = config.RAZORPAY_KEY_SECRET,
        api_url: str = config.RAZORPAY_API_URL,
        timeout: float = config.HTTP_TIMEOUT,
    ):
        if not key_id or not key_secret:
            logger.warning("Razorpay API keys are not configured")
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.http = requests.Session()
        self.http.auth = (key_id, key_secret)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.api_url}{path}"
        try:
            resp = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error("Razorpay %s %s failed: %s", method, path, e)
            raise UpstreamError(f"Payment gateway unreachable: {e}")
        if resp.status_code >= 400:
            message = _upstream_message(resp)
            logger.error("Razorpay %s %s -> %s: %s", method, path, resp.status_code, message)
            raise UpstreamError(message)
        try:
            data = resp.json()
        except ValueError:
            logger.error("Razorpay %s %s -> %s: non-JSON body", method, path, resp.status_code)
            raise UpstreamError("Payment gateway returned a non-JSON response")
        if not isinstance(data, dict):
            raise UpstreamError("Payment gateway returned an unexpected response")
        return data

    def create_order(self, amount, receipt: str, currency: str = config.CURRENCY) -> GatewayOrder:
        data = self._request("POST", "/orders", json={
            "amount": to_paise(amount),
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
            "notes": {"orderNumber": receipt},
        })
        if not data.get("id"):
            raise UpstreamError("Payment gateway did not return an order id")
        logger.info("Razorpay order %s created for %s", data.get("id"), receipt)
        return GatewayOrder(
            order_id=data["id"],
            amount=Decimal(data.get("amount", 0)) / 100,
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt),
        )

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """HMAC-SHA256 of ``order_id|payment_id`` with the key secret."""
        if not (order_id and payment_id and signature and self.key_secret):
            return False
        body = f"{order_id}|{payment_id}".encode()
        expected = hmac.new(self.key_secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, str(signature))

    def fetch_order_status(self, order_id: str) -> str:
        """Current payment state of a gateway order as a PaymentStatus value."""
        order = self._request("GET", f"/orders/{order_id}")
        status = normalize_gateway_status(order.get("status"))
        if status != PaymentStatus.PENDING.value:
            return status

        # "attempted": смотрим на сами платежи
        payments = self._request("GET", f"/orders/{order_id}/payments").get("items", [])
        states = {normalize_gateway_status(p.get("status")) for p in payments}
        if PaymentStatus.COMPLETED.value in states:
            return PaymentStatus.COMPLETED.value
        if states and states == {PaymentStatus.FAILED.value}:
            return PaymentStatus.FAILED.value
        return PaymentStatus.PENDING.value

    def fetch_payment(self, payment_id: str) -> dict:
        return self._request("GET", f"/payments/{payment_id}")

    def refund(self, payment_id: str, amount: Optional[Decimal] = None) -> dict:
        body = {"amount": to_paise(amount)} if amount is not None else {}
        data = self._request("POST", f"/payments/{payment_id}/refund", json=body)
        logger.info("Razorpay refund %s for payment %s", data.get("id"), payment_id)
        return data


_gateway: Optional[RazorpayGateway] = None


def get_payment_gateway() -> RazorpayGateway:
    """FastAPI dependency; one client per process."""
    global _gateway
    if _gateway is None:
        _gateway = RazorpayGateway()
    return _gateway
