# storefront/gateways/shiprocket.py
import logging
import threading
from datetime import datetime, timedelta
from typing import Optional

import requests

from storefront import config
from storefront.errors import UpstreamError

logger = logging.getLogger(__name__)

TOKEN_LIFETIME = timedelta(hours=24)

DEFAULT_PICKUP = {
    "name": "Store",
    "phone": "9876543210",
    "address": "123 Main Street",
    "address_2": "Business District",
    "city": "Chennai",
    "state": "Tamil Nadu",
    "country": "India",
    "pin_code": "600001",
}


def _error_text(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = {}
    if isinstance(data, dict):
        msg = data.get("message") or data.get("error")
        if msg:
            return str(msg)
    return resp.reason or resp.text or "unknown error"


class ShiprocketClient:
    """Courier aggregator client: auth token, orders, AWB, tracking."""

    def __init__(
        self,
        email: str = config.SHIPROCKET_EMAIL,
        password: str = config.SHIPROCKET_PASSWORD,
        api_url: str = config.SHIPROCKET_API_URL,
        timeout: float = config.HTTP_TIMEOUT,
    ):
        self.email = email
        self.password = password
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.http = requests.Session()
        self._token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None
        self._lock = threading.Lock()

    # ----------------------- AUTH -----------------------
    def authenticate(self) -> str:
        if not self.email or not self.password:
            raise UpstreamError("Shiprocket credentials are not configured")
        try:
            resp = self.http.post(
                f"{self.api_url}/auth/login",
                json={"email": self.email, "password": self.password},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Shiprocket auth failed: %s", e)
            raise UpstreamError(f"Failed to authenticate with Shiprocket: {e}")
        if resp.status_code >= 400:
            raise UpstreamError(
                f"Failed to authenticate with Shiprocket ({resp.status_code}): {_error_text(resp)}"
            )
        try:
            data = resp.json()
        except ValueError:
            raise UpstreamError("Shiprocket login returned a non-JSON response")
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise UpstreamError("No token received from Shiprocket API")

        self._token = token
        self._token_expiry = datetime.utcnow() + TOKEN_LIFETIME
        logger.info("Shiprocket token refreshed")
        return token

    def token(self) -> str:
        with self._lock:
            if not self._token or not self._token_expiry or datetime.utcnow() >= self._token_expiry:
                return self.authenticate()
            return self._token

    def _call(self, method: str, path: str, **kwargs) -> dict:
        headers = {"Authorization": f"Bearer {self.token()}", "Content-Type": "application/json"}
        try:
            resp = self.http.request(
                method, f"{self.api_url}{path}", headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.error("Shiprocket %s %s failed: %s", method, path, e)
            raise UpstreamError(f"Shiprocket API error: {e}")
        if resp.status_code >= 400:
            message = _error_text(resp)
            logger.error("Shiprocket %s %s -> %s: %s", method, path, resp.status_code, message)
            raise UpstreamError(f"Shiprocket API error ({resp.status_code}): {message}")
        try:
            data = resp.json()
        except ValueError:
            logger.error("Shiprocket %s %s -> %s: non-JSON body", method, path, resp.status_code)
            raise UpstreamError("Shiprocket API returned a non-JSON response")
        if not isinstance(data, dict):
            raise UpstreamError("Shiprocket API returned an unexpected response")
        return data

    # ----------------------- PICKUP -----------------------
    def ensure_pickup_address(self) -> None:
        """Create the default pickup location if the account has none.

        Failure here is logged only; order creation reports its own error.
        """
        try:
            data = self._call("GET", "/settings/company/pickup")
            if (data.get("data") or {}).get("shipping_address"):
                return
            logger.info("Creating default Shiprocket pickup address")
            self._call("POST", "/settings/company/addpickup", json={
                "pickup_location": config.SHIPROCKET_PICKUP_LOCATION,
                "email": self.email,
                **DEFAULT_PICKUP,
            })
        except UpstreamError as e:
            logger.warning("Could not ensure pickup address: %s", e.message)

    # ----------------------- ORDERS -----------------------
    def create_order(self, payload: dict) -> dict:
        self.ensure_pickup_address()
        data = self._call("POST", "/orders/create/adhoc", json=payload)
        logger.info(
            "Shiprocket order created: order_id=%s shipment_id=%s",
            data.get("order_id"), data.get("shipment_id"),
        )
        return data

    def track(self, awb_code: str) -> dict:
        return self._call("GET", f"/courier/track/awb/{awb_code}")

    def assign_awb(self, shipment_id: int, courier_id: int) -> dict:
        return self._call("POST", "/courier/assign/awb", json={
            "shipment_id": shipment_id,
            "courier_id": courier_id,
        })

    def serviceability(self, pincode: str, weight: float, order_value) -> dict:
        return self._call("GET", "/courier/serviceability/", params={
            "pickup_postcode": config.SHIPROCKET_PICKUP_POSTCODE,
            "delivery_postcode": pincode,
            "weight": weight,
            "declared_value": str(order_value),
        })


_client: Optional[ShiprocketClient] = None


def get_courier() -> ShiprocketClient:
    global _client
    if _client is None:
        _client = ShiprocketClient()
    return _client
