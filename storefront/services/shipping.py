# storefront/services/shipping.py
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from storefront import config
from storefront.errors import IllegalTransition, NotFound, ValidationFailed
from storefront.models.order import Order, OrderItem
from storefront.services import outbox
from storefront.services.order_state import VALID_NEXT_STATUS, can_transition, transition
from storefront.utils.enums import OrderStatus, PaymentMethod, SideEffectKind

logger = logging.getLogger(__name__)

DEFAULT_CITY = "Chennai"
DEFAULT_STATE = "Tamil Nadu"
DEFAULT_PINCODE = "600001"
DEFAULT_COUNTRY = "India"
DEFAULT_PHONE = "9876543210"

# коробка по умолчанию: см / кг
PACKAGE = {"length": 15, "breadth": 10, "height": 5, "weight": 0.5}

_PIN_TAIL = re.compile(r"(\d{6})$")
_PIN_SUFFIX = re.compile(r"[\s,-]*\d{6}$")


@dataclass
class Address:
    line: str
    city: str = DEFAULT_CITY
    state: str = DEFAULT_STATE
    pincode: str = DEFAULT_PINCODE
    country: str = DEFAULT_COUNTRY

    def cleaned(self) -> "Address":
        """Empty parts and malformed pincodes fall back to the defaults."""
        pincode = re.sub(r"\D", "", self.pincode or "")
        if len(pincode) != 6:
            pincode = DEFAULT_PINCODE
        return Address(
            line=(self.line or "").strip() or "Default Address",
            city=(self.city or "").strip() or DEFAULT_CITY,
            state=(self.state or "").strip() or DEFAULT_STATE,
            pincode=pincode,
            country=(self.country or "").strip() or DEFAULT_COUNTRY,
        )


def parse_address(text: Optional[str]) -> Address:
    """Best-effort split of a free-text Indian address.

    ``"2/15, Kalivelampatti, Palladam, Tiruppur - 641664"`` ->
    line ``"2/15, Kalivelampatti"``, city ``"Palladam"``, pincode ``"641664"``.
    """
    raw = (text or "").strip()
    if not raw:
        return Address(line="").cleaned()

    m = _PIN_TAIL.search(raw)
    if m:
        pincode = m.group(1)
        rest = _PIN_SUFFIX.sub("", raw).strip()
        parts = [p.strip() for p in rest.split(",")]
        if len(parts) >= 3:
            return Address(line=", ".join(parts[:-2]), city=parts[-2], pincode=pincode).cleaned()
        if len(parts) == 2:
            return Address(line=parts[0], city=parts[1], pincode=pincode).cleaned()
        return Address(line=parts[0] or raw, pincode=pincode).cleaned()

    parts = raw.split(", ")
    if len(parts) >= 4:
        return Address(line=parts[0], city=parts[1], state=parts[2], pincode=parts[3]).cleaned()
    if len(parts) == 3:
        return Address(line=parts[0], city=parts[1], pincode=parts[2]).cleaned()
    return Address(line=raw).cleaned()


def order_address(order: Order) -> Address:
    # структурированный адрес с чекаута надёжнее разбора строки
    if order.ship_line and order.ship_city:
        return Address(
            line=order.ship_line,
            city=order.ship_city,
            state=order.ship_state or DEFAULT_STATE,
            pincode=order.ship_postal_code or DEFAULT_PINCODE,
            country=order.ship_country or DEFAULT_COUNTRY,
        ).cleaned()
    return parse_address(order.shipping_address)


def customer_name(email: Optional[str]) -> str:
    local = (email or "customer").split("@")[0]
    return re.sub(r"[^a-zA-Z]", "", local) or "Customer"


def normalize_phone(phone: Optional[str]) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 10:
        return DEFAULT_PHONE
    return digits[-10:]


def build_courier_request(order: Order, items: List[OrderItem]) -> dict:
    addr = order_address(order)
    name = customer_name(order.email)
    phone = normalize_phone(order.phone)
    email = order.email or "customer@example.com"

    contact = {
        "customer_name": name,
        "last_name": "",
        "address": addr.line,
        "address_2": "",
        "city": addr.city,
        "pincode": addr.pincode,
        "state": addr.state,
        "country": addr.country,
        "email": email,
        "phone": phone,
    }

    payload = {
        "order_id": order.order_number,
        "order_date": order.created_at.date().isoformat() if order.created_at else None,
        "pickup_location": config.SHIPROCKET_PICKUP_LOCATION,
        "shipping_is_billing": True,
        "order_items": [
            {
                "name": item.name or f"Product {item.product_id}",
                "sku": f"SKU{item.product_id}",
                "units": item.quantity,
                "selling_price": str(item.price),
            }
            for item in items
        ],
        "payment_method": "COD" if order.payment_method == PaymentMethod.COD.value else "Prepaid",
        "sub_total": str(order.subtotal_amount),
        **PACKAGE,
    }
    for key, value in contact.items():
        payload[f"billing_{key}"] = value
        payload[f"shipping_{key}"] = value
    return payload


@dataclass
class Dispatch:
    order: Order
    shipment_id: Optional[str]
    courier_order_id: Optional[str]
    awb_code: Optional[str]
    courier_name: Optional[str]
    effect_ids: List[int]

    def to_dict(self) -> dict:
        return {
            "shipment_id": self.shipment_id,
            "order_id": self.courier_order_id,
            "awb_code": self.awb_code,
            "courier_name": self.courier_name,
        }


def dispatch_shipment(db: Session, courier, order_id: int, notify: bool = False, actor: str = "admin") -> Dispatch:
    """Register the order with the courier and move it to processing.

    The order is only touched after the courier accepted it; an upstream error
    propagates and leaves the order as it was.
    """
    order = db.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    items = list(order.items)
    if not items:
        raise ValidationFailed("No items found for this order")
    if not can_transition(order.status, OrderStatus.PROCESSING.value, VALID_NEXT_STATUS):
        raise IllegalTransition(f"Cannot ship an order with status {order.status}")

    payload = build_courier_request(order, items)
    logger.info("Dispatching order %s to courier", order.order_number)
    data = courier.create_order(payload)

    shipment_id = data.get("shipment_id")
    awb_code = data.get("awb_code") or None
    tracking = awb_code or shipment_id
    if tracking is not None:
        order.tracking_id = str(tracking)
    transition(db, order, status=OrderStatus.PROCESSING.value, actor=actor, note="shipment created")

    effect_ids = []
    if notify and order.tracking_id:
        effect = outbox.enqueue(db, SideEffectKind.SHIPPING_EMAIL, {
            "order_id": order.id,
            "tracking_id": order.tracking_id,
        })
        db.flush()
        effect_ids.append(effect.id)
    db.commit()

    return Dispatch(
        order=order,
        shipment_id=None if shipment_id is None else str(shipment_id),
        courier_order_id=None if data.get("order_id") is None else str(data.get("order_id")),
        awb_code=awb_code,
        courier_name=data.get("courier_name"),
        effect_ids=effect_ids,
    )
