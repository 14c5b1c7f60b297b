"""Checkout: cart snapshot -> totals -> order + items -> payment branch."""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront import config
from storefront.errors import UpstreamError, ValidationFailed
from storefront.models.order import Order, OrderItem
from storefront.services import outbox
from storefront.services.order_state import transition
from storefront.services.pricing import compute_totals, load_rates
from storefront.services.snapshot import LineDraft, build_snapshot
from storefront.utils.enums import OrderStatus, PaymentMethod, PaymentStatus
from storefront.utils.tokens import generate_order_number, generate_transaction_id

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5
DEFAULT_COUNTRY = "India"

REQUIRED_FIELDS = (
    "email", "phone", "shipping_address", "shipping_city",
    "shipping_state", "shipping_zip", "payment_method",
)


@dataclass
class CheckoutForm:
    email: str
    phone: str
    shipping_address: str
    shipping_city: str
    shipping_state: str
    shipping_zip: str
    payment_method: str
    shipping_country: Optional[str] = None
    notes: Optional[str] = None

    def validate(self) -> None:
        missing = [f for f in REQUIRED_FIELDS if not (getattr(self, f) or "").strip()]
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}")
        try:
            PaymentMethod(self.payment_method)
        except ValueError:
            raise ValidationFailed(f"Unsupported payment method: {self.payment_method}")

    @property
    def country(self) -> str:
        return (self.shipping_country or "").strip() or DEFAULT_COUNTRY

    def formatted_address(self) -> str:
        parts = [self.shipping_address, self.shipping_city, self.shipping_state, self.shipping_zip, self.country]
        return ", ".join(p.strip() for p in parts)


@dataclass
class CheckoutResult:
    order: Order
    redirect_url: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_amount: Optional[str] = None
    effect_ids: List[int] = field(default_factory=list)


def _insert_order(db: Session, make_order) -> Order:
    """Add the order under a fresh order number; regenerate on collision."""
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        order = make_order(generate_order_number())
        db.add(order)
        try:
            db.flush()
            return order
        except IntegrityError:
            db.rollback()
            logger.warning("Order number %s already taken, retrying", order.order_number)
    raise RuntimeError("Could not allocate a unique order number")


def create_order(db: Session, session_id: str, form: CheckoutForm, drafts: List[LineDraft]) -> Order:
    """Persist the order and its items in one transaction (pending/pending)."""
    rates = load_rates(db)
    totals = compute_totals([(d.unit_price, d.quantity) for d in drafts], rates)
    logger.info(
        "Checkout totals for session %s: subtotal=%s tax=%s shipping=%s total=%s",
        session_id, totals.subtotal, totals.tax, totals.shipping, totals.total,
    )

    def make_order(order_number: str) -> Order:
        return Order(
            order_number=order_number,
            session_id=session_id,
            email=form.email.strip(),
            phone=form.phone.strip(),
            notes=(form.notes or "").strip() or None,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=form.payment_method,
            transaction_id=generate_transaction_id(),
            subtotal_amount=totals.subtotal,
            tax_amount=totals.tax,
            shipping_amount=totals.shipping,
            discount_amount=totals.discount,
            total_amount=totals.total,
            shipping_address=form.formatted_address(),
            ship_line=form.shipping_address.strip(),
            ship_city=form.shipping_city.strip(),
            ship_state=form.shipping_state.strip(),
            ship_postal_code=form.shipping_zip.strip(),
            ship_country=form.country,
        )

    try:
        order = _insert_order(db, make_order)
        for d in drafts:
            db.add(OrderItem(
                order_id=order.id,
                product_id=d.product_id,
                name=d.name,
                price=d.unit_price,
                quantity=d.quantity,
                subtotal=d.subtotal,
                variant=d.variant,
                meta_data=d.meta_data,
            ))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Database error while creating order for session %s", session_id)
        raise

    db.refresh(order)
    logger.info("Order %s created with %s item(s)", order.order_number, len(drafts))
    return order


def place_order(db: Session, session_id: str, form: CheckoutForm, gateway) -> CheckoutResult:
    if not session_id:
        raise ValidationFailed("Session ID is required")
    form.validate()

    drafts = build_snapshot(db, session_id)
    if not drafts:
        raise ValidationFailed("Cart is empty")

    order = create_order(db, session_id, form, drafts)

    if form.payment_method == PaymentMethod.RAZORPAY.value:
        return _start_gateway_payment(db, order, gateway)

    # COD / bank transfer: заказ сразу в работу, корзину чистим после ответа
    payment_status = (
        PaymentStatus.PENDING.value
        if form.payment_method == PaymentMethod.COD.value
        else PaymentStatus.COMPLETED.value
    )
    transition(
        db, order,
        status=OrderStatus.PROCESSING.value,
        payment_status=payment_status,
        note=f"{form.payment_method} checkout",
    )
    effects = outbox.enqueue_order_placed(db, order)
    db.commit()
    return CheckoutResult(order=order, effect_ids=[e.id for e in effects])


def _start_gateway_payment(db: Session, order: Order, gateway) -> CheckoutResult:
    try:
        gw_order = gateway.create_order(order.total_amount, order.order_number)
    except UpstreamError as e:
        transition(
            db, order,
            status=OrderStatus.FAILED.value,
            payment_status=PaymentStatus.FAILED.value,
            note=f"gateway order failed: {e.message}"[:255],
        )
        db.commit()
        raise

    order.payment_id = gw_order.order_id
    db.commit()
    # корзина остаётся до подтверждения оплаты
    return CheckoutResult(
        order=order,
        redirect_url=config.RAZORPAY_CHECKOUT_URL,
        gateway_order_id=gw_order.order_id,
        gateway_amount=str(gw_order.amount),
    )
