"""Order and payment status transitions.

Every status change goes through :func:`transition`, which checks the
transition tables below, stamps ``updated_at`` and writes an
``OrderStatusLog`` row. Nothing is committed here; the caller owns the
transaction.
"""
import logging
from datetime import datetime
from typing import Dict, Optional, Set

from sqlalchemy.orm import Session

from storefront.errors import IllegalTransition
from storefront.models.order import Order
from storefront.models.order_status_log import OrderStatusLog
from storefront.utils.enums import OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

# разрешённые переходы; терминальные статусы без исходящих
VALID_NEXT_STATUS: Dict[str, Set[str]] = {
    OrderStatus.PENDING.value: {
        OrderStatus.PROCESSING.value,
        OrderStatus.FAILED.value,
        OrderStatus.CANCELLED.value,
    },
    OrderStatus.PROCESSING.value: {
        OrderStatus.COMPLETED.value,
        OrderStatus.CANCELLED.value,
    },
    OrderStatus.COMPLETED.value: set(),
    OrderStatus.FAILED.value: set(),
    OrderStatus.CANCELLED.value: set(),
}

VALID_NEXT_PAYMENT: Dict[str, Set[str]] = {
    PaymentStatus.PENDING.value: {PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value},
    PaymentStatus.COMPLETED.value: {PaymentStatus.REFUNDED.value},
    PaymentStatus.FAILED.value: set(),
    PaymentStatus.REFUNDED.value: set(),
}

# словарь статусов шлюзов -> PaymentStatus
GATEWAY_STATUS_MAP: Dict[str, str] = {
    "paid": PaymentStatus.COMPLETED.value,
    "captured": PaymentStatus.COMPLETED.value,
    "authorized": PaymentStatus.COMPLETED.value,
    "success": PaymentStatus.COMPLETED.value,
    "payment_success": PaymentStatus.COMPLETED.value,
    "completed": PaymentStatus.COMPLETED.value,
    "failed": PaymentStatus.FAILED.value,
    "payment_error": PaymentStatus.FAILED.value,
    "payment_declined": PaymentStatus.FAILED.value,
    "error": PaymentStatus.FAILED.value,
    "refunded": PaymentStatus.REFUNDED.value,
    "created": PaymentStatus.PENDING.value,
    "attempted": PaymentStatus.PENDING.value,
    "payment_pending": PaymentStatus.PENDING.value,
    "pending": PaymentStatus.PENDING.value,
}


def normalize_gateway_status(raw: Optional[str]) -> str:
    """Map a gateway-specific status label onto :class:`PaymentStatus`.

    Unknown labels are treated as still pending.
    """
    if not raw:
        return PaymentStatus.PENDING.value
    return GATEWAY_STATUS_MAP.get(str(raw).strip().lower(), PaymentStatus.PENDING.value)


def _coerce(value, enum_cls) -> Optional[str]:
    if value is None:
        return None
    try:
        return enum_cls(value).value
    except ValueError:
        raise IllegalTransition(f"Unknown {enum_cls.__name__}: {value}")


def can_transition(current: str, target: str, table: Dict[str, Set[str]]) -> bool:
    return current == target or target in table.get(current, set())


def transition(
    db: Session,
    order: Order,
    status=None,
    payment_status=None,
    actor: str = "system",
    note: Optional[str] = None,
) -> bool:
    """Move ``order`` to the given status and/or payment status.

    Both targets are checked before anything is written, so an illegal
    payment-status change never leaves a half-applied status change behind.
    Returns False when the order already is in the requested state.
    """
    new_status = _coerce(status, OrderStatus)
    new_payment = _coerce(payment_status, PaymentStatus)

    cur_status = order.status or OrderStatus.PENDING.value
    cur_payment = order.payment_status or PaymentStatus.PENDING.value

    if new_status is not None and not can_transition(cur_status, new_status, VALID_NEXT_STATUS):
        logger.warning("Order %s: illegal status change %s -> %s", order.id, cur_status, new_status)
        raise IllegalTransition(f"Cannot change order status from {cur_status} to {new_status}")
    if new_payment is not None and not can_transition(cur_payment, new_payment, VALID_NEXT_PAYMENT):
        logger.warning("Order %s: illegal payment status change %s -> %s", order.id, cur_payment, new_payment)
        raise IllegalTransition(f"Cannot change payment status from {cur_payment} to {new_payment}")

    target_status = new_status or cur_status
    target_payment = new_payment or cur_payment
    if target_status == cur_status and target_payment == cur_payment:
        return False

    order.status = target_status
    order.payment_status = target_payment
    order.updated_at = datetime.utcnow()
    db.add(OrderStatusLog(
        order_id=order.id,
        old_status=cur_status,
        new_status=target_status,
        old_payment_status=cur_payment,
        new_payment_status=target_payment,
        user=actor,
        note=note,
    ))
    logger.info(
        "Order %s: %s/%s -> %s/%s (%s)",
        order.order_number, cur_status, cur_payment, target_status, target_payment, actor,
    )
    return True


def log_note(db: Session, order: Order, actor: str = "system", note: Optional[str] = None) -> None:
    """Record an event that leaves both statuses as they are."""
    order.updated_at = datetime.utcnow()
    db.add(OrderStatusLog(
        order_id=order.id,
        old_status=order.status,
        new_status=order.status,
        old_payment_status=order.payment_status,
        new_payment_status=order.payment_status,
        user=actor,
        note=note,
    ))
