"""Payment reconciliation.

Two ways in, one state machine: the storefront posts the gateway's signed
confirmation (:func:`verify_payment`), or the gateway redirects the customer
back with just a transaction id and we ask it for the status
(:func:`reconcile_callback`). Both find the order by its stored gateway
reference, never by our own id.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from storefront.errors import IllegalTransition, NotFound, SignatureInvalid, ValidationFailed
from storefront.models.order import Order
from storefront.services import outbox
from storefront.services.order_state import VALID_NEXT_STATUS, log_note, transition
from storefront.utils.enums import OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)


@dataclass
class Reconciliation:
    order: Order
    payment_status: str
    changed: bool = False
    effect_ids: List[int] = field(default_factory=list)


def find_by_payment_reference(db: Session, reference: str) -> Optional[Order]:
    return db.query(Order).filter(Order.payment_id == reference).first()


def _apply(db: Session, order: Order, payment_status: str, actor: str, transaction_ref: Optional[str] = None) -> Reconciliation:
    """Transition ``order`` for a normalized gateway result and queue follow-ups."""
    result = Reconciliation(order=order, payment_status=payment_status)

    if payment_status == PaymentStatus.COMPLETED.value:
        if order.payment_status == PaymentStatus.COMPLETED.value:
            # повторное подтверждение: ничего не делаем
            return result
        result.changed = transition(
            db, order,
            status=OrderStatus.PROCESSING.value,
            payment_status=PaymentStatus.COMPLETED.value,
            actor=actor, note="payment confirmed",
        )
        if transaction_ref:
            order.transaction_ref = transaction_ref
        result.effect_ids = [e.id for e in outbox.enqueue_order_placed(db, order)]
        db.commit()
        return result

    if payment_status == PaymentStatus.FAILED.value:
        result.changed = transition(
            db, order,
            status=OrderStatus.FAILED.value,
            payment_status=PaymentStatus.FAILED.value,
            actor=actor, note="payment failed",
        )
        db.commit()
        return result

    # всё ещё pending: статус не трогаем
    return result


def verify_payment(db: Session, gateway, order_id: str, payment_id: str, signature: str) -> Reconciliation:
    """Synchronous confirmation with the gateway's HMAC signature.

    The signature is checked before the order is even looked up, so a tampered
    request can never change state.
    """
    if not order_id or not payment_id or not signature:
        raise ValidationFailed("Order ID, Payment ID, and signature are required")

    if not gateway.verify_signature(order_id, payment_id, signature):
        logger.warning("Invalid payment signature for gateway order %s", order_id)
        raise SignatureInvalid("Invalid payment signature")

    order = find_by_payment_reference(db, order_id)
    if not order:
        logger.error("No order for gateway order %s", order_id)
        raise NotFound("No matching order found")

    return _apply(db, order, PaymentStatus.COMPLETED.value, actor="gateway:verify", transaction_ref=payment_id)


def reconcile_callback(db: Session, gateway, transaction_id: str) -> Reconciliation:
    """Asynchronous callback: ask the gateway, then transition."""
    if not transaction_id:
        raise ValidationFailed("transactionId is required")

    payment_status = gateway.fetch_order_status(transaction_id)
    logger.info("Gateway status for %s: %s", transaction_id, payment_status)

    order = find_by_payment_reference(db, transaction_id)
    if not order:
        raise NotFound("order-not-found")

    return _apply(db, order, payment_status, actor="gateway:callback")


def refund_order(db: Session, gateway, order: Order, amount: Optional[Decimal] = None, actor: str = "admin") -> dict:
    """Refund a captured payment in full or in part.

    A partial refund keeps the order live and only grows ``refunded_amount``;
    the order moves to refunded once the whole total has been returned.
    """
    if order.payment_status != PaymentStatus.COMPLETED.value:
        raise IllegalTransition(f"Cannot refund an order with payment status {order.payment_status}")
    if not order.transaction_ref:
        raise ValidationFailed("Order has no captured gateway payment to refund")

    refunded = order.refunded_amount or Decimal("0")
    remaining = order.total_amount - refunded
    if amount is not None and amount > remaining:
        raise ValidationFailed(f"Refund amount exceeds the refundable balance {remaining}")
    # без суммы возвращаем остаток
    if amount is None and refunded > 0:
        amount = remaining

    refund = gateway.refund(order.transaction_ref, amount)
    refund_id = refund.get("id", "")

    if amount is not None and refunded + amount < order.total_amount:
        order.refunded_amount = refunded + amount
        log_note(db, order, actor=actor, note=f"partial refund {refund_id} {amount}".strip())
        db.commit()
        return refund

    order.refunded_amount = order.total_amount
    status = None
    if OrderStatus.CANCELLED.value in VALID_NEXT_STATUS.get(order.status, set()):
        status = OrderStatus.CANCELLED.value
    transition(
        db, order,
        status=status,
        payment_status=PaymentStatus.REFUNDED.value,
        actor=actor, note=f"refund {refund_id}".strip(),
    )
    db.commit()
    return refund
