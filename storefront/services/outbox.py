"""Follow-up actions of an order change (cart clearing, emails).

The workflow calls :func:`enqueue` inside the same transaction that changes the
order, so the intent survives a crash. :func:`dispatch` runs after the response
has been sent. Each run first claims its row by flipping ``pending`` to
``running`` in one conditional UPDATE, so two workers never run the same
effect. A failed effect goes back to ``pending`` with its error recorded and is
picked up again by the admin retry endpoint, up to ``MAX_ATTEMPTS`` times.
"""
import json
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List

from sqlalchemy.orm import Session

from storefront.models.order import Order
from storefront.models.side_effect import SideEffect
from storefront.services import cart as cart_service
from storefront.utils.enums import SideEffectKind, SideEffectStatus

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5


class EffectFailed(Exception):
    pass


def enqueue(db: Session, kind: SideEffectKind, payload: dict) -> SideEffect:
    effect = SideEffect(kind=kind.value, payload=json.dumps(payload))
    db.add(effect)
    return effect


def enqueue_order_placed(db: Session, order: Order) -> List[SideEffect]:
    """Cart clear + confirmation email for a confirmed order."""
    effects = [
        enqueue(db, SideEffectKind.CLEAR_CART, {"session_id": order.session_id}),
        enqueue(db, SideEffectKind.ORDER_CONFIRMATION_EMAIL, {"order_id": order.id}),
    ]
    db.flush()
    return effects


def pending_ids(db: Session) -> List[int]:
    rows = (
        db.query(SideEffect.id)
        .filter(SideEffect.status == SideEffectStatus.PENDING.value)
        .order_by(SideEffect.id)
        .all()
    )
    return [r.id for r in rows]


# ---------- обработчики ----------
def _clear_cart(db: Session, payload: dict, mailer) -> None:
    cart_service.clear_cart(db, payload.get("session_id"))


def _load_order(db: Session, payload: dict) -> Order:
    order = db.get(Order, payload.get("order_id"))
    if not order:
        raise EffectFailed(f"Order {payload.get('order_id')} not found")
    return order


def _order_confirmation(db: Session, payload: dict, mailer) -> None:
    order = _load_order(db, payload)
    result = mailer.send_order_confirmation(order, list(order.items))
    if not result.success:
        raise EffectFailed(result.error or "email not sent")


def _shipping_email(db: Session, payload: dict, mailer) -> None:
    order = _load_order(db, payload)
    result = mailer.send_shipping_notification(order, payload.get("tracking_id") or order.tracking_id)
    if not result.success:
        raise EffectFailed(result.error or "email not sent")


HANDLERS: Dict[str, Callable] = {
    SideEffectKind.CLEAR_CART.value: _clear_cart,
    SideEffectKind.ORDER_CONFIRMATION_EMAIL.value: _order_confirmation,
    SideEffectKind.SHIPPING_EMAIL.value: _shipping_email,
}


def _claim(db: Session, effect_id: int) -> bool:
    """Atomically move a pending effect to running; False if someone else got it."""
    claimed = (
        db.query(SideEffect)
        .filter(SideEffect.id == effect_id, SideEffect.status == SideEffectStatus.PENDING.value)
        .update(
            {"status": SideEffectStatus.RUNNING.value, "updated_at": datetime.utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    return claimed == 1


def run_one(db: Session, effect: SideEffect, mailer) -> bool:
    if effect.status != SideEffectStatus.PENDING.value:
        return effect.status == SideEffectStatus.DONE.value

    effect_id = effect.id
    if not _claim(db, effect_id):
        logger.info("Side effect %s already taken by another worker", effect_id)
        return False
    effect = db.get(SideEffect, effect_id)

    handler = HANDLERS.get(effect.kind)
    try:
        if handler is None:
            raise EffectFailed(f"Unknown side effect kind: {effect.kind}")
        handler(db, json.loads(effect.payload), mailer)
    except Exception as e:
        # побочное действие не должно ронять основной результат
        db.rollback()
        effect = db.get(SideEffect, effect_id)
        effect.attempts = (effect.attempts or 0) + 1
        effect.updated_at = datetime.utcnow()
        effect.last_error = str(e)[:500]
        if effect.attempts >= MAX_ATTEMPTS:
            effect.status = SideEffectStatus.FAILED.value
        else:
            effect.status = SideEffectStatus.PENDING.value
        db.commit()
        logger.error("Side effect %s (%s) failed, attempt %s: %s", effect.id, effect.kind, effect.attempts, e)
        return False

    effect.attempts = (effect.attempts or 0) + 1
    effect.updated_at = datetime.utcnow()
    effect.status = SideEffectStatus.DONE.value
    effect.last_error = None
    db.commit()
    return True


def dispatch(session_factory, ids: Iterable[int], mailer) -> int:
    """Run the given effects, each in its own session. Returns how many succeeded."""
    done = 0
    for effect_id in ids:
        db = session_factory()
        try:
            effect = db.get(SideEffect, effect_id)
            if effect is None:
                continue
            if run_one(db, effect, mailer):
                done += 1
        finally:
            db.close()
    return done
