import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from storefront.db import SessionLocal, get_db
from storefront.errors import NotFound, ValidationFailed
from storefront.gateways.razorpay import get_payment_gateway
from storefront.middleware.rbac import require_admin
from storefront.models.order import Order
from storefront.models.order_status_log import OrderStatusLog
from storefront.notify.mailer import get_mailer
from storefront.services import outbox, payments
from storefront.services.admin_sessions import AdminSession
from storefront.services.order_state import transition
from storefront.utils.enums import OrderStatus, SideEffectKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/orders", tags=["admin-orders"], dependencies=[Depends(require_admin)])


class OrderPatch(BaseModel):
    status: Optional[str] = None
    paymentStatus: Optional[str] = None
    trackingId: Optional[str] = None
    note: Optional[str] = None


class RefundBody(BaseModel):
    amount: Optional[str] = None


def _get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    return order


# ---------- СПИСОК ----------
@router.get("")
def list_orders(
    status: str = Query("all"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    q = db.query(Order).order_by(Order.created_at.desc(), Order.id.desc())
    if status != "all":
        q = q.filter(Order.status == status)
    return {"success": True, "orders": [o.to_dict() for o in q.limit(limit).all()]}


# ---------- ДЕТАЛИ ЗАКАЗА ----------
@router.get("/{order_id}")
def order_detail(order_id: int, db: Session = Depends(get_db)):
    order = _get_order(db, order_id)
    data = order.to_dict()
    data["items"] = [i.to_dict() for i in order.items]
    return {"success": True, "order": data}


@router.get("/{order_id}/history")
def order_history(order_id: int, db: Session = Depends(get_db)):
    _get_order(db, order_id)
    rows = (
        db.query(OrderStatusLog)
        .filter(OrderStatusLog.order_id == order_id)
        .order_by(OrderStatusLog.id)
        .all()
    )
    return {"success": True, "history": [r.to_dict() for r in rows]}


# ---------- СМЕНА СТАТУСА ----------
@router.patch("/{order_id}")
def update_order(
    order_id: int,
    body: OrderPatch,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: AdminSession = Depends(require_admin),
    mailer=Depends(get_mailer),
):
    order = _get_order(db, order_id)

    # переходы проверяет машина состояний, иначе 409
    transition(
        db, order,
        status=body.status,
        payment_status=body.paymentStatus,
        actor=f"admin:{admin.username}",
        note=body.note,
    )

    tracking = (body.trackingId or "").strip()
    if tracking:
        order.tracking_id = tracking

    effect_ids = []
    if body.status == OrderStatus.COMPLETED.value and tracking:
        effect = outbox.enqueue(db, SideEffectKind.SHIPPING_EMAIL, {"order_id": order.id, "tracking_id": tracking})
        db.flush()
        effect_ids.append(effect.id)
    db.commit()

    if effect_ids:
        background.add_task(outbox.dispatch, SessionLocal, effect_ids, mailer)
    return {"success": True, "order": order.to_dict()}


@router.delete("/{order_id}")
def delete_order(order_id: int, db: Session = Depends(get_db)):
    order = _get_order(db, order_id)
    number = order.order_number
    db.delete(order)
    db.commit()
    logger.info("Order %s deleted", number)
    return {"success": True, "message": f"Order {number} deleted"}


# ---------- ВОЗВРАТ ----------
@router.post("/{order_id}/refund")
def refund_order(
    order_id: int,
    body: RefundBody,
    db: Session = Depends(get_db),
    admin: AdminSession = Depends(require_admin),
    gateway=Depends(get_payment_gateway),
):
    order = _get_order(db, order_id)
    amount = None
    if body.amount:
        try:
            amount = Decimal(body.amount)
        except InvalidOperation:
            raise ValidationFailed("Invalid refund amount")
        if amount <= 0:
            raise ValidationFailed("Invalid refund amount")

    refund = payments.refund_order(db, gateway, order, amount, actor=f"admin:{admin.username}")
    return {"success": True, "refundId": refund.get("id"), "order": order.to_dict()}
