from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.db import get_db
from storefront.errors import NotFound, ValidationFailed
from storefront.models.order import Order
from storefront.routers.cart import optional_session_id

router = APIRouter()


def _with_items(order: Order) -> dict:
    data = order.to_dict()
    data["items"] = [i.to_dict() for i in order.items]
    return data


@router.get("/api/orders")
def orders_for_session(sid: Optional[str] = Depends(optional_session_id), db: Session = Depends(get_db)):
    if not sid:
        raise ValidationFailed("Session ID is required")
    orders = (
        db.query(Order)
        .filter(Order.session_id == sid)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return {"success": True, "orders": [o.to_dict() for o in orders]}


@router.get("/api/orders/email/{email}")
def orders_for_email(email: str, db: Session = Depends(get_db)):
    orders = (
        db.query(Order)
        .filter(Order.email == email.strip())
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return {"success": True, "orders": [o.to_dict() for o in orders]}


@router.get("/api/orders/{order_id}")
def order_detail(order_id: int, db: Session = Depends(get_db)):
    order = db.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    return {"success": True, "order": _with_items(order)}
