from typing import Any, Optional
import uuid

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from storefront.db import get_db
from storefront.errors import ValidationFailed
from storefront.services import cart as cart_service

router = APIRouter()

SESSION_HEADER = "session-id"


class CartAdd(BaseModel):
    productId: int
    quantity: int = 1
    metaData: Optional[Any] = None


class CartUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


def session_id(request: Request, response: Response) -> str:
    """Гостевая сессия из заголовка; если нет, выдаём новую и возвращаем в ответе."""
    sid = (request.headers.get(SESSION_HEADER) or "").strip()
    if not sid:
        sid = uuid.uuid4().hex
    response.headers[SESSION_HEADER] = sid
    return sid


def optional_session_id(request: Request) -> Optional[str]:
    return (request.headers.get(SESSION_HEADER) or "").strip() or None


# ----------------------- READ -----------------------
@router.get("/api/cart")
def cart_view(sid: str = Depends(session_id), db: Session = Depends(get_db)):
    items = cart_service.list_items(db, sid)
    return {"success": True, "sessionId": sid, "items": [i.to_dict() for i in items]}


# ----------------------- ADD -----------------------
@router.post("/api/cart")
def cart_add(body: CartAdd, sid: str = Depends(session_id), db: Session = Depends(get_db)):
    item = cart_service.add_item(db, sid, body.productId, body.quantity, body.metaData)
    return {"success": True, "sessionId": sid, "item": item.to_dict()}


# ----------------------- UPDATE -----------------------
@router.put("/api/cart/{item_id}")
def cart_update(
    item_id: int,
    body: CartUpdate,
    sid: Optional[str] = Depends(optional_session_id),
    db: Session = Depends(get_db),
):
    if not sid:
        raise ValidationFailed("Session ID is required")
    item = cart_service.update_quantity(db, item_id, body.quantity, session_id=sid)
    return {"success": True, "item": item.to_dict()}


# ----------------------- REMOVE -----------------------
@router.delete("/api/cart/{item_id}")
def cart_remove(item_id: int, sid: Optional[str] = Depends(optional_session_id), db: Session = Depends(get_db)):
    if not sid:
        raise ValidationFailed("Session ID is required")
    cart_service.remove_item(db, item_id, session_id=sid)
    return {"success": True}


@router.delete("/api/cart")
def cart_clear(sid: Optional[str] = Depends(optional_session_id), db: Session = Depends(get_db)):
    deleted = cart_service.clear_cart(db, sid)
    return {"success": True, "deleted": deleted}
