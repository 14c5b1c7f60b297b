# storefront/services/cart.py
import json
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from storefront.errors import NotFound, ValidationFailed
from storefront.models.cart import CartItem
from storefront.models.catalog import Product

logger = logging.getLogger(__name__)


def _normalize_meta(meta_data) -> Optional[str]:
    # одинаковые опции -> одинаковая строка, чтобы позиции склеивались
    if meta_data in (None, "", {}):
        return None
    if isinstance(meta_data, str):
        try:
            meta_data = json.loads(meta_data)
        except ValueError:
            return meta_data
    return json.dumps(meta_data, sort_keys=True)


def list_items(db: Session, session_id: str) -> List[CartItem]:
    return (
        db.query(CartItem)
        .filter(CartItem.session_id == session_id)
        .order_by(CartItem.id)
        .all()
    )


def add_item(db: Session, session_id: str, product_id: int, quantity: int = 1, meta_data=None) -> CartItem:
    if quantity < 1:
        raise ValidationFailed("Invalid quantity")
    product = db.get(Product, product_id)
    if not product:
        raise NotFound(f"Product {product_id} not found")

    meta = _normalize_meta(meta_data)
    existing = (
        db.query(CartItem)
        .filter(
            CartItem.session_id == session_id,
            CartItem.product_id == product_id,
            CartItem.meta_data.is_(None) if meta is None else CartItem.meta_data == meta,
        )
        .first()
    )
    if existing:
        existing.quantity = int(existing.quantity) + quantity
        db.commit()
        return existing

    item = CartItem(session_id=session_id, product_id=product_id, quantity=quantity, meta_data=meta)
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def _owned_item(db: Session, item_id: int, session_id: str) -> CartItem:
    if not session_id:
        raise ValidationFailed("Session ID is required")
    item = db.get(CartItem, item_id)
    # чужая позиция выглядит как отсутствующая
    if not item or item.session_id != session_id:
        raise NotFound("Cart item not found")
    return item


def update_quantity(db: Session, item_id: int, quantity: int, session_id: str) -> CartItem:
    if quantity < 1:
        raise ValidationFailed("Invalid quantity")
    item = _owned_item(db, item_id, session_id)
    item.quantity = quantity
    db.commit()
    return item


def remove_item(db: Session, item_id: int, session_id: str) -> None:
    item = _owned_item(db, item_id, session_id)
    db.delete(item)
    db.commit()


def clear_cart(db: Session, session_id: Optional[str]) -> int:
    """Delete every row of the session's cart. An empty cart is a no-op."""
    if not session_id:
        return 0
    deleted = (
        db.query(CartItem)
        .filter(CartItem.session_id == session_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info("Cleared %s cart item(s) for session %s", deleted, session_id)
    return deleted
