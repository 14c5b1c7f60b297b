# storefront/services/snapshot.py
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from storefront.errors import NotFound
from storefront.models.cart import CartItem
from storefront.models.catalog import Product

logger = logging.getLogger(__name__)

# ключи метаданных корзины, в которых лежит выбранный вариант
VARIANT_KEYS = ("size", "weight", "variant")


@dataclass(frozen=True)
class LineDraft:
    """Priced copy of a cart row, frozen at checkout time."""

    product_id: int
    name: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal
    variant: Optional[str]
    meta_data: Optional[str]


def cart_rows(db: Session, session_id: str) -> List[CartItem]:
    return (
        db.query(CartItem)
        .filter(CartItem.session_id == session_id)
        .order_by(CartItem.id)
        .all()
    )


def _variant_label(meta_data: Optional[str]) -> Optional[str]:
    if not meta_data:
        return None
    try:
        meta = json.loads(meta_data)
    except (TypeError, ValueError):
        logger.warning("Cart metadata is not JSON: %r", meta_data)
        return None
    if not isinstance(meta, dict):
        return None
    for key in VARIANT_KEYS:
        if meta.get(key):
            return str(meta[key])
    return None


def variant_price(product: Product, label: Optional[str]) -> Optional[Decimal]:
    """Price override for ``label`` or None when the product does not price it."""
    if not label or not product.variant_prices:
        return None
    try:
        prices = json.loads(product.variant_prices)
    except (TypeError, ValueError):
        logger.warning("Product %s has malformed variant prices", product.id)
        return None
    if not isinstance(prices, dict) or label not in prices:
        return None

    raw = prices[label]
    if isinstance(raw, dict):
        raw = raw.get("price")
    if raw in (None, ""):
        return None
    try:
        return Decimal(str(raw))
    except ArithmeticError:
        logger.warning("Product %s: bad price %r for variant %s", product.id, raw, label)
        return None


def build_snapshot(db: Session, session_id: str) -> List[LineDraft]:
    rows = cart_rows(db, session_id)
    if not rows:
        return []

    product_ids = {r.product_id for r in rows}
    products = db.query(Product).filter(Product.id.in_(product_ids)).all()
    products_by_id = {p.id: p for p in products}

    drafts: List[LineDraft] = []
    for row in rows:
        product = products_by_id.get(row.product_id)
        if product is None:
            # позицию не выкидываем молча: весь checkout падает
            raise NotFound(f"Product {row.product_id} not found")

        label = _variant_label(row.meta_data)
        price = variant_price(product, label)
        if price is None:
            price = Decimal(str(product.price))

        qty = int(row.quantity)
        drafts.append(LineDraft(
            product_id=product.id,
            name=product.name,
            unit_price=price,
            quantity=qty,
            subtotal=price * qty,
            variant=label,
            meta_data=row.meta_data,
        ))
    return drafts
