"""Order totals: subtotal, tax, shipping, discount and grand total.

All arithmetic is done in :class:`~decimal.Decimal`; nothing here touches the
database except :func:`load_rates`, which reads the store settings once per
checkout.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from storefront import config
from storefront.models.setting import Setting

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")

TAX_RATE_KEY = "tax_rate"
SHIPPING_RATE_KEY = "shipping_rate"
FREE_SHIPPING_THRESHOLD_KEY = "free_shipping_threshold"


@dataclass(frozen=True)
class StoreRates:
    tax_rate: Decimal                 # в процентах
    shipping_rate: Decimal            # фиксированная доставка
    free_shipping_threshold: Decimal  # от этой суммы доставка бесплатна


DEFAULT_RATES = StoreRates(
    tax_rate=Decimal(config.DEFAULT_TAX_RATE),
    shipping_rate=Decimal(config.DEFAULT_SHIPPING_RATE),
    free_shipping_threshold=Decimal(config.DEFAULT_FREE_SHIPPING_THRESHOLD),
)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal


def parse_rate(raw: Optional[str], default: Decimal) -> Decimal:
    """Setting value -> Decimal; anything non-numeric or negative gives ``default``."""
    if raw is None:
        return default
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        logger.warning("Malformed store setting %r, using default %s", raw, default)
        return default
    if not value.is_finite() or value < 0:
        logger.warning("Out of range store setting %r, using default %s", raw, default)
        return default
    return value


def load_rates(db: Session) -> StoreRates:
    rows = (
        db.query(Setting)
        .filter(Setting.key.in_([TAX_RATE_KEY, SHIPPING_RATE_KEY, FREE_SHIPPING_THRESHOLD_KEY]))
        .all()
    )
    values = {r.key: r.value for r in rows}
    return StoreRates(
        tax_rate=parse_rate(values.get(TAX_RATE_KEY), DEFAULT_RATES.tax_rate),
        shipping_rate=parse_rate(values.get(SHIPPING_RATE_KEY), DEFAULT_RATES.shipping_rate),
        free_shipping_threshold=parse_rate(
            values.get(FREE_SHIPPING_THRESHOLD_KEY), DEFAULT_RATES.free_shipping_threshold
        ),
    )


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(
    lines: Iterable[Tuple[Decimal, int]],
    rates: StoreRates = DEFAULT_RATES,
    discount: Decimal = ZERO,
) -> Totals:
    """Totals for ``(unit_price, quantity)`` pairs.

    Shipping is free once the subtotal reaches the threshold. Tax is rounded
    half-up to the minor currency unit. The discount is clamped so the total
    never goes below zero.
    """
    subtotal = sum((Decimal(str(price)) * int(qty) for price, qty in lines), ZERO)
    subtotal = money(subtotal)

    shipping = ZERO if subtotal >= rates.free_shipping_threshold else rates.shipping_rate
    shipping = money(shipping)

    tax = money(subtotal * rates.tax_rate / Decimal(100))

    gross = subtotal + tax + shipping
    discount = min(max(money(discount), ZERO), gross)

    return Totals(
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        discount=discount,
        total=money(gross - discount),
    )
