# storefront/models/types.py
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator


class Money(TypeDecorator):
    """Денежная сумма: в БД хранится строкой "1260.00", в коде это Decimal."""

    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Not a money amount: {value!r}")
        return str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)
