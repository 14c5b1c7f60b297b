# storefront/models/side_effect.py
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from storefront.db import Base
from storefront.utils.enums import SideEffectStatus


class SideEffect(Base):
    """Outbox row: a follow-up action committed together with the order change."""

    __tablename__ = "side_effects"

    id = Column(Integer, primary_key=True)

    # clear_cart | order_confirmation_email | shipping_email
    kind = Column(String(40), nullable=False, index=True)
    payload = Column(Text, nullable=False)   # JSON

    status = Column(String(16), nullable=False, default=SideEffectStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "lastError": self.last_error,
        }
