# storefront/models/order_status_log.py
from typing import Optional
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db import Base


class OrderStatusLog(Base):
    __tablename__ = "order_status_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)

    old_status: Mapped[str] = mapped_column(String(24))
    new_status: Mapped[str] = mapped_column(String(24))
    old_payment_status: Mapped[str] = mapped_column(String(24))
    new_payment_status: Mapped[str] = mapped_column(String(24))
    user: Mapped[str] = mapped_column(String(64), default="system")  # кто инициировал
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="status_log")

    def to_dict(self) -> dict:
        return {
            "oldStatus": self.old_status,
            "newStatus": self.new_status,
            "oldPaymentStatus": self.old_payment_status,
            "newPaymentStatus": self.new_payment_status,
            "user": self.user,
            "note": self.note,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
