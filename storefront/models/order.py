# storefront/models/order.py
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db import Base
from storefront.models.types import Money
from storefront.utils.enums import OrderStatus, PaymentStatus


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # откуда пришёл заказ: гостевая сессия или пользователь
    session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # === СТАТУСЫ ===
    # переходы проверяет storefront.services.order_state
    status: Mapped[str] = mapped_column(String(24), default=OrderStatus.PENDING.value, index=True)
    payment_status: Mapped[str] = mapped_column(String(24), default=PaymentStatus.PENDING.value)

    # === ОПЛАТА ===
    payment_method: Mapped[str] = mapped_column(String(24))
    payment_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)  # id заказа у шлюза
    transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # наш внутренний
    transaction_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)  # id платежа у шлюза

    # === СУММЫ ===
    subtotal_amount: Mapped[Decimal] = mapped_column(Money)
    tax_amount: Mapped[Decimal] = mapped_column(Money)
    shipping_amount: Mapped[Decimal] = mapped_column(Money)
    discount_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money)
    refunded_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))

    # === ДОСТАВКА ===
    shipping_address: Mapped[str] = mapped_column(Text)
    ship_line: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ship_city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    ship_state: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    ship_postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    ship_country: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    tracking_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )
    status_log: Mapped[List["OrderStatusLog"]] = relationship(
        "OrderStatusLog", back_populates="order", cascade="all, delete-orphan",
        order_by="OrderStatusLog.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderNumber": self.order_number,
            "status": self.status,
            "paymentStatus": self.payment_status,
            "paymentMethod": self.payment_method,
            "paymentId": self.payment_id,
            "transactionId": self.transaction_id,
            "email": self.email,
            "phone": self.phone,
            "notes": self.notes,
            "subtotalAmount": str(self.subtotal_amount),
            "taxAmount": str(self.tax_amount),
            "shippingAmount": str(self.shipping_amount),
            "discountAmount": str(self.discount_amount),
            "totalAmount": str(self.total_amount),
            "refundedAmount": str(self.refunded_amount or Decimal("0")),
            "shippingAddress": self.shipping_address,
            "trackingId": self.tracking_id,
            "sessionId": self.session_id,
            "userId": self.user_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)

    # ссылка на товар без FK: позиция заказа переживает удаление товара
    product_id: Mapped[int] = mapped_column(Integer)

    # снимок на момент покупки
    name: Mapped[str] = mapped_column(String(255))
    price: Mapped[Decimal] = mapped_column(Money)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    subtotal: Mapped[Decimal] = mapped_column(Money)
    variant: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    meta_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "productId": self.product_id,
            "name": self.name,
            "price": str(self.price),
            "quantity": self.quantity,
            "subtotal": str(self.subtotal),
            "variant": self.variant,
            "metaData": self.meta_data,
        }
