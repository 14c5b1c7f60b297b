from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    RAZORPAY = "razorpay"
    COD = "cod"
    BANK_TRANSFER = "bank_transfer"


class SideEffectKind(str, Enum):
    CLEAR_CART = "clear_cart"
    ORDER_CONFIRMATION_EMAIL = "order_confirmation_email"
    SHIPPING_EMAIL = "shipping_email"


class SideEffectStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
