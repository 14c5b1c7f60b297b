import secrets
import time
import uuid


def make_pkey(length: int = 32) -> str:
    # Безопасный URL-safe токен
    return secrets.token_urlsafe(length)


def generate_order_number() -> str:
    """ORD + последние 10 цифр времени в мс + 10 случайных hex-символов."""
    millis = str(int(time.time() * 1000))[-10:]
    return f"ORD{millis}{uuid.uuid4().hex[:10].upper()}"


def generate_transaction_id() -> str:
    millis = str(int(time.time() * 1000))
    return f"TXN{millis}{secrets.randbelow(1_000_000):06d}"
