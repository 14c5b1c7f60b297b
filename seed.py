# seed.py: пересоздать таблицы и залить демо-данные
import json
import os
from decimal import Decimal

from sqlalchemy.orm import configure_mappers

from storefront.db import Base, SessionLocal, engine
import storefront.models  # noqa: F401  подтягиваем все модели
from storefront.models.catalog import Product
from storefront.models.setting import Setting
from storefront.models.user import User
from storefront.services.pricing import FREE_SHIPPING_THRESHOLD_KEY, SHIPPING_RATE_KEY, TAX_RATE_KEY
from storefront.utils.enums import UserRole
from storefront.utils.security import hash_password

PRODUCTS = [
    ("Classic Steel Watch", "classic-steel-watch", "1200.00", {"38mm": "1200.00", "42mm": "1450.00"}),
    ("Leather Strap", "leather-strap", "450.00", None),
    ("Filter Coffee Powder", "filter-coffee-powder", "250.00", {"250g": {"price": "250"}, "500g": {"price": "480"}}),
]

SETTINGS = [
    (TAX_RATE_KEY, "5", "Tax rate, percent"),
    (SHIPPING_RATE_KEY, "50", "Flat shipping charge"),
    (FREE_SHIPPING_THRESHOLD_KEY, "1000", "Subtotal from which shipping is free"),
]


def run_seed():
    # === RESET ===
    Base.metadata.drop_all(bind=engine)
    print("🗑 Все таблицы удалены")

    configure_mappers()
    Base.metadata.create_all(bind=engine)
    print("✅ Все таблицы пересозданы:", engine.url)

    db = SessionLocal()
    try:
        for name, slug, price, variants in PRODUCTS:
            db.add(Product(
                name=name,
                slug=slug,
                sku=slug.upper().replace("-", "")[:12],
                price=Decimal(price),
                variant_prices=json.dumps(variants) if variants else None,
            ))
            print(f"✅ Товар создан: {name}")

        for key, value, description in SETTINGS:
            db.add(Setting(key=key, value=value, description=description, group="store"))

        admin_password = os.getenv("ADMIN_PASSWORD", "123456")
        db.add(User(username="admin", password_hash=hash_password(admin_password), role=UserRole.ADMIN.value))
        print("✅ Пользователь admin создан")

        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()
