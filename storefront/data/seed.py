# storefront/data/seed.py
from decimal import Decimal

from storefront.data.database import SessionLocal
from storefront.data.models import ProductModel, ProductVariantModel

DEMO_PRODUCTS = [
    {"name": "Keyboard", "price": Decimal("199.99"), "stock": 25},
    {"name": "Mouse", "price": Decimal("49.50"), "sale_price": Decimal("39.90"), "stock": 50},
    {"name": "Monitor", "price": Decimal("899.00"), "stock": 5, "variants": ["24 inch", "27 inch"]},
]


def seed(session_factory=SessionLocal) -> int:
    """Dev catalog. Only seeds an empty products table, returns rows added."""
    db = session_factory()
    try:
        if db.query(ProductModel).first():
            return 0
        for data in DEMO_PRODUCTS:
            data = dict(data)
            variants = data.pop("variants", [])
            product = ProductModel(in_stock=data["stock"] > 0, is_active=True, **data)
            product.variants = [ProductVariantModel(name=name) for name in variants]
            db.add(product)
        db.commit()
        return len(DEMO_PRODUCTS)
    finally:
        db.close()


if __name__ == "__main__":
    seed()
