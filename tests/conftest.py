import os
import tempfile

# settings are read at import time, point them at a throwaway database first
_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["SHOPIER_API_KEY"] = "test-key"
os.environ["SHOPIER_API_SECRET"] = "test-secret"
os.environ["FRONTEND_URL"] = "http://shop.test"
os.environ["TRUST_CLIENT_PRICES"] = "false"

import base64
import hashlib
import hmac
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

import storefront.data.models  # noqa: F401
from storefront.api.deps import get_lock_service
from storefront.api.routers.payments import get_gateway
from storefront.data.database import Base, SessionLocal, engine
from storefront.data.models import ProductModel, ProductVariantModel
from storefront.main import create_app
from storefront.services.payment_gateway import ShopierGateway

SHIPPING_DETAILS = {
    "shipping_first_name": "Ada",
    "shipping_last_name": "Yilmaz",
    "shipping_address": "Bagdat Cd. 12",
    "shipping_city": "Istanbul",
    "shipping_district": "Kadikoy",
    "shipping_postal_code": "34710",
    "shipping_phone": "+905551112233",
    "shipping_email": "ada@example.com",
    "payment_method": "shopier",
}


class InMemoryLockService:
    """Same contract as LockService, without Redis."""

    def __init__(self):
        self.locks = {}
        self.acquired = []

    def acquire(self, key, token, ttl):
        if key in self.locks:
            return False
        self.locks[key] = token
        self.acquired.append(key)
        return True

    def release(self, key, token):
        if self.locks.get(key) == token:
            del self.locks[key]
            return True
        return False


class RecordingNotifications:
    def __init__(self):
        self.sent = []

    def send_order_notification(self, order_id, order_number, user_id=None):
        self.sent.append((order_id, order_number, user_id))


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def lock_service():
    return InMemoryLockService()


@pytest.fixture()
def notifications():
    return RecordingNotifications()


@pytest.fixture()
def gateway():
    return ShopierGateway(api_key="test-key", api_secret="test-secret")


@pytest.fixture()
def signed_callback():
    """Builds a Shopier callback payload signed the way Shopier signs it."""

    def _sign(secret="test-secret", **overrides):
        payload = {
            "platform_order_id": "PRW-ABC123-XY12",
            "status": "success",
            "payment_id": "987654",
            "random_nr": "123456",
            "installment": "1",
        }
        payload.update(overrides)
        data = f"{payload['random_nr']}{payload['platform_order_id']}{payload['status']}{payload['payment_id']}"
        digest = hmac.new(secret.encode(), data.encode(), hashlib.sha256).digest()
        payload["signature"] = base64.b64encode(digest).decode()
        return payload

    return _sign


@pytest.fixture()
def make_product(db):
    def _make(name="Product", price="100.00", stock=10, sale_price=None, variants=(), main_image=None):
        product = ProductModel(
            name=name,
            price=Decimal(price),
            sale_price=Decimal(sale_price) if sale_price is not None else None,
            stock=stock,
            in_stock=stock > 0,
            is_active=True,
            main_image=main_image or f"/img/{name.lower()}.jpg",
        )
        product.variants = [ProductVariantModel(name=v) for v in variants]
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture()
def shipping_details():
    return dict(SHIPPING_DETAILS)


@pytest.fixture()
def client(db, lock_service, gateway):
    app = create_app()
    app.dependency_overrides[get_lock_service] = lambda: lock_service
    app.dependency_overrides[get_gateway] = lambda: gateway
    return TestClient(app)
