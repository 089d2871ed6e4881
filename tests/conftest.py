"""Pytest fixtures for the rug store tests."""

from datetime import datetime, timedelta, timezone

import jwt
import mongomock
import pytest
from fastapi.testclient import TestClient

from config import get_settings
from database import RUGS, SHIPPING_FEES, get_db


class RecordingNotifier:
    """Stands in for EmailNotifier and remembers what would have been sent."""

    def __init__(self):
        self.confirmations = []
        self.delivered = []

    async def send_order_confirmation(self, order):
        self.confirmations.append(order)

    async def send_order_delivered(self, order):
        self.delivered.append(order)


@pytest.fixture
def db():
    return mongomock.MongoClient().get_database("rugstore_test")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db, notifier):
    from main import app
    from notifications import get_notifier

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_token(**claims):
    payload = {"id": "admin-1", "isAdmin": True, "exp": datetime.now(timezone.utc) + timedelta(hours=1)}
    payload.update(claims)
    return jwt.encode(payload, get_settings().jwt_secret, algorithm="HS256")


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def make_rug(db):
    """Insert a rug straight into the catalog and return its id as str."""

    def _make(**overrides):
        doc = {
            "title": "Kashan Silk",
            "brand": "Dastkar",
            "description": "",
            "images": ["https://cdn.example.com/kashan.jpg"],
            "category": "Persian",
            "originalPrice": 10000,
            "salePrice": 10000,
            "discountPercent": 0,
            "colors": ["red"],
            "sizes": [],
            "isOnSale": False,
            "isBestSeller": False,
            "stock": 10,
            "isActive": True,
            "createdAt": datetime.now(timezone.utc),
        }
        doc.update(overrides)
        return str(db[RUGS].insert_one(doc).inserted_id)

    return _make


@pytest.fixture
def pakistan_shipping(db):
    db[SHIPPING_FEES].insert_one(
        {"country": "Pakistan", "freeShippingThreshold": 20000, "shippingFee": 500, "isActive": True}
    )
