from datetime import timedelta

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import main
from auth import create_token
from database import create_document, ensure_indexes, get_db, utcnow
from settings import Settings, get_settings

ADDRESS = {
    "full_name": "Jane Doe",
    "line1": "12 Market Street",
    "city": "Lahore",
    "state": "Punjab",
    "postal_code": "54000",
    "country": "Pakistan",
    "phone": "+92 300 0000000",
}


@pytest.fixture
def db():
    database = mongomock.MongoClient()["thrifty_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test",
    )


@pytest.fixture
def client(db, settings):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(name="Jane", email=None, is_admin=False, cart=None):
        uid = create_document(db, "user", {
            "name": name,
            "email": email or f"{ObjectId()}@example.com",
            "hashed_password": "not-a-real-hash",
            "is_active": True,
            "is_admin": is_admin,
            "cart": cart or [],
        })
        return db["user"].find_one({"_id": ObjectId(uid)})
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(name="Boss", is_admin=True)


@pytest.fixture
def auth_headers(settings):
    def _headers(u):
        return {"Authorization": f"Bearer {create_token(u, settings)}"}
    return _headers


@pytest.fixture
def category(db):
    cid = create_document(db, "category", {"name": "Sneakers", "slug": "sneakers", "description": None, "is_active": True})
    return db["category"].find_one({"_id": ObjectId(cid)})


@pytest.fixture
def make_product(db, category):
    def _make(**overrides):
        doc = {
            "title": "Air Runner",
            "brand": "Nike",
            "price": 100.0,
            "discount_price": None,
            "sizes": ["40", "41", "42"],
            "colors": ["Black", "White"],
            "stock": 10,
            "category_id": str(category["_id"]),
            "images": ["https://cdn.example.com/air-runner.jpg"],
            "description": "Lightweight runner",
            "rating": 0,
            "num_reviews": 0,
            "is_featured": False,
            "is_active": True,
        }
        doc.update(overrides)
        pid = create_document(db, "product", doc)
        return db["product"].find_one({"_id": ObjectId(pid)})
    return _make


@pytest.fixture
def make_promo(db):
    def _make(**overrides):
        now = utcnow()
        doc = {
            "code": "SAVE10",
            "description": "Ten percent off",
            "discount_type": "percentage",
            "discount_value": 10,
            "min_purchase_amount": 0,
            "max_discount_amount": None,
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=30),
            "usage_limit": None,
            "used_count": 0,
            "is_active": True,
            "applicable_categories": [],
            "applicable_products": [],
        }
        doc.update(overrides)
        pid = create_document(db, "promocode", doc)
        return db["promocode"].find_one({"_id": ObjectId(pid)})
    return _make
