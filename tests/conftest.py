"""Pytest configuration: in-memory document store and app client."""

import os

# Settings are read at import time; keep the suite off any real services.
os.environ["DATABASE_URL"] = ""
os.environ["DATABASE_NAME"] = ""
os.environ["CLOUD_NAME"] = ""
os.environ["BCRYPT_ROUNDS"] = "4"

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from auth import AccessGate, SessionTokenService, hash_password  # noqa: E402
from cart import CartManager  # noqa: E402
from catalog import CatalogQueryEngine  # noqa: E402
from database import create_document, ensure_indexes, get_db  # noqa: E402
from main import app  # noqa: E402
from media import get_media_host  # noqa: E402
from schemas import Role  # noqa: E402

PASSWORD = "secret-pass"


@pytest.fixture
def db():
    database = mongomock.MongoClient()["shop_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def catalog(db):
    return CatalogQueryEngine(db)


@pytest.fixture
def carts(db, catalog):
    return CartManager(db, catalog)


@pytest.fixture
def sessions(db):
    return SessionTokenService(db)


@pytest.fixture
def gate(sessions):
    return AccessGate(sessions)


@pytest.fixture
def make_user(db):
    def _make(email="runner@example.com", role=Role.STANDARD, name="Sam", lastname="Runner"):
        return create_document(db, "user", {
            "email": email,
            "password": hash_password(PASSWORD),
            "name": name,
            "lastname": lastname,
            "role": int(role),
            "token": None,
            "cart": [],
            "history": [],
        })
    return _make


@pytest.fixture
def brands(db):
    return {
        "nike": create_document(db, "brand", {"name": "Nike"}),
        "adidas": create_document(db, "brand", {"name": "Adidas"}),
    }


@pytest.fixture
def categories(db):
    return {
        "running": create_document(db, "category", {"name": "Running"}),
        "casual": create_document(db, "category", {"name": "Casual"}),
    }


@pytest.fixture
def make_product(db, brands, categories):
    def _make(name, price, brand="nike", category="running", sizes=None, **extra):
        doc = {
            "name": name,
            "price": price,
            "brand": brands[brand],
            "category": categories[category],
            "stock": 10,
            "sizes": sizes or [],
            "shipping": True,
            "available": True,
            "sold": 0,
            "publish": True,
            "images": [],
        }
        doc.update(extra)
        return create_document(db, "product", doc)
    return _make


@pytest.fixture
def products(make_product):
    """Three products priced 10, 50 and 90, created in that order."""
    return {
        "A": make_product("Air Pace", 10, "nike", "running", ["9"]),
        "B": make_product("Boost Street", 50, "adidas", "casual", ["10"]),
        "C": make_product("Court Classic", 90, "nike", "casual", ["9", "10"]),
    }


class FakeMediaHost:
    def __init__(self):
        self.uploaded = []
        self.removed = []

    def upload(self, fileobj):
        self.uploaded.append(fileobj.read())
        return {"public_id": "1700000000000", "url": "http://res.cloudinary.com/demo/1700000000000.jpg"}

    def remove(self, public_id):
        self.removed.append(public_id)


@pytest.fixture
def media_host():
    return FakeMediaHost()


@pytest.fixture
def make_client(db, media_host):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_media_host] = lambda: media_host
    yield lambda: TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client):
    return make_client()


def _login(client, email, password=PASSWORD):
    resp = client.post("/api/users/login", json={"email": email, "password": password})
    assert resp.status_code == 200
    assert resp.json() == {"loginSuccess": True}
    return resp


@pytest.fixture
def login():
    return _login
