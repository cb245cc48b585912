import mongomock
import pytest
from fastapi.testclient import TestClient

import accounts
import catalog
from database import ensure_indexes, get_db
from main import app


@pytest.fixture
def db():
    database = mongomock.MongoClient()["marketplace_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def api(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def category(db):
    return catalog.create_category(db, "Figurines")


@pytest.fixture
def make_product(db, category):
    def _make(name="Dragon", pricing=None, **extra):
        data = {
            "product_name": name,
            "type": "catalogue",
            "category": category["id"],
            "pricing": pricing if pricing is not None else [{"size": "small", "price": 5}, {"size": "medium", "price": 10}],
            "description": f"{name} miniature",
            "images": [f"{name.lower()}.png"],
        }
        data.update(extra)
        return catalog.create_product(db, data)
    return _make


@pytest.fixture
def client_doc(db):
    return accounts.create_client(db, {
        "username": "maker",
        "email": "Maker@PrintShop.io",
        "password": "secret1",
    })
