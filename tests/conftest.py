import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from schemas import Role, UpsertUser
from storage import Storage


@pytest.fixture
def storage():
    """Fresh in-memory store per test."""
    store = Storage(mongomock.MongoClient()["marketplace_test"])
    store.ensure_indexes()
    return store


@pytest.fixture
def client(storage):
    main.app.state.storage = storage
    with TestClient(main.app) as c:
        yield c
    main.app.state.storage = None


@pytest.fixture
def users(storage):
    storage.upsert_user(UpsertUser(id="buyer-1", email="buyer@example.com"))
    storage.upsert_user(UpsertUser(id="buyer-2"))
    storage.upsert_user(UpsertUser(id="seller-1", role=Role.SELLER, is_approved=True))
    storage.upsert_user(UpsertUser(id="seller-2", role=Role.SELLER, is_approved=True))
    storage.upsert_user(UpsertUser(id="admin-1", role=Role.ADMIN, is_approved=True))
    return storage


def as_user(user_id):
    return {"X-User-Id": user_id}


def make_product(storage, seller_id="seller-1", approved=True, name="Lamp", category_id=1, price="19.99"):
    return storage.create_product({
        "name": name,
        "description": f"{name} description",
        "price": price,
        "image_url": f"https://img.example.com/{name.lower()}.png",
        "seller_id": seller_id,
        "category_id": category_id,
        "is_approved": approved,
    })
