"""Pytest fixtures for the wholesale ordering API tests."""

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
from events import OrderEventRelay

PASSWORD = "secret123"


def make_user(db, email, role, name=None, seller_id=None, is_active=True, password=PASSWORD):
    pw_hash, salt = main.hash_password(password)
    doc = {
        "email": email,
        "name": name or email.split("@")[0],
        "role": role,
        "passwordHash": pw_hash,
        "salt": salt,
        "isActive": is_active,
        "createdAt": database.now_iso(),
        "updatedAt": database.now_iso(),
    }
    if seller_id:
        doc["sellerId"] = seller_id
    return str(db["user"].insert_one(doc).inserted_id)


@pytest.fixture
def mongo_db(monkeypatch):
    """In-memory MongoDB wired into every module that holds a db reference."""
    mock_db = mongomock.MongoClient()["wholesale_test"]
    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setattr(main, "db", mock_db)
    return mock_db


@pytest.fixture
def relay(monkeypatch):
    """Fresh event relay so listeners never leak between tests."""
    fresh = OrderEventRelay(max_listeners=5)
    monkeypatch.setattr(main, "relay", fresh)
    return fresh


@pytest.fixture
def accounts(mongo_db):
    """Two sellers, each with one customer, plus an admin."""
    ids = {}
    ids["admin"] = make_user(mongo_db, "admin@shop.com", "admin", name="Admin")
    ids["seller"] = make_user(mongo_db, "seller@shop.com", "seller", name="Seller One")
    ids["other_seller"] = make_user(mongo_db, "seller2@shop.com", "seller", name="Seller Two")
    ids["customer"] = make_user(mongo_db, "customer@shop.com", "customer",
                                name="Customer One", seller_id=ids["seller"])
    ids["other_customer"] = make_user(mongo_db, "customer2@shop.com", "customer",
                                      name="Customer Two", seller_id=ids["other_seller"])
    return ids


@pytest.fixture
def client(mongo_db, relay):
    return TestClient(main.app)


@pytest.fixture
def login_as(mongo_db, relay):
    """Factory returning a TestClient holding a session for `email`."""

    def _login(email, password=PASSWORD):
        c = TestClient(main.app)
        response = c.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return c

    return _login


@pytest.fixture
def sample_items():
    return [
        {"productId": "p1", "name": "Beef mince", "unit": "kg", "quantity": 4, "price": 10.0},
        {"productId": "p2", "name": "Chicken breast", "unit": "kg", "quantity": 2, "price": 40.0},
    ]
