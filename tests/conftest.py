"""
Shared fixtures: an in-memory MongoDB (mongomock) wired into the app through
the get_db dependency, and helpers to create users and listings.
"""
import os

os.environ.pop("DATABASE_URL", None)
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app
from tests.helpers import register


@pytest.fixture
def mongo_db():
    database = mongomock.MongoClient()["rental_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def api_app(mongo_db):
    app.dependency_overrides[get_db] = lambda: mongo_db
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(api_app):
    return TestClient(api_app)


@pytest.fixture
def future_date():
    return datetime.now(timezone.utc).date() + timedelta(days=30)


@pytest.fixture
def owner(client):
    return register(client, "olivia", role="owner")


@pytest.fixture
def other_owner(client):
    return register(client, "oscar", role="owner")


@pytest.fixture
def tenant(client):
    return register(client, "tom")


@pytest.fixture
def other_tenant(client):
    return register(client, "tina")


@pytest.fixture
def listing(client, owner):
    response = client.post(
        "/apartments",
        json={
            "title": "Bright two-room flat",
            "location": "Berlin Mitte",
            "rent": 1000,
            "currency": "EUR",
            "size": 55,
            "bedrooms": 2,
            "bathrooms": 1,
            "amenities": ["balcony", "elevator"],
        },
        headers=owner["headers"],
    )
    assert response.status_code == 201, response.text
    return response.json()
