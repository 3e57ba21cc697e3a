"""
Shared fixtures.

Every test runs against a fresh in-memory MongoDB (mongomock) swapped in for
database.db, so nothing here ever opens a real connection.
"""

import os

# Clear real configuration BEFORE importing app modules, get_settings() is cached
for _var in ("DATABASE_URL", "DATABASE_NAME", "GEMINI_API_KEY", "UNSPLASH_ACCESS_KEY", "SEED_DEMO_DATA",
             "SENTRY_DSN"):
    os.environ.pop(_var, None)

from datetime import datetime, timezone

import mongomock
import pytest

import database
from auth import Identity


@pytest.fixture(autouse=True)
def mongo_db(monkeypatch):
    """Fresh mongomock database with the production indexes."""
    db = mongomock.MongoClient()["sharely_test"]
    database.ensure_indexes(db)
    monkeypatch.setattr(database, "db", db)
    yield db


@pytest.fixture
def make_pin(mongo_db):
    """Factory inserting a pin document and returning its id as a string."""
    def _make(**overrides):
        doc = {
            "title": "Untitled",
            "description": "",
            "tags": [],
            "image_url": "/api/images/placeholder",
            "created_by": "carol",
            "username": "Carol",
            "likes": 0,
            "saves": 0,
            "created_at": datetime.now(timezone.utc),
        }
        doc.update(overrides)
        return str(mongo_db["pin"].insert_one(doc).inserted_id)
    return _make


@pytest.fixture
def alice():
    return Identity(account_id="alice", name="Alice", email="alice@example.com")


@pytest.fixture
def bob():
    return Identity(account_id="bob", name="Bob", email="bob@example.com")


@pytest.fixture
def client():
    """FastAPI test client fixture."""
    from fastapi.testclient import TestClient
    from main import app
    return TestClient(app)
