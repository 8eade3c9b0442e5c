"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path

# Skip heavy server startup (MongoDB job store, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest
from unittest.mock import AsyncMock, MagicMock

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app

COLLECTIONS = [
    "users",
    "subscriptions",
    "pricing_plans",
    "payments",
    "organizations",
    "custom_patent_lists",
    "saved_patents",
    "search_history",
    "patent_read_status",
    "email_otps",
    "pending_signups",
]


def make_cursor(rows):
    """Motor-style cursor: chainable sort/skip/limit, awaitable to_list."""
    cursor = MagicMock()
    cursor.sort = MagicMock(return_value=cursor)
    cursor.skip = MagicMock(return_value=cursor)
    cursor.limit = MagicMock(return_value=cursor)
    cursor.to_list = AsyncMock(return_value=rows)
    return cursor


def make_db():
    db = MagicMock()
    for name in COLLECTIONS:
        collection = MagicMock()
        collection.find_one = AsyncMock(return_value=None)
        collection.find = MagicMock(return_value=make_cursor([]))
        collection.insert_one = AsyncMock()
        collection.insert_many = AsyncMock()
        collection.update_one = AsyncMock(return_value=MagicMock(modified_count=1, matched_count=1))
        collection.update_many = AsyncMock(return_value=MagicMock(modified_count=0))
        collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
        collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=0))
        collection.count_documents = AsyncMock(return_value=0)
        collection.bulk_write = AsyncMock(return_value=MagicMock(upserted_count=0))
        collection.find_one_and_delete = AsyncMock(return_value=None)
        setattr(db, name, collection)
    return db


@pytest.fixture
def db():
    """Fresh mock database with AsyncMock collection methods."""
    return make_db()


@pytest.fixture
def cursor():
    return make_cursor


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app)."""
    app.dependency_overrides.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
