import asyncio
import os
import tempfile

# uploads and utils read their settings at import time
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="bookswap-uploads-"))
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-bookswap-tests")

from datetime import datetime

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

import uploads
from dataBase import get_db, init_indexes
from main import app
from utils import create_access_token


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    directory = tmp_path / "uploads"
    monkeypatch.setattr(uploads, "UPLOAD_ROOT", str(directory))
    return directory


@pytest.fixture
def db():
    mock_db = AsyncMongoMockClient()["bookswap_test"]
    asyncio.run(init_indexes(mock_db))
    return mock_db


@pytest.fixture
def client(db, upload_dir):
    app.dependency_overrides[get_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Insert a user directly and hand back its document plus auth headers."""
    def _make(name="Alice"):
        user = {
            "_id": ObjectId(),
            "name": name,
            "email": f"{name.lower()}@example.com",
            "password": "not-a-real-hash",
            "created_at": datetime.utcnow(),
        }
        asyncio.run(db.users.insert_one(dict(user)))
        token = create_access_token({"user_id": str(user["_id"]), "email": user["email"], "name": name})
        user["headers"] = {"Authorization": f"Bearer {token}"}
        return user
    return _make


@pytest.fixture
def post_book(client):
    def _post(user, files=None, **fields):
        data = {"title": "Dune", "author": "Frank Herbert", "condition": "good"}
        data.update(fields)
        response = client.post("/api/books", data=data, files=files, headers=user["headers"])
        assert response.status_code == 201, response.text
        return response.json()["book"]
    return _post


class _Proxy:
    def __init__(self, target, overrides):
        self._target = target
        self.__dict__.update(overrides)

    def __getattr__(self, name):
        return getattr(self._target, name)


@pytest.fixture
def patch_collection(client, db):
    """Serve requests from ``db`` with some methods of one collection replaced."""
    def _patch(name, **methods):
        proxy = _Proxy(db, {name: _Proxy(getattr(db, name), methods)})
        app.dependency_overrides[get_db] = lambda: proxy
        return proxy
    return _patch
