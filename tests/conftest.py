import pytest
from fastapi.testclient import TestClient

from brewbuddy.api import create_app, limiter
from brewbuddy.config import Settings
from brewbuddy.database import SQLiteStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="test",
        database_path=str(tmp_path / "brewbuddy.db"),
        allowed_origins="https://brew.example",
        anthropic_api_key="test-key",
        max_users=10,
    )


@pytest.fixture
def store(tmp_path):
    """Provide an isolated SQLite store for each test."""
    store = SQLiteStore(str(tmp_path / "store.db"))
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def client(settings):
    # Limiter storage is process wide; start every test with empty buckets
    limiter.reset()
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def register(client):
    def _register(username):
        return client.post("/api/auth/register", json={"username": username})

    return _register
