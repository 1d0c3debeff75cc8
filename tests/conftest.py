"""Pytest configuration and fixtures."""

import os
import secrets
from datetime import datetime, timedelta, timezone

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)

from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402

from kiroo_sync.auth import hash_api_key  # noqa: E402
from kiroo_sync.config import get_settings  # noqa: E402
from kiroo_sync.database import API_KEYS_TABLE, get_db  # noqa: E402
from kiroo_sync.main import app  # noqa: E402
from kiroo_sync.rate_limit import limiter  # noqa: E402
from kiroo_sync.sync import SyncStore  # noqa: E402

from fake_supabase import FakeSupabase  # noqa: E402

# Clearly fake ids that cannot collide with real users
TEST_USER_ID = "usr_TEST_ONLY_000001"
OTHER_USER_ID = "usr_TEST_ONLY_000002"
TEST_API_KEY = "ks_" + "a" * 64


def make_token(user_id: str, expires_in: timedelta = timedelta(minutes=30)) -> str:
    settings = get_settings()
    payload = {
        "sub": user_id,
        "email": f"{user_id}@example.com",
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield


@pytest.fixture
def fake_db():
    """In-memory database installed in place of the Supabase client."""
    db = FakeSupabase()
    app.dependency_overrides[get_db] = lambda: db
    yield db
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def client(fake_db):
    """Create a test client."""
    return TestClient(app)


@pytest.fixture
def auth_headers():
    """Dashboard bearer token for the test user."""
    return {"Authorization": f"Bearer {make_token(TEST_USER_ID)}"}


@pytest.fixture
def other_auth_headers():
    return {"Authorization": f"Bearer {make_token(OTHER_USER_ID)}"}


@pytest.fixture
def api_key_record(fake_db):
    """A stored device key for the test user."""
    return fake_db.seed(API_KEYS_TABLE, {
        "user_id": TEST_USER_ID,
        "key_hash": hash_api_key(TEST_API_KEY),
        "name": "Phone",
        "device_name": "Pixel 8",
        "created_at": "2024-01-01T00:00:00+00:00",
        "last_used_at": None,
    })


@pytest.fixture
def device_headers(api_key_record):
    return {"x-api-key": TEST_API_KEY}


@pytest.fixture
def store(fake_db):
    return SyncStore(fake_db, TEST_USER_ID, retries=3)


@pytest.fixture
def user_id():
    return TEST_USER_ID
