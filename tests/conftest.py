"""
Pytest configuration for Realify tests.
Points the app at a temp SQLite database and test credentials.
"""

import os
import tempfile

# Must be set before any realify imports (settings are read at import time)
_test_data_dir = tempfile.mkdtemp(prefix="realify_test_")
os.environ.setdefault("REALIFY_DATA_DIRECTORY", _test_data_dir)
os.environ.setdefault("REALIFY_LOG_DIR", os.path.join(_test_data_dir, "logs"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_test_data_dir}/test.db")
os.environ["REALIFY_AUTH_ENABLED"] = "true"
os.environ["REALIFY_DEBUG"] = "false"
os.environ["REALIFY_SUPABASE_URL"] = "https://proj.supabase.co"
os.environ["REALIFY_SUPABASE_ANON_KEY"] = "anon-test"
os.environ["REALIFY_SUPABASE_SERVICE_ROLE_KEY"] = "service-role-test"
os.environ["REALIFY_REPLICATE_API_TOKEN"] = "r8_test"
os.environ["REALIFY_OPENAI_API_KEY"] = "sk-test"
os.environ["REALIFY_STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["REALIFY_STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["REALIFY_STRIPE_PRICE_STARTER"] = "price_starter_test"
os.environ["REALIFY_STRIPE_PRICE_CREATOR"] = "price_creator_test"
os.environ["REALIFY_STRIPE_PRICE_CREDITS_SMALL"] = "price_small_test"
os.environ["REALIFY_STRIPE_PRICE_CREDITS_MEDIUM"] = "price_medium_test"
os.environ["REALIFY_STRIPE_PRICE_CREDITS_LARGE"] = "price_large_test"

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel

from realify.core.database import get_engine
import realify.models  # noqa: F401  registers tables on SQLModel.metadata

SQLModel.metadata.create_all(get_engine())

# Load error registry so RealifyError returns correct HTTP status codes
from realify.core.errors import referenced_codes
from realify.core.errors.registry import error_registry
error_registry.load(required=referenced_codes())

from realify.auth.session_auth import (
    AuthenticatedUser,
    get_current_user,
    get_optional_user,
    session_cache,
)


@pytest.fixture(autouse=True)
def clean_db():
    """Every test starts with empty tables and an empty auth cache."""
    with get_engine().begin() as conn:
        for table in reversed(SQLModel.metadata.sorted_tables):
            conn.execute(table.delete())
    session_cache.clear()
    yield


@pytest.fixture
def app():
    from realify.main import create_app
    application = create_app()
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Client without lifespan: tables already exist."""
    return TestClient(app)


@pytest.fixture
def user():
    return AuthenticatedUser(user_id="user-1", email="user1@example.com")


@pytest.fixture
def authed_client(app, user):
    """Client whose requests are authenticated as ``user``."""
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_optional_user] = lambda: user
    return TestClient(app)
