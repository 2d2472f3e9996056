# companion/conftest.py
import os
import tempfile
from pathlib import Path

import pytest

# Must be set before any companion module reads settings
_DB_DIR = Path(tempfile.mkdtemp(prefix="companion-tests-"))
os.environ["ENV"] = "test"
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'companion-test.db'}"
os.environ["ALLOW_HEADER_AUTH"] = "true"
os.environ["AUTH_JWT_SECRET"] = "test-secret"
os.environ["APP_CHECK_ENFORCED"] = "true"
os.environ["APP_CHECK_SECRET"] = "test-app-check-secret"
os.environ["USER_CREATED_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ.pop("DATABASE_URL", None)


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    """
    Create all database tables once per test session.
    """
    from companion.core.database import create_all_tables, dispose_engine, drop_all_tables

    create_all_tables()
    yield
    drop_all_tables()
    dispose_engine()


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """
    Empty the documents table before each test so every test starts clean.
    """
    from sqlalchemy import delete
    from companion.core.database import get_db_session, documents

    with get_db_session() as session:
        session.execute(delete(documents))
    yield


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from companion.main import app

    return TestClient(app)


@pytest.fixture
def auth_headers():
    def _headers(user_id: str = "user-1", **extra):
        headers = {"X-User-Id": user_id}
        headers.update(extra)
        return headers
    return _headers


@pytest.fixture
def app_check_headers():
    from companion.core.auth import APP_CHECK_HEADER, create_test_app_check_token

    return {APP_CHECK_HEADER: create_test_app_check_token()}
