"""
tests/conftest.py -- Shared test fixtures for Homebase integration tests.

This module provides:
  - app_env: a complete, valid environment (NODE_ENV=test, temp SQLite DB,
    fixed SECRET_KEY) with the settings cache cleared around each test
  - client: TestClient running the real lifespan against that environment,
    follow_redirects=False so tests can assert on Location headers
  - sign_up: helper that creates an account through the real protocol
  - admin_token: bearer token of an admin created the way the CLI does it

Design: each test gets its own SQLite file under tmp_path, so there is no
cross-test state in the database. The rate limiter is process-global
in-memory state and is reset before every client starts.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from core.config import get_settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789abcdef"
PASSWORD = "correct horse battery"


@pytest.fixture
def app_env(tmp_path, monkeypatch) -> Generator[str, None, None]:
    """Yield the DATABASE_URL of a fresh environment for one test."""
    database_url = f"sqlite:///{tmp_path / 'homebase_test.db'}"
    monkeypatch.chdir(tmp_path)  # no stray .env file gets picked up
    monkeypatch.setenv("NODE_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("SECRET_KEY", TEST_SECRET)
    monkeypatch.setenv("LOG_LEVEL", "info")
    for name in ("PORT", "SESSION_CACHE_MAX_AGE", "AUTH_RATE_LIMIT_MAX", "AUTH_RATE_LIMIT_WINDOW"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield database_url
    get_settings.cache_clear()


@pytest.fixture
def client(app_env) -> Generator[TestClient, None, None]:
    """TestClient over the assembled app (API + web) with the real lifespan."""
    limiter.reset()
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client


@pytest.fixture
def sign_up(client):
    """Return a helper that creates an account via POST /api/auth/sign-up/email.

    The session cookies land in the client's jar, so later requests made
    with the same client are signed in.
    """

    def _sign_up(email: str = "ada@example.com", name: str = "Ada", password: str = PASSWORD):
        return client.post(
            "/api/auth/sign-up/email",
            json={"name": name, "email": email, "password": password},
        )

    return _sign_up


@pytest.fixture
def admin_token(client) -> str:
    """Create an admin through the service (as the CLI does) and return a bearer token.

    Leaves the client's cookie jar empty, so request this fixture before
    signing anyone else in, and pass the token explicitly.
    """
    client.app.state.auth.create_user("Root", "root@example.com", PASSWORD, role="admin")
    resp = client.post(
        "/api/auth/sign-in/email",
        json={"email": "root@example.com", "password": PASSWORD},
    )
    assert resp.status_code == 200, resp.text
    client.cookies.clear()
    return resp.json()["token"]


@pytest.fixture
def password() -> str:
    """The password every fixture-created account uses."""
    return PASSWORD
