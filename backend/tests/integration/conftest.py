"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing").
    TestingConfig defaults to in-memory SQLite; set TEST_DATABASE_URL to run
    against PostgreSQL instead.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.

Helper functions (not fixtures) are provided for common operations:
  - register(client, ...)         → {"id": "..."}
  - login(client, ...)            → bearer token pair dict
  - auth_headers(token)           → {"Authorization": "Bearer <token>"}
  - cookie_value(resp, name)      → value from a Set-Cookie header, or None
  - set_cookie_header(resp, name) → the raw Set-Cookie header for `name`
  - make_admin(app, email)        → grants the Admin role to an existing user
  - load_token_row(app, raw)      → fresh RefreshToken row for a raw token

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations

import pytest
from sqlalchemy import delete, select

from backend.app import create_app
from backend.app.extensions import db as _db
from backend.app.models.refresh_token import RefreshToken
from backend.app.models.user import ROLE_ADMIN, User, UserRole
from backend.app.services.refresh_token_store import hash_token

PASSWORD = "Password1"


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the Flask application in 'testing' mode once for the whole session."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test.

    refresh_tokens and user_roles are deleted before users (CASCADE would
    handle it on PostgreSQL, but SQLite does not enforce FKs by default).
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        _db.session.execute(delete(RefreshToken))
        _db.session.execute(delete(UserRole))
        _db.session.execute(delete(User))
        _db.session.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


@pytest.fixture
def cookieless_client(app):
    """
    Test client without a cookie jar.

    Cookie-mode tests pass the Cookie header explicitly so each request
    carries exactly the cookies the test intends.
    """
    return app.test_client(use_cookies=False)


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def register(client, email: str = "alice@test.com", password: str = PASSWORD) -> dict:
    resp = client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": password},
    )
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, email: str = "alice@test.com", password: str = PASSWORD) -> dict:
    """Logs in as a bearer client and returns the token pair dict."""
    resp = client.post(
        "/api/v1/auth/login",
        json={"username": email, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def set_cookie_header(resp, name: str) -> str | None:
    for header in resp.headers.getlist("Set-Cookie"):
        if header.startswith(f"{name}="):
            return header
    return None


def cookie_value(resp, name: str) -> str | None:
    header = set_cookie_header(resp, name)
    if header is None:
        return None
    return header.split(";", 1)[0].split("=", 1)[1]


def make_admin(app, email: str) -> None:
    with app.app_context():
        user = _db.session.execute(
            select(User).where(User.email == email)
        ).scalar_one()
        _db.session.add(UserRole(user_id=user.id, role=ROLE_ADMIN))
        _db.session.commit()


def load_token_row(app, raw_token: str) -> RefreshToken | None:
    """Reads the row in a fresh app context so no stale identity-map state leaks in."""
    with app.app_context():
        row = _db.session.execute(
            select(RefreshToken).where(RefreshToken.token_hash == hash_token(raw_token))
        ).scalar_one_or_none()
        if row is not None:
            _db.session.expunge(row)
        return row


def user_token_rows(app, email: str) -> list[RefreshToken]:
    with app.app_context():
        rows = _db.session.execute(
            select(RefreshToken)
            .join(User, User.id == RefreshToken.user_id)
            .where(User.email == email)
        ).scalars().all()
        for row in rows:
            _db.session.expunge(row)
        return list(rows)
