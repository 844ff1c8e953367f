"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against the database in TestingConfig (in-memory SQLite unless
    TEST_DATABASE_URL points at a PostgreSQL test database).
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - Users are provisioned by the identity service in production. Here they are
    inserted directly and tokens are minted with the test JWT secret.

Helper functions (not fixtures) are provided for common operations:
  - make_user(app, ...)         → user id
  - token_for(app, user_id)     → signed bearer token
  - auth_headers(token)         → {"Authorization": "Bearer <token>"}
  - make_household(client, ...) → household dict
  - add_member(...)             → HTTP response
  - make_expense(...)           → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import text

from household_ledger.app import create_app
from household_ledger.app.extensions import db as _db


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the Flask application in 'testing' mode once for the whole run."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

_TABLES_IN_DELETE_ORDER = (
    "audit_entries",
    "periodic_records",
    "expense_attachments",
    "obligations",
    "expenses",
    "household_members",
    "households",
    "users",
)


@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after every test, children before parents."""
    yield

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            for table in _TABLES_IN_DELETE_ORDER:
                conn.execute(text(f"DELETE FROM {table}"))
            conn.commit()

    store = app.extensions["attachment_store"]
    store.objects.clear()
    store.deleted.clear()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


@pytest.fixture
def store(app):
    """The in-memory attachment store the app was built with."""
    return app.extensions["attachment_store"]


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def make_user(app, name: str = "alice", email: str | None = None) -> int:
    """Inserts a user row and returns its id."""
    from household_ledger.app.models.user import User

    with app.app_context():
        user = User(name=name, email=email or f"{name}@test.com")
        _db.session.add(user)
        _db.session.commit()
        return user.id


def token_for(app, user_id: int, expires_in: timedelta = timedelta(minutes=15)) -> str:
    """Signs a bearer token the way the identity service does."""
    payload = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(
        payload,
        app.config["JWT_SECRET_KEY"],
        algorithm=app.config.get("JWT_ALGORITHM", "HS256"),
    )


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def make_household(client, token: str, name: str = "Flat 4B", currency: str | None = None) -> dict:
    """
    Creates a household and returns the household data dict.
    The caller (token owner) becomes its admin and first member.
    """
    payload: dict = {"name": name}
    if currency is not None:
        payload["currency"] = currency
    resp = client.post("/api/v1/households", json=payload, headers=auth_headers(token))
    assert resp.status_code == 201, f"make_household failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, token: str, household_id: int, user_id: int, role: str = "member"):
    """Adds a user to a household (admin token required). Returns the HTTP response."""
    return client.post(
        f"/api/v1/households/{household_id}/members",
        json={"user_id": user_id, "role": role},
        headers=auth_headers(token),
    )


def set_primary_holder(client, token: str, household_id: int, user_id: int | None):
    return client.put(
        f"/api/v1/households/{household_id}/primary-holder",
        json={"user_id": user_id},
        headers=auth_headers(token),
    )


def make_expense(
    client,
    token: str,
    household_id: int,
    amount: str,
    paid_by_user_id: int | None = None,
    obligations: list[dict] | None = None,
    personal_money: bool | None = None,
    category: str = "Groceries",
    note: str | None = None,
    expense_date: str | None = None,
):
    """
    Creates an expense and returns the HTTP response.
    Leave obligations as None to let the allocation policy compute them.
    """
    payload: dict = {"amount": amount, "category": category}
    if paid_by_user_id is not None:
        payload["paid_by_user_id"] = paid_by_user_id
    if obligations is not None:
        payload["obligations"] = obligations
    if personal_money is not None:
        payload["personal_money"] = personal_money
    if note is not None:
        payload["note"] = note
    if expense_date is not None:
        payload["expense_date"] = expense_date

    return client.post(
        f"/api/v1/households/{household_id}/expenses",
        json=payload,
        headers=auth_headers(token),
    )


def setup_household(client, app, names=("alice", "bob", "carol")) -> tuple[dict, dict]:
    """
    Creates one user per name, a household owned by the first, and adds the
    rest as members in order. Returns ({name: {"id", "token"}}, household).
    """
    users = {}
    for name in names:
        uid = make_user(app, name)
        users[name] = {"id": uid, "token": token_for(app, uid)}

    owner = users[names[0]]
    household = make_household(client, owner["token"])
    for name in names[1:]:
        resp = add_member(client, owner["token"], household["id"], users[name]["id"])
        assert resp.status_code == 201, f"add_member failed: {resp.get_json()}"
    return users, household
