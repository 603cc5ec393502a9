"""
tests/integration/test_refresh_token_store.py — RefreshTokenStore against a real database.

What this file proves:
  - create() persists only the hash and returns the plaintext exactly once
  - mark_used() succeeds for exactly one caller per row
  - mark_invalidated() is idempotent and reports whether it flipped the flag
  - invalidate_all_for_user() touches only that user's active rows
  - delete_expired() removes rows expired or consumed before the cutoff
  - SQLAlchemy failures surface as PersistenceError
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import sqlite
from sqlalchemy.exc import OperationalError
from sqlalchemy.schema import CreateTable

from backend.app.errors import PersistenceError
from backend.app.extensions import db
from backend.app.models.refresh_token import RefreshToken
from backend.app.models.user import User
from backend.app.services.refresh_token_store import RefreshTokenStore, hash_token

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _fixed_clock():
    return NOW


def _make_user(email: str = "alice@test.com") -> User:
    user = User(
        id=uuid.uuid4(),
        email=email,
        password_hash="x",
        security_stamp="stamp",
    )
    db.session.add(user)
    db.session.flush()
    return user


def _reload(record_id: uuid.UUID) -> RefreshToken:
    db.session.expire_all()
    return db.session.get(RefreshToken, record_id)


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield
        db.session.rollback()


class TestCreate:

    def test_stores_hash_and_returns_plaintext(self, ctx):
        user = _make_user()
        store = RefreshTokenStore(db.session, _fixed_clock)

        raw, record_id = store.create(user.id, NOW + timedelta(days=1))

        row = _reload(record_id)
        assert row.token_hash == hash_token(raw)
        assert row.token_hash != raw
        assert row.is_active
        assert row.consumed_at is None

    def test_find_by_hash(self, ctx):
        user = _make_user()
        store = RefreshTokenStore(db.session, _fixed_clock)
        raw, record_id = store.create(user.id, NOW + timedelta(days=1))

        assert store.find_by_hash(hash_token(raw)).id == record_id
        assert store.find_by_hash(hash_token("unknown")) is None


class TestConditionalTransitions:

    def test_mark_used_wins_exactly_once(self, ctx):
        user = _make_user()
        store = RefreshTokenStore(db.session, _fixed_clock)
        _, record_id = store.create(user.id, NOW + timedelta(days=1))

        assert store.mark_used(record_id) is True
        assert store.mark_used(record_id) is False

        row = _reload(record_id)
        assert row.used is True
        assert row.consumed_at is not None

    def test_mark_used_fails_on_invalidated_row(self, ctx):
        user = _make_user()
        store = RefreshTokenStore(db.session, _fixed_clock)
        _, record_id = store.create(user.id, NOW + timedelta(days=1))

        store.mark_invalidated(record_id)
        assert store.mark_used(record_id) is False
        assert _reload(record_id).used is False

    def test_mark_invalidated_is_idempotent(self, ctx):
        user = _make_user()
        store = RefreshTokenStore(db.session, _fixed_clock)
        _, record_id = store.create(user.id, NOW + timedelta(days=1))

        assert store.mark_invalidated(record_id) is True
        assert store.mark_invalidated(record_id) is False
        assert _reload(record_id).invalidated is True

    def test_mark_invalidated_unknown_id_returns_false(self, ctx):
        store = RefreshTokenStore(db.session, _fixed_clock)
        assert store.mark_invalidated(uuid.uuid4()) is False

    def test_invalidate_all_for_user_scopes_to_active_rows_of_that_user(self, ctx):
        alice = _make_user("alice@test.com")
        bob = _make_user("bob@test.com")
        store = RefreshTokenStore(db.session, _fixed_clock)
        expires = NOW + timedelta(days=1)

        _, a1 = store.create(alice.id, expires)
        _, a2 = store.create(alice.id, expires)
        _, a3 = store.create(alice.id, expires)
        _, b1 = store.create(bob.id, expires)
        store.mark_used(a3)

        assert store.invalidate_all_for_user(alice.id) == 2

        assert _reload(a1).invalidated is True
        assert _reload(a2).invalidated is True
        assert _reload(a3).invalidated is False  # already terminal as used
        assert _reload(b1).is_active


class TestDeleteExpired:

    def test_deletes_rows_expired_or_consumed_before_cutoff(self, ctx):
        user = _make_user()
        cutoff = NOW - timedelta(hours=1)
        old_store = RefreshTokenStore(db.session, lambda: cutoff - timedelta(minutes=5))
        store = RefreshTokenStore(db.session, _fixed_clock)

        _, expired = store.create(user.id, cutoff - timedelta(minutes=1))
        _, live = store.create(user.id, NOW + timedelta(days=1))
        _, consumed_long_ago = store.create(user.id, NOW + timedelta(days=1))
        _, consumed_recently = store.create(user.id, NOW + timedelta(days=1))
        old_store.mark_used(consumed_long_ago)
        store.mark_invalidated(consumed_recently)

        assert store.delete_expired(cutoff) == 2

        db.session.expire_all()
        remaining = set(db.session.execute(select(RefreshToken.id)).scalars())
        assert remaining == {live, consumed_recently}
        assert expired not in remaining

    def test_nothing_to_delete_returns_zero(self, ctx):
        store = RefreshTokenStore(db.session, _fixed_clock)
        assert store.delete_expired(NOW) == 0


class TestHashingAndSchema:

    def test_hash_token_accepts_lone_surrogates(self):
        digest = hash_token("\ud800")
        assert len(digest) == 64
        assert digest != hash_token("\ud801")

    def test_flag_defaults_are_boolean_false_in_ddl(self):
        ddl = str(CreateTable(RefreshToken.__table__).compile(dialect=sqlite.dialect()))
        assert "'false'" not in ddl


class TestPersistenceFailures:

    def test_database_error_becomes_persistence_error(self):
        session = MagicMock()
        session.execute.side_effect = OperationalError("UPDATE", {}, Exception("db down"))
        store = RefreshTokenStore(session, _fixed_clock)

        with pytest.raises(PersistenceError) as exc_info:
            store.mark_used(uuid.uuid4())

        assert exc_info.value.operation == "mark_used"
        assert exc_info.value.http_status == 500
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_create_failure_returns_nothing(self):
        session = MagicMock()
        session.flush.side_effect = OperationalError("INSERT", {}, Exception("db down"))
        store = RefreshTokenStore(session, _fixed_clock)

        with pytest.raises(PersistenceError):
            store.create(uuid.uuid4(), NOW + timedelta(days=1))
