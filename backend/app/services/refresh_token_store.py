"""
services/refresh_token_store.py — Persistence contract for refresh tokens.

Responsibilities:
  - Generate refresh token secrets and store only their SHA-256 hash
  - Look rows up by hash
  - Flip used / invalidated through conditional UPDATEs whose row count is
    the success signal (optimistic concurrency, no locks)
  - Bulk-delete rows that are past the retention cutoff

Layer rules:
  - No flask.request, flask.g or HTTP status codes
  - No commits. Writes are flushed so they are visible inside the current
    transaction; the route commits at the request boundary.
  - Every SQLAlchemyError is re-raised as PersistenceError. Nothing is
    swallowed and nothing is partially applied.

Hashing: token secrets are 256-bit random values, not passwords, so a fast
cryptographic hash is sufficient and a slow KDF would only cost throughput.
"""

from __future__ import annotations

import hashlib
import secrets
import uuid
from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.errors import PersistenceError
from backend.app.models.refresh_token import RefreshToken
from backend.app.services.clock import Clock, utc_now


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw token string. Never raises on client input."""
    return hashlib.sha256(raw_token.encode("utf-8", errors="surrogatepass")).hexdigest()


def generate_token_secret() -> str:
    return secrets.token_urlsafe(32)


class RefreshTokenStore:

    def __init__(self, session: Session, clock: Clock = utc_now) -> None:
        self._session = session
        self._clock = clock

    def create(self, user_id: uuid.UUID, expires_at: datetime) -> tuple[str, uuid.UUID]:
        """
        Persists a new refresh token row and returns (plaintext, record_id).

        The row is flushed before returning, so the plaintext never leaves this
        method unless its hash is in the database. This is the only time the
        plaintext exists outside the client.
        """
        raw_token = generate_token_secret()
        record = RefreshToken(
            id=uuid.uuid4(),
            user_id=user_id,
            token_hash=hash_token(raw_token),
            created_at=self._clock(),
            expires_at=expires_at,
            used=False,
            invalidated=False,
        )
        try:
            self._session.add(record)
            self._session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError("create") from exc

        return raw_token, record.id

    def find_by_hash(self, token_hash: str) -> RefreshToken | None:
        try:
            return self._session.execute(
                select(RefreshToken).where(RefreshToken.token_hash == token_hash)
            ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError("find_by_hash") from exc

    def mark_used(self, record_id: uuid.UUID) -> bool:
        """
        Conditional transition active → used.

        Returns True only for the single caller whose UPDATE matched the still
        active row. A concurrent caller that already flipped it makes this
        return False.
        """
        return self._conditional_update(
            "mark_used",
            update(RefreshToken)
            .where(
                RefreshToken.id == record_id,
                RefreshToken.used.is_(False),
                RefreshToken.invalidated.is_(False),
            )
            .values(used=True, consumed_at=self._clock()),
        ) == 1

    def mark_invalidated(self, record_id: uuid.UUID) -> bool:
        """
        Idempotent transition to invalidated.

        Returns True if this call flipped the flag, False if the row was
        already invalidated or does not exist.
        """
        return self._conditional_update(
            "mark_invalidated",
            update(RefreshToken)
            .where(
                RefreshToken.id == record_id,
                RefreshToken.invalidated.is_(False),
            )
            .values(invalidated=True, consumed_at=self._clock()),
        ) == 1

    def invalidate_all_for_user(self, user_id: uuid.UUID) -> int:
        """Invalidates every active row owned by `user_id`. Returns the row count."""
        return self._conditional_update(
            "invalidate_all_for_user",
            update(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.used.is_(False),
                RefreshToken.invalidated.is_(False),
            )
            .values(invalidated=True, consumed_at=self._clock()),
        )

    def delete_expired(self, cutoff: datetime) -> int:
        """
        Deletes rows that expired before `cutoff` or became terminal
        (used / invalidated) before `cutoff`. Returns the number of rows deleted.
        """
        stmt = delete(RefreshToken).where(
            or_(
                RefreshToken.expires_at < cutoff,
                RefreshToken.consumed_at < cutoff,
            )
        )
        try:
            result = self._session.execute(stmt, execution_options={"synchronize_session": False})
            self._session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError("delete_expired") from exc
        return result.rowcount or 0

    # ── Private helpers ────────────────────────────────────────────────────

    def _conditional_update(self, operation: str, stmt) -> int:
        try:
            result = self._session.execute(
                stmt,
                execution_options={"synchronize_session": False},
            )
        except SQLAlchemyError as exc:
            raise PersistenceError(operation) from exc
        return result.rowcount or 0
