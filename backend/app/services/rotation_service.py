"""
services/rotation_service.py — One-shot refresh token rotation with reuse detection.

State per refresh token row:

    active ──(successful rotation)──▶ used         (terminal)
    active ──(logout / revoke / reuse cascade)──▶ invalidated  (terminal)

rotate_refresh_token() evaluates expiry and state against a single read of
the row, then relies on the store's conditional mark_used() to decide the
winner of concurrent rotations. Presenting a terminal token, or losing the
mark_used race, is treated as reuse: every active token of the owner is
invalidated and the call fails without returning a pair.

Expiry is strict here. The grace period only delays deletion by the sweep.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable

from backend.app.errors import (
    InvalidRefreshTokenError,
    RefreshTokenExpiredError,
    TokenReuseDetectedError,
)
from backend.app.services.clock import as_utc
from backend.app.services.refresh_token_store import RefreshTokenStore, hash_token
from backend.app.services.token_issuer import TokenIssuer, TokenPair

logger = logging.getLogger(__name__)


def rotate_refresh_token(
        raw_token: str,
        *,
        store: RefreshTokenStore,
        issuer: TokenIssuer,
        load_user: Callable[[uuid.UUID], object | None],
        now: datetime,
) -> TokenPair:
    """
    Exchanges a refresh token for a brand-new token pair.

    Raises:
      InvalidRefreshTokenError — no row for this token, or its user is gone
      RefreshTokenExpiredError — row expired; the row is left untouched
      TokenReuseDetectedError  — row already used/invalidated, or a concurrent
                                 rotation won the conditional update
      PersistenceError         — propagated from the store, never caught here
    """
    record = store.find_by_hash(hash_token(raw_token))
    if record is None:
        raise InvalidRefreshTokenError()

    record_id = record.id
    user_id = record.user_id

    if as_utc(record.expires_at) < now:
        raise RefreshTokenExpiredError()

    if record.used or record.invalidated:
        _respond_to_reuse(store, user_id, record_id, "terminal token presented")

    if not store.mark_used(record_id):
        _respond_to_reuse(store, user_id, record_id, "lost conditional update")

    user = load_user(user_id)
    if user is None:
        raise InvalidRefreshTokenError()

    pair = issuer.issue_pair(user)
    logger.info("Refresh token rotated for user %s (row %s)", user_id, record_id)
    return pair


def _respond_to_reuse(
        store: RefreshTokenStore,
        user_id: uuid.UUID,
        record_id: uuid.UUID,
        detail: str,
) -> None:
    revoked = store.invalidate_all_for_user(user_id)
    logger.warning(
        "Refresh token reuse detected for user %s (row %s, %s); "
        "invalidated %d active refresh token(s)",
        user_id,
        record_id,
        detail,
        revoked,
    )
    raise TokenReuseDetectedError(user_id=user_id, record_id=record_id)
