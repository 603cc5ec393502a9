"""
services/token_cleanup.py — Retention sweep for refresh tokens.

Deletes rows whose expiry, or whose used/invalidated transition, is older
than `now - grace`. The grace window keeps a row alive while a rotation that
loaded it just before expiry is still validating against it, and keeps
consumed rows around long enough for replays to be recognised as reuse.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from backend.app.services.refresh_token_store import RefreshTokenStore

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = timedelta(hours=1)


def sweep_refresh_tokens(
        session: Session,
        now: datetime,
        grace: timedelta = DEFAULT_GRACE_PERIOD,
) -> int:
    """Deletes stale refresh token rows. Returns the number deleted. Does not commit."""
    cutoff = now - grace
    deleted = RefreshTokenStore(session, lambda: now).delete_expired(cutoff)
    logger.info("Deleted %d expired refresh tokens (cutoff %s)", deleted, cutoff.isoformat())
    return deleted
