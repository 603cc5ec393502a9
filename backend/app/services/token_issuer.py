"""
services/token_issuer.py — Mints an access + refresh token pair for a user.

The refresh row is persisted before the access token is signed. If the store
write fails, PersistenceError propagates and nothing is returned, so a caller
never sees an access token without a matching refresh record.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from backend.app.services.clock import Clock, utc_now
from backend.app.services.refresh_token_store import RefreshTokenStore
from backend.app.services.token_codec import AccessTokenCodec
from backend.config import AuthSettings


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_ttl_seconds: int
    refresh_ttl_seconds: int
    access_expires_at: datetime
    refresh_expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "access_token":             self.access_token,
            "refresh_token":            self.refresh_token,
            "access_token_expires_in":  self.access_ttl_seconds,
            "refresh_token_expires_in": self.refresh_ttl_seconds,
            "token_type":               "Bearer",
        }


class TokenIssuer:

    def __init__(
            self,
            codec: AccessTokenCodec,
            store: RefreshTokenStore,
            settings: AuthSettings,
            clock: Clock = utc_now,
    ) -> None:
        self._codec = codec
        self._store = store
        self._settings = settings
        self._clock = clock

    def issue_pair(self, user) -> TokenPair:
        now = self._clock()
        refresh_expires_at = now + self._settings.refresh_ttl

        # Store first: a failure here raises before any token is minted.
        raw_refresh, _record_id = self._store.create(user.id, refresh_expires_at)
        access_token = self._codec.issue(user)

        return TokenPair(
            access_token=access_token,
            refresh_token=raw_refresh,
            access_ttl_seconds=self._settings.access_ttl_seconds,
            refresh_ttl_seconds=self._settings.refresh_ttl_seconds,
            access_expires_at=now + self._settings.access_ttl,
            refresh_expires_at=refresh_expires_at,
        )
