"""
services/token_codec.py — Signed, short-lived access tokens.

Token design:
  - JWT, algorithm from AuthSettings (HS256 by default)
  - Claims: sub (user id), iat, exp, jti, iss, aud, roles, security_stamp
  - Lifetime is minutes. Revocation is approximated by waiting out expiry;
    there is no server-side blocklist.

The codec holds no state beyond its settings and clock, so verify(issue(u))
is a pure function of the secret and the clock. Expiry is checked against
the injected clock rather than PyJWT's wall clock so tests can move time.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone

import jwt

from backend.app.errors import InvalidSignatureError, TokenExpiredError
from backend.app.services.clock import Clock, utc_now
from backend.config import AuthSettings

SECURITY_STAMP_CLAIM = "security_stamp"
ROLES_CLAIM = "roles"

_REQUIRED_CLAIMS = ["sub", "iat", "exp", "iss", "aud"]


@dataclass(frozen=True)
class AccessTokenClaims:
    subject: str
    roles: tuple[str, ...]
    security_stamp: str | None
    issued_at: datetime
    expires_at: datetime
    token_id: str | None = None


class AccessTokenCodec:

    def __init__(self, settings: AuthSettings, clock: Clock = utc_now) -> None:
        self._settings = settings
        self._clock = clock

    def issue(self, user) -> str:
        """
        Creates a signed access token for `user`.

        `user` needs `id`, `role_names` and `security_stamp` attributes.
        """
        now = self._clock()
        payload = {
            "sub": str(user.id),
            "iat": now,
            "exp": now + self._settings.access_ttl,
            # Guarantees each issued token is unique even if generated in the same second.
            "jti": secrets.token_hex(8),
            "iss": self._settings.issuer,
            "aud": self._settings.audience,
            ROLES_CLAIM: list(user.role_names),
            SECURITY_STAMP_CLAIM: user.security_stamp,
        }
        return jwt.encode(
            payload,
            self._settings.secret_key,
            algorithm=self._settings.algorithm,
        )

    def verify(self, token: str) -> AccessTokenClaims:
        """
        Checks signature, issuer, audience and expiry.

        Raises:
          InvalidSignatureError — bad signature, malformed token, wrong iss/aud,
                                  or a required claim is missing
          TokenExpiredError     — exp is at or before the clock's now
        """
        try:
            payload = jwt.decode(
                token,
                self._settings.secret_key,
                algorithms=[self._settings.algorithm],
                audience=self._settings.audience,
                issuer=self._settings.issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": _REQUIRED_CLAIMS,
                },
            )
        except jwt.InvalidTokenError as exc:
            raise InvalidSignatureError() from exc

        try:
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError) as exc:
            raise InvalidSignatureError() from exc

        if expires_at <= self._clock():
            raise TokenExpiredError()

        roles = payload.get(ROLES_CLAIM) or []
        if not isinstance(roles, list):
            raise InvalidSignatureError()

        return AccessTokenClaims(
            subject=str(payload["sub"]),
            roles=tuple(str(role) for role in roles),
            security_stamp=payload.get(SECURITY_STAMP_CLAIM),
            issued_at=issued_at,
            expires_at=expires_at,
            token_id=payload.get("jti"),
        )
