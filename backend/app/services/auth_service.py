"""
services/auth_service.py — Authentication use cases.

Responsibilities:
  - User registration and credential validation
  - Login: issue an access + refresh token pair
  - Refresh: delegate to the rotation protocol
  - Logout, password change and admin revocation: invalidate refresh tokens
  - Access-token authentication for the request middleware (signature,
    expiry and security stamp)

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, current_app or HTTP status codes
  - Configuration arrives as an AuthSettings argument; the clock is injected
  - No commits. The route commits the session at the request boundary.

Token design:
  - Access token: JWT (see token_codec.py), short TTL, carries roles and the
    user's security stamp
  - Refresh token: random secret, stored as SHA-256 hash, one-time use,
    rotated on every refresh (see rotation_service.py)

Password storage:
  - Hashed with bcrypt (cost factor from AuthSettings.bcrypt_rounds)
  - Raw password is never stored, never logged
"""

from __future__ import annotations

import logging
import uuid

import bcrypt
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.errors import (
    AppError,
    ErrorCode,
    InvalidCredentialsError,
    InvalidSignatureError,
    PersistenceError,
)
from backend.app.models.user import ROLE_USER, User, UserRole, new_security_stamp
from backend.app.services.clock import Clock, utc_now
from backend.app.services.refresh_token_store import RefreshTokenStore, hash_token
from backend.app.services.rotation_service import rotate_refresh_token
from backend.app.services.token_codec import AccessTokenClaims, AccessTokenCodec
from backend.app.services.token_issuer import TokenIssuer, TokenPair
from backend.config import AuthSettings

logger = logging.getLogger(__name__)

# Checked against when the username is unknown so both branches pay for a
# bcrypt comparison and response timing does not reveal which accounts exist.
_DUMMY_PASSWORD_HASH = bcrypt.hashpw(b"dummy-password", bcrypt.gensalt(rounds=4))

_BCRYPT_MAX_PASSWORD_BYTES = 72


# ── Private helpers ────────────────────────────────────────────────────────

def _hash_password(password: str, rounds: int) -> str:
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def _check_password(password: str, password_hash: str) -> bool:
    """Input bcrypt cannot hash (over 72 bytes, or not encodable) never matches."""
    try:
        candidate = password.encode("utf-8")
    except UnicodeEncodeError:
        return False
    if len(candidate) > _BCRYPT_MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(candidate, password_hash.encode("utf-8"))


def _build_issuer(session: Session, settings: AuthSettings, clock: Clock) -> TokenIssuer:
    store = RefreshTokenStore(session, clock)
    codec = AccessTokenCodec(settings, clock)
    return TokenIssuer(codec, store, settings, clock)


def _build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. No business logic."""
    return {
        "id":         str(user.id),
        "email":      user.email,
        "first_name": user.first_name,
        "last_name":  user.last_name,
        "roles":      user.role_names,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def find_user_by_id(user_id: uuid.UUID, session: Session) -> User | None:
    try:
        return session.get(User, user_id)
    except SQLAlchemyError as exc:
        raise PersistenceError("find_user_by_id") from exc


def _find_user_by_email(email: str, session: Session) -> User | None:
    try:
        return session.execute(
            select(User).where(User.email == email.lower())
        ).scalar_one_or_none()
    except SQLAlchemyError as exc:
        raise PersistenceError("find_user_by_email") from exc


# ── Public service functions ───────────────────────────────────────────────

def register_user(
        email: str,
        password: str,
        session: Session,
        settings: AuthSettings,
        first_name: str | None = None,
        last_name: str | None = None,
) -> dict:
    """
    Creates a new user account with the default role.

    Raises:
      AppError(DUPLICATE_EMAIL, 409) — email already registered

    Returns: {"id": "<uuid>"}
    """
    if _find_user_by_email(email, session) is not None:
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            409,
            field="email",
        )

    user = User(
        id=uuid.uuid4(),
        email=email.lower(),
        password_hash=_hash_password(password, settings.bcrypt_rounds),
        first_name=first_name,
        last_name=last_name,
        security_stamp=new_security_stamp(),
    )
    user.roles.append(UserRole(role=ROLE_USER))
    try:
        session.add(user)
        session.flush()
    except SQLAlchemyError as exc:
        raise PersistenceError("register_user") from exc

    logger.info("Registered user %s", user.id)
    return {"id": str(user.id)}


def login_user(
        username: str,
        password: str,
        session: Session,
        settings: AuthSettings,
        clock: Clock = utc_now,
) -> TokenPair:
    """
    Validates credentials and issues a new access + refresh token pair.

    Raises:
      InvalidCredentialsError (401) — username not found or password wrong.
      The same error is used for both to avoid username enumeration.
    """
    user = _find_user_by_email(username, session)

    if user is None:
        _check_password(password, _DUMMY_PASSWORD_HASH.decode("utf-8"))
        raise InvalidCredentialsError()

    if not _check_password(password, user.password_hash):
        raise InvalidCredentialsError()

    pair = _build_issuer(session, settings, clock).issue_pair(user)
    logger.info("User %s logged in", user.id)
    return pair


def refresh_session(
        raw_refresh_token: str,
        session: Session,
        settings: AuthSettings,
        clock: Clock = utc_now,
) -> TokenPair:
    """
    Rotates a refresh token and returns a new pair.

    Raises any RefreshTokenError subclass (401) or PersistenceError (500).
    On TokenReuseDetectedError the cascade invalidation has already been
    flushed; the caller must commit before surfacing the error.
    """
    store = RefreshTokenStore(session, clock)
    issuer = TokenIssuer(AccessTokenCodec(settings, clock), store, settings, clock)
    return rotate_refresh_token(
        raw_refresh_token,
        store=store,
        issuer=issuer,
        load_user=lambda user_id: find_user_by_id(user_id, session),
        now=clock(),
    )


def logout_user(
        session: Session,
        raw_refresh_token: str | None = None,
        user_id: uuid.UUID | None = None,
        clock: Clock = utc_now,
) -> None:
    """
    Invalidates the refresh token presented with the logout request.

    If no refresh token is presented but the caller is authenticated,
    every active refresh token of that user is invalidated instead.
    Token state never makes logout fail: an unknown, expired or already
    invalidated token is a no-op. PersistenceError still propagates.
    """
    store = RefreshTokenStore(session, clock)

    if raw_refresh_token:
        record = store.find_by_hash(hash_token(raw_refresh_token))
        if record is None:
            return
        if store.mark_invalidated(record.id):
            logger.info("Refresh token row %s invalidated on logout", record.id)
        return

    if user_id is not None:
        revoked = store.invalidate_all_for_user(user_id)
        logger.info("Invalidated %d refresh token(s) for user %s on logout", revoked, user_id)


def change_password(
        user_id: uuid.UUID,
        current_password: str,
        new_password: str,
        session: Session,
        settings: AuthSettings,
        clock: Clock = utc_now,
) -> None:
    """
    Replaces the password, rotates the security stamp and invalidates every
    refresh token of the user. Rotating the stamp makes all outstanding
    access tokens fail authentication on their next use.

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(INVALID_FIELD, 400, field="current_password") — wrong current password
    """
    user = find_user_by_id(user_id, session)
    if user is None:
        raise AppError(ErrorCode.USER_NOT_FOUND, f"User {user_id} not found.", 404)

    if not _check_password(current_password, user.password_hash):
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "The current password is incorrect.",
            400,
            field="current_password",
        )

    user.password_hash = _hash_password(new_password, settings.bcrypt_rounds)
    user.security_stamp = new_security_stamp()
    try:
        session.flush()
    except SQLAlchemyError as exc:
        raise PersistenceError("change_password") from exc

    revoked = RefreshTokenStore(session, clock).invalidate_all_for_user(user.id)
    logger.info(
        "Password changed for user %s; invalidated %d refresh token(s)",
        user.id,
        revoked,
    )


def revoke_user_sessions(
        user_id: uuid.UUID,
        session: Session,
        clock: Clock = utc_now,
) -> int:
    """
    Invalidates every active refresh token of `user_id`.

    Raises:
      AppError(USER_NOT_FOUND, 404)
    """
    if find_user_by_id(user_id, session) is None:
        raise AppError(ErrorCode.USER_NOT_FOUND, f"User {user_id} not found.", 404)

    revoked = RefreshTokenStore(session, clock).invalidate_all_for_user(user_id)
    logger.info("Revoked %d refresh token(s) for user %s", revoked, user_id)
    return revoked


def authenticate_access_token(
        token: str,
        session: Session,
        settings: AuthSettings,
        clock: Clock = utc_now,
) -> AccessTokenClaims:
    """
    Verifies an access token and checks it against the current user record.

    Raises:
      InvalidSignatureError — bad token, unknown user, or stale security stamp
      TokenExpiredError     — token past its exp claim
    """
    claims = AccessTokenCodec(settings, clock).verify(token)

    try:
        user_id = uuid.UUID(claims.subject)
    except ValueError as exc:
        raise InvalidSignatureError(
            "The 'sub' claim in the access token is not a valid user ID."
        ) from exc

    user = find_user_by_id(user_id, session)
    if user is None or user.security_stamp != claims.security_stamp:
        raise InvalidSignatureError()

    return claims


def get_current_user(user_id: uuid.UUID, session: Session) -> dict:
    """
    Returns the profile of the currently authenticated user.

    Raises:
      AppError(USER_NOT_FOUND, 404) — user deleted between token issue and request
    """
    user = find_user_by_id(user_id, session)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return _build_user_dict(user)
