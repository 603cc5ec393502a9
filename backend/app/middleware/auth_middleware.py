"""
middleware/auth_middleware.py — Access-token authentication decorators.

The @require_auth decorator:
  1. Reads the access token from "Authorization: Bearer <token>", falling
     back to the __Secure-ACCESS-TOKEN cookie for web clients
  2. Verifies signature, issuer, audience and expiry
  3. Rejects tokens whose security stamp no longer matches the user
  4. Attaches user_id (uuid.UUID) and roles to flask.g for the request
  5. Raises the appropriate 401 AppError if any step fails

@require_role(role) additionally requires the role claim (403 otherwise).

Strict responsibility boundary:
  - This middleware authenticates. It does not perform business authorization
    beyond the role claim check.
  - Services receive user_id as a plain argument with no knowledge of JWT
    or HTTP headers.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header and no access cookie
  TOKEN_INVALID  (401) — malformed header, invalid signature, bad payload,
                         or stale security stamp
  TOKEN_EXPIRED  (401) — valid token but exp claim is in the past
  FORBIDDEN      (403) — authenticated but missing the required role
"""

from __future__ import annotations

import functools
import uuid
from typing import Callable

from flask import current_app, g, request

from backend.app.errors import AccessTokenError, AppError, ErrorCode
from backend.app.extensions import db
from backend.app.services import auth_service
from backend.app.session_delivery import read_access_cookie
from backend.config import AuthSettings


def current_auth_settings() -> AuthSettings:
    """Builds AuthSettings from the active app config. Route-layer use only."""
    return AuthSettings.from_config(current_app.config)


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces access-token authentication.

    Usage:
        @auth_bp.route("/me")
        @require_auth
        def me():
            user_id = g.user_id  # always a uuid.UUID when this runs
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def require_role(role: str) -> Callable:
    """Route decorator: authenticated AND holding `role` in the token's roles claim."""
    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            _authenticate_request()
            if role not in g.roles:
                raise AppError(
                    ErrorCode.FORBIDDEN,
                    "You do not have permission to perform this action.",
                    403,
                )
            return f(*args, **kwargs)

        return decorated

    return decorator


def try_authenticate_request() -> uuid.UUID | None:
    """
    Authenticates if a valid access token is present; returns None otherwise.

    Used by endpoints such as logout that must succeed for anonymous callers.
    """
    try:
        _authenticate_request()
    except AccessTokenError:
        return None
    except AppError as exc:
        # Missing token or malformed header. Anything else (500) propagates.
        if exc.code in (ErrorCode.TOKEN_MISSING, ErrorCode.TOKEN_INVALID):
            return None
        raise
    return g.user_id


def _extract_token() -> str:
    auth_header = request.headers.get("Authorization", "")

    if not auth_header:
        cookie_token = read_access_cookie()
        if cookie_token:
            return cookie_token
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )
    return parts[1]


def _authenticate_request() -> None:
    """
    Performs the full authentication sequence and sets flask.g.user_id / g.roles.

    Raises AppError on any authentication failure; the error propagates to
    the global Flask error handler.
    """
    raw_token = _extract_token()

    claims = auth_service.authenticate_access_token(
        raw_token,
        session=db.session,
        settings=current_auth_settings(),
    )

    g.user_id = uuid.UUID(claims.subject)
    g.roles = claims.roles
