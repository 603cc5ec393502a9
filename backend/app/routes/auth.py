"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse request body
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service function
  - Commit the DB session
  - Hand tokens to session_delivery, or return the standard envelope
    {"data": {...}, "warnings": []}

No business logic here. No DB queries.
AppError propagates to the global error handler in app/__init__.py. The one
exception is refresh: a detected reuse has already invalidated the owner's
tokens inside the session, and that cascade must be committed before the
401 goes out.

Endpoints (url_prefix=/api/v1/auth):
  POST   /auth/register         → 201
  POST   /auth/login            → 200
  POST   /auth/refresh          → 200
  POST   /auth/logout           → 204
  GET    /auth/me               → 200
  POST   /auth/change-password  → 204
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, make_response, request

from backend.app.errors import RefreshTokenError, TokenReuseDetectedError
from backend.app.extensions import db
from backend.app.middleware.auth_middleware import (
    current_auth_settings,
    require_auth,
    try_authenticate_request,
)
from backend.app.schemas.auth_schema import (
    ChangePasswordSchema,
    LoginSchema,
    LogoutSchema,
    RefreshTokenSchema,
    RegisterSchema,
)
from backend.app.services import auth_service
from backend.app.session_delivery import clear_session_cookies, deliver_tokens, read_refresh_token

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)


def _json_body() -> dict:
    return request.get_json(force=True, silent=True) or {}


@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register — Create account. (No auth required.)"""
    data = RegisterSchema().load(_json_body())
    result = auth_service.register_user(
        email=data["email"],
        password=data["password"],
        first_name=data["first_name"],
        last_name=data["last_name"],
        session=db.session,
        settings=current_auth_settings(),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — Authenticate; return tokens in body or cookies."""
    data = LoginSchema().load(_json_body())
    pair = auth_service.login_user(
        username=data["username"],
        password=data["password"],
        session=db.session,
        settings=current_auth_settings(),
    )
    db.session.commit()
    return deliver_tokens(pair, use_cookies=data["use_cookies"])


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """POST /auth/refresh — Rotate the refresh token; return a new pair."""
    data = RefreshTokenSchema().load(_json_body())
    raw_token = read_refresh_token(data["refresh_token"])
    if raw_token is None:
        logger.info("Refresh rejected: no refresh token presented")
        raise RefreshTokenError()

    try:
        pair = auth_service.refresh_session(
            raw_refresh_token=raw_token,
            session=db.session,
            settings=current_auth_settings(),
        )
    except TokenReuseDetectedError:
        db.session.commit()
        raise
    except RefreshTokenError as exc:
        logger.info("Refresh rejected: %s", exc.reason)
        raise

    db.session.commit()
    return deliver_tokens(pair, use_cookies=data["use_cookies"])


@auth_bp.route("/logout", methods=["POST"])
def logout():
    """POST /auth/logout — Clear cookies and invalidate the refresh token. Always 204."""
    data = LogoutSchema().load(_json_body())
    auth_service.logout_user(
        session=db.session,
        raw_refresh_token=read_refresh_token(data["refresh_token"]),
        user_id=try_authenticate_request(),
    )
    db.session.commit()
    return clear_session_cookies(make_response("", 204))


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /auth/me — Return current user profile. (Auth required.)"""
    result = auth_service.get_current_user(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/change-password", methods=["POST"])
@require_auth
def change_password():
    """POST /auth/change-password — Rotate credentials; sign out everywhere."""
    data = ChangePasswordSchema().load(_json_body())
    auth_service.change_password(
        user_id=g.user_id,
        current_password=data["current_password"],
        new_password=data["new_password"],
        session=db.session,
        settings=current_auth_settings(),
    )
    db.session.commit()
    return clear_session_cookies(make_response("", 204))
