"""
routes/admin.py — Administrative session management.

Endpoints (url_prefix=/api/v1/admin):
  POST   /admin/users/<uuid:user_id>/revoke-sessions  → 200  (role Admin)
"""

from __future__ import annotations

import uuid

from flask import Blueprint, jsonify

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_role
from backend.app.models.user import ROLE_ADMIN
from backend.app.services import auth_service

admin_bp = Blueprint("admin", __name__)


@admin_bp.route("/users/<uuid:user_id>/revoke-sessions", methods=["POST"])
@require_role(ROLE_ADMIN)
def revoke_sessions(user_id: uuid.UUID):
    """Invalidates every active refresh token of a user. Access tokens run out on their own."""
    revoked = auth_service.revoke_user_sessions(user_id=user_id, session=db.session)
    db.session.commit()
    return jsonify({"data": {"revoked": revoked}, "warnings": []}), 200
