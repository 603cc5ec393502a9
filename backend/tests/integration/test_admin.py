"""
tests/integration/test_admin.py — Admin session revocation.

  POST /admin/users/<uuid>/revoke-sessions → 200 {"data": {"revoked": n}}

Error cases:
  TOKEN_MISSING  401 — no access token
  FORBIDDEN      403 — caller lacks the Admin role
  USER_NOT_FOUND 404 — unknown target user
"""

from __future__ import annotations

import uuid

from .conftest import auth_headers, login, make_admin, register, user_token_rows


def _revoke_url(user_id: str) -> str:
    return f"/api/v1/admin/users/{user_id}/revoke-sessions"


class TestRevokeSessions:

    def test_admin_revokes_all_sessions_of_target(self, client, app):
        register(client, "admin@test.com")
        make_admin(app, "admin@test.com")
        admin = login(client, "admin@test.com")

        target_id = register(client, "bob@test.com")["id"]
        first = login(client, "bob@test.com")
        login(client, "bob@test.com")

        resp = client.post(_revoke_url(target_id), headers=auth_headers(admin["access_token"]))
        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"revoked": 2}

        assert all(r.invalidated for r in user_token_rows(app, "bob@test.com"))
        refresh = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert refresh.status_code == 401

    def test_revocation_does_not_touch_the_admins_own_sessions(self, client, app):
        register(client, "admin@test.com")
        make_admin(app, "admin@test.com")
        admin = login(client, "admin@test.com")
        target_id = register(client, "bob@test.com")["id"]
        login(client, "bob@test.com")

        client.post(_revoke_url(target_id), headers=auth_headers(admin["access_token"]))

        assert not any(r.invalidated for r in user_token_rows(app, "admin@test.com"))

    def test_second_revocation_reports_zero(self, client, app):
        register(client, "admin@test.com")
        make_admin(app, "admin@test.com")
        admin = login(client, "admin@test.com")
        target_id = register(client, "bob@test.com")["id"]
        login(client, "bob@test.com")

        headers = auth_headers(admin["access_token"])
        client.post(_revoke_url(target_id), headers=headers)
        resp = client.post(_revoke_url(target_id), headers=headers)
        assert resp.get_json()["data"] == {"revoked": 0}

    def test_non_admin_gets_403(self, client):
        target_id = register(client, "bob@test.com")["id"]
        register(client, "alice@test.com")
        alice = login(client, "alice@test.com")

        resp = client.post(_revoke_url(target_id), headers=auth_headers(alice["access_token"]))
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    def test_unauthenticated_gets_401(self, client):
        target_id = register(client, "bob@test.com")["id"]
        resp = client.post(_revoke_url(target_id))
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"

    def test_unknown_user_returns_404(self, client, app):
        register(client, "admin@test.com")
        make_admin(app, "admin@test.com")
        admin = login(client, "admin@test.com")

        resp = client.post(_revoke_url(str(uuid.uuid4())), headers=auth_headers(admin["access_token"]))
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"
