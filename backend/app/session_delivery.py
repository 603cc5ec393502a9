"""
session_delivery.py — Hands a token pair to the client.

Two delivery modes, chosen per request by the `use_cookies` flag:
  - cookies: both tokens as HttpOnly, Secure, SameSite=None cookies whose
    expiry matches the token they carry; the JSON body carries no tokens.
  - bearer: both tokens in the JSON body for API and mobile clients.

SameSite=None is required because the API and the web frontend are served
from different origins, and browsers only accept SameSite=None together with
Secure. Cookie names carry the `__Secure-` prefix, so a browser rejects them
on a plaintext channel.
"""

from __future__ import annotations

from flask import Response, jsonify, request

from backend.app.services.token_issuer import TokenPair

ACCESS_TOKEN_COOKIE  = "__Secure-ACCESS-TOKEN"
REFRESH_TOKEN_COOKIE = "__Secure-REFRESH-TOKEN"

_COOKIE_ATTRIBUTES = {
    "httponly": True,
    "secure":   True,
    "samesite": "None",
    "path":     "/",
}


def deliver_tokens(pair: TokenPair, use_cookies: bool, status: int = 200) -> tuple[Response, int]:
    if not use_cookies:
        return jsonify({"data": pair.to_dict(), "warnings": []}), status

    response = jsonify({"data": {}, "warnings": []})
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        pair.access_token,
        expires=pair.access_expires_at,
        **_COOKIE_ATTRIBUTES,
    )
    response.set_cookie(
        REFRESH_TOKEN_COOKIE,
        pair.refresh_token,
        expires=pair.refresh_expires_at,
        **_COOKIE_ATTRIBUTES,
    )
    return response, status


def clear_session_cookies(response: Response) -> Response:
    """Expires both auth cookies. Attributes must match the ones they were set with."""
    for name in (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE):
        response.delete_cookie(name, **_COOKIE_ATTRIBUTES)
    return response


def read_refresh_token(body_value: str | None) -> str | None:
    """A refresh token in the request body wins; the cookie is the fallback."""
    if body_value:
        return body_value
    return request.cookies.get(REFRESH_TOKEN_COOKIE) or None


def read_access_cookie() -> str | None:
    return request.cookies.get(ACCESS_TOKEN_COOKIE) or None
