"""
errors.py — AppError base class, auth failure taxonomy and error code registry.

Every error returned by the API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
  - Refresh-token failures all share one code and one message on the wire.
    The subclass (and its `reason`) exists for logging only.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    NOT_FOUND                  = "NOT_FOUND"              # unknown route

    # ── Method Errors (405) ────────────────────────────────────────────────
    METHOD_NOT_ALLOWED         = "METHOD_NOT_ALLOWED"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    REFRESH_TOKEN_INVALID      = "REFRESH_TOKEN_INVALID"  # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Auth failure taxonomy ──────────────────────────────────────────────────

class InvalidCredentialsError(AppError):
    """Unknown username or wrong password. One message for both."""

    def __init__(self) -> None:
        super().__init__(
            ErrorCode.INVALID_CREDENTIALS,
            "The username or password is incorrect.",
            401,
        )


class AccessTokenError(AppError):
    """Base for access-token verification failures."""


class InvalidSignatureError(AccessTokenError):

    def __init__(self, detail: str = "The access token is invalid or has been tampered with.") -> None:
        super().__init__(ErrorCode.TOKEN_INVALID, detail, 401)


class TokenExpiredError(AccessTokenError):

    def __init__(self) -> None:
        super().__init__(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Use POST /auth/refresh to obtain a new one.",
            401,
        )


class RefreshTokenError(AppError):
    """
    Base for refresh-token failures.

    Every subclass renders the same 401 envelope so a client cannot tell an
    expired token from a replayed one. `reason` is for logs only.
    """

    reason = "invalid"

    def __init__(self) -> None:
        super().__init__(
            ErrorCode.REFRESH_TOKEN_INVALID,
            "The refresh token is invalid, expired, or has been revoked.",
            401,
        )


class InvalidRefreshTokenError(RefreshTokenError):
    reason = "not_found"


class RefreshTokenExpiredError(RefreshTokenError):
    reason = "expired"


class TokenReuseDetectedError(RefreshTokenError):
    """A consumed refresh token was presented again. Security signal."""

    reason = "reuse_detected"

    def __init__(self, user_id=None, record_id=None) -> None:
        super().__init__()
        self.user_id   = user_id
        self.record_id = record_id


class PersistenceError(AppError):
    """Any store I/O failure. Generic 500 on the wire; cause is chained."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            ErrorCode.INTERNAL_ERROR,
            "An unexpected error occurred. Please try again later.",
            500,
        )
        self.operation = operation
