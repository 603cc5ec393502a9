"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field types, lengths, formats, password strength.
  - services/auth_service.py: DUPLICATE_EMAIL (cross-entity, needs a DB lookup)
    and every token or credential check.

IMPORTANT: All schemas inherit from marshmallow.Schema directly so unit tests
can load them without a Flask app context.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, ValidationError, fields, validate, validates, validates_schema


_BCRYPT_MAX_BYTES = 72


def _check_password_strength(value: str) -> None:
    """min 6 chars, at most 72 UTF-8 bytes, at least one lowercase, one uppercase and one digit."""
    if len(value) < 6:
        raise ValidationError("Password must be at least 6 characters long.")
    try:
        encoded = value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValidationError("Password contains invalid characters.") from exc
    # bcrypt rejects longer input outright.
    if len(encoded) > _BCRYPT_MAX_BYTES:
        raise ValidationError(f"Password must be at most {_BCRYPT_MAX_BYTES} bytes long.")
    if not any(c.islower() for c in value):
        raise ValidationError("Password must contain at least one lowercase letter.")
    if not any(c.isupper() for c in value):
        raise ValidationError("Password must contain at least one uppercase letter.")
    if not any(c.isdigit() for c in value):
        raise ValidationError("Password must contain at least one digit.")


class RegisterSchema(Schema):
    """
    POST /auth/register

    The email address doubles as the login username.
    """

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    password = fields.Str(
        required=True,
        load_only=True,
        validate=validate.Length(max=255),
    )

    first_name = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=255),
    )
    last_name = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=255),
    )

    @validates("password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        _check_password_strength(value)


class LoginSchema(Schema):
    """
    POST /auth/login

    `use_cookies` selects cookie delivery for web clients; API and mobile
    clients omit it and receive tokens in the body.
    """

    username = fields.Email(required=True, validate=validate.Length(max=255))
    password = fields.Str(required=True, load_only=True, validate=validate.Length(min=1, max=255))
    use_cookies = fields.Bool(load_default=False)


class RefreshTokenSchema(Schema):
    """
    POST /auth/refresh

    The refresh token is optional in the body: web clients send it as the
    __Secure-REFRESH-TOKEN cookie instead. Token validity is checked in
    the rotation service (REFRESH_TOKEN_INVALID, 401).
    """

    refresh_token = fields.Str(load_default=None, allow_none=True)
    use_cookies = fields.Bool(load_default=False)


class LogoutSchema(Schema):
    """POST /auth/logout — body and refresh token are both optional."""

    class Meta:
        # Web clients send the same use_cookies flag as on login and refresh.
        unknown = EXCLUDE

    refresh_token = fields.Str(load_default=None, allow_none=True)


class ChangePasswordSchema(Schema):
    """POST /auth/change-password"""

    current_password = fields.Str(
        required=True,
        load_only=True,
        validate=validate.Length(min=1, max=255),
    )
    new_password = fields.Str(
        required=True,
        load_only=True,
        validate=validate.Length(max=255),
    )

    @validates("new_password")
    def validate_new_password_strength(self, value: str, **kwargs) -> None:
        _check_password_strength(value)

    @validates_schema
    def validate_passwords_differ(self, data: dict, **kwargs) -> None:
        if data.get("current_password") == data.get("new_password"):
            raise ValidationError(
                "New password must be different from the current password.",
                field_name="new_password",
            )
