"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, which enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - Alembic to import the metadata without starting the server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Initialise SQLAlchemy via init_app()
  3. Register all route blueprints under /api/v1
  4. Register global error handlers (AppError → JSON, Exception → 500)
  5. Register CLI commands (refresh token retention sweep)

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic or db.create_all() inspects it.
"""

from __future__ import annotations

import logging
import traceback

from flask import Flask, jsonify
from flask.logging import default_handler
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    # Service modules log under "backend.*"; route them through Flask's stderr handler.
    backend_logger = logging.getLogger("backend")
    backend_logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    backend_logger.addHandler(default_handler)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.app.extensions import db
    db.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from backend.app.models import refresh_token, user  # noqa: F401

    _register_blueprints(app)
    _register_error_handlers(app)

    from backend.app.commands import register_commands
    register_commands(app)

    return app


def _register_blueprints(app: Flask) -> None:
    """Registers all route blueprints under the /api/v1 prefix."""
    from backend.app.routes.admin import admin_bp
    from backend.app.routes.auth import auth_bp

    app.register_blueprint(auth_bp,  url_prefix="/api/v1/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/v1/admin")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors formatted as MISSING_FIELD /
                        INVALID_FIELD responses (400)
      Exception       → generic INTERNAL_ERROR (500); full traceback logged

    Stack traces never leave the server.
    """
    from backend.app.errors import AppError, ErrorCode, PersistenceError

    http_error_codes = {
        404: ErrorCode.NOT_FOUND,
        405: ErrorCode.METHOD_NOT_ALLOWED,
    }

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, route) into the standard error envelope.
        """
        if isinstance(error, PersistenceError):
            app.logger.error(
                "Persistence failure during %s\n%s",
                error.operation,
                "".join(traceback.format_exception(error)),
            )
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Returns the FIRST error only ("one error, not many").
        """
        messages = error.messages  # e.g. {"email": ["Not a valid email address."]}

        field = None
        raw_message = "Invalid input."
        code = ErrorCode.INVALID_FIELD

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None

                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                else:
                    raw_message = str(field_errors)

                if str(raw_message).startswith("Missing data for required field"):
                    code = ErrorCode.MISSING_FIELD
                break
        elif isinstance(messages, list):
            raw_message = messages[0] if messages else "Invalid input."
            if str(raw_message).startswith("Missing data for required field"):
                code = ErrorCode.MISSING_FIELD

        response_body = {"error": {"code": code, "message": raw_message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.

        The full traceback is logged to the application logger. Werkzeug
        HTTP errors (unknown route, wrong method) keep their own status.
        """
        if isinstance(error, HTTPException):
            return jsonify({
                "error": {
                    "code": http_error_codes.get(error.code, ErrorCode.INVALID_FIELD),
                    "message": error.description,
                }
            }), error.code

        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500
