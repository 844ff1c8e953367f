"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, which allows:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - Alembic to load the metadata without starting the server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging (LOG_LEVEL) and initialise SQLAlchemy
  3. Build the attachment store and keep it in app.extensions
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError / ValidationError /
     HTTPException → JSON, Exception → 500)
  6. Register a custom JSON provider to serialise Decimal as string

Note on model imports:
  All model modules are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic or db.create_all() inspect it.
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from household_ledger.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# All monetary amounts are serialised as strings to preserve precision.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from household_ledger.app.extensions import db
    from household_ledger.app.storage.attachments import build_attachment_store

    db.init_app(app)
    app.extensions["attachment_store"] = build_attachment_store(app.config)

    # ── Model registration ─────────────────────────────────────────────────
    # The imports are unused by name; registering the tables is the point.
    with app.app_context():
        from household_ledger.app.models import (  # noqa: F401
            audit_entry,
            expense,
            household,
            household_member,
            obligation,
            periodic_record,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Applies LOG_LEVEL to the Flask logger and to this package's loggers, so
    service-level events (compensations, retries) reach the same handler.
    """
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)

    package_logger = logging.getLogger("household_ledger")
    package_logger.setLevel(level)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")
        )
        package_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """Registers all route blueprints under the /api/v1 prefix."""
    from household_ledger.app.routes.expenses import expenses_bp
    from household_ledger.app.routes.households import households_bp
    from household_ledger.app.routes.periodic import periodic_bp
    from household_ledger.app.routes.settlements import settlements_bp

    app.register_blueprint(households_bp,  url_prefix="/api/v1/households")
    app.register_blueprint(periodic_bp,    url_prefix="/api/v1/households")
    # expenses_bp owns both /households/<id>/expenses and /expenses/<id>.
    app.register_blueprint(expenses_bp,    url_prefix="/api/v1")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1")


def _first_validation_message(messages) -> tuple[str | None, str]:
    """
    Walks marshmallow's nested messages down to the first leaf.

    {"obligations": {0: {"amount": ["INVALID_AMOUNT_PRECISION"]}}}
        → ("obligations", "INVALID_AMOUNT_PRECISION")
    """
    field = None
    while True:
        if isinstance(messages, dict):
            if not messages:
                return field, "Invalid input."
            key, messages = next(iter(messages.items()))
            if field is None and isinstance(key, str) and key != "_schema":
                field = key
        elif isinstance(messages, list):
            if not messages:
                return field, "Invalid input."
            messages = messages[0]
        else:
            return field, str(messages)


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the error's status
      ValidationError → first marshmallow error as MISSING_FIELD / INVALID_FIELD
                        or the ErrorCode a validator raised (400)
      HTTPException   → werkzeug's status with a JSON body (404 route, 405, ...)
      Exception       → INTERNAL_ERROR (500); traceback goes to the app logger.
                        In DEBUG mode the response carries a `debug` field
                        with the exception text.
    """
    from household_ledger.app.errors import AppError, ErrorCode

    known_codes = {
        value for name, value in vars(ErrorCode).items()
        if not name.startswith("_") and isinstance(value, str)
    }

    http_codes = {
        404: ErrorCode.NOT_FOUND,
        405: ErrorCode.METHOD_NOT_ALLOWED,
        413: ErrorCode.PAYLOAD_TOO_LARGE,
    }

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        if error.http_status >= 500:
            app.logger.warning("%s: %s", error.code, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        field, raw_message = _first_validation_message(error.messages)

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        body = {"error": {"code": code, "message": message}}
        if field is not None:
            body["error"]["field"] = field
        return jsonify(body), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        code = http_codes.get(
            error.code,
            ErrorCode.INTERNAL_ERROR if (error.code or 500) >= 500 else ErrorCode.INVALID_FIELD,
        )
        return jsonify({
            "error": {
                "code": code,
                "message": error.description or error.name,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.

        Stack traces never leave the server outside DEBUG mode.
        """
        app.logger.error(
            "Unhandled exception on %s %s: %s\n%s",
            request.method,
            request.path,
            str(error),
            traceback.format_exc(),
        )
        body = {
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }
        if app.config.get("DEBUG"):
            body["error"]["debug"] = f"{type(error).__name__}: {error}"
        return jsonify(body), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development (DEBUG or TESTING).
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """
    Human-readable default message for an error code raised by a schema
    validator as its ValidationError message.
    """
    _messages = {
        "INVALID_AMOUNT": "Amount must be a non-negative number.",
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "DUPLICATE_OBLIGATION_USER": "The same user_id appears more than once in obligations.",
        "INVALID_QUANTITY": "Quantity must be a non-negative number with at most 3 decimal places.",
        "INVALID_FILTER": "Invalid list filter. page >= 1, limit 1..100, month 1..12 (with year), "
                          "filter one of all, unpaid, mine.",
    }
    return _messages.get(code, "Invalid input.")
