# backend/loyalty/__init__.py
from flask import Flask, jsonify, request
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import ApiError, Conflict
from .extensions import db, migrate


def _build_notification_sink(app: Flask):
    from .services.notification_service import AsyncNotificationSink, StoredNotificationSink

    stored = StoredNotificationSink()
    if app.config["NOTIFICATIONS_ASYNC"]:
        return AsyncNotificationSink(app, stored, max_workers=app.config["NOTIFICATION_WORKERS"])
    return stored


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(err: ApiError):
        db.session.rollback()
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(err: IntegrityError):
        db.session.rollback()
        app.logger.warning("Integrity error on %s %s: %s", request.method, request.path, err.orig)
        conflict = Conflict("Resource already exists.")
        return jsonify(conflict.to_dict()), conflict.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        return jsonify({"error": err.name}), err.code

    @app.errorhandler(Exception)
    def handle_unexpected(err: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error"}), 500


def create_app(overrides: dict | None = None, notification_sink=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Composition root: one sink, one engine per app
    from .services.transaction_service import TransactionEngine

    sink = notification_sink or _build_notification_sink(app)
    app.extensions["notification_sink"] = sink
    app.extensions["ledger"] = TransactionEngine(sink)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.users import users_bp
    from .routes.transactions import transactions_bp
    from .routes.promotions import promotions_bp
    from .routes.events import events_bp
    from .routes.notifications import notifications_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(promotions_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(notifications_bp)

    _register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
