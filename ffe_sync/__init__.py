import os

from flask import Flask, Response, g, jsonify, request
from werkzeug.exceptions import HTTPException

from ffe_sync.config import Config
from ffe_sync.db import close_db, get_db, init_db
from ffe_sync.db_migrations import register_db_cli
from ffe_sync.observability import (
    configure_json_logging,
    ensure_request_id,
    items_by_status,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    prometheus_metrics_text,
)


def create_app(config_class=Config):
    app = Flask(__name__)
    # Instantiating runs the production guards in Config.__init__.
    app.config.from_object(config_class() if isinstance(config_class, type) else config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_tenant(app)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Test apps build their own schema instead of depending on migrations.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignored outside development.")
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from ffe_sync.routes.procurement_routes import procurement_bp

    app.register_blueprint(procurement_bp)


def _register_error_handlers(app: Flask) -> None:
    from ffe_sync.errors import AppError, SystemError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_tenant(app: Flask) -> None:
    @app.before_request
    def load_tenant() -> None:
        from ffe_sync.tenant import DEFAULT_TENANT_ID, normalize_tenant_id

        g.tenant_id = normalize_tenant_id(request.headers.get("X-Tenant-Id")) or DEFAULT_TENANT_ID
        g.actor_id = normalize_tenant_id(request.headers.get("X-Actor-Id"))


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        payload = {
            "status": "ok",
            "db": backend,
            "env": os.environ.get("FLASK_ENV", "development"),
            "metrics": metrics_snapshot(),
        }
        try:
            payload["items_by_status"] = items_by_status(get_db())
        except Exception:  # noqa: BLE001
            app.logger.warning("health_db_unavailable", exc_info=True)
            payload["status"] = "degraded"
            payload["items_by_status"] = {}
        return payload, 200

    @app.route("/metrics")
    def metrics():
        try:
            status_counts = items_by_status(get_db())
        except Exception:  # noqa: BLE001
            app.logger.warning("metrics_db_unavailable", exc_info=True)
            status_counts = None
        return Response(
            prometheus_metrics_text(status_counts=status_counts),
            mimetype="text/plain; version=0.0.4",
        )
