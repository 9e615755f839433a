import logging
import os
from datetime import timedelta

from flask import Flask, g, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect
from werkzeug.exceptions import HTTPException

from app.portal.config import load_config
from app.portal.db import init_db, teardown_db_session
from app.portal.api import ApiError, error_response
from app.portal.routes import bp as routes_bp
from app.portal.auth import bp as auth_bp, load_current_user
from app.portal.modules.forms.api import bp as forms_bp
from app.portal.modules.submissions.api import bp as submissions_bp
from app.portal.modules.users.api import bp as users_bp
from app.portal.modules.notifications.api import bp as notifications_bp
from app.portal.modules.notifications.broker import init_broker
from app.portal.storage import init_storage

REQUIRED_TABLES = (
    "users",
    "roles",
    "permissions",
    "user_roles",
    "role_permissions",
    "user_permissions",
    "forms",
    "submissions",
    "submission_notes",
    "submission_attachments",
    "audit_events",
)

_UNGUARDED_PATHS = ("/static/", "/healthz", "/api/health")

_ERROR_MESSAGES = {
    400: "Bad request.",
    401: "Authentication required.",
    403: "Forbidden.",
    404: "Not found.",
    405: "Method not allowed.",
    409: "Conflict.",
    413: "Request body too large.",
    429: "Too many requests.",
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL") or "INFO",
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    # CSRF protection (minimal)
    from app.portal.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PATHS):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow auth endpoints to pass through (login/logout/register)
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return error_response("CSRF token missing or invalid.", 400)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)
    init_broker(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    init_storage(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(forms_bp, url_prefix="/api/forms")
    app.register_blueprint(submissions_bp, url_prefix="/api/submissions")
    app.register_blueprint(users_bp, url_prefix="/api/users")
    app.register_blueprint(notifications_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(_UNGUARDED_PATHS):
            g.current_user = None
            return None
        return load_current_user()

    app.teardown_appcontext(teardown_db_session)

    # Schema health: checked lazily on the first guarded request, cached once the schema is complete.
    app.config.setdefault("_schema_health_ok", False)
    app.config.setdefault("_schema_health_missing", [])
    app.config.setdefault("_schema_health_logged", False)

    def _run_schema_health_check() -> bool:
        missing: list[str] = []
        engine = app.extensions.get("sqlalchemy_engine")
        if engine is None:
            raise RuntimeError("sqlalchemy_engine not initialized")
        insp = sa_inspect(engine)
        for table in REQUIRED_TABLES:
            if not insp.has_table(table):
                missing.append(f"{table} (table)")

        app.config["_schema_health_missing"] = missing
        if missing:
            if not app.config.get("_schema_health_logged"):
                app.config["_schema_health_logged"] = True
                app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
            return False
        app.config["_schema_health_ok"] = True
        return True

    @app.before_request
    def _schema_health_guardrail():
        if request.path.startswith(_UNGUARDED_PATHS):
            return None
        if app.config.get("_schema_health_ok") or _run_schema_health_check():
            return None
        return error_response(
            "Database schema is out of date.", 503, app.config.get("_schema_health_missing") or []
        )

    # Registered after the schema guard so user lookup never runs against a missing table.
    app.before_request(_load_user_wrapper)

    @app.errorhandler(ApiError)
    def _err_api(e: ApiError):
        return error_response(e.message, e.status, e.errors)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):
        status = e.code or 500
        if status == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        default = _ERROR_MESSAGES.get(status, e.name)
        message = e.description if e.description and e.description != type(e).description else default
        return error_response(message, status)

    @app.errorhandler(500)
    def _err_500(e):
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return error_response("Internal server error.", 500)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
