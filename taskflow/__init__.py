"""
Ops Console — Task Workflow Engine
Flask Application Factory.

Usage:
    from taskflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from taskflow.config import config
from taskflow.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from taskflow.middleware.actor_context import init_actor_context
from taskflow.middleware.logging_config import configure_logging
from taskflow.middleware.rate_limiter import init_rate_limits
from taskflow.middleware.timing import init_request_timing
from taskflow.models import db
from taskflow.services.cache_service import SettingsCache
from taskflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine  # noqa: E402


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def register_error_handlers(app):
    """Map the engine's exception taxonomy to JSON error responses."""

    def _rollback():
        db.session.rollback()

    @app.errorhandler(UnauthenticatedError)
    def _unauthenticated(e):
        _rollback()
        return api_error(E.UNAUTHENTICATED, str(e))

    @app.errorhandler(ForbiddenError)
    def _forbidden(e):
        _rollback()
        return api_error(E.FORBIDDEN, str(e), details={"capability": e.capability})

    @app.errorhandler(NotFoundError)
    def _not_found(e):
        _rollback()
        # Same body whether the record is missing or merely invisible
        return api_error(E.NOT_FOUND, f"{e.resource} not found")

    @app.errorhandler(InvalidTransitionError)
    def _invalid_transition(e):
        _rollback()
        return api_error(E.INVALID_TRANSITION, str(e))

    @app.errorhandler(ValidationError)
    def _validation(e):
        _rollback()
        return api_error(E.VALIDATION_INVALID, str(e), details=e.details)

    @app.errorhandler(ConflictError)
    def _conflict(e):
        _rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(e))

    @app.errorhandler(404)
    def _route_not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def _rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def _server_error(e):
        _rollback()
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # One settings cache per process; services reach it via app.extensions
    app.extensions["settings_cache"] = SettingsCache.from_config(app.config)

    # ── Request middleware ───────────────────────────────────────────────
    init_request_timing(app)
    init_actor_context(app)
    register_error_handlers(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from taskflow.models import audit as _audit_models             # noqa: F401
    from taskflow.models import auth as _auth_models               # noqa: F401
    from taskflow.models import notification as _notification_models  # noqa: F401
    from taskflow.models import scheduling as _scheduling_models   # noqa: F401
    from taskflow.models import settings as _settings_models       # noqa: F401
    from taskflow.models import workflow as _workflow_models       # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from taskflow.blueprints.admin_bp import admin_bp
    from taskflow.blueprints.audit_bp import audit_bp
    from taskflow.blueprints.auth_bp import auth_bp
    from taskflow.blueprints.health_bp import health_bp
    from taskflow.blueprints.settings_bp import settings_bp
    from taskflow.blueprints.task_bp import task_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("escalation-sweep")
    def escalation_sweep_cmd():
        """Run one escalation sweep now and print the summary."""
        from taskflow.services.escalation import EscalationEngine
        summary = EscalationEngine.run_sweep()
        logger.info("Escalation sweep finished: %s", summary)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler ────────────────────────────────────────────────────────
    from taskflow.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)
    if app.config.get("SCHEDULER_AUTOSTART") and not app.config.get("TESTING"):
        SchedulerService.start()

    return app
