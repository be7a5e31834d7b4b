"""
F07 IT Change Request Platform
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy.exc import IntegrityError, OperationalError

from app.config import config
from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from app.models import db
from app.middleware.logging_config import configure_logging
from app.middleware.timing import init_request_timing
from app.middleware.security_headers import init_security_headers
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.jwt_auth import init_jwt_middleware
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


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
    default_limits=[],                     # no global limit — apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def _register_error_handlers(app):
    """Map service exceptions to the standard ``{"error", "code"}`` body."""

    @app.errorhandler(NotFoundError)
    def _not_found_error(exc):
        logger.info("Not found: %s", exc)
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @app.errorhandler(ValidationError)
    def _validation_error(exc):
        return api_error(E.BUSINESS_RULE, str(exc), status=422, details=exc.details)

    @app.errorhandler(ConflictError)
    def _conflict_error(exc):
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details={"field": exc.field})

    @app.errorhandler(WorkflowError)
    def _workflow_error(exc):
        details = {"request_id": exc.request_id} if exc.request_id is not None else None
        return api_error(exc.kind, str(exc), status=exc.http_status, details=details)

    @app.errorhandler(IntegrityError)
    def _integrity_error(exc):
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")

    @app.errorhandler(OperationalError)
    def _operational_error(exc):
        db.session.rollback()
        logger.exception("Database operational error")
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.FORBIDDEN, "Too many requests", status=429,
                         details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def _register_cli(app):

    @app.cli.command("seed-workflow")
    def seed_workflow_cmd():
        """Seed statuses, roles, actions and the standard chain per category."""
        from app.services.seed_service import seed_all
        summary = seed_all()
        db.session.commit()
        logger.info("Seeded workflow reference data: %s", summary)
        click.echo(f"Seeded: {summary}")

    @app.cli.command("create-user")
    @click.argument("username")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--role", "role_name", required=True, help="Role name, e.g. Requester or Admin")
    @click.option("--full-name", default="")
    @click.option("--email", default=None)
    @click.option("--department-id", type=int, default=None)
    def create_user_cmd(username, password, role_name, full_name, email, department_id):
        """Create a login account."""
        from app.services.user_service import UserServiceError, create_user
        try:
            user = create_user(username, password, role_name, full_name=full_name,
                               email=email, department_id=department_id)
        except UserServiceError as e:
            db.session.rollback()
            raise click.ClickException(e.message) from e
        db.session.commit()
        click.echo(f"Created user {user.id}: {user.username} ({user.role_name})")


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

    # ── Security headers ─────────────────────────────────────────────────
    init_security_headers(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth middleware (sets g.actor) ───────────────────────────────
    init_jwt_middleware(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)  # 1 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.get_data(cache=True) and "json" not in ct:
                return api_error(E.VALIDATION_INVALID, "Content-Type must be application/json", status=415)
        return None

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import reference as _reference_models     # noqa: F401
    from app.models import auth as _auth_models               # noqa: F401
    from app.models import workflow as _workflow_models       # noqa: F401
    from app.models import request as _request_models         # noqa: F401
    from app.models import notification as _notification_models  # noqa: F401
    from app.models import audit as _audit_models             # noqa: F401

    # ── Auto-create tables outside production (CREATE IF NOT EXISTS) ────
    if config_name != "production":
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.auth_bp import auth_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.request_bp import request_bp
    from app.blueprints.pending_bp import pending_bp
    from app.blueprints.workflow_admin_bp import workflow_admin_bp
    from app.blueprints.notification_bp import notification_bp
    from app.blueprints.dashboard_bp import dashboard_bp
    from app.blueprints.master_bp import master_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(request_bp)
    app.register_blueprint(pending_bp)
    app.register_blueprint(workflow_admin_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(master_bp)

    _register_error_handlers(app)
    _register_cli(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
