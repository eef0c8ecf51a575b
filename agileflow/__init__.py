"""
AgileFlow
Flask Application Factory.

Usage:
    from agileflow import create_app
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
from sqlalchemy.exc import SQLAlchemyError

from agileflow.config import config
from agileflow.core.exceptions import AgileFlowError
from agileflow.middleware.jwt_auth import init_jwt_middleware
from agileflow.middleware.logging_config import configure_logging
from agileflow.middleware.rate_limiter import init_rate_limits
from agileflow.middleware.tenant_context import init_tenant_context
from agileflow.middleware.timing import init_request_timing
from agileflow.models import db
from agileflow.services.container import init_services
from agileflow.utils.errors import E, api_error, error_body, exception_response

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
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)


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
    # Instantiated so ProductionConfig can refuse to start without secrets
    app.config.from_object(config[config_name]())

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

    # ── Service container (explicit store handle + config) ───────────────
    init_services(app)

    # ── Request middleware: timing → JWT → tenant ────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_tenant_context(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                return api_error(E.VALIDATION_INVALID, "Content-Type must be application/json",
                                 status=415)
        return None

    # ── Import all models so Alembic can detect them ─────────────────────
    from agileflow.models import audit as _audit_models                  # noqa: F401
    from agileflow.models import auth as _auth_models                    # noqa: F401
    from agileflow.models import custom_fields as _custom_fields_models  # noqa: F401
    from agileflow.models import project as _project_models              # noqa: F401
    from agileflow.models import work_items as _work_items_models        # noqa: F401
    from agileflow.models.auth import seed_roles

    # ── Auto-create tables + role catalog ────────────────────────────────
    with app.app_context():
        try:
            db.create_all()
            added = seed_roles()
            db.session.commit()
            app.logger.info("db.create_all() completed; %d roles seeded", added)
        except SQLAlchemyError as e:
            db.session.rollback()
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from agileflow.blueprints.audit_bp import audit_bp
    from agileflow.blueprints.auth_bp import auth_bp
    from agileflow.blueprints.custom_fields_bp import custom_fields_bp
    from agileflow.blueprints.health_bp import health_bp
    from agileflow.blueprints.projects_bp import projects_bp
    from agileflow.blueprints.tenant_bp import tenant_bp
    from agileflow.blueprints.users_bp import users_bp
    from agileflow.blueprints.work_items_bp import work_items_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(tenant_bp)
    app.register_blueprint(projects_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(work_items_bp)
    app.register_blueprint(custom_fields_bp)
    app.register_blueprint(audit_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-roles")
    def seed_roles_cmd():
        """Insert the fixed role catalog (superadmin, admin, dev, qa)."""
        count = seed_roles()
        db.session.commit()
        logger.info("Seeded %s roles.", count)

    @app.cli.command("set-plan")
    @click.argument("slug")
    @click.argument("plan")
    def set_plan_cmd(slug, plan):
        """Move workspace SLUG to PLAN (free, pro, enterprise)."""
        from agileflow.services.container import get_services
        try:
            tenant = get_services().tenants.set_plan(slug, plan)
        except AgileFlowError as exc:
            raise click.ClickException(exc.message) from exc
        click.echo(f"{tenant.slug}: plan={tenant.plan} "
                   f"max_projects={tenant.max_projects} max_members={tenant.max_members}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(AgileFlowError)
    def domain_error(e):
        return exception_response(e)

    @app.errorhandler(SQLAlchemyError)
    def database_error(e):
        db.session.rollback()
        logger.exception("Database error on %s %s", request.method, request.path)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def not_found(e):
        return {**error_body(E.NOT_FOUND, "Not found"), "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return error_body(E.METHOD_NOT_ALLOWED, "Method not allowed"), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return error_body(E.RATE_LIMITED, "Too many requests", {"limit": e.description}), 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return error_body(E.INTERNAL, "Internal server error"), 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
