"""
SiteTrack
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask, abort, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from app.config import config
from app.models import db
from app.middleware.logging_config import configure_logging
from app.middleware.timing import init_request_timing
from app.middleware.security_headers import init_security_headers
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.jwt_auth import init_jwt_middleware
from app.middleware.company_context import init_company_context

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
# Storage comes from RATELIMIT_STORAGE_URI; limits are applied per blueprint
limiter = Limiter(key_func=get_remote_address, default_limits=[])

# Multipart bodies are accepted only here
MULTIPART_PATHS = ("/api/v1/documents/upload",)


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

    # ── Middleware (registration order is execution order) ───────────────
    init_security_headers(app)
    init_request_timing(app)
    init_jwt_middleware(app)
    init_company_context(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.path in MULTIPART_PATHS and "multipart/form-data" in ct:
                return None
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")
        return None

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import auth as _auth_models                 # noqa: F401
    from app.models import project as _project_models           # noqa: F401
    from app.models import job as _job_models                   # noqa: F401
    from app.models import stage as _stage_models               # noqa: F401
    from app.models import workforce as _workforce_models       # noqa: F401
    from app.models import time_tracking as _time_models        # noqa: F401
    from app.models import document as _document_models         # noqa: F401
    from app.models import notification as _notification_models # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.auth_bp import auth_bp
    from app.blueprints.company_bp import company_bp
    from app.blueprints.site_admin_bp import site_admin_bp
    from app.blueprints.project_bp import project_bp
    from app.blueprints.job_bp import job_bp
    from app.blueprints.stage_bp import stage_bp
    from app.blueprints.worker_bp import worker_bp
    from app.blueprints.time_bp import time_bp
    from app.blueprints.document_bp import document_bp
    from app.blueprints.share_bp import share_bp
    from app.blueprints.analytics_bp import analytics_bp
    from app.blueprints.health_bp import health_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(company_bp)
    app.register_blueprint(site_admin_bp)
    app.register_blueprint(project_bp)
    app.register_blueprint(job_bp)
    app.register_blueprint(stage_bp)
    app.register_blueprint(worker_bp)
    app.register_blueprint(time_bp)
    app.register_blueprint(document_bp)
    app.register_blueprint(share_bp)
    app.register_blueprint(analytics_bp)
    app.register_blueprint(health_bp)

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("app.services.scheduled_jobs")  # registers @register_job handlers
    from app.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-stages")
    @click.option("--company-slug", default=None, help="Only seed this company.")
    @click.option("--reset", is_flag=True, help="Replace existing stages when no job uses them.")
    def seed_stages_cmd(company_slug, reset):
        """Seed the default construction workflow into companies without stages."""
        from app.core.exceptions import ConflictError
        from app.models.auth import Company
        from app.services.stage_config_service import setup_default_stages

        q = Company.query
        if company_slug:
            q = q.filter_by(slug=company_slug)
        companies = q.order_by(Company.id).all()
        if company_slug and not companies:
            raise click.ClickException(f"No company with slug {company_slug!r}")
        for company in companies:
            try:
                counts = setup_default_stages(company.id, reset=reset)
            except ConflictError as exc:
                db.session.rollback()
                click.echo(f"{company.slug}: skipped ({exc})")
                continue
            click.echo(f"{company.slug}: {counts}")

    @app.cli.command("create-site-admin")
    @click.argument("email")
    @click.argument("password")
    @click.option("--full-name", default=None)
    def create_site_admin_cmd(email, password, full_name):
        """Create a platform-wide site administrator."""
        from app.services.user_service import UserServiceError, create_site_admin

        try:
            user = create_site_admin(email, password, full_name)
        except UserServiceError as exc:
            raise click.ClickException(exc.message)
        click.echo(f"Site admin {user.email} created (id={user.id})")

    @app.cli.command("mark-overdue")
    def mark_overdue_cmd():
        """Flag open tasks whose due date has passed."""
        from app.services.job_task_service import mark_overdue_tasks

        click.echo(f"{mark_overdue_tasks()} task(s) marked overdue")

    @app.cli.command("process-reminders")
    @click.option("--company-id", type=int, default=None, help="Only this company.")
    def process_reminders_cmd(company_id):
        """Queue due date reminders and send pending notifications."""
        from app.services.reminder_service import process_reminders

        result = process_reminders(company_id=company_id)
        click.echo(
            f"{result['processed_reminders']} reminder(s) processed, "
            f"{result['sent_notifications']} sent, {result['failed_notifications']} failed"
        )

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run one registered scheduled job now."""
        from app.services.scheduler_service import SchedulerService

        run = SchedulerService.run_job(job_name)
        if run is None:
            raise click.ClickException(f"Unknown job {job_name!r}")
        click.echo(f"{job_name}: {run['status']} in {run['duration_ms']}ms {run['result'] or run['error']}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found", "path": request.path}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({"error": "Request body too large"}), 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return jsonify({"error": e.description}), 415

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests", "retry_after": e.description}), 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
