"""
Document Lifecycle Platform
Flask Application Factory.

Usage:
    from doclife import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from doclife.auth import init_auth
from doclife.config import config
from doclife.middleware.logging_config import configure_logging
from doclife.middleware.rate_limiter import init_rate_limits
from doclife.middleware.timing import init_request_timing
from doclife.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────

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
    os.makedirs(app.instance_path, exist_ok=True)

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

    # ── Authentication & CSRF middleware ──────────────────────────────────
    init_auth(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guard (input length) ─────────────────────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")

    # ── Import all models so create_all / Alembic can see them ───────────
    from doclife.models import alerts as _alert_models            # noqa: F401
    from doclife.models import audit as _audit_models             # noqa: F401
    from doclife.models import auth as _auth_models               # noqa: F401
    from doclife.models import document as _document_models       # noqa: F401
    from doclife.models import lock as _lock_models               # noqa: F401
    from doclife.models import notification as _notification_models  # noqa: F401
    from doclife.models import scheduling as _scheduling_models   # noqa: F401
    from doclife.models import workflow as _workflow_models       # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from doclife.blueprints.alert_bp import alert_bp
    from doclife.blueprints.lock_bp import lock_bp
    from doclife.blueprints.notification_bp import notification_bp
    from doclife.blueprints.task_bp import task_bp
    from doclife.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(task_bp)
    app.register_blueprint(alert_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(lock_bp)
    app.register_blueprint(notification_bp)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler jobs (import registers the @register_job handlers) ─────
    importlib.import_module("doclife.services.scheduled_jobs")

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("init-tasks")
    def init_tasks_cmd():
        """Seed the default scheduled tasks (existing task types are kept)."""
        from doclife.services.scheduler_service import SchedulerService
        created = SchedulerService.initialize_default_tasks()
        click.echo(f"Created {len(created)} scheduled task(s).")

    @app.cli.command("run-due-tasks")
    def run_due_tasks_cmd():
        """Run every enabled task whose next run time has passed."""
        from doclife.services.scheduler_service import SchedulerService
        summary = SchedulerService.process_due_tasks()
        for item in summary["results"]:
            click.echo(f"{item.get('task_type')}: {'ok' if item.get('success') else 'failed'}")
        click.echo(f"Processed {summary['processed']} task(s), {len(summary['stale'])} stale.")

    @app.cli.command("sweep-alerts")
    def sweep_alerts_cmd():
        """Run one expiration alert sweep now."""
        from doclife.services.alert_engine import ExpirationAlertService
        summary = ExpirationAlertService.sweep()
        click.echo(
            f"Processed {summary.processed} document(s): {summary.alerts_created} alert(s), "
            f"{summary.escalations} escalation(s), {len(summary.errors)} error(s)."
        )

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Document Lifecycle Platform"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app
