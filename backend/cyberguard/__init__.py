# cyberguard/__init__.py
"""
App factory.

    create_app(config=None, *, probe_engine=None, transport=None, executor=None)

Configuration comes from environment variables; a ``config`` mapping
overrides them (tests pass an in-memory SQLite URI and
SCHEDULER_ENABLED=False). The optional collaborators replace the HTTP probe
engine, the SendGrid transport and the worker pools.

Wiring (all stored in app.extensions):
    job_queue      JobQueue
    notifier       NotificationDispatcher(EmailTransport)
    orchestrator   ScanOrchestrator(probe engine, notifier)
    evaluator      RecurrenceEvaluator(job_queue)
    dispatcher     JobDispatcher(job_queue, orchestrator)
    scheduler      SchedulerService, started only where SCHEDULER_ENABLED

Flask-Migrate (Alembic) manages the schema; db.create_all() is not called.
"""

from __future__ import annotations

import logging
import os
import re
import traceback

from flask import Flask, jsonify

from .errors import CyberGuardError
from .extensions import db, init_extensions
from . import models  # noqa: F401  (register tables with Alembic)
from .notifications.dispatcher import NotificationDispatcher
from .notifications.email import EmailTransport
from .queue import JobDispatcher, JobQueue, queue_bp
from .scanner import HttpProbeEngine, ScanOrchestrator
from .scans import scans_bp
from .scheduler import SchedulerService
from .scheduling.evaluator import RecurrenceEvaluator
from .settings import settings_bp

error_logger = logging.getLogger("cyberguard.errors")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw not in (None, "") else default
    except ValueError:
        logging.getLogger(__name__).warning("%s=%r is not an integer, using %s", name, raw, default)
        return default


def _load_config(overrides) -> dict:
    cfg = {
        "SQLALCHEMY_DATABASE_URI": os.getenv("SQLALCHEMY_DATABASE_URI"),
        "SECRET_KEY": os.getenv("SECRET_KEY"),
        "CORS_ORIGINS": os.getenv("CORS_ORIGINS", ""),
        "SCHEDULER_ENABLED": _env_bool("SCHEDULER_ENABLED", True),
        "SCAN_TICK_SECONDS": _env_int("SCAN_TICK_SECONDS", 60),
        "QUEUE_POLL_SECONDS": _env_int("QUEUE_POLL_SECONDS", 5),
        "QUEUE_CONCURRENCY": _env_int("QUEUE_CONCURRENCY", 3),
        "SCAN_WORKERS": _env_int("SCAN_WORKERS", 4),
        "NIGHTLY_SCAN_ENABLED": _env_bool("NIGHTLY_SCAN_ENABLED", False),
        "NIGHTLY_SCAN_HOUR": _env_int("NIGHTLY_SCAN_HOUR", 2),
        "PROBE_ENGINE_URL": os.getenv("PROBE_ENGINE_URL", ""),
        "PROBE_ENGINE_API_KEY": os.getenv("PROBE_ENGINE_API_KEY"),
        "PROBE_TIMEOUT_SECONDS": _env_int("PROBE_TIMEOUT_SECONDS", 600),
        "SENDGRID_API_KEY": os.getenv("SENDGRID_API_KEY", ""),
        "MAIL_FROM": os.getenv("MAIL_FROM", "CyberGuard <noreply@cyberguard.local>"),
    }
    cfg.update(overrides or {})
    return cfg


def _is_production(cfg) -> bool:
    """Detect production by checking CORS_ORIGINS for https."""
    return str(cfg.get("CORS_ORIGINS") or "").startswith("https://")


def create_app(config=None, *, probe_engine=None, transport=None, executor=None) -> Flask:
    app = Flask(__name__)
    cfg = _load_config(config)
    is_prod = _is_production(cfg)

    # ── Logging ──────────────────────────────────────────────────────
    if is_prod:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        app.logger.setLevel(logging.INFO)
    else:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )
        app.logger.setLevel(logging.DEBUG)

    logging.getLogger("werkzeug").setLevel(logging.INFO)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    # ─────────────────────────────────────────────────────────────────

    # ── CORS ────────────────────────────────────────────────────────
    # Production: CORS_ORIGINS="https://app.example.com"
    # Dev: falls back to localhost origins
    cors_env = cfg.get("CORS_ORIGINS")
    if cors_env:
        cors_origins = [o.strip() for o in str(cors_env).split(",") if o.strip()]
    else:
        cors_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            re.compile(r"http://192\.168\.\d+\.\d+:3000"),
        ]

    # ── Secret Key ───────────────────────────────────────────────────
    secret_key = cfg.get("SECRET_KEY")
    if is_prod and not secret_key:
        raise RuntimeError(
            "SECRET_KEY environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
        )
    cfg["SECRET_KEY"] = secret_key or "dev-secret-key-change-me"

    # ── Database ─────────────────────────────────────────────────────
    if not cfg.get("SQLALCHEMY_DATABASE_URI"):
        raise RuntimeError(
            "SQLALCHEMY_DATABASE_URI environment variable is not set. "
            "Set it to a PostgreSQL connection string, e.g.: "
            "postgresql://cyberguard:PASSWORD@db:5432/cyberguard"
        )
    cfg["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    app.config.update(cfg)

    # ── Extensions ───────────────────────────────────────────────────
    init_extensions(app, cors_origins)

    # ── Services ─────────────────────────────────────────────────────
    if probe_engine is None:
        probe_engine = HttpProbeEngine(
            cfg["PROBE_ENGINE_URL"],
            api_key=cfg.get("PROBE_ENGINE_API_KEY"),
            timeout=float(cfg["PROBE_TIMEOUT_SECONDS"]),
        )
    if transport is None:
        transport = EmailTransport(cfg.get("SENDGRID_API_KEY"), from_email=cfg["MAIL_FROM"])

    job_queue = JobQueue(stall_timeout=int(cfg["PROBE_TIMEOUT_SECONDS"]) + 300)
    notifier = NotificationDispatcher(transport)
    orchestrator = ScanOrchestrator(
        app, probe_engine, notifier,
        executor=executor, max_workers=int(cfg["SCAN_WORKERS"]),
    )
    evaluator = RecurrenceEvaluator(app, job_queue)
    dispatcher = JobDispatcher(
        app, job_queue, orchestrator,
        concurrency=int(cfg["QUEUE_CONCURRENCY"]), executor=executor,
    )

    app.extensions["job_queue"] = job_queue
    app.extensions["notifier"] = notifier
    app.extensions["orchestrator"] = orchestrator
    app.extensions["evaluator"] = evaluator
    app.extensions["dispatcher"] = dispatcher

    # ── Blueprints ───────────────────────────────────────────────────
    app.register_blueprint(settings_bp)
    app.register_blueprint(scans_bp)
    app.register_blueprint(queue_bp)

    # ── Global Error Handlers ────────────────────────────────────────
    # Return clean JSON for all errors; never expose tracebacks to users.

    @app.errorhandler(CyberGuardError)
    def domain_error(e):
        db.session.rollback()
        return jsonify({"error": e.message or e.__class__.__name__}), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({
            "error": "Bad request",
            "message": str(e.description) if hasattr(e, "description") else "The request was malformed or invalid.",
        }), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({
            "error": "Not found",
            "message": "The requested resource was not found.",
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({
            "error": "Method not allowed",
            "message": "This HTTP method is not allowed for this endpoint.",
        }), 405

    @app.errorhandler(409)
    def conflict(e):
        return jsonify({
            "error": "Conflict",
            "message": str(e.description) if hasattr(e, "description") else "The request conflicts with an existing resource.",
        }), 409

    @app.errorhandler(500)
    def internal_error(e):
        error_logger.error(
            "500 Internal Server Error:\n%s", traceback.format_exc()
        )
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    @app.errorhandler(Exception)
    def catch_all(e):
        """Catch-all for any unhandled exception. Never leaks tracebacks."""
        error_logger.error(
            "Unhandled exception: %s\n%s", str(e), traceback.format_exc()
        )
        db.session.rollback()
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    # ─────────────────────────────────────────────────────────────────

    # Health check
    @app.get("/health")
    def health():
        scheduler = app.extensions.get("scheduler")
        return jsonify(
            status="up and running",
            scheduler="running" if scheduler and scheduler.running else "stopped",
        ), 200

    # ── Background Scheduler ─────────────────────────────────────────
    # Gunicorn runs multiple workers; the scheduler must only start once.
    # Set SCHEDULER_ENABLED=true on exactly one worker.
    scheduler = SchedulerService(app, evaluator, dispatcher, notifier, job_queue)
    app.extensions["scheduler"] = scheduler
    if cfg.get("SCHEDULER_ENABLED"):
        scheduler.start()
    else:
        logging.getLogger(__name__).info(
            "Scheduler disabled for this process (SCHEDULER_ENABLED != true)"
        )
    # ─────────────────────────────────────────────────────────────────

    return app
