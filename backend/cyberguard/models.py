from __future__ import annotations

from datetime import datetime, timezone
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import validates

from .extensions import db
from .notifications.preferences import NotificationPreferences
from .scheduling.recurrence import (
    DEFAULT_SCAN_TYPES,
    ScheduleConfig,
    normalize_scan_day,
    normalize_scan_time,
)
from .utils.domains import normalize_domain


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


SCAN_STATUSES = ("pending", "running", "completed", "failed")
TERMINAL_STATUSES = ("completed", "failed")

JOB_STATUSES = ("waiting", "active", "completed", "dead")


class Tenant(db.Model):
    __tablename__ = "tenant"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    domain = db.Column(db.String(255), nullable=True, index=True)
    email_domains = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    updated_at = db.Column(db.DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    @validates("domain")
    def _normalize_domain(self, _key, value):
        return normalize_domain(value) or None

    @validates("email_domains")
    def _normalize_email_domains(self, _key, value):
        out = []
        for d in value or []:
            nd = normalize_domain(d)
            if nd and nd not in out:
                out.append(nd)
        return out


class User(db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    name = db.Column(db.String(120), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="user")  # admin, user

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)

    tenant = db.relationship("Tenant", backref=db.backref("users", cascade="all, delete-orphan"))

    @validates("email")
    def _lower_email(self, _key, value):
        return (value or "").strip().lower()


class TenantSettings(db.Model):
    """
    Schedule + notification preferences, one row per tenant.

    Code outside this module reads the typed views returned by
    schedule_config() / notification_preferences(), never the raw columns.
    """
    __tablename__ = "tenant_settings"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    # ── Schedule ────────────────────────────────────────────────────
    auto_scan_enabled = db.Column(db.Boolean, nullable=False, default=True, index=True)
    frequency = db.Column(db.String(20), nullable=False, default="daily")  # daily, weekly, manual
    scan_time = db.Column(db.String(5), nullable=False, default="02:00")   # tenant-local HH:MM
    scan_day = db.Column(db.String(10), nullable=False, default="monday")
    scan_types = db.Column(db.JSON, nullable=False, default=lambda: list(DEFAULT_SCAN_TYPES))
    timezone = db.Column(db.String(64), nullable=False, default="UTC")
    last_auto_scan_at = db.Column(db.DateTime, nullable=True)

    # ── Notifications ───────────────────────────────────────────────
    notify_new_breach = db.Column(db.Boolean, nullable=False, default=True)
    notify_scan_complete = db.Column(db.Boolean, nullable=False, default=False)
    notify_high_risk = db.Column(db.Boolean, nullable=False, default=True)
    weekly_digest = db.Column(db.Boolean, nullable=False, default=False, index=True)
    notification_email = db.Column(db.String(255), nullable=False, default="")

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    updated_at = db.Column(db.DateTime, nullable=False, default=now_utc, onupdate=now_utc)

    tenant = db.relationship("Tenant", backref=db.backref("settings", uselist=False, cascade="all, delete-orphan"))

    @validates("scan_time")
    def _normalize_scan_time(self, _key, value):
        return normalize_scan_time(value)

    @validates("scan_day")
    def _normalize_scan_day(self, _key, value):
        return normalize_scan_day(value)

    def schedule_config(self) -> ScheduleConfig:
        return ScheduleConfig.build(
            self.tenant_id,
            auto_scan_enabled=self.auto_scan_enabled,
            frequency=self.frequency,
            scan_time=self.scan_time,
            scan_day=self.scan_day,
            scan_types=self.scan_types,
            timezone=self.timezone,
            last_auto_scan_at=self.last_auto_scan_at,
        )

    def notification_preferences(self) -> NotificationPreferences:
        return NotificationPreferences(
            new_breach=bool(self.notify_new_breach),
            scan_complete=bool(self.notify_scan_complete),
            high_risk=bool(self.notify_high_risk),
            weekly_digest=bool(self.weekly_digest),
            notification_email=(self.notification_email or "").strip() or None,
        )


class ScanRecord(db.Model):
    __tablename__ = "scan_record"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    domain = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    scan_types = db.Column(db.JSON, nullable=False, default=list)
    trigger = db.Column(db.String(20), nullable=False, default="manual")  # manual, scheduled, nightly, seed

    # Findings collected by the probe engine
    ports = db.Column(db.JSON, nullable=False, default=list)
    ssl = db.Column(db.JSON, nullable=True)
    subdomains = db.Column(db.JSON, nullable=False, default=list)
    outdated_software = db.Column(db.JSON, nullable=False, default=list)
    discovered_paths = db.Column(db.JSON, nullable=False, default=list)
    vulnerabilities = db.Column(db.JSON, nullable=False, default=list)

    started_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    completed_at = db.Column(db.DateTime, nullable=True)
    error = db.Column(db.String(500), nullable=True)

    __table_args__ = (
        db.Index("ix_scan_record_tenant_started", "tenant_id", "started_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "tenantId": str(self.tenant_id),
            "domain": self.domain,
            "status": self.status,
            "trigger": self.trigger,
            "scanTypes": list(self.scan_types or []),
            "ports": self.ports or [],
            "ssl": self.ssl,
            "subdomains": self.subdomains or [],
            "outdatedSoftware": self.outdated_software or [],
            "discoveredPaths": self.discovered_paths or [],
            "vulnerabilities": self.vulnerabilities or [],
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }


class RiskAssessment(db.Model):
    """Derived from one completed ScanRecord. Never updated after insert."""
    __tablename__ = "risk_assessment"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    scan_id = db.Column(db.Integer, db.ForeignKey("scan_record.id", ondelete="SET NULL"), nullable=True, index=True)
    score = db.Column(db.Integer, nullable=False, default=0)
    category = db.Column(db.String(20), nullable=False, default="Low")
    findings = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, nullable=False, default=now_utc, index=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "tenantId": str(self.tenant_id),
            "scanId": str(self.scan_id) if self.scan_id else None,
            "score": self.score,
            "category": self.category,
            "findings": self.findings or [],
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class BreachRecord(db.Model):
    """Append-only; one row per (tenant, email, breach name)."""
    __tablename__ = "breach_record"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    breach_name = db.Column(db.String(255), nullable=False)
    breach_date = db.Column(db.String(32), nullable=True)
    data_classes = db.Column(db.JSON, nullable=False, default=list)
    source = db.Column(db.String(20), nullable=False, default="hibp")  # hibp, dehashed
    severity = db.Column(db.String(20), nullable=False, default="medium")
    detected_at = db.Column(db.DateTime, nullable=False, default=now_utc, index=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", "breach_name", name="uq_breach_tenant_email_name"),
    )

    @validates("email")
    def _lower_email(self, _key, value):
        return (value or "").strip().lower()


class QueuedJob(db.Model):
    """
    Durable scan queue row. Lives only until pruned: the queue keeps a
    bounded tail of completed/dead jobs for operators, not an audit log.
    """
    __tablename__ = "queued_job"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(40), nullable=False, default="scheduled-scan")
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    domain = db.Column(db.String(255), nullable=False)
    scan_types = db.Column(db.JSON, nullable=False, default=list)
    priority = db.Column(db.Integer, nullable=False, default=5)  # lower runs first

    status = db.Column(db.String(20), nullable=False, default="waiting", index=True)
    attempts_made = db.Column(db.Integer, nullable=False, default=0)
    max_attempts = db.Column(db.Integer, nullable=False, default=3)
    backoff_seconds = db.Column(db.Integer, nullable=False, default=5)

    run_at = db.Column(db.DateTime, nullable=False, default=now_utc, index=True)
    enqueued_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    started_at = db.Column(db.DateTime, nullable=True)
    finished_at = db.Column(db.DateTime, nullable=True)
    last_error = db.Column(db.String(500), nullable=True)
    scan_id = db.Column(db.Integer, db.ForeignKey("scan_record.id", ondelete="SET NULL"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "tenantId": str(self.tenant_id),
            "domain": self.domain,
            "scanTypes": list(self.scan_types or []),
            "priority": self.priority,
            "status": self.status,
            "attemptsMade": self.attempts_made,
            "maxAttempts": self.max_attempts,
            "runAt": self.run_at.isoformat() if self.run_at else None,
            "enqueuedAt": self.enqueued_at.isoformat() if self.enqueued_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "lastError": self.last_error,
            "scanId": str(self.scan_id) if self.scan_id else None,
        }
