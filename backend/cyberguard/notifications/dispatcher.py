# cyberguard/notifications/dispatcher.py
"""
Notification dispatcher — routes domain events to tenant-scoped email.

    event ──► gate (tenant preference flag [+ score threshold])
          ──► recipient (override email, else the tenant's admin user)
          ──► EmailTransport.send_templated_email(to, kind, data)

Delivery is best-effort. Every public method catches its own errors, logs
them, and returns False; none of them can fail the scan (or digest run)
that called it. A tenant with no resolvable recipient is a normal outcome,
not an error.

Must be called inside a Flask app context.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from cyberguard.extensions import db
from cyberguard.models import (
    BreachRecord,
    RiskAssessment,
    ScanRecord,
    Tenant,
    TenantSettings,
    User,
    now_utc,
)
from cyberguard.notifications import templates
from cyberguard.notifications.preferences import (
    EVENT_HIGH_RISK,
    EVENT_NEW_BREACH,
    EVENT_SCAN_COMPLETE,
    EVENT_WEEKLY_DIGEST,
    NotificationPreferences,
)
from cyberguard.utils.scoring import risk_trend

logger = logging.getLogger(__name__)

HIGH_RISK_THRESHOLD = 70
DIGEST_WINDOW_DAYS = 7


def _naive_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return now_utc()
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _format_duration(started: Optional[datetime], finished: Optional[datetime]) -> str:
    if not started or not finished:
        return "N/A"
    seconds = int((finished - started).total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}m {seconds}s"


class NotificationDispatcher:

    def __init__(self, transport):
        self.transport = transport

    # ------------------------------------------------------------------
    # Gating + recipient
    # ------------------------------------------------------------------

    def preferences_for(self, tenant_id: int) -> NotificationPreferences:
        settings = TenantSettings.query.filter_by(tenant_id=tenant_id).first()
        if not settings:
            return NotificationPreferences()
        return settings.notification_preferences()

    def resolve_recipient(self, tenant_id: int, prefs: NotificationPreferences) -> Optional[str]:
        if prefs.notification_email:
            return prefs.notification_email
        admin = (
            User.query
            .filter_by(tenant_id=tenant_id, role="admin")
            .order_by(User.id.asc())
            .first()
        )
        return admin.email if admin and admin.email else None

    def _route(self, tenant_id: int, event: str) -> Optional[str]:
        """Recipient if ``event`` is enabled for the tenant and deliverable, else None."""
        prefs = self.preferences_for(tenant_id)
        if not prefs.allows(event):
            logger.debug("Tenant %s: %s notifications disabled", tenant_id, event)
            return None
        to = self.resolve_recipient(tenant_id, prefs)
        if not to:
            logger.info("Tenant %s: no recipient for %s notification, dropping", tenant_id, event)
        return to

    def _send(self, to: str, kind: str, data: dict) -> bool:
        sent = bool(self.transport.send_templated_email(to, kind, data))
        if sent:
            logger.info("Notification %s sent to %s", kind, to)
        return sent

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def notify_breach_detected(self, tenant_id: int, breach) -> bool:
        try:
            to = self._route(tenant_id, EVENT_NEW_BREACH)
            if not to:
                return False
            return self._send(to, templates.BREACH_ALERT, {
                "email": breach.email,
                "breach": breach.breach_name,
                "breachDate": breach.breach_date,
                "severity": breach.severity,
                "dataClasses": list(breach.data_classes or []),
            })
        except Exception:
            logger.exception("Failed to send breach notification for tenant %s", tenant_id)
            return False

    def notify_scan_complete(self, scan: ScanRecord, assessment: Optional[RiskAssessment] = None) -> bool:
        try:
            to = self._route(scan.tenant_id, EVENT_SCAN_COMPLETE)
            if not to:
                return False
            tenant = db.session.get(Tenant, scan.tenant_id)
            return self._send(to, templates.SCAN_COMPLETE, {
                "domain": scan.domain,
                "companyName": tenant.name if tenant else "",
                "scanTypes": list(scan.scan_types or []) or ["Full Scan"],
                "duration": _format_duration(scan.started_at, scan.completed_at),
                "findings": len(assessment.findings or []) if assessment else 0,
                "riskScore": assessment.score if assessment else 0,
                "riskCategory": assessment.category if assessment else "Unknown",
            })
        except Exception:
            logger.exception("Failed to send scan complete notification for scan %s", getattr(scan, "id", None))
            return False

    def notify_high_risk(self, tenant_id: int, assessment: RiskAssessment) -> bool:
        try:
            if assessment.score < HIGH_RISK_THRESHOLD:
                logger.debug("Tenant %s: risk %s below alert threshold", tenant_id, assessment.score)
                return False
            to = self._route(tenant_id, EVENT_HIGH_RISK)
            if not to:
                return False
            findings = assessment.findings or []
            tenant = db.session.get(Tenant, tenant_id)
            return self._send(to, templates.HIGH_RISK, {
                "companyName": tenant.name if tenant else "",
                "riskScore": assessment.score,
                "riskCategory": assessment.category,
                "criticalFindings": sum(1 for f in findings if f.get("severity") == "critical"),
                "highFindings": sum(1 for f in findings if f.get("severity") == "high"),
            })
        except Exception:
            logger.exception("Failed to send high risk notification for tenant %s", tenant_id)
            return False

    # ------------------------------------------------------------------
    # Weekly digest
    # ------------------------------------------------------------------

    def build_weekly_digest(self, tenant_id: int, now: Optional[datetime] = None) -> dict:
        """Digest numbers for the trailing 7 days ending at ``now``."""
        end = _naive_utc(now)
        start = end - timedelta(days=DIGEST_WINDOW_DAYS)

        scans_completed = ScanRecord.query.filter(
            ScanRecord.tenant_id == tenant_id,
            ScanRecord.status == "completed",
            ScanRecord.completed_at >= start,
            ScanRecord.completed_at <= end,
        ).count()

        new_breaches = BreachRecord.query.filter(
            BreachRecord.tenant_id == tenant_id,
            BreachRecord.detected_at >= start,
            BreachRecord.detected_at <= end,
        ).count()

        latest = (
            RiskAssessment.query
            .filter(RiskAssessment.tenant_id == tenant_id, RiskAssessment.created_at <= end)
            .order_by(RiskAssessment.created_at.desc(), RiskAssessment.id.desc())
            .first()
        )
        previous = (
            RiskAssessment.query
            .filter(RiskAssessment.tenant_id == tenant_id, RiskAssessment.created_at < start)
            .order_by(RiskAssessment.created_at.desc(), RiskAssessment.id.desc())
            .first()
        )

        return {
            "weekStart": start.date().isoformat(),
            "weekEnd": end.date().isoformat(),
            "scansCompleted": scans_completed,
            "newBreaches": new_breaches,
            "currentRiskScore": latest.score if latest else 0,
            "riskTrend": risk_trend(
                latest.score if latest else None,
                previous.score if previous else None,
            ),
        }

    def send_weekly_digest(self, tenant_id: int, now: Optional[datetime] = None) -> bool:
        try:
            to = self._route(tenant_id, EVENT_WEEKLY_DIGEST)
            if not to:
                return False
            tenant = db.session.get(Tenant, tenant_id)
            if not tenant:
                return False
            data = self.build_weekly_digest(tenant_id, now)
            data["companyName"] = tenant.name
            return self._send(to, templates.WEEKLY_DIGEST, data)
        except Exception:
            logger.exception("Failed to send weekly digest for tenant %s", tenant_id)
            return False

    def process_weekly_digests(self, now: Optional[datetime] = None) -> int:
        """Send the digest to every opted-in tenant. Returns how many were sent."""
        rows = TenantSettings.query.filter(TenantSettings.weekly_digest.is_(True)).all()
        tenant_ids = [r.tenant_id for r in rows]
        logger.info("Processing weekly digests for %d tenant(s)", len(tenant_ids))

        sent = 0
        for tenant_id in tenant_ids:
            if self.send_weekly_digest(tenant_id, now):
                sent += 1
        return sent
