# cyberguard/settings/service.py
"""
Tenant, schedule and notification-preference read-modify-write.

Validation happens here, at write time, and is strict: a bad timezone or
scan time is rejected with InvalidSettings. The read side
(TenantSettings.schedule_config) stays lenient so rows written before a
rule existed still evaluate.

Callers commit nothing; every write function commits its own change.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cyberguard.errors import AlreadyExists, InvalidSettings, TenantNotFound
from cyberguard.extensions import db
from cyberguard.models import Tenant, TenantSettings, User
from cyberguard.scheduling.recurrence import (
    DEFAULT_SCAN_TYPES,
    FREQUENCIES,
    FULL_PROBE_SET,
    normalize_scan_day,
    normalize_scan_time,
)
from cyberguard.utils.domains import is_valid_domain, is_valid_email, normalize_domain

logger = logging.getLogger(__name__)

# request key -> TenantSettings column
_NOTIFICATION_FLAGS = {
    "newBreach": "notify_new_breach",
    "scanComplete": "notify_scan_complete",
    "highRisk": "notify_high_risk",
    "weeklyDigest": "weekly_digest",
}


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _bool(body: dict, key: str) -> bool:
    value = body[key]
    if not isinstance(value, bool):
        raise InvalidSettings(f"{key} must be true or false", field=key)
    return value


def _domain(value) -> str:
    domain = normalize_domain(value)
    if not is_valid_domain(domain):
        raise InvalidSettings(f"invalid domain: {value!r}", field="domain")
    return domain


def _email_domains(values) -> list:
    if not isinstance(values, list):
        raise InvalidSettings("emailDomains must be a list", field="emailDomains")
    return [_domain(v) for v in values if str(v or "").strip()]


def _scan_types(values) -> list:
    if not isinstance(values, list) or not values:
        raise InvalidSettings("scanTypes must be a non-empty list", field="scanTypes")
    out = []
    for v in values:
        t = str(v or "").strip().lower()
        if t not in FULL_PROBE_SET:
            raise InvalidSettings(f"unknown scan type: {v!r}", field="scanTypes")
        if t not in out:
            out.append(t)
    return out


def _timezone(value) -> str:
    name = str(value or "").strip()
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        raise InvalidSettings(f"unknown timezone: {value!r}", field="timezone") from None
    return name


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------

def get_tenant(tenant_id: int) -> Tenant:
    tenant = db.session.get(Tenant, tenant_id)
    if not tenant:
        raise TenantNotFound(f"tenant {tenant_id} not found", tenant_id=tenant_id)
    return tenant


def create_tenant(
    name: str,
    domain: Optional[str] = None,
    email_domains: Optional[Iterable[str]] = None,
    admin_email: Optional[str] = None,
) -> Tenant:
    """New tenant with default schedule + notification settings."""
    name = str(name or "").strip()
    if not name:
        raise InvalidSettings("name is required", field="name")

    email = str(admin_email or "").strip().lower()
    if email and not is_valid_email(email):
        raise InvalidSettings(f"invalid admin email: {admin_email!r}", field="adminEmail")
    if email and User.query.filter_by(email=email).first():
        raise AlreadyExists("admin email already registered", field="adminEmail")

    tenant = Tenant(
        name=name,
        domain=_domain(domain) if domain else None,
        email_domains=_email_domains(list(email_domains or [])),
    )
    db.session.add(tenant)
    db.session.flush()

    db.session.add(TenantSettings(tenant_id=tenant.id, scan_types=list(DEFAULT_SCAN_TYPES)))

    if email:
        db.session.add(User(tenant_id=tenant.id, email=email, role="admin"))

    db.session.commit()
    logger.info("Created tenant %s (%s)", tenant.id, tenant.domain)
    return tenant


def update_tenant(tenant_id: int, body: dict) -> Tenant:
    tenant = get_tenant(tenant_id)

    if "name" in body:
        name = str(body["name"] or "").strip()
        if not name:
            raise InvalidSettings("name cannot be empty", field="name")
        tenant.name = name

    if "domain" in body:
        tenant.domain = _domain(body["domain"]) if body["domain"] else None

    if "emailDomains" in body:
        tenant.email_domains = _email_domains(body["emailDomains"])

    db.session.commit()
    return tenant


def tenant_to_dict(tenant: Tenant) -> dict:
    return {
        "id": str(tenant.id),
        "name": tenant.name,
        "domain": tenant.domain,
        "emailDomains": list(tenant.email_domains or []),
        "createdAt": tenant.created_at.isoformat() if tenant.created_at else None,
    }


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def get_settings(tenant_id: int) -> TenantSettings:
    """Settings row for the tenant, created with defaults if missing."""
    get_tenant(tenant_id)
    settings = TenantSettings.query.filter_by(tenant_id=tenant_id).first()
    if settings is None:
        settings = TenantSettings(tenant_id=tenant_id, scan_types=list(DEFAULT_SCAN_TYPES))
        db.session.add(settings)
        db.session.commit()
    return settings


def schedule_to_dict(settings: TenantSettings) -> dict:
    return {
        "autoScanEnabled": settings.auto_scan_enabled,
        "frequency": settings.frequency,
        "scanTime": settings.scan_time,
        "scanDay": settings.scan_day,
        "scanTypes": list(settings.scan_types or []),
        "timezone": settings.timezone,
        "lastAutoScanAt": settings.last_auto_scan_at.isoformat() if settings.last_auto_scan_at else None,
    }


def notifications_to_dict(settings: TenantSettings) -> dict:
    return {
        "newBreach": settings.notify_new_breach,
        "scanComplete": settings.notify_scan_complete,
        "highRisk": settings.notify_high_risk,
        "weeklyDigest": settings.weekly_digest,
        "notificationEmail": settings.notification_email or None,
    }


def update_schedule(tenant_id: int, body: dict) -> TenantSettings:
    settings = get_settings(tenant_id)

    # Validate everything before touching the row
    changes = {}
    if "autoScanEnabled" in body:
        changes["auto_scan_enabled"] = _bool(body, "autoScanEnabled")
    if "frequency" in body:
        freq = str(body["frequency"] or "").strip().lower()
        if freq not in FREQUENCIES:
            raise InvalidSettings(f"frequency must be one of {', '.join(FREQUENCIES)}", field="frequency")
        changes["frequency"] = freq
    if "scanTime" in body:
        try:
            changes["scan_time"] = normalize_scan_time(body["scanTime"])
        except ValueError as e:
            raise InvalidSettings(str(e), field="scanTime") from None
    if "scanDay" in body:
        try:
            changes["scan_day"] = normalize_scan_day(body["scanDay"])
        except ValueError as e:
            raise InvalidSettings(str(e), field="scanDay") from None
    if "scanTypes" in body:
        changes["scan_types"] = _scan_types(body["scanTypes"])
    if "timezone" in body:
        changes["timezone"] = _timezone(body["timezone"])

    for attr, value in changes.items():
        setattr(settings, attr, value)
    db.session.commit()

    if changes:
        logger.info("Tenant %s schedule updated: %s", tenant_id, sorted(changes))
    return settings


def update_notifications(tenant_id: int, body: dict) -> TenantSettings:
    settings = get_settings(tenant_id)

    changes = {}
    for key, attr in _NOTIFICATION_FLAGS.items():
        if key in body:
            changes[attr] = _bool(body, key)

    if "notificationEmail" in body:
        email = str(body["notificationEmail"] or "").strip().lower()
        if email and not is_valid_email(email):
            raise InvalidSettings(f"invalid notification email: {email!r}", field="notificationEmail")
        changes["notification_email"] = email

    for attr, value in changes.items():
        setattr(settings, attr, value)
    db.session.commit()
    return settings
