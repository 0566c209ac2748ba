# cyberguard/scanner/breaches.py
from __future__ import annotations

import logging
from typing import Iterable, List

from cyberguard.extensions import db
from cyberguard.models import BreachRecord, now_utc

logger = logging.getLogger(__name__)

_SEVERITIES = ("low", "medium", "high", "critical")


def _already_recorded(tenant_id: int, email: str, name: str) -> bool:
    return (
        BreachRecord.query
        .filter_by(tenant_id=tenant_id, email=email, breach_name=name)
        .first()
    ) is not None


def record_breaches(tenant_id: int, hits: Iterable[dict]) -> List[BreachRecord]:
    """
    Add breach hits for a tenant to the session, skipping any (email,
    breach name) the tenant already has. Returns only the new rows.

    Nothing is flushed on its own: the rows belong to the caller's
    transaction and vanish with it on rollback. The unique constraint
    still guards concurrent writers; a lost race surfaces as an
    IntegrityError from the caller's flush or commit.
    Caller commits.
    """
    created: List[BreachRecord] = []
    seen = set()

    for hit in hits or []:
        if not isinstance(hit, dict):
            continue
        email = str(hit.get("email") or "").strip().lower()
        name = str(hit.get("breachName") or hit.get("breach_name") or "").strip()
        if not email or not name or (email, name) in seen:
            continue
        seen.add((email, name))

        if _already_recorded(tenant_id, email, name):
            continue

        severity = str(hit.get("severity") or "medium").lower()
        data_classes = hit.get("dataClasses") or hit.get("data_classes") or []
        record = BreachRecord(
            tenant_id=tenant_id,
            email=email,
            breach_name=name,
            breach_date=hit.get("breachDate") or hit.get("breach_date"),
            data_classes=list(data_classes) if isinstance(data_classes, list) else [str(data_classes)],
            source=hit.get("source") or "hibp",
            severity=severity if severity in _SEVERITIES else "medium",
            detected_at=now_utc(),
        )
        db.session.add(record)
        created.append(record)

    if created:
        logger.info("Recorded %d new breach(es) for tenant %s", len(created), tenant_id)
    return created
