"""
Schedule tick -> queue -> dispatcher -> scan -> risk -> email, in one pass.
"""
from datetime import datetime, timezone

from cyberguard.extensions import db
from cyberguard.models import QueuedJob, RiskAssessment, ScanRecord, TenantSettings
from cyberguard.scanner.probe import ScanFindings


def test_weekly_schedule_runs_through_to_email(client, evaluator, dispatcher, probe, transport):
    tenant = client.post("/tenants", json={
        "name": "Acme",
        "domain": "acme.com",
        "adminEmail": "admin@acme.com",
    }).get_json()
    tenant_id = int(tenant["id"])

    assert client.patch(f"/tenants/{tenant_id}/settings/schedule", json={
        "frequency": "weekly",
        "scanDay": "monday",
        "scanTime": "09:00",
        "timezone": "UTC",
    }).status_code == 200
    assert client.patch(f"/tenants/{tenant_id}/settings/notifications", json={
        "scanComplete": True,
        "highRisk": False,
    }).status_code == 200

    probe.findings = ScanFindings(
        ports=[{"port": 3389, "state": "open", "service": "rdp"}],
        ssl={"daysUntilExpiry": 10},
    )

    # Monday 2026-10-19 09:00 UTC
    assert evaluator.tick(datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)) == [tenant_id]
    assert evaluator.tick(datetime(2026, 10, 19, 9, 0, 30, tzinfo=timezone.utc)) == []

    claimed = dispatcher.poll()
    assert len(claimed) == 1

    db.session.expire_all()
    job = db.session.get(QueuedJob, claimed[0])
    assert job.status == "completed"

    scan = db.session.get(ScanRecord, job.scan_id)
    assert scan.status == "completed"
    assert scan.trigger == "scheduled"

    assessment = RiskAssessment.query.filter_by(scan_id=scan.id).one()
    assert (assessment.score, assessment.category) == (28, "Medium")

    assert transport.kinds() == ["scan_complete"]
    assert transport.sent[0]["to"] == "admin@acme.com"
    assert transport.sent[0]["data"]["riskScore"] == 28

    settings = TenantSettings.query.filter_by(tenant_id=tenant_id).one()
    assert settings.last_auto_scan_at == datetime(2026, 10, 19, 9, 0)

    latest = client.get(f"/tenants/{tenant_id}/risk/latest").get_json()
    assert latest["scanId"] == str(scan.id)
