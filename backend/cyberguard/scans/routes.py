# =============================================================================
# File: cyberguard/scans/routes.py
# Description: Scan routes: manual trigger, status, listing, deletion and
#   the latest risk assessment.
#
#   - POST   /tenants/<id>/scans             trigger a manual scan (202, pending id)
#   - GET    /tenants/<id>/scans             recent scans, newest first
#   - GET    /tenants/<id>/scans/<scan_id>   scan status + findings
#   - DELETE /tenants/<id>/scans/<scan_id>   delete a finished scan (409 while in flight)
#   - GET    /tenants/<id>/risk/latest       latest risk assessment
#
# Scans execute on the orchestrator's worker pool; the trigger returns as
# soon as the pending record exists.
# =============================================================================

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from cyberguard.errors import InvalidTransition
from cyberguard.extensions import db
from cyberguard.models import QueuedJob, RiskAssessment, ScanRecord
from cyberguard.settings.service import get_tenant
from cyberguard.utils.http import json_body

logger = logging.getLogger(__name__)

scans_bp = Blueprint("scans", __name__, url_prefix="/tenants")

MAX_LIST = 50


def _orchestrator():
    return current_app.extensions["orchestrator"]


@scans_bp.post("/<int:tenant_id>/scans")
def trigger_scan(tenant_id: int):
    body = json_body()
    types = body.get("types")
    if types is not None and not isinstance(types, list):
        return jsonify(error="types must be a list"), 400

    scan_id = _orchestrator().trigger_scan(tenant_id, types, trigger="manual")
    return jsonify(message="scan started", scanId=str(scan_id), status="pending"), 202


@scans_bp.get("/<int:tenant_id>/scans")
def list_scans(tenant_id: int):
    get_tenant(tenant_id)
    try:
        limit = int(request.args.get("limit", MAX_LIST))
    except (TypeError, ValueError):
        return jsonify(error="limit must be an integer"), 400
    limit = max(1, min(limit, MAX_LIST))

    scans = (
        ScanRecord.query
        .filter_by(tenant_id=tenant_id)
        .order_by(ScanRecord.started_at.desc(), ScanRecord.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify([s.to_dict() for s in scans]), 200


@scans_bp.get("/<int:tenant_id>/scans/<int:scan_id>")
def get_scan(tenant_id: int, scan_id: int):
    scan = _orchestrator().get_scan_status(scan_id, tenant_id=tenant_id)
    return jsonify(scan.to_dict()), 200


@scans_bp.delete("/<int:tenant_id>/scans/<int:scan_id>")
def delete_scan(tenant_id: int, scan_id: int):
    scan = _orchestrator().get_scan_status(scan_id, tenant_id=tenant_id)
    if not scan.is_terminal:
        raise InvalidTransition(f"scan {scan_id} is {scan.status}, cannot delete", scan_id=scan_id)

    # Risk assessments keep their score history; they just lose the link
    RiskAssessment.query.filter_by(scan_id=scan_id).update({"scan_id": None}, synchronize_session=False)
    QueuedJob.query.filter_by(scan_id=scan_id).update({"scan_id": None}, synchronize_session=False)
    db.session.delete(scan)
    db.session.commit()

    logger.info("Scan %s deleted by tenant %s", scan_id, tenant_id)
    return jsonify(message="deleted"), 200


@scans_bp.get("/<int:tenant_id>/risk/latest")
def latest_risk(tenant_id: int):
    get_tenant(tenant_id)
    assessment = _orchestrator().get_latest_risk(tenant_id)
    if not assessment:
        return jsonify(error="No risk assessment yet"), 404
    return jsonify(assessment.to_dict()), 200
