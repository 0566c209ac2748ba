# =============================================================================
# File: cyberguard/settings/routes.py
# Description: Tenant and settings routes.
#
#   - POST  /tenants                                 create tenant (+ default settings)
#   - PATCH /tenants/<id>                            name / domain / email domains
#   - GET   /tenants/<id>/settings/schedule
#   - PATCH /tenants/<id>/settings/schedule          read-modify-write
#   - GET   /tenants/<id>/settings/notifications
#   - PATCH /tenants/<id>/settings/notifications     read-modify-write
#
# Validation failures raise InvalidSettings, answered as 400 by the app's
# error handler.
# =============================================================================

from __future__ import annotations

from flask import Blueprint, jsonify

from cyberguard.settings import service
from cyberguard.utils.http import json_body

settings_bp = Blueprint("settings", __name__, url_prefix="/tenants")


# =========================================================
# 1. TENANTS
# =========================================================

@settings_bp.post("")
def create_tenant():
    body = json_body()
    emails = body.get("emailDomains") or []
    if not isinstance(emails, list):
        return jsonify(error="emailDomains must be a list"), 400

    tenant = service.create_tenant(
        name=body.get("name"),
        domain=body.get("domain"),
        email_domains=emails,
        admin_email=body.get("adminEmail"),
    )
    return jsonify(service.tenant_to_dict(tenant)), 201


@settings_bp.get("/<int:tenant_id>")
def get_tenant(tenant_id: int):
    return jsonify(service.tenant_to_dict(service.get_tenant(tenant_id))), 200


@settings_bp.patch("/<int:tenant_id>")
def update_tenant(tenant_id: int):
    body = json_body()
    tenant = service.update_tenant(tenant_id, body)
    return jsonify(service.tenant_to_dict(tenant)), 200


# =========================================================
# 2. SCHEDULE
# =========================================================

@settings_bp.get("/<int:tenant_id>/settings/schedule")
def get_schedule(tenant_id: int):
    return jsonify(service.schedule_to_dict(service.get_settings(tenant_id))), 200


@settings_bp.patch("/<int:tenant_id>/settings/schedule")
def update_schedule(tenant_id: int):
    body = json_body()
    settings = service.update_schedule(tenant_id, body)
    return jsonify(service.schedule_to_dict(settings)), 200


# =========================================================
# 3. NOTIFICATIONS
# =========================================================

@settings_bp.get("/<int:tenant_id>/settings/notifications")
def get_notifications(tenant_id: int):
    return jsonify(service.notifications_to_dict(service.get_settings(tenant_id))), 200


@settings_bp.patch("/<int:tenant_id>/settings/notifications")
def update_notifications(tenant_id: int):
    body = json_body()
    settings = service.update_notifications(tenant_id, body)
    return jsonify(service.notifications_to_dict(settings)), 200
