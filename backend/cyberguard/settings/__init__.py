# cyberguard/settings/__init__.py
"""
Tenant settings — schedule config and notification preferences.

Components:
    service.py — validation + read-modify-write
    routes.py  — HTTP endpoints under /tenants
"""

from .routes import settings_bp

__all__ = ["settings_bp"]
