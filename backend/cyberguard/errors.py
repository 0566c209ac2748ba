# cyberguard/errors.py
"""
Exception hierarchy for the scan core.

Blueprints translate these into JSON error responses; background code
catches them where the failure is expected (missing tenant, bad timezone)
and lets anything else propagate to the job or tick that owns it.
"""

from __future__ import annotations


class CyberGuardError(Exception):
    """Base class. ``status_code`` is what an HTTP surface should answer."""

    status_code = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message)
        self.message = message
        self.context = context


class TenantNotFound(CyberGuardError):
    status_code = 404


class ScanNotFound(CyberGuardError):
    status_code = 404


class JobNotFound(CyberGuardError):
    status_code = 404


class InvalidSettings(CyberGuardError):
    status_code = 400


class InvalidTransition(CyberGuardError):
    """A scan record or queued job is not in a state that allows the request."""

    status_code = 409


class ProbeError(CyberGuardError):
    """The probe engine failed, timed out, or returned garbage."""

    status_code = 502


class AlreadyExists(CyberGuardError):
    """A unique value (such as an admin email) is already taken."""

    status_code = 409
