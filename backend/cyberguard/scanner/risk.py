# cyberguard/scanner/risk.py
"""
Risk findings derivation.

Turns a completed scan's raw findings (plus the tenant's breach records)
into a list of severity-classified risk findings, then scores them with
cyberguard.utils.scoring. Pure: takes plain dicts/objects, returns a dict,
never touches the database. Safe for historical backfill.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Iterable, List

from cyberguard.utils.scoring import score_findings

# port -> (severity, description)
DANGEROUS_PORTS = {
    21: ("high", "FTP is unencrypted and should be replaced with SFTP."),
    23: ("critical", "Telnet transmits data in plaintext. Disable immediately."),
    3389: ("high", "RDP exposed to internet is a frequent ransomware vector."),
    5900: ("high", "VNC is often poorly secured; restrict access."),
    6379: ("critical", "Redis exposed without auth is a major risk."),
    27017: ("critical", "MongoDB exposed without auth can lead to data exfiltration."),
    3306: ("high", "MySQL should not be publicly accessible."),
    5432: ("high", "PostgreSQL should not be publicly accessible."),
}

SSL_EXPIRY_WARNING_DAYS = 30

VALID_SEVERITIES = ("low", "medium", "high", "critical")


def _get(obj, key, default=None):
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _as_list(value) -> list:
    # a bare string is one item, not a sequence of characters
    if not value:
        return []
    if isinstance(value, (list, tuple, set)):
        return [v for v in value if v not in (None, "")]
    return [value]


def _sev(value, default="medium") -> str:
    v = str(value or "").strip().lower()
    return v if v in VALID_SEVERITIES else default


def _finding(category, title, description, severity, recommendation, affected_asset) -> Dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "category": category,
        "title": title,
        "description": description,
        "severity": severity,
        "recommendation": recommendation,
        "affected_asset": affected_asset,
    }


def _port_findings(domain: str, ports: Iterable) -> List[dict]:
    out = []
    for p in ports or []:
        try:
            port = int(_get(p, "port"))
        except (TypeError, ValueError):
            continue
        if port not in DANGEROUS_PORTS:
            continue
        if (_get(p, "state") or "open") != "open":
            continue
        severity, desc = DANGEROUS_PORTS[port]
        service = str(_get(p, "service") or "unknown").upper()
        out.append(_finding(
            "Open Ports",
            f"Exposed {service} Port ({port})",
            desc,
            severity,
            f"Close or firewall port {port} unless strictly required. Use VPN for administrative access.",
            f"{domain}:{port}",
        ))
    return out


def _ssl_findings(domain: str, ssl) -> List[dict]:
    if not ssl:
        return []
    out = []
    cert_domain = _get(ssl, "domain") or domain
    days = _get(ssl, "daysUntilExpiry")
    if days is None:
        days = _get(ssl, "days_until_expiry")

    if days is not None:
        try:
            days = int(days)
        except (TypeError, ValueError):
            days = None

    if days is not None and days <= 0:
        out.append(_finding(
            "SSL/TLS",
            "SSL Certificate Expired",
            f"The SSL certificate for {cert_domain} has expired.",
            "critical",
            "Renew the SSL certificate immediately. Consider using Let's Encrypt with auto-renewal.",
            cert_domain,
        ))
    elif days is not None and days <= SSL_EXPIRY_WARNING_DAYS:
        out.append(_finding(
            "SSL/TLS",
            "SSL Certificate Expiring Soon",
            f"SSL certificate expires in {days} days.",
            "medium",
            "Renew the SSL certificate before expiry.",
            cert_domain,
        ))

    weak = _get(ssl, "weakCiphers")
    if weak is None:
        weak = _get(ssl, "weak_ciphers")
    for cipher in _as_list(weak):
        out.append(_finding(
            "SSL/TLS",
            f"Weak Cipher Suite Detected: {cipher}",
            f"The server supports the deprecated cipher {cipher}.",
            "high",
            "Disable weak cipher suites and use only TLS 1.2+ with strong ciphers (AES-GCM, ChaCha20).",
            cert_domain,
        ))
    return out


def _breach_findings(breaches: Iterable) -> List[dict]:
    breaches = list(breaches or [])
    out = []
    critical = [b for b in breaches if _sev(_get(b, "severity")) == "critical"]
    high = [b for b in breaches if _sev(_get(b, "severity")) == "high"]

    if critical:
        emails = ", ".join(sorted({_get(b, "email") for b in critical}))
        out.append(_finding(
            "Credential Exposure",
            f"{len(critical)} Critical Credential Exposure(s) Found",
            f"Emails with passwords found in breach databases: {emails}",
            "critical",
            "Force password resets for all affected accounts. Implement MFA immediately.",
            emails,
        ))
    if high:
        emails = ", ".join(sorted({_get(b, "email") for b in high}))
        out.append(_finding(
            "Credential Exposure",
            f"{len(high)} High-Severity Breach(es) Detected",
            "Employee emails found in data breach databases.",
            "high",
            "Review affected accounts and rotate credentials. Monitor for suspicious activity.",
            emails,
        ))
    return out


def _software_findings(domain: str, software: Iterable) -> List[dict]:
    out = []
    for sw in software or []:
        name = _get(sw, "name") or "Unknown software"
        current = _get(sw, "currentVersion") or _get(sw, "current_version") or "?"
        latest = _get(sw, "latestVersion") or _get(sw, "latest_version") or "?"
        out.append(_finding(
            "Outdated Software",
            f"{name} Outdated ({current} → {latest})",
            f"Running an outdated version of {name} may contain known vulnerabilities.",
            _sev(_get(sw, "severity")),
            f"Update {name} to version {latest} as soon as possible.",
            domain,
        ))
    return out


def _vulnerability_findings(domain: str, vulns: Iterable) -> List[dict]:
    return [
        _finding(
            "External Vulnerability",
            _get(v, "title") or "Vulnerability",
            _get(v, "description") or "",
            _sev(_get(v, "severity")),
            _get(v, "recommendation") or "",
            domain,
        )
        for v in vulns or []
    ]


def build_risk_assessment(scan, breaches: Iterable = ()) -> Dict[str, Any]:
    """
    Build the assessment payload for one completed scan.

    ``scan`` is a ScanRecord (or anything exposing domain / ports / ssl /
    outdated_software / vulnerabilities). Returns
    ``{"score", "category", "findings"}``.
    """
    domain = _get(scan, "domain") or ""
    findings: List[dict] = []
    findings += _port_findings(domain, _get(scan, "ports"))
    findings += _ssl_findings(domain, _get(scan, "ssl"))
    findings += _breach_findings(breaches)
    findings += _software_findings(domain, _get(scan, "outdated_software"))
    findings += _vulnerability_findings(domain, _get(scan, "vulnerabilities"))

    score, category = score_findings(findings)
    return {"score": score, "category": category, "findings": findings}
