# cyberguard/scanner/probe.py
"""
Probe engine collaborator.

The actual network probes (port scan, TLS inspection, subdomain
enumeration, breach lookups, path discovery) run in a separate scanner
service. The orchestrator only needs:

    engine.run_probes(domain, types, email_domains) -> ScanFindings

Engines NEVER touch the database and NEVER classify risk; they only
gather facts. Any failure is raised as ProbeError (or lets a lower-level
exception escape) and the orchestrator marks the scan failed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import requests

from cyberguard.errors import ProbeError

logger = logging.getLogger(__name__)


@dataclass
class ScanFindings:
    """
    Raw output of one probe run.

    Fields:
        ports:             [{"port": 22, "state": "open", "service": "ssh", ...}]
        ssl:               {"domain", "issuer", "daysUntilExpiry", "weakCiphers", "isValid", ...} or None
        subdomains:        [{"subdomain": "api.example.com", "ip": "...", "status": "active"}]
        outdated_software: [{"name", "currentVersion", "latestVersion", "severity"}]
        discovered_paths:  [{"path": "/.git/", "status": 200, "type": "sensitive"}]
        vulnerabilities:   [{"title", "description", "severity", "recommendation"}]
        breaches:          [{"email", "breachName", "breachDate", "dataClasses", "source", "severity"}]
    """
    ports: List[Dict[str, Any]] = field(default_factory=list)
    ssl: Optional[Dict[str, Any]] = None
    subdomains: List[Dict[str, Any]] = field(default_factory=list)
    outdated_software: List[Dict[str, Any]] = field(default_factory=list)
    discovered_paths: List[Dict[str, Any]] = field(default_factory=list)
    vulnerabilities: List[Dict[str, Any]] = field(default_factory=list)
    breaches: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScanFindings":
        if not isinstance(data, dict):
            raise ProbeError("probe engine returned a non-object payload")

        def _list(*keys) -> list:
            for k in keys:
                v = data.get(k)
                if isinstance(v, list):
                    return [x for x in v if isinstance(x, dict)]
            return []

        ports = [dict(p) for p in _list("ports")]
        for p in ports:
            if p.get("service") is not None and not isinstance(p["service"], str):
                p["service"] = str(p["service"])

        ssl = data.get("ssl")
        if isinstance(ssl, dict):
            ssl = dict(ssl)
            for key in ("weakCiphers", "weak_ciphers"):
                weak = ssl.get(key)
                if isinstance(weak, str):
                    ssl[key] = [weak] if weak else []
                elif weak is not None and not isinstance(weak, list):
                    ssl[key] = []
        else:
            ssl = None

        return cls(
            ports=ports,
            ssl=ssl,
            subdomains=_list("subdomains"),
            outdated_software=_list("outdatedSoftware", "outdated_software"),
            discovered_paths=_list("discoveredPaths", "discovered_paths"),
            vulnerabilities=_list("vulnerabilities"),
            breaches=_list("breaches"),
        )


class ProbeEngine(ABC):

    @abstractmethod
    def run_probes(
        self,
        domain: str,
        types: Sequence[str],
        email_domains: Sequence[str] = (),
    ) -> ScanFindings:
        """Run the requested probe kinds against ``domain``. May take minutes."""


class HttpProbeEngine(ProbeEngine):
    """
    Calls the scanner service over HTTP:

        POST {base_url}/probes
        {"domain": "...", "types": [...], "emailDomains": [...]}
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 600.0):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def run_probes(self, domain, types, email_domains=()):
        if not self.base_url:
            raise ProbeError("PROBE_ENGINE_URL is not configured")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        body = {
            "domain": domain,
            "types": list(types),
            "emailDomains": list(email_domains or []),
        }

        try:
            resp = requests.post(
                f"{self.base_url}/probes",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise ProbeError(f"probe engine timed out after {self.timeout:.0f}s", domain=domain)
        except requests.RequestException as e:
            raise ProbeError(f"probe engine unreachable: {e}", domain=domain)

        if resp.status_code >= 400:
            raise ProbeError(
                f"probe engine returned HTTP {resp.status_code}: {resp.text[:200]}",
                domain=domain,
            )

        try:
            payload = resp.json()
        except ValueError:
            raise ProbeError("probe engine returned invalid JSON", domain=domain)

        findings = ScanFindings.from_dict(payload)
        logger.debug(
            "Probe run for %s: %d ports, %d subdomains, %d breaches",
            domain, len(findings.ports), len(findings.subdomains), len(findings.breaches),
        )
        return findings
