# cyberguard/scanner/__init__.py
"""
Scan execution.

Usage:
    from cyberguard.scanner import ScanOrchestrator

    orchestrator = ScanOrchestrator(app, probe_engine, notifier)
    scan_id = orchestrator.trigger_scan(tenant_id)

Architecture:
    ScanOrchestrator      — pending → running → completed | failed
    ├── ProbeEngine       — external scanner service (collects raw facts)
    ├── record_breaches() — dedup insert of breach hits
    └── build_risk_assessment() — findings + score + category
"""

from cyberguard.scanner.orchestrator import ScanOrchestrator
from cyberguard.scanner.probe import HttpProbeEngine, ProbeEngine, ScanFindings

__all__ = ["ScanOrchestrator", "ProbeEngine", "HttpProbeEngine", "ScanFindings"]
