# =============================================================================
# File: cyberguard/scanner/orchestrator.py
# Description: Scan lifecycle orchestrator.
#
#   pending ──(probe starts)──► running ──(success)──► completed
#                                       └─(error)────► failed
#
#   completed / failed are terminal. A retry creates a NEW ScanRecord; an
#   old record is never resurrected. Both terminal writes are conditional
#   (UPDATE ... WHERE status = 'running') so a record can reach exactly one
#   of them, once.
#
#   Manual triggers run on the orchestrator's own worker pool; queued jobs
#   call run_job() synchronously from the dispatcher's worker threads.
# =============================================================================

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence

from cyberguard.errors import InvalidSettings, InvalidTransition, ScanNotFound, TenantNotFound
from cyberguard.extensions import db
from cyberguard.models import (
    BreachRecord,
    RiskAssessment,
    ScanRecord,
    Tenant,
    TenantSettings,
    now_utc,
)
from cyberguard.scanner.breaches import record_breaches
from cyberguard.scanner.risk import build_risk_assessment
from cyberguard.scheduling.recurrence import FULL_PROBE_SET

logger = logging.getLogger(__name__)

# queue job name -> trigger recorded on the ScanRecord
JOB_TRIGGERS = {
    "scheduled-scan": "scheduled",
    "nightly-scan": "nightly",
    "seed-scan": "seed",
}


def _clean_types(types: Optional[Iterable[str]]) -> List[str]:
    out = []
    for t in types or []:
        t = str(t or "").strip().lower()
        if not t:
            continue
        if t not in FULL_PROBE_SET:
            raise InvalidSettings(f"unknown scan type: {t}", scan_type=t)
        if t not in out:
            out.append(t)
    return out


class ScanOrchestrator:

    def __init__(self, app, probe_engine, notifier, executor=None, max_workers: int = 4):
        self.app = app
        self.probe_engine = probe_engine
        self.notifier = notifier
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="scan-worker",
        )
        self._inflight: set = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def create_scan(self, tenant_id: int, domain: str, types: Sequence[str], trigger: str) -> ScanRecord:
        scan = ScanRecord(
            tenant_id=tenant_id,
            domain=domain,
            status="pending",
            scan_types=list(types),
            trigger=trigger,
            started_at=now_utc(),
        )
        db.session.add(scan)
        db.session.commit()
        logger.info("Scan %s created for tenant %s (%s, %s)", scan.id, tenant_id, domain, trigger)
        return scan

    def trigger_scan(self, tenant_id: int, types: Optional[Iterable[str]] = None, trigger: str = "manual") -> int:
        """
        Create a pending scan and run it in the background.

        Returns the scan id as soon as the pending record is committed. The
        caller polls get_scan_status() for the outcome.
        """
        tenant = db.session.get(Tenant, tenant_id)
        if not tenant:
            raise TenantNotFound(f"tenant {tenant_id} not found", tenant_id=tenant_id)
        if not tenant.domain:
            raise TenantNotFound(f"tenant {tenant_id} has no domain configured", tenant_id=tenant_id)

        scan_types = _clean_types(types)
        if not scan_types:
            settings = TenantSettings.query.filter_by(tenant_id=tenant_id).first()
            scan_types = list(settings.schedule_config().scan_types) if settings else list(FULL_PROBE_SET)

        scan = self.create_scan(tenant_id, tenant.domain, scan_types, trigger)
        scan_id = scan.id

        future = self.executor.submit(self._execute_in_context, scan_id)
        self._track(scan_id, future)
        return scan_id

    def run_job(self, job) -> ScanRecord:
        """Run one queued job to a terminal state. Called from a worker thread."""
        trigger = JOB_TRIGGERS.get(job.name, "scheduled")
        scan = self.create_scan(job.tenant_id, job.domain, list(job.scan_types or FULL_PROBE_SET), trigger)
        return self.execute(scan.id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def execute(self, scan_id: int) -> ScanRecord:
        scan = db.session.get(ScanRecord, scan_id)
        if not scan:
            raise ScanNotFound(f"scan {scan_id} not found", scan_id=scan_id)

        started = ScanRecord.query.filter_by(id=scan_id, status="pending").update(
            {"status": "running", "started_at": now_utc()},
            synchronize_session=False,
        )
        db.session.commit()
        if not started:
            raise InvalidTransition(f"scan {scan_id} is not pending", scan_id=scan_id)

        db.session.refresh(scan)
        logger.info("Scan %s running: %s %s", scan_id, scan.domain, list(scan.scan_types or []))

        try:
            new_breaches, assessment = self._complete(scan)
        except Exception as e:
            db.session.rollback()
            logger.exception("Scan %s failed for %s", scan_id, scan.domain)
            self._fail(scan_id, e)
            db.session.refresh(scan)
            return scan

        db.session.refresh(scan)
        logger.info(
            "Scan %s completed: score=%s (%s), %d new breach(es)",
            scan_id, assessment.score, assessment.category, len(new_breaches),
        )

        # Best-effort from here on; the scan outcome is already committed.
        for breach in new_breaches:
            self._notify(self.notifier.notify_breach_detected, scan.tenant_id, breach)
        self._notify(self.notifier.notify_scan_complete, scan, assessment)
        self._notify(self.notifier.notify_high_risk, scan.tenant_id, assessment)
        return scan

    def _complete(self, scan: ScanRecord):
        tenant = db.session.get(Tenant, scan.tenant_id)
        email_domains = list(tenant.email_domains or []) if tenant else []

        findings = self.probe_engine.run_probes(scan.domain, list(scan.scan_types or []), email_domains)

        new_breaches = record_breaches(scan.tenant_id, findings.breaches)

        finished = now_utc()
        updated = ScanRecord.query.filter_by(id=scan.id, status="running").update(
            {
                "status": "completed",
                "completed_at": finished,
                "ports": findings.ports,
                "ssl": findings.ssl,
                "subdomains": findings.subdomains,
                "outdated_software": findings.outdated_software,
                "discovered_paths": findings.discovered_paths,
                "vulnerabilities": findings.vulnerabilities,
                "error": None,
            },
            synchronize_session=False,
        )
        if not updated:
            raise InvalidTransition(f"scan {scan.id} left running state during probe", scan_id=scan.id)

        breaches = BreachRecord.query.filter_by(tenant_id=scan.tenant_id).all()
        payload = build_risk_assessment(
            {
                "domain": scan.domain,
                "ports": findings.ports,
                "ssl": findings.ssl,
                "outdated_software": findings.outdated_software,
                "vulnerabilities": findings.vulnerabilities,
            },
            breaches,
        )
        assessment = RiskAssessment(
            tenant_id=scan.tenant_id,
            scan_id=scan.id,
            score=payload["score"],
            category=payload["category"],
            findings=payload["findings"],
            created_at=finished,
        )
        db.session.add(assessment)

        # completed status, breaches and assessment land together
        db.session.commit()
        return new_breaches, assessment

    def _fail(self, scan_id: int, error: Exception) -> None:
        message = str(error)[:500] or error.__class__.__name__
        updated = ScanRecord.query.filter_by(id=scan_id, status="running").update(
            {"status": "failed", "error": message, "completed_at": now_utc()},
            synchronize_session=False,
        )
        db.session.commit()
        if not updated:
            logger.warning("Scan %s already terminal, failure not recorded: %s", scan_id, message)

    def _notify(self, fn, *args) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("Notification %s raised", getattr(fn, "__name__", fn))

    # ------------------------------------------------------------------
    # Background task handles
    # ------------------------------------------------------------------

    def _execute_in_context(self, scan_id: int) -> str:
        with self.app.app_context():
            return self.execute(scan_id).status

    def _track(self, scan_id: int, future: Future) -> None:
        with self._lock:
            self._inflight.add(future)

        def _done(f: Future):
            with self._lock:
                self._inflight.discard(f)
            exc = f.exception()
            if exc is not None:
                logger.error("Background scan %s raised: %s", scan_id, exc, exc_info=exc)
            else:
                logger.debug("Background scan %s finished: %s", scan_id, f.result())

        future.add_done_callback(_done)

    @property
    def inflight(self) -> int:
        with self._lock:
            return len(self._inflight)

    def shutdown(self, wait: bool = False) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_scan_status(self, scan_id: int, tenant_id: Optional[int] = None) -> ScanRecord:
        scan = db.session.get(ScanRecord, scan_id)
        if not scan or (tenant_id is not None and scan.tenant_id != tenant_id):
            raise ScanNotFound(f"scan {scan_id} not found", scan_id=scan_id)
        return scan

    def get_latest_risk(self, tenant_id: int) -> Optional[RiskAssessment]:
        return (
            RiskAssessment.query
            .filter_by(tenant_id=tenant_id)
            .order_by(RiskAssessment.created_at.desc(), RiskAssessment.id.desc())
            .first()
        )
