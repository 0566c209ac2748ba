# cyberguard/queue/job_queue.py
"""
Durable scan job queue, backed by the queued_job table.

    waiting ──claim()──► active ──complete()──► completed
       ▲                   │
       └──fail() (budget)──┤
                           └──fail() (exhausted)──► dead ──retry()──► waiting

Every job gets 3 delivery attempts. A failed attempt is rescheduled after
backoff_seconds * 2 ** (attempts_made - 1), i.e. 5s then 10s; the third
failure moves the job to the dead set, where it stays visible to operators
(GET /queue/dead) until pruned or retried.

The queue is not an audit log: prune() keeps the newest 100 completed and
50 dead jobs.

All methods need an app context. claim() uses SELECT ... FOR UPDATE SKIP
LOCKED, which SQLite silently ignores (single writer anyway).
"""

from __future__ import annotations

import logging
import random
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Union

from cyberguard.errors import InvalidTransition, JobNotFound
from cyberguard.extensions import db
from cyberguard.models import JOB_STATUSES, QueuedJob, Tenant, TenantSettings, now_utc
from cyberguard.scheduling.recurrence import FULL_PROBE_SET

logger = logging.getLogger(__name__)

PRIORITIES = {"high": 1, "normal": 5, "low": 10}

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 5
KEEP_COMPLETED = 100
KEEP_DEAD = 50
STALL_TIMEOUT_SECONDS = 900


def _priority(value: Union[str, int, None]) -> int:
    if isinstance(value, int):
        return value
    try:
        return PRIORITIES[(value or "normal").lower()]
    except KeyError:
        raise ValueError(f"unknown priority {value!r}") from None


class JobQueue:

    def __init__(
        self,
        max_attempts: int = DEFAULT_ATTEMPTS,
        backoff_seconds: int = DEFAULT_BACKOFF_SECONDS,
        stall_timeout: int = STALL_TIMEOUT_SECONDS,
        rng: Optional[random.Random] = None,
    ):
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.stall_timeout = stall_timeout
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def _build(self, tenant_id, domain, types, priority, name, delay) -> QueuedJob:
        now = now_utc()
        return QueuedJob(
            name=name,
            tenant_id=tenant_id,
            domain=domain,
            scan_types=list(types or FULL_PROBE_SET),
            priority=_priority(priority),
            status="waiting",
            attempts_made=0,
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            run_at=now + timedelta(seconds=max(0.0, float(delay or 0))),
            enqueued_at=now,
        )

    def enqueue(
        self,
        tenant_id: int,
        domain: str,
        types: Iterable[str],
        priority: Union[str, int] = "normal",
        name: str = "scheduled-scan",
        delay: float = 0,
    ) -> QueuedJob:
        job = self._build(tenant_id, domain, types, priority, name, delay)
        db.session.add(job)
        db.session.commit()
        logger.info("Enqueued %s job %s for tenant %s (%s)", name, job.id, tenant_id, domain)
        return job

    def enqueue_all_tenants(
        self,
        types: Optional[Iterable[str]] = None,
        name: str = "nightly-scan",
        max_jitter: float = 60,
        priority: Union[str, int] = "low",
    ) -> List[int]:
        """
        One job per tenant with a domain, each delayed by a random
        0..max_jitter seconds so the probe engine never sees every tenant
        at the same instant.
        """
        tenants = Tenant.query.filter(Tenant.domain.isnot(None), Tenant.domain != "").all()
        settings = {
            s.tenant_id: s for s in
            TenantSettings.query.filter(TenantSettings.tenant_id.in_([t.id for t in tenants])).all()
        } if tenants else {}

        jobs = []
        for tenant in tenants:
            if types:
                scan_types = list(types)
            elif tenant.id in settings:
                scan_types = list(settings[tenant.id].schedule_config().scan_types)
            else:
                scan_types = list(FULL_PROBE_SET)

            delay = self._rng.random() * max_jitter if max_jitter > 0 else 0
            job = self._build(tenant.id, tenant.domain, scan_types, priority, name, delay)
            db.session.add(job)
            jobs.append(job)

        db.session.commit()
        logger.info("Enqueued %d %s job(s) with up to %ss jitter", len(jobs), name, max_jitter)
        return [j.id for j in jobs]

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def claim(self, limit: int = 1) -> List[QueuedJob]:
        """Move up to ``limit`` due waiting jobs to active, highest priority first."""
        if limit <= 0:
            return []

        now = now_utc()
        jobs = (
            QueuedJob.query
            .filter(QueuedJob.status == "waiting", QueuedJob.run_at <= now)
            .order_by(QueuedJob.priority.asc(), QueuedJob.run_at.asc(), QueuedJob.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
            .all()
        )
        for job in jobs:
            job.status = "active"
            job.attempts_made += 1
            job.started_at = now
        db.session.commit()

        if jobs:
            logger.debug("Claimed %d job(s): %s", len(jobs), [j.id for j in jobs])
        return jobs

    def complete(self, job_id: int, scan_id: Optional[int] = None) -> None:
        job = db.session.get(QueuedJob, job_id)
        if not job:
            return
        job.status = "completed"
        job.finished_at = now_utc()
        job.scan_id = scan_id
        job.last_error = None
        db.session.commit()
        logger.info("Job %s completed (scan %s)", job_id, scan_id)

    def fail(self, job_id: int, error: str, scan_id: Optional[int] = None) -> Optional[str]:
        """Reschedule with backoff, or move to the dead set. Returns the new status."""
        job = db.session.get(QueuedJob, job_id)
        if not job:
            return None

        job.last_error = str(error or "")[:500]
        if scan_id is not None:
            job.scan_id = scan_id

        if job.attempts_made < job.max_attempts:
            delay = job.backoff_seconds * 2 ** (max(job.attempts_made, 1) - 1)
            job.status = "waiting"
            job.run_at = now_utc() + timedelta(seconds=delay)
            db.session.commit()
            logger.warning(
                "Job %s attempt %d/%d failed, retrying in %ss: %s",
                job_id, job.attempts_made, job.max_attempts, delay, job.last_error,
            )
            return "waiting"

        job.status = "dead"
        job.finished_at = now_utc()
        db.session.commit()
        logger.error(
            "Job %s (%s, tenant %s, %s) is dead after %d attempts: %s",
            job_id, job.name, job.tenant_id, job.domain, job.attempts_made, job.last_error,
        )
        return "dead"

    def recover_stalled(self) -> int:
        """Return jobs left active by a crashed worker to the waiting set."""
        now = now_utc()
        cutoff = now - timedelta(seconds=self.stall_timeout)
        stalled = (
            QueuedJob.query
            .filter(QueuedJob.status == "active", QueuedJob.started_at < cutoff)
            .all()
        )
        for job in stalled:
            job.last_error = "stalled: worker did not report back"
            if job.attempts_made >= job.max_attempts:
                job.status = "dead"
                job.finished_at = now
            else:
                job.status = "waiting"
                job.run_at = now
        db.session.commit()

        if stalled:
            logger.warning("Recovered %d stalled job(s)", len(stalled))
        return len(stalled)

    # ------------------------------------------------------------------
    # Retention + operator views
    # ------------------------------------------------------------------

    def _prune_status(self, status: str, keep: int) -> int:
        stale_ids = [
            row.id for row in
            db.session.query(QueuedJob.id)
            .filter(QueuedJob.status == status)
            .order_by(QueuedJob.finished_at.desc(), QueuedJob.id.desc())
            .offset(keep)
            .all()
        ]
        if not stale_ids:
            return 0
        QueuedJob.query.filter(QueuedJob.id.in_(stale_ids)).delete(synchronize_session=False)
        return len(stale_ids)

    def prune(self, keep_completed: int = KEEP_COMPLETED, keep_dead: int = KEEP_DEAD) -> int:
        removed = self._prune_status("completed", keep_completed)
        removed += self._prune_status("dead", keep_dead)
        db.session.commit()
        if removed:
            logger.info("Pruned %d finished job(s)", removed)
        return removed

    def stats(self) -> Dict[str, int]:
        counts = {status: 0 for status in JOB_STATUSES}
        rows = (
            db.session.query(QueuedJob.status, db.func.count(QueuedJob.id))
            .group_by(QueuedJob.status)
            .all()
        )
        for status, count in rows:
            counts[status] = count
        return counts

    def dead_jobs(self, limit: int = KEEP_DEAD) -> List[QueuedJob]:
        return (
            QueuedJob.query
            .filter_by(status="dead")
            .order_by(QueuedJob.finished_at.desc(), QueuedJob.id.desc())
            .limit(limit)
            .all()
        )

    def retry(self, job_id: int) -> QueuedJob:
        """Give a dead job a fresh attempt budget."""
        job = db.session.get(QueuedJob, job_id)
        if not job:
            raise JobNotFound(f"job {job_id} not found", job_id=job_id)
        if job.status != "dead":
            raise InvalidTransition(f"job {job_id} is {job.status}, only dead jobs can be retried", job_id=job_id)

        job.status = "waiting"
        job.attempts_made = 0
        job.run_at = now_utc()
        job.started_at = None
        job.finished_at = None
        db.session.commit()
        logger.info("Dead job %s requeued by operator", job_id)
        return job
