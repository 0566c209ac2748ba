"""
Tests for the durable scan job queue: priorities, backoff, the dead set,
retention and stall recovery.
"""
import random
from datetime import timedelta

import pytest

from cyberguard.errors import InvalidTransition, JobNotFound
from cyberguard.extensions import db
from cyberguard.models import QueuedJob, now_utc
from cyberguard.queue.job_queue import JobQueue


def make_due(job_id):
    job = db.session.get(QueuedJob, job_id)
    job.run_at = now_utc() - timedelta(seconds=1)
    db.session.commit()


class TestEnqueue:
    def test_defaults(self, queue, make_tenant):
        tenant = make_tenant()
        job = queue.enqueue(tenant.id, "acme.com", ["port-scan"])

        assert job.status == "waiting"
        assert job.name == "scheduled-scan"
        assert job.priority == 5
        assert job.attempts_made == 0
        assert job.max_attempts == 3
        assert job.scan_types == ["port-scan"]

    def test_named_priorities(self, queue, make_tenant):
        tenant = make_tenant()
        assert queue.enqueue(tenant.id, "acme.com", [], priority="high").priority == 1
        assert queue.enqueue(tenant.id, "acme.com", [], priority="low").priority == 10

    def test_unknown_priority_rejected(self, queue, make_tenant):
        tenant = make_tenant()
        with pytest.raises(ValueError):
            queue.enqueue(tenant.id, "acme.com", [], priority="urgent")

    def test_empty_types_use_full_probe_set(self, queue, make_tenant):
        tenant = make_tenant()
        assert len(queue.enqueue(tenant.id, "acme.com", []).scan_types) == 6

    def test_delay_pushes_run_at(self, queue, make_tenant):
        tenant = make_tenant()
        job = queue.enqueue(tenant.id, "acme.com", [], delay=30)
        assert job.run_at - job.enqueued_at == timedelta(seconds=30)
        assert queue.claim(5) == []


class TestEnqueueAllTenants:
    def test_one_low_priority_job_per_tenant_with_domain(self, queue, make_tenant):
        a = make_tenant(name="A", domain="a.com", admin_email="x@a.com")
        b = make_tenant(name="B", domain="b.com", admin_email="x@b.com", scan_types=["ssl-check"])
        make_tenant(name="C", domain=None, admin_email="x@c.com")

        ids = queue.enqueue_all_tenants()
        jobs = QueuedJob.query.filter(QueuedJob.id.in_(ids)).all()

        assert sorted(j.tenant_id for j in jobs) == sorted([a.id, b.id])
        assert all(j.priority == 10 and j.name == "nightly-scan" for j in jobs)
        assert {j.tenant_id: j.scan_types for j in jobs}[b.id] == ["ssl-check"]

    def test_jitter_within_window(self, app, make_tenant):
        for i in range(5):
            make_tenant(name=f"T{i}", domain=f"t{i}.com", admin_email=f"x@t{i}.com")

        queue = JobQueue(rng=random.Random(7))
        ids = queue.enqueue_all_tenants(max_jitter=60)
        for job in QueuedJob.query.filter(QueuedJob.id.in_(ids)):
            delay = (job.run_at - job.enqueued_at).total_seconds()
            assert 0 <= delay < 60

    def test_explicit_types_override_settings(self, queue, make_tenant):
        make_tenant(scan_types=["ssl-check"])
        ids = queue.enqueue_all_tenants(types=["port-scan"], max_jitter=0)
        assert db.session.get(QueuedJob, ids[0]).scan_types == ["port-scan"]


class TestClaim:
    def test_priority_order(self, queue, make_tenant):
        tenant = make_tenant()
        low = queue.enqueue(tenant.id, "acme.com", [], priority="low").id
        normal = queue.enqueue(tenant.id, "acme.com", [], priority="normal").id
        high = queue.enqueue(tenant.id, "acme.com", [], priority="high").id

        assert [j.id for j in queue.claim(3)] == [high, normal, low]

    def test_claim_marks_active_and_counts_attempt(self, queue, make_tenant):
        tenant = make_tenant()
        queue.enqueue(tenant.id, "acme.com", [])
        job = queue.claim(1)[0]
        assert job.status == "active"
        assert job.attempts_made == 1
        assert job.started_at is not None
        assert queue.claim(1) == []

    def test_respects_limit(self, queue, make_tenant):
        tenant = make_tenant()
        for _ in range(4):
            queue.enqueue(tenant.id, "acme.com", [])
        assert len(queue.claim(2)) == 2
        assert len(queue.claim(0)) == 0
        assert len(queue.claim(5)) == 2


class TestFailureAndBackoff:
    def test_backoff_then_dead(self, queue, make_tenant):
        tenant = make_tenant()
        job_id = queue.enqueue(tenant.id, "acme.com", []).id

        queue.claim(1)
        before = now_utc()
        assert queue.fail(job_id, "boom 1") == "waiting"
        job = db.session.get(QueuedJob, job_id)
        assert timedelta(seconds=4) < job.run_at - before <= timedelta(seconds=6)

        make_due(job_id)
        queue.claim(1)
        before = now_utc()
        assert queue.fail(job_id, "boom 2") == "waiting"
        job = db.session.get(QueuedJob, job_id)
        assert timedelta(seconds=9) < job.run_at - before <= timedelta(seconds=11)

        make_due(job_id)
        queue.claim(1)
        assert queue.fail(job_id, "boom 3") == "dead"

        job = db.session.get(QueuedJob, job_id)
        assert job.status == "dead"
        assert job.attempts_made == 3
        assert job.last_error == "boom 3"
        assert job.finished_at is not None

    def test_complete_records_scan(self, queue, make_tenant, orchestrator):
        tenant = make_tenant()
        scan = orchestrator.create_scan(tenant.id, "acme.com", ["port-scan"], "scheduled")
        job_id = queue.enqueue(tenant.id, "acme.com", []).id
        queue.claim(1)
        queue.complete(job_id, scan.id)

        job = db.session.get(QueuedJob, job_id)
        assert job.status == "completed"
        assert job.scan_id == scan.id

    def test_unknown_job_is_ignored(self, queue):
        assert queue.fail(999, "nope") is None
        queue.complete(999)


class TestRetry:
    def _dead_job(self, queue, tenant_id):
        job_id = queue.enqueue(tenant_id, "acme.com", []).id
        for _ in range(3):
            make_due(job_id)
            queue.claim(1)
            queue.fail(job_id, "boom")
        return job_id

    def test_retry_dead_job(self, queue, make_tenant):
        tenant = make_tenant()
        job_id = self._dead_job(queue, tenant.id)

        job = queue.retry(job_id)
        assert job.status == "waiting"
        assert job.attempts_made == 0
        assert [j.id for j in queue.claim(1)] == [job_id]

    def test_retry_requires_dead(self, queue, make_tenant):
        tenant = make_tenant()
        job_id = queue.enqueue(tenant.id, "acme.com", []).id
        with pytest.raises(InvalidTransition):
            queue.retry(job_id)

    def test_retry_missing(self, queue):
        with pytest.raises(JobNotFound):
            queue.retry(12345)

    def test_dead_jobs_listing(self, queue, make_tenant):
        tenant = make_tenant()
        job_id = self._dead_job(queue, tenant.id)
        assert [j.id for j in queue.dead_jobs()] == [job_id]


class TestRetention:
    def _finished(self, tenant_id, status, count):
        base = now_utc() - timedelta(hours=1)
        for i in range(count):
            db.session.add(QueuedJob(
                tenant_id=tenant_id,
                domain="acme.com",
                status=status,
                attempts_made=1,
                finished_at=base + timedelta(seconds=i),
            ))
        db.session.commit()

    def test_prune_keeps_newest(self, queue, make_tenant):
        tenant = make_tenant()
        self._finished(tenant.id, "completed", 105)
        self._finished(tenant.id, "dead", 53)
        queue.enqueue(tenant.id, "acme.com", [])

        assert queue.prune() == 8

        stats = queue.stats()
        assert stats["completed"] == 100
        assert stats["dead"] == 50
        assert stats["waiting"] == 1

        oldest_kept = (
            QueuedJob.query.filter_by(status="completed")
            .order_by(QueuedJob.finished_at.asc())
            .first()
        )
        newest = (
            QueuedJob.query.filter_by(status="completed")
            .order_by(QueuedJob.finished_at.desc())
            .first()
        )
        assert newest.finished_at - oldest_kept.finished_at == timedelta(seconds=99)

    def test_stats_has_every_status(self, queue):
        assert queue.stats() == {"waiting": 0, "active": 0, "completed": 0, "dead": 0}


class TestStallRecovery:
    def test_stalled_active_job_returns_to_waiting(self, queue, make_tenant):
        tenant = make_tenant()
        job_id = queue.enqueue(tenant.id, "acme.com", []).id
        queue.claim(1)

        job = db.session.get(QueuedJob, job_id)
        job.started_at = now_utc() - timedelta(seconds=queue.stall_timeout + 60)
        db.session.commit()

        assert queue.recover_stalled() == 1
        job = db.session.get(QueuedJob, job_id)
        assert job.status == "waiting"
        assert "stalled" in job.last_error

    def test_stalled_job_out_of_attempts_is_dead(self, queue, make_tenant):
        tenant = make_tenant()
        job_id = queue.enqueue(tenant.id, "acme.com", []).id
        queue.claim(1)

        job = db.session.get(QueuedJob, job_id)
        job.attempts_made = 3
        job.started_at = now_utc() - timedelta(seconds=queue.stall_timeout + 60)
        db.session.commit()

        queue.recover_stalled()
        assert db.session.get(QueuedJob, job_id).status == "dead"

    def test_fresh_active_job_untouched(self, queue, make_tenant):
        tenant = make_tenant()
        queue.enqueue(tenant.id, "acme.com", [])
        queue.claim(1)
        assert queue.recover_stalled() == 0
