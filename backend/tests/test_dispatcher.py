"""
Tests for the job dispatcher and the background scheduler service.
"""
from datetime import timedelta

from cyberguard.errors import ProbeError
from cyberguard.extensions import db
from cyberguard.models import QueuedJob, ScanRecord, now_utc
from cyberguard.queue.dispatcher import JobDispatcher
from cyberguard.scanner.probe import ScanFindings
from cyberguard.scheduler import SchedulerService


def reload_job(job_id):
    db.session.expire_all()
    return db.session.get(QueuedJob, job_id)


def make_due(job_id):
    job = db.session.get(QueuedJob, job_id)
    job.run_at = now_utc() - timedelta(seconds=1)
    db.session.commit()


class TestPoll:
    def test_completed_scan_completes_job(self, dispatcher, queue, probe, make_tenant):
        tenant = make_tenant()
        probe.findings = ScanFindings(ports=[{"port": 443, "state": "open"}])
        job_id = queue.enqueue(tenant.id, "acme.com", ["port-scan"]).id

        assert dispatcher.poll() == [job_id]

        job = reload_job(job_id)
        assert job.status == "completed"
        scan = db.session.get(ScanRecord, job.scan_id)
        assert scan.status == "completed"
        assert scan.trigger == "scheduled"
        assert scan.scan_types == ["port-scan"]
        assert dispatcher.free_slots == dispatcher.concurrency

    def test_failed_scan_reschedules_job(self, dispatcher, queue, probe, make_tenant):
        tenant = make_tenant()
        probe.error = ProbeError("engine down")
        job_id = queue.enqueue(tenant.id, "acme.com", ["port-scan"]).id

        dispatcher.poll()

        job = reload_job(job_id)
        assert job.status == "waiting"
        assert job.attempts_made == 1
        assert job.last_error == "engine down"
        assert db.session.get(ScanRecord, job.scan_id).status == "failed"

    def test_dead_after_three_failed_attempts(self, dispatcher, queue, probe, make_tenant):
        tenant = make_tenant()
        probe.error = ProbeError("engine down")
        job_id = queue.enqueue(tenant.id, "acme.com", ["port-scan"]).id

        for _ in range(3):
            make_due(job_id)
            assert dispatcher.poll() == [job_id]

        job = reload_job(job_id)
        assert job.status == "dead"
        assert job.attempts_made == 3
        # every attempt is its own scan record
        assert ScanRecord.query.filter_by(tenant_id=tenant.id, status="failed").count() == 3

    def test_orchestrator_crash_fails_job(self, dispatcher, queue, orchestrator, make_tenant, monkeypatch):
        tenant = make_tenant()
        job_id = queue.enqueue(tenant.id, "acme.com", []).id

        def explode(job):
            raise RuntimeError("worker blew up")

        monkeypatch.setattr(orchestrator, "run_job", explode)
        dispatcher.poll()

        job = reload_job(job_id)
        assert job.status == "waiting"
        assert job.last_error == "worker blew up"

    def test_nightly_job_records_trigger(self, dispatcher, queue, make_tenant):
        tenant = make_tenant()
        job_id = queue.enqueue(tenant.id, "acme.com", [], name="nightly-scan", priority="low").id
        dispatcher.poll()
        scan = db.session.get(ScanRecord, reload_job(job_id).scan_id)
        assert scan.trigger == "nightly"

    def test_nothing_due(self, dispatcher):
        assert dispatcher.poll() == []


class TestConcurrencyLimit:
    def test_claims_only_free_slots(self, app, queue, orchestrator, deferred, make_tenant):
        tenant = make_tenant()
        for _ in range(5):
            queue.enqueue(tenant.id, "acme.com", ["port-scan"])

        dispatcher = JobDispatcher(app, queue, orchestrator, concurrency=3, executor=deferred)

        assert len(dispatcher.poll()) == 3
        assert dispatcher.free_slots == 0
        assert dispatcher.poll() == []

        deferred.run_all()
        assert dispatcher.free_slots == 3
        assert len(dispatcher.poll()) == 2

        deferred.run_all()
        db.session.expire_all()
        assert queue.stats()["completed"] == 5

    def test_job_no_longer_active_is_skipped(self, app, queue, orchestrator, deferred, make_tenant):
        tenant = make_tenant()
        job_id = queue.enqueue(tenant.id, "acme.com", []).id

        dispatcher = JobDispatcher(app, queue, orchestrator, concurrency=1, executor=deferred)
        dispatcher.poll()

        # operator or stall recovery moved it on before the worker started
        job = db.session.get(QueuedJob, job_id)
        job.status = "waiting"
        db.session.commit()

        assert dispatcher.run_one(job_id) is None
        assert ScanRecord.query.count() == 0


class TestSchedulerService:
    def test_registers_periodic_jobs(self, app, evaluator, dispatcher, notifier, queue):
        service = SchedulerService(app, evaluator, dispatcher, notifier, queue)
        service.start()
        try:
            assert service.running
            assert sorted(service.job_ids()) == [
                "queue-dispatch", "queue-prune", "recurrence-tick", "weekly-digest",
            ]
        finally:
            service.stop()
        assert not service.running
        assert service.job_ids() == []

    def test_nightly_scan_is_opt_in(self, app, evaluator, dispatcher, notifier, queue):
        app.config["NIGHTLY_SCAN_ENABLED"] = True
        service = SchedulerService(app, evaluator, dispatcher, notifier, queue)
        service.start()
        try:
            assert "nightly-scan" in service.job_ids()
        finally:
            service.stop()

    def test_health_reports_scheduler_state(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["scheduler"] == "stopped"
