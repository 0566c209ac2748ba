# cyberguard/queue/dispatcher.py
"""
Job dispatcher: pulls due jobs off the queue and runs them on a bounded
worker pool.

poll() is called on a short interval by the scheduler service. Each call
claims at most as many jobs as there are free worker slots, so a slow probe
engine backs up the queue instead of piling threads. Every job runs in its
own app context and its own try/except; one job's failure goes through
JobQueue.fail() and never touches the others.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

from cyberguard.extensions import db
from cyberguard.models import QueuedJob

logger = logging.getLogger(__name__)


class JobDispatcher:

    def __init__(self, app, queue, orchestrator, concurrency: int = 3, executor=None):
        self.app = app
        self.queue = queue
        self.orchestrator = orchestrator
        self.concurrency = max(1, int(concurrency))
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="queue-worker",
        )
        self._active = 0
        self._lock = threading.Lock()

    @property
    def free_slots(self) -> int:
        with self._lock:
            return max(0, self.concurrency - self._active)

    def poll(self) -> List[int]:
        """Claim and submit due jobs. Returns the claimed job ids."""
        slots = self.free_slots
        if not slots:
            return []

        job_ids = [job.id for job in self.queue.claim(slots)]
        for job_id in job_ids:
            with self._lock:
                self._active += 1
            future = self.executor.submit(self._run_in_context, job_id)
            future.add_done_callback(self._make_done(job_id))
        return job_ids

    def _make_done(self, job_id: int):
        def _done(f: Future):
            with self._lock:
                self._active -= 1
            exc = f.exception()
            if exc is not None:
                logger.error("Queue worker for job %s raised: %s", job_id, exc, exc_info=exc)
        return _done

    def _run_in_context(self, job_id: int) -> Optional[str]:
        with self.app.app_context():
            return self.run_one(job_id)

    def run_one(self, job_id: int) -> Optional[str]:
        """Run one claimed job to a queue outcome. Needs an app context."""
        job = db.session.get(QueuedJob, job_id)
        if not job or job.status != "active":
            logger.warning("Job %s vanished or is no longer active, skipping", job_id)
            return None

        try:
            scan = self.orchestrator.run_job(job)
        except Exception as e:
            db.session.rollback()
            logger.exception("Job %s raised during execution", job_id)
            return self.queue.fail(job_id, str(e))

        if scan.status == "completed":
            self.queue.complete(job_id, scan.id)
            return "completed"

        return self.queue.fail(job_id, scan.error or "scan failed", scan_id=scan.id)

    def shutdown(self, wait: bool = False) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=wait)
