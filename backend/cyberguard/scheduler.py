# cyberguard/scheduler.py
"""
Background Scheduler Service
────────────────────────────
One APScheduler BackgroundScheduler (UTC) owning every periodic job:

    recurrence-tick   every SCAN_TICK_SECONDS (60)   per-tenant schedules → queue
    queue-dispatch    every QUEUE_POLL_SECONDS (5)   queue → worker pool
    queue-prune       every 10 minutes               trim completed/dead history
    weekly-digest     Sunday 09:00 UTC               digest emails
    nightly-scan      NIGHTLY_SCAN_HOUR:00 UTC       all tenants, jittered (opt-in)

Constructed explicitly by the app factory and stored in
app.extensions["scheduler"]. Gunicorn runs multiple workers, so the factory
only starts it where SCHEDULER_ENABLED is true; run exactly one.
"""
from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

PRUNE_INTERVAL_MINUTES = 10


class SchedulerService:

    def __init__(self, app, evaluator, dispatcher, notifier, queue):
        self.app = app
        self.evaluator = evaluator
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.queue = queue
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    # ------------------------------------------------------------------
    # Job bodies
    # ------------------------------------------------------------------

    def _tick(self):
        try:
            self.evaluator.tick()
        except Exception:
            logger.exception("Recurrence tick failed")

    def _dispatch(self):
        with self.app.app_context():
            try:
                self.dispatcher.poll()
            except Exception:
                logger.exception("Queue dispatch failed")

    def _prune(self):
        with self.app.app_context():
            try:
                self.queue.prune()
            except Exception:
                logger.exception("Queue prune failed")

    def _weekly_digest(self):
        with self.app.app_context():
            try:
                sent = self.notifier.process_weekly_digests()
                logger.info("Weekly digest run finished: %d sent", sent)
            except Exception:
                logger.exception("Weekly digest run failed")

    def _nightly_scan(self):
        with self.app.app_context():
            try:
                self.queue.enqueue_all_tenants(name="nightly-scan", max_jitter=60)
            except Exception:
                logger.exception("Nightly scan fan-out failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.running:
            logger.info("Scheduler already running")
            return

        cfg = self.app.config
        tick_seconds = int(cfg.get("SCAN_TICK_SECONDS", 60))
        poll_seconds = int(cfg.get("QUEUE_POLL_SECONDS", 5))

        with self.app.app_context():
            self.queue.recover_stalled()

        scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        scheduler.add_job(
            func=self._tick,
            trigger=IntervalTrigger(seconds=tick_seconds),
            id="recurrence-tick",
            name="Evaluate per-tenant scan schedules",
            replace_existing=True,
            max_instances=1,  # ticks must never overlap
            coalesce=True,
        )
        scheduler.add_job(
            func=self._dispatch,
            trigger=IntervalTrigger(seconds=poll_seconds),
            id="queue-dispatch",
            name="Dispatch queued scan jobs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            func=self._prune,
            trigger=IntervalTrigger(minutes=PRUNE_INTERVAL_MINUTES),
            id="queue-prune",
            name="Prune finished queue jobs",
            replace_existing=True,
            max_instances=1,
        )
        scheduler.add_job(
            func=self._weekly_digest,
            trigger=CronTrigger(day_of_week="sun", hour=9, minute=0, timezone="UTC"),
            id="weekly-digest",
            name="Send weekly digests",
            replace_existing=True,
            max_instances=1,
        )

        if cfg.get("NIGHTLY_SCAN_ENABLED"):
            hour = int(cfg.get("NIGHTLY_SCAN_HOUR", 2))
            scheduler.add_job(
                func=self._nightly_scan,
                trigger=CronTrigger(hour=hour, minute=0, timezone="UTC"),
                id="nightly-scan",
                name="Nightly scan for all tenants",
                replace_existing=True,
                max_instances=1,
            )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Background scheduler started (tick %ss, queue poll %ss, nightly %s)",
            tick_seconds, poll_seconds, "on" if cfg.get("NIGHTLY_SCAN_ENABLED") else "off",
        )

    def stop(self, wait: bool = False) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None

        self.dispatcher.shutdown(wait=wait)
        orchestrator = getattr(self.dispatcher, "orchestrator", None)
        if orchestrator is not None:
            orchestrator.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def job_ids(self) -> list:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]
