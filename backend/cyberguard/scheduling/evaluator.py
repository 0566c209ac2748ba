# cyberguard/scheduling/evaluator.py
"""
Recurrence evaluator: one pass over every auto-scan schedule per tick.

For each tenant with auto scanning enabled:

    1. read the tenant-local wall clock (falls back to UTC on a bad zone)
    2. due?           daily: HH:MM matches / weekly: weekday + HH:MM match
    3. gate           skip if last_auto_scan_at is already "today" locally
    4. domain         skip (debug) if the tenant has none
    5. enqueue one scheduled-scan job        (commit #1)
    6. last_auto_scan_at = now               (commit #2)

last_auto_scan_at means "triggered today", not "completed today". A crash
between commit #1 and commit #2 leaves a job queued without the marker, so
a tick later in the same minute can queue a second one. The gate is a plain
timestamp and only holds for a single scheduler instance.

Each tenant is evaluated in its own try/except with a rollback; a broken
schedule never stops the others.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import List, Optional

from cyberguard.extensions import db
from cyberguard.models import Tenant, TenantSettings
from cyberguard.scheduling.recurrence import (
    UTC,
    ScheduleConfig,
    already_triggered,
    as_utc,
    is_due,
    local_clock,
)

logger = logging.getLogger(__name__)


class RecurrenceEvaluator:

    def __init__(self, app, queue):
        self.app = app
        self.queue = queue
        self._tick_lock = threading.Lock()

    def tick(self, now: Optional[datetime] = None) -> List[int]:
        """Evaluate all schedules at ``now`` (UTC). Returns the triggered tenant ids."""
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous recurrence tick still running, skipping this one")
            return []
        try:
            instant = as_utc(now) if now else datetime.now(UTC)
            with self.app.app_context():
                return self._evaluate_all(instant)
        finally:
            self._tick_lock.release()

    def _evaluate_all(self, now: datetime) -> List[int]:
        rows = TenantSettings.query.filter(TenantSettings.auto_scan_enabled.is_(True)).all()
        # Snapshot before any commit so the gate sees the state at tick start
        configs = [row.schedule_config() for row in rows]

        triggered = []
        for config in configs:
            try:
                if self._evaluate_tenant(config, now):
                    triggered.append(config.tenant_id)
            except Exception:
                db.session.rollback()
                logger.exception("Schedule evaluation failed for tenant %s", config.tenant_id)

        if triggered:
            logger.info("Recurrence tick at %s triggered %d tenant(s): %s", now.isoformat(), len(triggered), triggered)
        return triggered

    def _evaluate_tenant(self, config: ScheduleConfig, now: datetime) -> bool:
        tz = config.zone
        clock = local_clock(now, tz)

        if not is_due(config, clock):
            return False

        if already_triggered(config, clock, tz):
            logger.debug("Tenant %s already triggered on %s, skipping", config.tenant_id, clock.date)
            return False

        tenant = db.session.get(Tenant, config.tenant_id)
        if not tenant or not tenant.domain:
            logger.debug("Tenant %s has no domain, skipping scheduled scan", config.tenant_id)
            return False

        job = self.queue.enqueue(
            tenant.id,
            tenant.domain,
            list(config.scan_types),
            priority="normal",
            name="scheduled-scan",
        )

        TenantSettings.query.filter_by(tenant_id=config.tenant_id).update(
            {"last_auto_scan_at": now.astimezone(UTC).replace(tzinfo=None)},
            synchronize_session=False,
        )
        db.session.commit()

        logger.info(
            "Tenant %s due at %s %s (%s): queued job %s",
            config.tenant_id, clock.weekday, clock.hhmm, config.timezone, job.id,
        )
        return True
