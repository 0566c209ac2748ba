#!/usr/bin/env python3
"""
seed_scans.py

Enqueues one scan job per tenant that has a domain, each delayed by a
random 0..60s so the probe engine is not hit by every tenant at once.
Use after a fresh deploy or a probe engine outage. The running scheduler
(SCHEDULER_ENABLED=true process) picks the jobs up.

Usage:
    python seed_scans.py                      # default scan types per tenant
    python seed_scans.py port-scan ssl-check  # explicit scan types
    python seed_scans.py --jitter 120

Run from backend/ (where cyberguard/ lives).
"""

import os
import sys

# Ensure the app is importable
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from cyberguard import create_app
from cyberguard.scheduling.recurrence import FULL_PROBE_SET


def seed(queue, types=None, max_jitter=60):
    job_ids = queue.enqueue_all_tenants(types=types or None, name="seed-scan", max_jitter=max_jitter)
    print(f"Enqueued {len(job_ids)} seed job(s) with up to {max_jitter}s jitter.")
    return job_ids


def _parse_args(argv):
    jitter = 60
    types = []
    args = list(argv)
    while args:
        arg = args.pop(0)
        if arg == "--jitter":
            jitter = int(args.pop(0))
        elif arg in FULL_PROBE_SET:
            types.append(arg)
        else:
            raise SystemExit(f"unknown argument: {arg} (scan types: {', '.join(FULL_PROBE_SET)})")
    return types, jitter


if __name__ == "__main__":
    scan_types, max_jitter = _parse_args(sys.argv[1:])
    app = create_app({"SCHEDULER_ENABLED": False})
    with app.app_context():
        seed(app.extensions["job_queue"], scan_types, max_jitter)
