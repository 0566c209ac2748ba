# cyberguard/queue/__init__.py
"""
Scan job queue.

Components:
    job_queue.py  — JobQueue (durable enqueue, claim, retry/backoff, dead set, pruning)
    dispatcher.py — JobDispatcher (bounded worker pool draining the queue)
    routes.py     — operator endpoints (stats, dead jobs, retry)
"""

from .dispatcher import JobDispatcher
from .job_queue import JobQueue
from .routes import queue_bp

__all__ = ["JobQueue", "JobDispatcher", "queue_bp"]
