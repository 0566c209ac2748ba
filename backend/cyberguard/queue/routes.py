# =============================================================================
# File: cyberguard/queue/routes.py
# Description: Operator endpoints for the scan job queue.
#
#   - GET  /queue/stats                  job counts by status
#   - GET  /queue/dead                   dead jobs (newest first)
#   - POST /queue/dead/<job_id>/retry    requeue a dead job with a fresh budget
# =============================================================================

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

queue_bp = Blueprint("queue", __name__, url_prefix="/queue")


def _queue():
    return current_app.extensions["job_queue"]


@queue_bp.get("/stats")
def queue_stats():
    return jsonify(_queue().stats()), 200


@queue_bp.get("/dead")
def list_dead_jobs():
    try:
        limit = int(request.args.get("limit", 50))
    except (TypeError, ValueError):
        return jsonify(error="limit must be an integer"), 400
    limit = max(1, min(limit, 50))

    return jsonify([j.to_dict() for j in _queue().dead_jobs(limit)]), 200


@queue_bp.post("/dead/<int:job_id>/retry")
def retry_dead_job(job_id: int):
    job = _queue().retry(job_id)
    return jsonify(message="requeued", job=job.to_dict()), 200
