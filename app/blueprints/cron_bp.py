"""
Cron Blueprint — HTTP entry points for the external scheduler.

Every route requires ``Authorization: Bearer <CRON_SECRET>`` and answers
503 when CRON_SECRET is not configured.

Endpoints:
    POST /api/v1/cron/check-escalations
         Runs the escalation sweep, then the proof expiry check.
    POST /api/v1/cron/deadline-reminders
         Queues approaching / overdue deadline reminders.
    POST /api/v1/cron/deliver-notifications
         Delivers pending notification requests.
    GET  /api/v1/cron/jobs
         Lists registered jobs and their last recorded runs.

Each run is recorded on its ScheduledJob row by SchedulerService.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, jsonify

from app.auth import cron_secret_required
from app.services.scheduler_service import SchedulerService
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

cron_bp = Blueprint("cron", __name__, url_prefix="/api/v1/cron")
register_error_handlers(cron_bp)


def _run(job_name: str, now: datetime):
    """Run one job; return (result, error_response)."""
    run = SchedulerService.run_job(job_name, now)
    if run["status"] != "success":
        return None, api_error(E.INTERNAL, f"Job {job_name} failed: {run['error']}")
    return run["result"], None


@cron_bp.route("/check-escalations", methods=["POST"])
@cron_secret_required
def check_escalations():
    now = datetime.now(timezone.utc)
    sweep, err = _run("unit_escalation_sweep", now)
    if err:
        return err
    expiry, err = _run("proof_expiry_check", now)
    if err:
        return err

    return jsonify({
        "success": True,
        "timestamp": now.isoformat(),
        "units_checked": sweep["units_checked"],
        "escalations_created": sweep["escalations_created"],
        "notifications_created": sweep["notifications_created"],
        "sweep": sweep,
        "proof_expiry": expiry,
    }), 200


@cron_bp.route("/deadline-reminders", methods=["POST"])
@cron_secret_required
def deadline_reminders():
    now = datetime.now(timezone.utc)
    result, err = _run("deadline_reminders", now)
    if err:
        return err
    return jsonify({"success": True, "timestamp": now.isoformat(), **result}), 200


@cron_bp.route("/deliver-notifications", methods=["POST"])
@cron_secret_required
def deliver_notifications():
    now = datetime.now(timezone.utc)
    result, err = _run("notification_delivery", now)
    if err:
        return err
    return jsonify({"success": True, "timestamp": now.isoformat(), **result}), 200


@cron_bp.route("/jobs", methods=["GET"])
@cron_secret_required
def list_jobs():
    """Registered jobs with their recorded run history."""
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)}), 200
