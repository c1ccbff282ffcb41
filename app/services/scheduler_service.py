"""
Unit Escalation Engine
Scheduler Service.

The engine has no in-process timer: an external cron calls the
/api/v1/cron/* endpoints on an interval, and those endpoints run the
registered jobs through this service.

Architecture:
    - Job functions register themselves via ``@register_job(name)``
    - Every job takes the single ``now`` of the run and returns a summary dict
    - Each run is recorded on its ScheduledJob row (created on first run)
    - Jobs run inside the caller's app context and database session
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

from flask import Flask

from app.models import db
from app.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("unit_escalation_sweep")
        def unit_escalation_sweep(now):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Runs registered jobs and keeps their run history.
    """

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Attach the scheduler to the Flask app."""
        # Importing the module registers the concrete jobs
        from app.services import scheduled_jobs  # noqa: F401

        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @staticmethod
    def _job_record(job_name: str) -> ScheduledJob:
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job_record is None:
            fn = _job_registry[job_name]
            job_record = ScheduledJob(
                job_name=job_name,
                description=(fn.__doc__ or f"Scheduled job: {job_name}").strip().splitlines()[0],
                schedule_config=_get_default_schedule(job_name),
                status="active",
                is_enabled=True,
            )
            db.session.add(job_record)
        return job_record

    @classmethod
    def run_job(cls, job_name: str, now: datetime) -> dict:
        """
        Execute a single job by name.

        A failing job is rolled back, logged with traceback and recorded as
        ``failed``; the failure is reported in the returned dict.

        Returns:
            Dict with job_name, status, duration_ms, result and error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            result = fn(now)
        except Exception as exc:
            db.session.rollback()
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

        duration_ms = int((time.monotonic() - start) * 1000)

        job_record = cls._job_record(job_name)
        job_record.record_run(
            status=status,
            duration_ms=duration_ms,
            result=result if isinstance(result, dict) else {"output": str(result)},
            error=error,
        )
        db.session.commit()

        logger.info("Job %s finished: %s in %dms", job_name, status, duration_ms,
                    extra={"job_name": job_name})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs


def _get_default_schedule(job_name: str) -> dict:
    """Return the recommended trigger interval for known jobs."""
    defaults = {
        "unit_escalation_sweep": {"minute": "*/15", "description": "Every 15 minutes"},
        "proof_expiry_check": {"minute": "*/15", "description": "Every 15 minutes"},
        "deadline_reminders": {"hour": "9", "minute": "0", "description": "Daily at 09:00"},
        "notification_delivery": {"minute": "*/5", "description": "Every 5 minutes"},
    }
    return defaults.get(job_name, {"hour": "0", "minute": "0",
                                    "description": "Daily at midnight"})
