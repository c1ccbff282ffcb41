"""
API tests: /api/v1/cron/* scheduled triggers and SchedulerService run history.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.models.notification import DELIVERY_SENT, EscalationNotification
from app.models.scheduling import ScheduledJob
from app.services.scheduler_service import SchedulerService, get_registered_jobs

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}

CRON_PATHS = [
    "/api/v1/cron/check-escalations",
    "/api/v1/cron/deadline-reminders",
    "/api/v1/cron/deliver-notifications",
]


def _real_now():
    return datetime.now(timezone.utc)


class TestCronAuth:

    @pytest.mark.parametrize("path", CRON_PATHS)
    def test_wrong_secret_is_401(self, client, path):
        res = client.post(path, headers={"Authorization": "Bearer nope"})
        assert res.status_code == 401

    @pytest.mark.parametrize("path", CRON_PATHS)
    def test_missing_secret_is_401(self, client, path):
        assert client.post(path).status_code == 401

    def test_unconfigured_secret_is_503(self, app, client, monkeypatch):
        monkeypatch.setitem(app.config, "CRON_SECRET", None)
        res = client.post(CRON_PATHS[0], headers=CRON_HEADERS)
        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_NOT_CONFIGURED"

    def test_user_jwt_is_not_a_cron_credential(self, client, org, auth_header):
        res = client.post(CRON_PATHS[0], headers=auth_header(org.owner))
        assert res.status_code == 401


class TestCheckEscalations:

    def test_sweep_escalates_and_records_run(self, client, org, make_unit):
        real_now = _real_now()
        unit = make_unit(org, created_at=real_now - timedelta(days=6), deadline=real_now + timedelta(days=4))

        res = client.post("/api/v1/cron/check-escalations", headers=CRON_HEADERS)

        assert res.status_code == 200
        data = res.get_json()
        assert data["success"] is True
        assert data["units_checked"] == 1
        assert data["escalations_created"] == 1
        assert data["notifications_created"] == 1
        assert "proof_expiry" in data
        assert unit.current_escalation_level == 1

        for name in ("unit_escalation_sweep", "proof_expiry_check"):
            job = ScheduledJob.query.filter_by(job_name=name).one()
            assert job.last_run_status == "success"
            assert job.run_count == 1

    def test_second_trigger_is_idempotent(self, client, org, make_unit):
        real_now = _real_now()
        make_unit(org, created_at=real_now - timedelta(days=6), deadline=real_now + timedelta(days=4))

        client.post("/api/v1/cron/check-escalations", headers=CRON_HEADERS)
        data = client.post("/api/v1/cron/check-escalations", headers=CRON_HEADERS).get_json()

        assert data["escalations_created"] == 0
        assert ScheduledJob.query.filter_by(job_name="unit_escalation_sweep").one().run_count == 2

    def test_job_failure_is_500_and_recorded(self, client, monkeypatch):
        import app.services.scheduled_jobs as jobs

        def _boom(now):
            raise RuntimeError("database went away")

        monkeypatch.setattr(jobs, "run_escalation_sweep", _boom)

        res = client.post("/api/v1/cron/check-escalations", headers=CRON_HEADERS)

        assert res.status_code == 500
        assert res.get_json()["code"] == "ERR_INTERNAL"
        job = ScheduledJob.query.filter_by(job_name="unit_escalation_sweep").one()
        assert job.last_run_status == "failed"
        assert job.error_count == 1
        assert "database went away" in job.last_error


class TestRemindersAndDelivery:

    def test_reminders_then_delivery(self, client, org, make_unit):
        real_now = _real_now()
        make_unit(org, title="Late unit", deadline=real_now - timedelta(hours=3))

        res = client.post("/api/v1/cron/deadline-reminders", headers=CRON_HEADERS)
        assert res.status_code == 200
        data = res.get_json()
        assert data["overdue_units"] == 1
        assert data["notifications_queued"] == 2

        res = client.post("/api/v1/cron/deliver-notifications", headers=CRON_HEADERS)
        assert res.status_code == 200
        assert res.get_json()["sent"] == 2
        assert {n.status for n in EscalationNotification.query.all()} == {DELIVERY_SENT}


class TestSchedulerService:

    def test_all_jobs_registered(self):
        assert set(get_registered_jobs()) == {
            "unit_escalation_sweep",
            "proof_expiry_check",
            "deadline_reminders",
            "notification_delivery",
        }

    def test_unknown_job(self):
        outcome = SchedulerService.run_job("nope", _real_now())
        assert outcome["status"] == "error"
        assert ScheduledJob.query.count() == 0

    def test_list_jobs_includes_run_history(self):
        SchedulerService.run_job("notification_delivery", _real_now())

        jobs = {j["job_name"]: j for j in SchedulerService.list_jobs()}

        assert jobs["notification_delivery"]["db_record"]["run_count"] == 1
        assert jobs["notification_delivery"]["db_record"]["schedule_config"]["minute"] == "*/5"
        assert jobs["deadline_reminders"]["db_record"] is None

    def test_jobs_endpoint_lists_registry(self, client):
        client.post("/api/v1/cron/deliver-notifications", headers=CRON_HEADERS)

        res = client.get("/api/v1/cron/jobs", headers=CRON_HEADERS)

        assert res.status_code == 200
        data = res.get_json()
        assert data["total"] == 4
        jobs = {j["job_name"]: j for j in data["jobs"]}
        assert jobs["notification_delivery"]["db_record"]["run_count"] == 1
        assert jobs["unit_escalation_sweep"]["db_record"] is None

    def test_jobs_endpoint_requires_secret(self, client):
        assert client.get("/api/v1/cron/jobs").status_code == 401
