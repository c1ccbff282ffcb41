"""
Tests: Deadline Reminder Pass — approaching, tomorrow and overdue reminders,
recipient selection, day counting and rerun idempotence.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.models.notification import EscalationNotification
from app.models.unit import STATUS_BLOCKED, STATUS_GREEN
from app.services.deadline_reminders import run_deadline_reminders
from app.services.notification import NotificationService


def _notifications(unit):
    return EscalationNotification.query.filter_by(unit_id=unit.id).order_by(EscalationNotification.id).all()


class TestApproaching:

    def test_approaching_deadline_notifies_leads_only(self, org, make_unit, now):
        unit = make_unit(org, title="Pour slab", deadline=now + timedelta(hours=60))

        result = run_deadline_reminders(now)

        assert result["approaching_deadlines"] == 1
        assert result["overdue_units"] == 0
        assert result["notifications_queued"] == 1
        assert result["errors"] == []
        [notif] = _notifications(unit)
        assert notif.recipient_email == org.lead.email
        assert notif.notification_type == "deadline_approaching"
        assert notif.priority == "high"
        assert notif.subject == 'Deadline Approaching: "Pour slab" - 3 days left'

    def test_due_within_a_day_also_notifies_owners(self, org, make_unit, now):
        unit = make_unit(org, title="Pour slab", deadline=now + timedelta(hours=20))

        result = run_deadline_reminders(now)

        assert result["notifications_queued"] == 2
        notifs = _notifications(unit)
        assert {n.recipient_email for n in notifs} == {org.lead.email, org.owner.email}
        assert {n.subject for n in notifs} == {'URGENT: "Pour slab" deadline is TOMORROW'}
        assert {n.priority for n in notifs} == {"critical"}

    def test_beyond_horizon_is_ignored(self, org, make_unit, now):
        make_unit(org, deadline=now + timedelta(days=4))
        result = run_deadline_reminders(now)
        assert result["approaching_deadlines"] == 0
        assert EscalationNotification.query.count() == 0

    def test_horizon_can_be_widened(self, org, make_unit, now):
        make_unit(org, deadline=now + timedelta(days=4))
        result = run_deadline_reminders(now, approaching_days=7)
        assert result["approaching_deadlines"] == 1


class TestOverdue:

    def test_overdue_notifies_leads_and_owners(self, org, make_unit, now):
        unit = make_unit(org, title="Pour slab", deadline=now - timedelta(hours=30))

        result = run_deadline_reminders(now)

        assert result["overdue_units"] == 1
        notifs = _notifications(unit)
        assert {n.recipient_email for n in notifs} == {org.lead.email, org.owner.email}
        assert {n.subject for n in notifs} == {'OVERDUE: "Pour slab" - 2 days past deadline'}
        assert notifs[0].template_data["days_overdue"] == 2

    def test_one_hour_late_counts_as_one_day(self, org, make_unit, now):
        unit = make_unit(org, title="Pour slab", deadline=now - timedelta(hours=1))
        run_deadline_reminders(now)
        assert _notifications(unit)[0].subject == 'OVERDUE: "Pour slab" - 1 day past deadline'

    def test_other_tenants_are_not_notified(self, org, other_org, make_unit, now):
        make_unit(org, deadline=now - timedelta(days=1))
        run_deadline_reminders(now)
        emails = {n.recipient_email for n in EscalationNotification.query.all()}
        assert other_org.lead.email not in emails
        assert other_org.owner.email not in emails


class TestSkipsAndIdempotence:

    def test_rerun_queues_nothing_new(self, org, make_unit, now):
        make_unit(org, deadline=now - timedelta(hours=5))
        first = run_deadline_reminders(now)
        second = run_deadline_reminders(now + timedelta(minutes=30))

        assert first["notifications_queued"] == 2
        assert second["overdue_units"] == 1
        assert second["notifications_queued"] == 0
        assert EscalationNotification.query.count() == 2

    def test_overlapping_runs_that_miss_the_read_check_queue_once(self, org, make_unit, now, monkeypatch):
        """Both runs see no earlier reminder; the unique key keeps one row per recipient."""
        unit = make_unit(org, deadline=now - timedelta(hours=5))
        monkeypatch.setattr(NotificationService, "already_queued", staticmethod(lambda *a: False))

        first = run_deadline_reminders(now)
        second = run_deadline_reminders(now + timedelta(minutes=30))

        assert first["notifications_queued"] == 2
        assert second["notifications_queued"] == 0
        assert second["errors"] == []
        notifs = _notifications(unit)
        assert len(notifs) == 2
        assert all(n.dedupe_key for n in notifs)

    def test_new_day_count_queues_a_fresh_reminder(self, org, make_unit, now):
        unit = make_unit(org, deadline=now - timedelta(hours=5))
        run_deadline_reminders(now)
        run_deadline_reminders(now + timedelta(days=1))

        subjects = {n.subject for n in _notifications(unit)}
        assert len(subjects) == 2

    @pytest.mark.parametrize("overrides", [
        {"computed_status": STATUS_GREEN},
        {"is_blocked": True, "computed_status": STATUS_BLOCKED},
        {"deadline": None},
    ])
    def test_skipped_units(self, org, make_unit, now, overrides):
        fields = {"deadline": now - timedelta(days=1)}
        fields.update(overrides)
        make_unit(org, **fields)

        result = run_deadline_reminders(now)

        assert result["approaching_deadlines"] == 0
        assert result["overdue_units"] == 0
        assert EscalationNotification.query.count() == 0

    def test_archived_units_are_skipped(self, org, make_unit, now):
        unit = make_unit(org, deadline=now - timedelta(days=1))
        unit.archive(org.owner.id)

        result = run_deadline_reminders(now)

        assert result["overdue_units"] == 0
