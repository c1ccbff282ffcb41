"""
Tests: Notification Delivery — log-only mode, SMTP failures, batch limits.

SMTP is never contacted: ``DeliveryService._send_smtp`` is monkeypatched
whenever MAIL_SERVER is set.
"""

from __future__ import annotations

import smtplib
from datetime import timedelta

import pytest

from app.models import db as _db
from app.models.notification import (
    DELIVERY_FAILED,
    DELIVERY_PENDING,
    DELIVERY_SENT,
    EscalationNotification,
)
from app.services.delivery_service import DeliveryService, deliver_pending, render_html


def _queue(org, unit=None, created_at=None, **overrides) -> EscalationNotification:
    fields = {
        "tenant_id": org.tenant.id,
        "unit_id": unit.id if unit is not None else None,
        "notification_type": "deadline_overdue",
        "recipient_email": org.lead.email,
        "recipient_name": org.lead.full_name,
        "priority": "critical",
        "subject": "OVERDUE",
        "message": "Past deadline",
        "status": DELIVERY_PENDING,
    }
    if created_at is not None:
        fields["created_at"] = created_at
    fields.update(overrides)
    notif = EscalationNotification(**fields)
    _db.session.add(notif)
    _db.session.flush()
    return notif


@pytest.fixture()
def smtp_configured(app, monkeypatch):
    monkeypatch.setitem(app.config, "MAIL_SERVER", "smtp.example.com")


class TestLogOnlyMode:

    def test_not_configured_marks_sent(self, org):
        notif = _queue(org)

        assert DeliveryService.is_configured() is False
        assert DeliveryService.deliver(notif) is True
        assert notif.status == DELIVERY_SENT
        assert notif.sent_at is not None


class TestSmtp:

    def test_successful_send(self, org, smtp_configured, monkeypatch):
        calls = []
        monkeypatch.setattr(DeliveryService, "_send_smtp", staticmethod(lambda **kw: calls.append(kw)))
        notif = _queue(org)

        assert DeliveryService.deliver(notif) is True
        assert notif.status == DELIVERY_SENT
        assert calls[0]["to_email"] == org.lead.email
        assert calls[0]["subject"] == "OVERDUE"

    @pytest.mark.parametrize("exc", [
        smtplib.SMTPAuthenticationError(535, b"bad credentials"),
        ConnectionRefusedError("connection refused"),
    ])
    def test_failure_is_recorded_not_raised(self, org, smtp_configured, monkeypatch, exc):
        def _boom(**kwargs):
            raise exc

        monkeypatch.setattr(DeliveryService, "_send_smtp", staticmethod(_boom))
        notif = _queue(org)

        assert DeliveryService.deliver(notif) is False
        assert notif.status == DELIVERY_FAILED
        assert notif.error_message
        assert notif.sent_at is None


class TestDeliverPending:

    def test_batch_limit_and_oldest_first(self, org, now):
        newest = _queue(org, subject="newest", created_at=now)
        oldest = _queue(org, subject="oldest", created_at=now - timedelta(hours=2))
        middle = _queue(org, subject="middle", created_at=now - timedelta(hours=1))

        result = deliver_pending(limit=2)

        assert result == {"processed": 2, "sent": 2, "failed": 0}
        assert oldest.status == DELIVERY_SENT
        assert middle.status == DELIVERY_SENT
        assert newest.status == DELIVERY_PENDING

    def test_failures_do_not_stop_the_batch(self, org, smtp_configured, monkeypatch):
        def _send(**kwargs):
            if kwargs["subject"] == "bad":
                raise smtplib.SMTPRecipientsRefused({kwargs["to_email"]: (550, b"no such user")})

        monkeypatch.setattr(DeliveryService, "_send_smtp", staticmethod(_send))
        _queue(org, subject="bad")
        _queue(org, subject="good")

        result = deliver_pending()

        assert result == {"processed": 2, "sent": 1, "failed": 1}
        statuses = {n.subject: n.status for n in EscalationNotification.query.all()}
        assert statuses == {"bad": DELIVERY_FAILED, "good": DELIVERY_SENT}

    def test_failed_rows_are_not_retried(self, org):
        _queue(org, status=DELIVERY_FAILED, error_message="timeout")
        assert deliver_pending() == {"processed": 0, "sent": 0, "failed": 0}


class TestRenderHtml:

    def test_escapes_content_and_includes_link(self, org):
        notif = _queue(
            org, subject='<script>alert("x")</script>',
            template_data={"link": "http://localhost:5000/units/7"},
        )
        body = render_html(notif)
        assert "<script>" not in body
        assert "&lt;script&gt;" in body
        assert 'href="http://localhost:5000/units/7"' in body
