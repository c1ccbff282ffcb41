"""
Deadline Reminder Pass.

Complements the percentage sweep with two calendar-based reminders:

    approaching   deadline within DEADLINE_APPROACHING_DAYS (default 3)
                  → workstream leads; program owners too when due within 1 day
    overdue       deadline already passed
                  → workstream leads and program owners

GREEN, archived and blocked units are skipped. Days are counted with a
ceiling, so 30 hours left is "2 days" and 1 hour past is "1 day overdue".
A reminder is never queued twice for the same unit, recipient and subject,
which keeps the daily trigger idempotent within a day-count. Reminder rows
carry a unique dedupe_key, so overlapping runs that both pass the read check
still insert only one row.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.models import db
from app.models.auth import PROGRAM_OWNER, WORKSTREAM_LEAD
from app.models.unit import STATUS_BLOCKED, STATUS_GREEN, Unit
from app.services.notification import NotificationService, unit_link
from app.utils.helpers import as_utc

logger = logging.getLogger(__name__)

_DAY_SECONDS = 24 * 60 * 60


def _plural(n: int) -> str:
    return "" if n == 1 else "s"


def _context(unit: Unit, deadline: datetime) -> dict:
    workstream = unit.workstream
    program = workstream.program if workstream is not None else None
    return {
        "unit_id": unit.id,
        "unit_title": unit.title,
        "program_name": program.name if program is not None else None,
        "workstream_name": workstream.name if workstream is not None else None,
        "deadline": deadline.isoformat(),
        "link": unit_link(unit.id),
    }


def _approaching_message(unit: Unit, ctx: dict, days_until: int) -> tuple[str, str, str, str, tuple]:
    """Return (notification_type, subject, message, priority, roles)."""
    if days_until <= 1:
        subject = f'URGENT: "{unit.title}" deadline is TOMORROW'
        return (
            "deadline_tomorrow",
            subject,
            (
                f'Unit "{unit.title}" must be GREEN by tomorrow.\n\n'
                f"Program: {ctx['program_name']}\nWorkstream: {ctx['workstream_name']}\n"
                f"Deadline: {ctx['deadline']}\nCurrent status: {unit.computed_status}\n\n"
                f"{ctx['link']}"
            ),
            "critical",
            (WORKSTREAM_LEAD, PROGRAM_OWNER),
        )
    subject = f'Deadline Approaching: "{unit.title}" - {days_until} day{_plural(days_until)} left'
    return (
        "deadline_approaching",
        subject,
        (
            f'Unit "{unit.title}" is due in {days_until} day{_plural(days_until)}.\n\n'
            f"Program: {ctx['program_name']}\nWorkstream: {ctx['workstream_name']}\n"
            f"Deadline: {ctx['deadline']}\nCurrent status: {unit.computed_status}\n\n"
            f"{ctx['link']}"
        ),
        "high",
        (WORKSTREAM_LEAD,),
    )


def _overdue_message(unit: Unit, ctx: dict, days_overdue: int) -> tuple[str, str, str, str, tuple]:
    subject = f'OVERDUE: "{unit.title}" - {days_overdue} day{_plural(days_overdue)} past deadline'
    return (
        "deadline_overdue",
        subject,
        (
            f'OVERDUE ALERT: Unit "{unit.title}" is past its deadline!\n\n'
            f"Program: {ctx['program_name']}\nWorkstream: {ctx['workstream_name']}\n"
            f"Deadline was: {ctx['deadline']}\nDays overdue: {days_overdue}\n"
            f"Current status: {unit.computed_status}\n\n"
            "This requires immediate escalation and resolution."
        ),
        "critical",
        (WORKSTREAM_LEAD, PROGRAM_OWNER),
    )


def _queue_reminders(unit: Unit, notification_type, subject, message, priority, roles, ctx) -> int:
    recipients = NotificationService.resolve_recipients(unit.tenant_id, roles)
    queued = 0
    for recipient in recipients:
        if NotificationService.already_queued(unit.id, recipient.email, subject):
            continue
        try:
            with db.session.begin_nested():
                NotificationService.queue(
                    unit=unit,
                    tenant_id=unit.tenant_id,
                    recipient=recipient,
                    notification_type=notification_type,
                    subject=subject,
                    message=message,
                    priority=priority,
                    template_data=ctx,
                    dedupe_key=NotificationService.dedupe_key(unit.id, recipient.email, subject),
                )
        except IntegrityError:
            # An overlapping run queued this reminder first
            logger.info("Reminder already queued for %s", recipient.email,
                        extra={"unit_id": unit.id, "event_type": notification_type})
            continue
        queued += 1
    return queued


def run_deadline_reminders(now: datetime, approaching_days: int | None = None) -> dict:
    """Queue approaching/overdue reminders for every live non-GREEN unit.

    Each unit is committed on its own; a failure is logged, rolled back and
    counted without stopping the pass.

    Returns:
        ``{"approaching_deadlines", "overdue_units", "notifications_queued", "errors"}``
    """
    if approaching_days is None:
        approaching_days = current_app.config.get("DEADLINE_APPROACHING_DAYS", 3)
    horizon = now + timedelta(days=approaching_days)

    stmt = (
        select(Unit.id)
        .where(
            Unit.archived_at.is_(None),
            Unit.deadline.is_not(None),
            Unit.deadline <= horizon,
            Unit.computed_status != STATUS_GREEN,
            Unit.computed_status != STATUS_BLOCKED,
            Unit.is_blocked == False,  # noqa: E712
        )
        .order_by(Unit.deadline, Unit.id)
    )
    unit_ids = list(db.session.execute(stmt).scalars().all())

    summary = {"approaching_deadlines": 0, "overdue_units": 0, "notifications_queued": 0, "errors": []}

    for unit_id in unit_ids:
        try:
            unit = db.session.get(Unit, unit_id)
            deadline = as_utc(unit.deadline)
            ctx = _context(unit, deadline)
            seconds = (deadline - now).total_seconds()

            if seconds >= 0:
                days_until = math.ceil(seconds / _DAY_SECONDS)
                reminder = _approaching_message(unit, ctx, days_until)
                summary["approaching_deadlines"] += 1
            else:
                days_overdue = math.ceil(-seconds / _DAY_SECONDS)
                ctx = dict(ctx, days_overdue=days_overdue)
                reminder = _overdue_message(unit, ctx, days_overdue)
                summary["overdue_units"] += 1

            queued = _queue_reminders(unit, *reminder, ctx)
            db.session.commit()
            summary["notifications_queued"] += queued
            if queued:
                logger.info("Queued %d %s reminder(s)", queued, reminder[0],
                            extra={"unit_id": unit_id, "tenant_id": unit.tenant_id,
                                   "event_type": reminder[0]})
        except Exception as exc:
            db.session.rollback()
            summary["errors"].append({"unit_id": unit_id, "error": str(exc)})
            logger.exception("Deadline reminder failed for unit", extra={"unit_id": unit_id})

    logger.info(
        "Deadline reminders: approaching=%d overdue=%d queued=%d errors=%d",
        summary["approaching_deadlines"], summary["overdue_units"],
        summary["notifications_queued"], len(summary["errors"]),
        extra={"event_type": "deadline_reminders"},
    )
    return summary
