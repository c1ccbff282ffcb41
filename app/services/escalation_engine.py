"""
Escalation Trigger Engine — elapsed-time sweep and shared escalation recording.

State machine per unit: level 0 → 1 → 2 → 3, only upward while the unit is
non-GREEN, not blocked and not archived.

Automatic trigger:
    percent_elapsed = clamp((now - created_at) / (deadline - created_at), 0, 100)
    The target level is the highest policy threshold reached. A unit jumps
    straight to it (50 % → L1, 95 % → L3 in one pass); nothing happens when
    target <= current level, which is what makes repeated runs idempotent.

Concurrency:
    The level write is a compare-and-set:
        UPDATE units SET current_escalation_level = :target
        WHERE id = :id AND current_escalation_level = :observed
    Losing the race raises TransientError for that unit only; the escalation
    event and notifications are never written, and the next run re-evaluates.

Failure isolation:
    Each unit is evaluated and committed on its own. Any exception rolls back
    that unit, is logged with traceback and counted, and the sweep moves on.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime

from flask import current_app
from sqlalchemy import select, update

from app.core.exceptions import TransientError
from app.models import db
from app.models.unit import (
    ESCALATION_ACTIVE,
    ESCALATION_AUTOMATIC,
    STATUS_BLOCKED,
    STATUS_GREEN,
    Unit,
    UnitEscalation,
)
from app.services.escalation_policy import EscalationPolicy, policy_from_config
from app.services.notification import NotificationService, Recipient, unit_link
from app.services.status_service import add_status_event
from app.utils.helpers import as_utc

logger = logging.getLogger(__name__)

_DAY_SECONDS = 24 * 60 * 60


# ═════════════════════════════════════════════════════════════════════════════
# Pure helpers
# ═════════════════════════════════════════════════════════════════════════════


def percent_elapsed(created_at: datetime, deadline: datetime, now: datetime) -> float | None:
    """Share of the unit's timeline used up at ``now``, clamped to 0..100.

    Returns None when the timeline has no positive length.
    """
    total = (deadline - created_at).total_seconds()
    if total <= 0:
        return None
    elapsed = (now - created_at).total_seconds()
    return max(0.0, min(100.0, elapsed / total * 100.0))


def days_remaining(deadline: datetime, now: datetime) -> int:
    """Whole days left until ``deadline`` (ceiling), never negative."""
    seconds = (deadline - now).total_seconds()
    return max(0, math.ceil(seconds / _DAY_SECONDS))


def current_policy() -> EscalationPolicy:
    return policy_from_config(current_app.config)


# ═════════════════════════════════════════════════════════════════════════════
# Level compare-and-set
# ═════════════════════════════════════════════════════════════════════════════


def advance_escalation_level(unit: Unit, expected_level: int, new_level: int, now: datetime) -> bool:
    """Write ``new_level`` only if the stored level still equals ``expected_level``.

    Returns True when this caller won. The in-session ``unit`` is refreshed
    from the row either way.
    """
    result = db.session.execute(
        update(Unit)
        .where(
            Unit.id == unit.id,
            Unit.current_escalation_level == expected_level,
        )
        .values(current_escalation_level=new_level, escalation_level_changed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(unit, ["current_escalation_level", "escalation_level_changed_at"])
    return result.rowcount == 1


# ═════════════════════════════════════════════════════════════════════════════
# Escalation recording (shared by the sweep and manual escalation)
# ═════════════════════════════════════════════════════════════════════════════


def _unit_context(unit: Unit) -> dict:
    workstream = unit.workstream
    program = workstream.program if workstream is not None else None
    return {
        "unit_id": unit.id,
        "unit_title": unit.title,
        "workstream_name": workstream.name if workstream is not None else None,
        "program_name": program.name if program is not None else None,
        "link": unit_link(unit.id),
    }


def record_escalation(
    unit: Unit,
    level: int,
    now: datetime,
    *,
    policy: EscalationPolicy,
    escalation_type: str,
    reason: str,
    subject: str,
    message: str,
    notification_type: str,
    escalated_by: int | None = None,
    percent: float | None = None,
    proposed_blocked: bool = False,
    proposed_by_role: str | None = None,
) -> tuple[UnitEscalation, list[Recipient]]:
    """Create the escalation event for ``level`` and queue its notifications (no commit).

    The event is recorded even when nobody resolves as a recipient; the
    caller reports that case instead of failing.
    """
    roles = policy.roles_for(level)
    recipients = NotificationService.resolve_recipients(unit.tenant_id, roles, policy.global_roles)

    escalation = UnitEscalation(
        tenant_id=unit.tenant_id,
        unit_id=unit.id,
        escalation_type=escalation_type,
        level=level,
        reason=reason,
        percent_elapsed=int(percent) if percent is not None else None,
        status=ESCALATION_ACTIVE,
        triggered_at=now,
        visible_to_roles=list(roles),
        recipients=[r.email for r in recipients],
        escalated_by=escalated_by,
        proposed_blocked=proposed_blocked,
        proposed_by_role=proposed_by_role,
    )
    db.session.add(escalation)
    db.session.flush()

    template_data = _unit_context(unit)
    template_data.update({"level": level, "reason": reason})
    if percent is not None:
        template_data["percent_elapsed"] = int(percent)

    NotificationService.queue_for_recipients(
        unit=unit,
        recipients=recipients,
        notification_type=notification_type,
        subject=subject,
        message=message,
        priority=policy.priority_for(level),
        escalation_id=escalation.id,
        template_data=template_data,
    )
    return escalation, recipients


# ═════════════════════════════════════════════════════════════════════════════
# Sweep
# ═════════════════════════════════════════════════════════════════════════════


def _candidate_unit_ids() -> list[int]:
    """Non-archived, non-GREEN units with a deadline, oldest id first."""
    stmt = (
        select(Unit.id)
        .where(
            Unit.archived_at.is_(None),
            Unit.deadline.is_not(None),
            Unit.computed_status != STATUS_GREEN,
        )
        .order_by(Unit.id)
    )
    return list(db.session.execute(stmt).scalars().all())


def evaluate_unit(unit_id: int, now: datetime, policy: EscalationPolicy) -> dict:
    """Evaluate one unit and commit its escalation if a threshold was newly crossed.

    Returns an outcome dict; ``outcome`` is one of
    ``escalated``, ``no_change``, ``skipped``.

    Raises:
        TransientError: another writer moved the level first.
    """
    unit = db.session.get(Unit, unit_id)
    if unit is None or unit.is_archived:
        return {"unit_id": unit_id, "outcome": "skipped", "reason": "archived"}
    if unit.computed_status == STATUS_GREEN:
        return {"unit_id": unit_id, "outcome": "skipped", "reason": "green"}
    # A human already owns a blocked unit; automatic alerts stop here
    if unit.is_blocked or unit.computed_status == STATUS_BLOCKED:
        return {"unit_id": unit_id, "outcome": "skipped", "reason": "blocked"}

    deadline = as_utc(unit.deadline)
    created_at = as_utc(unit.created_at)
    if deadline is None:
        return {"unit_id": unit_id, "outcome": "skipped", "reason": "no_deadline"}

    percent = percent_elapsed(created_at, deadline, now)
    if percent is None:
        return {"unit_id": unit_id, "outcome": "skipped", "reason": "non_positive_duration"}

    current = unit.current_escalation_level or 0
    target = policy.target_level(percent)
    if target <= current:
        return {"unit_id": unit_id, "outcome": "no_change", "level": current,
                "percent_elapsed": round(percent, 1)}

    if not advance_escalation_level(unit, current, target, now):
        raise TransientError(f"Unit {unit_id} escalation level changed concurrently")

    level_info = policy.get(target)
    pct = int(percent)
    left = days_remaining(deadline, now)
    remaining_text = (
        f"{left} day{'' if left == 1 else 's'} remaining."
        if left > 0 else "The deadline has passed."
    )
    escalation, recipients = record_escalation(
        unit, target, now,
        policy=policy,
        escalation_type=ESCALATION_AUTOMATIC,
        reason=f"{pct}% of timeline elapsed",
        subject=f'{level_info.label}: "{unit.title}" - {pct}% of timeline elapsed',
        message=f'"{unit.title}" has reached {pct}% of its timeline. {remaining_text}',
        notification_type="automatic_escalation",
        percent=percent,
    )
    add_status_event(
        unit, "automatic_escalation", now,
        old_status=unit.computed_status, new_status=unit.computed_status,
        reason=escalation.reason,
        metadata={"from_level": current, "to_level": target, "percent_elapsed": pct,
                  "escalation_id": escalation.id},
    )
    db.session.commit()

    logger.info(
        "Unit escalated L%d → L%d at %d%% elapsed (%d recipient(s))",
        current, target, pct, len(recipients),
        extra={"unit_id": unit_id, "tenant_id": unit.tenant_id,
               "escalation_level": target, "event_type": "automatic_escalation"},
    )
    return {
        "unit_id": unit_id,
        "outcome": "escalated",
        "from_level": current,
        "to_level": target,
        "percent_elapsed": pct,
        "escalation_id": escalation.id,
        "recipients": [r.email for r in recipients],
    }


def run_escalation_sweep(now: datetime, policy: EscalationPolicy | None = None) -> dict:
    """Evaluate every candidate unit once.

    Args:
        now: The single timestamp used for every decision in this pass.
        policy: Level table; defaults to the app's configured thresholds.

    Returns:
        Summary dict with ``units_checked`` and ``escalations_created`` plus
        notification, skip, no-recipient, conflict and error details.
    """
    policy = policy or current_policy()
    summary = {
        "units_checked": 0,
        "escalations_created": 0,
        "notifications_created": 0,
        "skipped": 0,
        "no_recipients": [],
        "conflicts": 0,
        "errors": [],
        "results": [],
    }

    for unit_id in _candidate_unit_ids():
        summary["units_checked"] += 1
        try:
            outcome = evaluate_unit(unit_id, now, policy)
        except TransientError as exc:
            db.session.rollback()
            summary["conflicts"] += 1
            logger.info("Sweep conflict, retry next run: %s", exc, extra={"unit_id": unit_id})
            continue
        except Exception as exc:
            db.session.rollback()
            summary["errors"].append({"unit_id": unit_id, "error": str(exc)})
            logger.exception("Sweep failed for unit", extra={"unit_id": unit_id})
            continue

        if outcome["outcome"] == "skipped":
            summary["skipped"] += 1
        elif outcome["outcome"] == "escalated":
            summary["escalations_created"] += 1
            summary["notifications_created"] += len(outcome["recipients"])
            if not outcome["recipients"]:
                summary["no_recipients"].append(unit_id)
            summary["results"].append(outcome)

    logger.info(
        "Escalation sweep: checked=%d escalated=%d notifications=%d conflicts=%d errors=%d",
        summary["units_checked"], summary["escalations_created"],
        summary["notifications_created"], summary["conflicts"], len(summary["errors"]),
        extra={"event_type": "escalation_sweep"},
    )
    return summary
