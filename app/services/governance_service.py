"""
Manual Escalation & Block Governance.

manual_escalate
    Any authenticated role in the unit's organization may raise an issue.
    The unit moves up exactly one level (capped at the policy maximum),
    whatever its elapsed time. A request to mark the unit BLOCKED is
    honoured only for WORKSTREAM_LEAD / PROGRAM_OWNER / PLATFORM_ADMIN;
    anyone else only *proposes* the block (proposed_blocked=True plus their
    role on the escalation event) and the unit itself is left untouched.

unblock
    PROGRAM_OWNER / PLATFORM_ADMIN only, unit must be blocked. Clears the
    block, resets the escalation level, resolves active escalations and
    recomputes status from evidence (RED or GREEN, never assumed GREEN).

confirm_unit
    Ratifies a contributor-created unit. WORKSTREAM_LEAD / PROGRAM_OWNER /
    PLATFORM_ADMIN only; refused on archived or already confirmed units.
"""

from __future__ import annotations

import logging
from datetime import datetime

from app.core.exceptions import InvalidStateError, TransientError
from app.models import db
from app.models.auth import REVIEWER_ROLES, UNBLOCK_ROLES
from app.models.unit import ESCALATION_MANUAL, Unit
from app.services.escalation_engine import (
    advance_escalation_level,
    current_policy,
    record_escalation,
)
from app.services.escalation_policy import EscalationPolicy
from app.services.status_service import (
    add_status_event,
    recompute_unit_status,
    resolve_active_escalations,
)
from app.services.tenant_guard import Principal, load_for_principal, require_role

logger = logging.getLogger(__name__)


def manual_escalate(
    unit_id: int,
    principal: Principal,
    reason: str,
    now: datetime,
    propose_blocked: bool = False,
    policy: EscalationPolicy | None = None,
) -> dict:
    """Raise a manual escalation on a unit, optionally blocking it.

    Returns:
        Dict with the escalation event, the unit, whether the block was
        applied, and how many notifications were queued.

    Raises:
        InvalidStateError: missing reason, or a block requested on a blocked unit.
        TransientError:    the level moved concurrently; the caller may retry.
    """
    reason = (reason or "").strip()
    if not reason:
        raise InvalidStateError("A reason is required to escalate a unit")

    policy = policy or current_policy()
    unit = load_for_principal(Unit, unit_id, principal)

    if propose_blocked and unit.is_blocked:
        raise InvalidStateError("Unit is already blocked")

    can_block = principal.role in REVIEWER_ROLES
    apply_block = propose_blocked and can_block
    only_proposed = propose_blocked and not can_block

    current = unit.current_escalation_level or 0
    next_level = policy.next_manual_level(current)
    if not advance_escalation_level(unit, current, next_level, now):
        raise TransientError("Unit escalation level changed concurrently; retry")

    escalation, recipients = record_escalation(
        unit, next_level, now,
        policy=policy,
        escalation_type=ESCALATION_MANUAL,
        reason=reason,
        subject=f'MANUAL ESCALATION: "{unit.title}" - Action Required',
        message=(
            f'Unit "{unit.title}" has been manually escalated by {principal.email}.\n\n'
            f"Reason: {reason}"
            + ("\n\nThe reporter proposed marking this unit BLOCKED." if only_proposed else "")
        ),
        notification_type="manual_escalation",
        escalated_by=principal.user_id,
        proposed_blocked=only_proposed,
        proposed_by_role=principal.role if only_proposed else None,
    )

    old_status = unit.computed_status
    if apply_block:
        unit.is_blocked = True
        unit.blocked_reason = reason
        unit.blocked_at = now
        unit.blocked_by = principal.user_id
        new_status = recompute_unit_status(unit, now, triggered_by=principal.user_id, reason=reason)
        add_status_event(
            unit, "blocked", now,
            old_status=old_status, new_status=new_status,
            reason=reason, triggered_by=principal.user_id,
            metadata={"escalation_id": escalation.id},
        )

    add_status_event(
        unit, "manual_escalation", now,
        old_status=old_status, new_status=unit.computed_status,
        reason=reason, triggered_by=principal.user_id,
        metadata={
            "escalation_id": escalation.id,
            "from_level": current,
            "to_level": next_level,
            "proposed_blocked": only_proposed,
        },
    )
    db.session.commit()

    logger.info(
        "Manual escalation L%d → L%d by %s (blocked=%s proposed=%s)",
        current, next_level, principal.role, apply_block, only_proposed,
        extra={"unit_id": unit.id, "tenant_id": unit.tenant_id, "user_id": principal.user_id,
               "escalation_level": next_level, "event_type": "manual_escalation"},
    )
    return {
        "escalation": escalation.to_dict(),
        "unit": unit.to_dict(),
        "blocked": apply_block,
        "proposed_blocked": only_proposed,
        "notifications_created": len(recipients),
    }


def unblock(unit_id: int, principal: Principal, now: datetime, reason: str | None = None) -> dict:
    """Lift a block and let evidence decide the status again."""
    require_role(principal, UNBLOCK_ROLES, "unblock units")
    unit = load_for_principal(Unit, unit_id, principal)

    if not unit.is_blocked:
        raise InvalidStateError("Unit is not blocked")

    old_status = unit.computed_status
    old_level = unit.current_escalation_level or 0
    unit.is_blocked = False
    unit.blocked_reason = None
    unit.blocked_at = None
    unit.blocked_by = None
    unit.current_escalation_level = 0
    unit.escalation_level_changed_at = now
    resolved = resolve_active_escalations(unit, now, resolved_by=principal.user_id)

    new_status = recompute_unit_status(unit, now, triggered_by=principal.user_id,
                                       reason=reason or "Unblocked")
    add_status_event(
        unit, "unblocked", now,
        old_status=old_status, new_status=new_status,
        reason=reason, triggered_by=principal.user_id,
        metadata={"previous_level": old_level, "escalations_resolved": resolved},
    )
    db.session.commit()

    logger.info("Unit unblocked → %s (level %d reset, %d escalation(s) resolved)",
                new_status, old_level, resolved,
                extra={"unit_id": unit.id, "tenant_id": unit.tenant_id,
                       "user_id": principal.user_id, "event_type": "unblocked"})
    return unit.to_dict()


def confirm_unit(unit_id: int, principal: Principal, now: datetime) -> dict:
    """Ratify a contributor-created unit."""
    require_role(principal, REVIEWER_ROLES, "confirm units")
    unit = load_for_principal(Unit, unit_id, principal, allow_archived=True)

    if unit.is_archived:
        raise InvalidStateError("Unit is archived")
    if unit.is_confirmed:
        raise InvalidStateError("Unit is already confirmed")

    unit.is_confirmed = True
    unit.confirmed_at = now
    unit.confirmed_by = principal.user_id
    add_status_event(
        unit, "unit_confirmed", now,
        old_status=unit.computed_status, new_status=unit.computed_status,
        triggered_by=principal.user_id,
    )
    db.session.commit()

    logger.info("Unit confirmed by %s", principal.role,
                extra={"unit_id": unit.id, "tenant_id": unit.tenant_id,
                       "user_id": principal.user_id, "event_type": "unit_confirmed"})
    return unit.to_dict()
