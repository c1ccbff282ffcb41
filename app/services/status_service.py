"""
Status Computer — derives a unit's lifecycle status from its evidence.

Order of evaluation:
    1. is_blocked                      → BLOCKED (overrides everything)
    2. qualifying proofs < required    → RED
    3. a required proof type missing   → RED
    4. otherwise                       → GREEN

A qualifying proof is approved, valid, not superseded, and not expired at
``now``. A malformed requirement configuration raises
RequirementConfigError and the stored status is left untouched.

Public API:
    evaluate_status(unit, proofs, now)           pure, no DB writes
    recompute_unit_status(unit, now, ...)        persist + audit (caller commits)
    compute_status(unit_id, now, principal=None) load, recompute, commit
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update

from app.core.exceptions import NotFoundError, RequirementConfigError
from app.models import db
from app.models.unit import (
    ESCALATION_ACTIVE,
    ESCALATION_RESOLVED,
    PROOF_TYPES,
    STATUS_BLOCKED,
    STATUS_GREEN,
    STATUS_RED,
    Unit,
    UnitEscalation,
    UnitProof,
    UnitStatusEvent,
)
from app.services.tenant_guard import Principal, load_for_principal
from app.utils.helpers import as_utc

logger = logging.getLogger(__name__)


def parse_requirements(raw) -> tuple[int, list[str]]:
    """Validate a unit's ``proof_requirements`` and return (required_count, required_types).

    ``None`` means the default: one proof of any type.
    """
    if raw is None:
        return 1, []
    if not isinstance(raw, dict):
        raise RequirementConfigError(
            "proof_requirements must be an object",
            details={"proof_requirements": repr(raw)},
        )

    count = raw.get("required_count", 1)
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise RequirementConfigError(
            "required_count must be a positive integer",
            details={"required_count": repr(count)},
        )

    types = raw.get("required_types") or []
    if not isinstance(types, list) or any(t not in PROOF_TYPES for t in types):
        raise RequirementConfigError(
            f"required_types must be a list drawn from {sorted(PROOF_TYPES)}",
            details={"required_types": repr(types)},
        )
    return count, list(types)


def is_qualifying(proof: UnitProof, now: datetime) -> bool:
    """True when ``proof`` counts toward GREEN at ``now``."""
    if not proof.counts_toward_status:
        return False
    expiry = as_utc(proof.expiry_date)
    return expiry is None or expiry > now


def requirement_satisfied(unit: Unit, proofs, now: datetime) -> bool:
    """True when the qualifying subset of ``proofs`` meets the unit's requirement."""
    required_count, required_types = parse_requirements(unit.proof_requirements)
    qualifying = [p for p in proofs if is_qualifying(p, now)]

    if len(qualifying) < required_count:
        return False
    present = {p.proof_type for p in qualifying}
    return all(t in present for t in required_types)


def evaluate_status(unit: Unit, proofs, now: datetime) -> str:
    """Pure status decision for ``unit`` given its proofs."""
    if unit.is_blocked:
        return STATUS_BLOCKED
    return STATUS_GREEN if requirement_satisfied(unit, proofs, now) else STATUS_RED


def load_active_proofs(unit_id: int) -> list[UnitProof]:
    stmt = select(UnitProof).where(
        UnitProof.unit_id == unit_id,
        UnitProof.is_superseded == False,  # noqa: E712
    )
    return list(db.session.execute(stmt).scalars().all())


def add_status_event(
    unit: Unit,
    event_type: str,
    now: datetime,
    *,
    old_status: str | None = None,
    new_status: str | None = None,
    reason: str | None = None,
    triggered_by: int | None = None,
    metadata: dict | None = None,
) -> UnitStatusEvent:
    """Append an audit fact for ``unit`` (no commit)."""
    event = UnitStatusEvent(
        tenant_id=unit.tenant_id,
        unit_id=unit.id,
        event_type=event_type,
        old_status=old_status,
        new_status=new_status,
        reason=reason,
        triggered_by=triggered_by,
        event_metadata=metadata or {},
        created_at=now,
    )
    db.session.add(event)
    return event


def resolve_active_escalations(unit: Unit, now: datetime, resolved_by: int | None = None) -> int:
    """Mark every active escalation on ``unit`` resolved; returns the count."""
    result = db.session.execute(
        update(UnitEscalation)
        .where(
            UnitEscalation.unit_id == unit.id,
            UnitEscalation.status == ESCALATION_ACTIVE,
        )
        .values(status=ESCALATION_RESOLVED, resolved_at=now, resolved_by=resolved_by)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def recompute_unit_status(
    unit: Unit,
    now: datetime,
    *,
    triggered_by: int | None = None,
    reason: str | None = None,
) -> str:
    """Recompute and persist ``unit.computed_status``; caller commits.

    Writes a ``status_computed`` event only when the value changes. A unit
    turning GREEN has its active escalations resolved.

    Raises:
        RequirementConfigError: requirement config is malformed; nothing is written.
    """
    old_status = unit.computed_status
    new_status = evaluate_status(unit, load_active_proofs(unit.id), now)

    unit.status_computed_at = now
    if new_status == old_status:
        return new_status

    unit.computed_status = new_status
    unit.last_status_change_at = now
    add_status_event(
        unit, "status_computed", now,
        old_status=old_status, new_status=new_status,
        reason=reason, triggered_by=triggered_by,
    )
    if new_status == STATUS_GREEN:
        resolved = resolve_active_escalations(unit, now, resolved_by=triggered_by)
        if resolved:
            logger.info("Resolved %d escalation(s) on GREEN", resolved,
                        extra={"unit_id": unit.id, "tenant_id": unit.tenant_id})

    logger.info("Unit status %s → %s", old_status, new_status,
                extra={"unit_id": unit.id, "tenant_id": unit.tenant_id, "event_type": "status_computed"})
    return new_status


def compute_status(unit_id: int, now: datetime, principal: Principal | None = None) -> dict:
    """Recompute one unit's status and commit.

    ``principal`` is None only for trusted internal callers (scheduled jobs);
    otherwise the tenant rule is applied before anything is read.
    """
    if principal is not None:
        unit = load_for_principal(Unit, unit_id, principal, allow_archived=True)
    else:
        unit = db.session.get(Unit, unit_id)
        if unit is None:
            raise NotFoundError(resource="Unit", resource_id=unit_id)

    try:
        status = recompute_unit_status(unit, now, triggered_by=principal.user_id if principal else None)
    except RequirementConfigError:
        db.session.rollback()
        logger.warning("Status computation failed: malformed proof requirements",
                       extra={"unit_id": unit_id})
        raise
    db.session.commit()

    return {
        "unit_id": unit.id,
        "computed_status": status,
        "status_computed_at": unit.status_computed_at.isoformat() if unit.status_computed_at else None,
        "is_blocked": unit.is_blocked,
        "current_escalation_level": unit.current_escalation_level,
    }

