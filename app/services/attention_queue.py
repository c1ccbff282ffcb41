"""
Attention Queue — one ranked list of everything that needs a human now.

Item classes (tenant-scoped unless the viewer is a platform admin):
    manual_escalation  active manual escalation events
    unit_blocked       BLOCKED units with a deadline
    unit_unconfirmed   contributor-created units awaiting ratification
                       (hidden from CLIENT_VIEWER and FIELD_CONTRIBUTOR)
    proof_pending      valid evidence awaiting a decision
    unit_at_risk       RED units with a deadline

Priority (higher = more urgent):
    base         escalation 1000 > blocked 900 > unconfirmed 800
                 > proof 700 > unit 500
    + 100 × escalation level
    + 200 if the unit is high criticality
    + deadline   past due: 200 + min(hours overdue, 100)
                 < 24h: 150, < 48h: 100, < 1 week: 50
    + age        min(age hours, 100), escalation and unconfirmed items only

``calculate_priority`` and ``rank_items`` are pure: the single ``now`` passed
in is the only clock they see, so the same snapshot always ranks the same way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select

from app.models import db
from app.models.auth import CLIENT_VIEWER, FIELD_CONTRIBUTOR
from app.models.program import Program, Workstream
from app.models.unit import (
    APPROVAL_PENDING,
    ESCALATION_ACTIVE,
    ESCALATION_MANUAL,
    STATUS_BLOCKED,
    STATUS_RED,
    Unit,
    UnitEscalation,
    UnitProof,
)
from app.services.tenant_guard import Principal
from app.utils.helpers import as_utc

logger = logging.getLogger(__name__)

ITEM_ESCALATION = "manual_escalation"
ITEM_BLOCKED = "unit_blocked"
ITEM_UNCONFIRMED = "unit_unconfirmed"
ITEM_PROOF = "proof_pending"
ITEM_AT_RISK = "unit_at_risk"

BASE_PRIORITY = {
    ITEM_ESCALATION: 1000,
    ITEM_BLOCKED: 900,
    ITEM_UNCONFIRMED: 800,
    ITEM_PROOF: 700,
    ITEM_AT_RISK: 500,
}

# Only these classes gain urgency just by waiting
AGED_ITEMS = frozenset({ITEM_ESCALATION, ITEM_UNCONFIRMED})

HIDE_UNCONFIRMED_FROM = frozenset({CLIENT_VIEWER, FIELD_CONTRIBUTOR})

_HOUR_SECONDS = 3600


@dataclass
class AttentionItem:
    """Raw facts about one queue entry; scoring happens in ``rank_items``."""

    item_type: str
    id: int
    unit_id: int
    unit_title: str
    tenant_id: int
    deadline: datetime | None = None
    high_criticality: bool = False
    escalation_level: int = 0
    since: datetime | None = None
    program_name: str | None = None
    workstream_name: str | None = None
    details: dict = field(default_factory=dict)


# ═════════════════════════════════════════════════════════════════════════════
# Pure scoring
# ═════════════════════════════════════════════════════════════════════════════


def calculate_priority(
    item_type: str,
    hours_until_deadline: float | None,
    high_criticality: bool,
    escalation_level: int = 0,
    age_hours: float = 0.0,
) -> float:
    """Additive priority score for one item. Higher is more urgent."""
    priority = float(BASE_PRIORITY[item_type])
    priority += (escalation_level or 0) * 100

    if high_criticality:
        priority += 200

    if hours_until_deadline is not None:
        if hours_until_deadline < 0:
            priority += 200 + min(abs(hours_until_deadline), 100)
        elif hours_until_deadline < 24:
            priority += 150
        elif hours_until_deadline < 48:
            priority += 100
        elif hours_until_deadline < 168:
            priority += 50

    if item_type in AGED_ITEMS and age_hours > 0:
        priority += min(age_hours, 100)

    return priority


def _hours_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / _HOUR_SECONDS


def score_item(item: AttentionItem, now: datetime) -> dict:
    """Score one item against ``now`` and render it for the API."""
    deadline = as_utc(item.deadline)
    since = as_utc(item.since)
    hours_until = _hours_between(deadline, now) if deadline is not None else None
    age_hours = _hours_between(now, since) if since is not None else 0.0

    priority = calculate_priority(
        item.item_type,
        hours_until,
        item.high_criticality,
        item.escalation_level,
        age_hours,
    )
    details = dict(item.details)
    if item.item_type in AGED_ITEMS:
        details["age_hours"] = round(age_hours, 1)

    return {
        "type": item.item_type,
        "priority": round(priority, 2),
        "id": item.id,
        "unit_id": item.unit_id,
        "unit_title": item.unit_title,
        "tenant_id": item.tenant_id,
        "program_name": item.program_name,
        "workstream_name": item.workstream_name,
        "deadline": deadline.isoformat() if deadline else None,
        "hours_until_deadline": round(hours_until, 1) if hours_until is not None else None,
        "details": details,
        "action_url": f"/units/{item.unit_id}",
    }


def summarize(ranked: list[dict]) -> dict:
    counts = {t: 0 for t in BASE_PRIORITY}
    for entry in ranked:
        counts[entry["type"]] += 1
    return {
        "total_items": len(ranked),
        "pending_proofs": counts[ITEM_PROOF],
        "units_at_risk": counts[ITEM_AT_RISK],
        "units_blocked": counts[ITEM_BLOCKED],
        "manual_escalations": counts[ITEM_ESCALATION],
        "units_unconfirmed": counts[ITEM_UNCONFIRMED],
    }


def rank_items(items: list[AttentionItem], now: datetime) -> dict:
    """Score and sort items, most urgent first.

    Ties keep a fixed order (class base score, then id) so equal scores
    never reshuffle between calls.
    """
    scored = [score_item(item, now) for item in items]
    scored.sort(key=lambda e: (-e["priority"], -BASE_PRIORITY[e["type"]], e["id"]))
    return {"summary": summarize(scored), "items": scored}


# ═════════════════════════════════════════════════════════════════════════════
# Loading
# ═════════════════════════════════════════════════════════════════════════════


def _scoped(stmt, principal: Principal, tenant_column):
    if principal.is_platform_admin:
        return stmt
    return stmt.where(tenant_column == principal.tenant_id)


def _names(unit: Unit) -> tuple[str | None, str | None]:
    workstream = unit.workstream
    if workstream is None:
        return None, None
    program = workstream.program
    return (program.name if program is not None else None), workstream.name


def _unit_item(item_type: str, unit: Unit, **kwargs) -> AttentionItem:
    program_name, workstream_name = _names(unit)
    return AttentionItem(
        item_type=item_type,
        unit_id=unit.id,
        unit_title=unit.title,
        tenant_id=unit.tenant_id,
        program_name=program_name,
        workstream_name=workstream_name,
        **kwargs,
    )


def _through_live_unit(stmt):
    """Restrict ``stmt`` to units whose workstream and program are not archived."""
    return (
        stmt
        .join(Workstream, Unit.workstream_id == Workstream.id)
        .join(Program, Workstream.program_id == Program.id)
        .where(
            Unit.archived_at.is_(None),
            Workstream.archived_at.is_(None),
            Program.archived_at.is_(None),
        )
    )


def _live_units():
    return _through_live_unit(select(Unit))


def _pending_proof_items(principal: Principal) -> list[AttentionItem]:
    stmt = (
        _through_live_unit(select(UnitProof, Unit).join(Unit, UnitProof.unit_id == Unit.id))
        .where(
            UnitProof.approval_status == APPROVAL_PENDING,
            UnitProof.is_valid == True,  # noqa: E712
        )
        .order_by(UnitProof.uploaded_at, UnitProof.id)
    )
    stmt = _scoped(stmt, principal, UnitProof.tenant_id)
    items = []
    for proof, unit in db.session.execute(stmt).all():
        items.append(_unit_item(
            ITEM_PROOF, unit,
            id=proof.id,
            deadline=unit.deadline,
            high_criticality=unit.high_criticality,
            details={
                "uploaded_by": proof.uploaded_by_email,
                "uploaded_at": proof.uploaded_at.isoformat() if proof.uploaded_at else None,
                "proof_type": proof.proof_type,
                "high_criticality": unit.high_criticality,
            },
        ))
    return items


def _unit_risk_items(principal: Principal) -> list[AttentionItem]:
    stmt = (
        _live_units()
        .where(
            Unit.computed_status.in_([STATUS_RED, STATUS_BLOCKED]),
            Unit.deadline.is_not(None),
        )
        .order_by(Unit.deadline, Unit.id)
    )
    stmt = _scoped(stmt, principal, Unit.tenant_id)
    items = []
    for unit in db.session.execute(stmt).scalars().all():
        blocked = unit.is_blocked or unit.computed_status == STATUS_BLOCKED
        items.append(_unit_item(
            ITEM_BLOCKED if blocked else ITEM_AT_RISK, unit,
            id=unit.id,
            deadline=unit.deadline,
            high_criticality=unit.high_criticality,
            escalation_level=unit.current_escalation_level or 0,
            details={
                "status": unit.computed_status,
                "escalation_level": unit.current_escalation_level or 0,
                "blocked_reason": unit.blocked_reason,
                "high_criticality": unit.high_criticality,
            },
        ))
    return items


def _escalation_items(principal: Principal) -> list[AttentionItem]:
    stmt = (
        _through_live_unit(select(UnitEscalation, Unit).join(Unit, UnitEscalation.unit_id == Unit.id))
        .where(
            UnitEscalation.status == ESCALATION_ACTIVE,
            UnitEscalation.escalation_type == ESCALATION_MANUAL,
        )
        .order_by(UnitEscalation.triggered_at, UnitEscalation.id)
    )
    stmt = _scoped(stmt, principal, UnitEscalation.tenant_id)
    items = []
    for escalation, unit in db.session.execute(stmt).all():
        items.append(_unit_item(
            ITEM_ESCALATION, unit,
            id=escalation.id,
            deadline=unit.deadline,
            high_criticality=unit.high_criticality,
            escalation_level=escalation.level,
            since=escalation.triggered_at,
            details={
                "escalation_level": escalation.level,
                "reason": escalation.reason,
                "triggered_at": escalation.triggered_at.isoformat() if escalation.triggered_at else None,
                "proposed_blocked": escalation.proposed_blocked,
                "status": unit.computed_status,
            },
        ))
    return items


def _unconfirmed_items(principal: Principal) -> list[AttentionItem]:
    if principal.role in HIDE_UNCONFIRMED_FROM:
        return []
    stmt = (
        _live_units()
        .where(Unit.is_confirmed == False)  # noqa: E712
        .order_by(Unit.created_at, Unit.id)
    )
    stmt = _scoped(stmt, principal, Unit.tenant_id)
    items = []
    for unit in db.session.execute(stmt).scalars().all():
        items.append(_unit_item(
            ITEM_UNCONFIRMED, unit,
            id=unit.id,
            since=unit.created_at,
            details={
                "created_at": unit.created_at.isoformat() if unit.created_at else None,
                "created_by": unit.created_by,
                "deadline": unit.deadline.isoformat() if unit.deadline else None,
            },
        ))
    return items


def get_attention_queue(principal: Principal, now: datetime) -> dict:
    """Build the ranked attention queue for one viewer.

    Read-only; safe to call concurrently.

    Returns:
        ``{"summary": {...}, "items": [...], "user_role": role}`` with items
        sorted by descending priority.
    """
    items: list[AttentionItem] = []
    items.extend(_pending_proof_items(principal))
    items.extend(_unit_risk_items(principal))
    items.extend(_escalation_items(principal))
    items.extend(_unconfirmed_items(principal))

    result = rank_items(items, now)
    result["user_role"] = principal.role

    logger.debug(
        "Attention queue built: %d item(s)", result["summary"]["total_items"],
        extra={"tenant_id": principal.tenant_id, "user_id": principal.user_id},
    )
    return result
