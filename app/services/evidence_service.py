"""
Evidence Approval Gate — submission and review of unit proofs.

This is the primary trust boundary of the engine. Business rules live here,
never in the blueprint:

submit_evidence
    - CLIENT_VIEWER is read-only
    - cross-tenant submission is refused (tenant guard)
    - archived units accept no evidence
    - proof_type must be photo / video / document
    - reference_number required when the unit asks for one
    - expiry_date required (and in the future) when the unit asks for one
    - units with requires_reviewer_approval=False auto-approve on upload

decide_evidence
    - reviewer must be PLATFORM_ADMIN, PROGRAM_OWNER or WORKSTREAM_LEAD
    - the uploader can never decide their own proof (matched by id or email)
    - high-criticality units need PROGRAM_OWNER or PLATFORM_ADMIN
    - rejection needs a reason
    - only pending proofs can be decided

Supersession happens at approval time, never at upload: approving a proof
against a requirement that earlier approvals already satisfy retires the
oldest earlier approvals of the same proof type, as long as what remains
still meets the requirement.
Every decision recomputes the unit's status and notifies the uploader.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select

from app.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    ValidationError,
)
from app.models import db
from app.models.auth import (
    PLATFORM_ADMIN,
    PROGRAM_OWNER,
    READ_ONLY_ROLES,
    REVIEWER_ROLES,
    WORKSTREAM_LEAD,
)
from app.models.unit import (
    APPROVAL_APPROVED,
    APPROVAL_PENDING,
    APPROVAL_REJECTED,
    PROOF_TYPES,
    Unit,
    UnitProof,
)
from app.services.notification import NotificationService, Recipient, unit_link
from app.services.status_service import (
    add_status_event,
    load_active_proofs,
    recompute_unit_status,
    requirement_satisfied,
)
from app.services.tenant_guard import Principal, load_for_principal, require_role
from app.utils.helpers import as_utc, parse_datetime

logger = logging.getLogger(__name__)

VALID_DECISIONS = {"approve", "reject"}
HIGH_CRITICALITY_ROLES = frozenset({PLATFORM_ADMIN, PROGRAM_OWNER})


# ── Private helpers ────────────────────────────────────────────────────────────


def _supersede_prior_approvals(proof: UnitProof, unit: Unit, approver_id: int | None, now: datetime) -> int:
    """Mark earlier approved proofs of the same type as superseded by ``proof``.

    Only an already-satisfied requirement is replaced; while approvals are
    still accumulating toward ``required_count`` they all keep counting.
    Older proofs of ``proof.proof_type`` are retired oldest first, and only
    while the proofs left standing still satisfy the requirement.
    """
    prior = [
        p for p in load_active_proofs(unit.id)
        if p.id != proof.id and p.approval_status == APPROVAL_APPROVED
    ]
    if not prior or not requirement_satisfied(unit, prior, now):
        return 0

    standing = prior + [proof]
    candidates = sorted(
        (p for p in prior if p.proof_type == proof.proof_type),
        key=lambda p: p.id,
    )
    superseded = 0
    for old in candidates:
        remaining = [p for p in standing if p is not old]
        if not requirement_satisfied(unit, remaining, now):
            continue
        old.is_superseded = True
        old.superseded_at = now
        old.superseded_by = approver_id
        old.superseded_by_proof_id = proof.id
        standing = remaining
        superseded += 1
    return superseded


def _is_uploader(proof: UnitProof, principal: Principal) -> bool:
    if proof.uploaded_by is not None and proof.uploaded_by == principal.user_id:
        return True
    if proof.uploaded_by_email and principal.email:
        return proof.uploaded_by_email.strip().lower() == principal.email.strip().lower()
    return False


def _notify_uploader(unit: Unit, proof: UnitProof, approved: bool, reason: str | None) -> None:
    if not proof.uploaded_by_email:
        return
    recipient = Recipient(
        email=proof.uploaded_by_email,
        name=proof.uploaded_by_email.split("@")[0],
        role="UPLOADER",
        user_id=proof.uploaded_by,
    )
    if approved:
        subject = f'Proof approved: "{unit.title}"'
        message = f'Your {proof.proof_type} proof for "{unit.title}" has been approved.'
    else:
        subject = f'Proof rejected: "{unit.title}"'
        message = (
            f'Your {proof.proof_type} proof for "{unit.title}" was rejected.\n\n'
            f"Reason: {reason}\n\nPlease upload a new proof."
        )
    NotificationService.queue(
        unit=unit,
        tenant_id=unit.tenant_id,
        recipient=recipient,
        notification_type="proof_approved" if approved else "proof_rejected",
        subject=subject,
        message=message,
        template_data={
            "unit_id": unit.id,
            "unit_title": unit.title,
            "proof_id": proof.id,
            "reason": reason,
            "link": unit_link(unit.id),
        },
    )


def _approve(proof: UnitProof, unit: Unit, approver_id: int | None, now: datetime) -> int:
    proof.approval_status = APPROVAL_APPROVED
    proof.approved_by = approver_id
    proof.approved_at = now
    proof.rejection_reason = None
    return _supersede_prior_approvals(proof, unit, approver_id, now)


def _validate_payload(unit: Unit, payload: dict, now: datetime) -> dict:
    """Check submission fields against the unit's requirement flags."""
    errors: dict[str, str] = {}

    proof_type = (payload.get("proof_type") or "").strip().lower()
    if proof_type not in PROOF_TYPES:
        errors["proof_type"] = f"Must be one of: {', '.join(sorted(PROOF_TYPES))}"

    reference_number = (payload.get("reference_number") or "").strip() or None
    if unit.requires_reference_number and not reference_number:
        errors["reference_number"] = "Reference number is required for this unit"

    expiry_date = None
    raw_expiry = payload.get("expiry_date")
    if raw_expiry:
        try:
            expiry_date = parse_datetime(raw_expiry)
        except ValueError as exc:
            errors["expiry_date"] = str(exc)
    if unit.requires_expiry_date and expiry_date is None and "expiry_date" not in errors:
        errors["expiry_date"] = "Expiry date is required for this unit"
    if expiry_date is not None and expiry_date <= now:
        errors["expiry_date"] = "Expiry date must be in the future"

    if not payload.get("file_url") and not payload.get("file_path"):
        errors["file_url"] = "file_url or file_path is required"

    if errors:
        raise ValidationError("Invalid proof submission", details=errors)

    return {
        "proof_type": proof_type,
        "reference_number": reference_number,
        "expiry_date": expiry_date,
    }


# ── Public API ─────────────────────────────────────────────────────────────────


def submit_evidence(unit_id: int, principal: Principal, payload: dict, now: datetime) -> dict:
    """Record a new proof against a unit.

    Args:
        unit_id:   Target unit.
        principal: Uploader.
        payload:   proof_type, file_url/file_path, mime_type, notes,
                   reference_number, expiry_date.
        now:       Upload timestamp.

    Returns:
        The created proof dict (plus ``unit_status``).
    """
    if principal.role in READ_ONLY_ROLES:
        raise ForbiddenError(f"Role {principal.role} is read-only and cannot submit evidence")

    unit = load_for_principal(Unit, unit_id, principal)
    fields = _validate_payload(unit, payload, now)

    proof = UnitProof(
        tenant_id=unit.tenant_id,
        unit_id=unit.id,
        proof_type=fields["proof_type"],
        file_url=payload.get("file_url"),
        file_path=payload.get("file_path"),
        mime_type=payload.get("mime_type"),
        notes=payload.get("notes") or "",
        reference_number=fields["reference_number"],
        expiry_date=fields["expiry_date"],
        uploaded_by=principal.user_id,
        uploaded_by_email=principal.email,
        uploaded_at=now,
        approval_status=APPROVAL_PENDING,
        is_valid=True,
    )
    db.session.add(proof)
    db.session.flush()

    if not unit.requires_reviewer_approval:
        superseded = _approve(proof, unit, None, now)
        add_status_event(
            unit, "proof_approved", now,
            reason="Auto-approved: unit does not require reviewer approval",
            triggered_by=principal.user_id,
            metadata={"proof_id": proof.id, "superseded": superseded, "auto": True},
        )

    status = recompute_unit_status(unit, now, triggered_by=principal.user_id,
                                   reason=f"Proof {proof.id} submitted")
    db.session.commit()

    logger.info("Proof submitted: type=%s auto_approved=%s", proof.proof_type,
                not unit.requires_reviewer_approval,
                extra={"unit_id": unit.id, "proof_id": proof.id, "tenant_id": unit.tenant_id,
                       "user_id": principal.user_id})
    result = proof.to_dict()
    result["unit_status"] = status
    return result


def decide_evidence(
    proof_id: int,
    principal: Principal,
    action: str,
    now: datetime,
    reason: str | None = None,
) -> dict:
    """Approve or reject a pending proof.

    Raises:
        ValidationError:   unknown action.
        ForbiddenError:    role, tenant, self-review or criticality rule violated.
        InvalidStateError: reject without reason, proof already decided, or unit archived.
    """
    if action not in VALID_DECISIONS:
        raise ValidationError(f"action must be one of: {', '.join(sorted(VALID_DECISIONS))}",
                              details={"action": action})

    require_role(principal, REVIEWER_ROLES, "approve or reject evidence")
    proof = load_for_principal(UnitProof, proof_id, principal)
    unit = proof.unit

    if _is_uploader(proof, principal):
        raise ForbiddenError("Separation of duties: you cannot review your own proof")

    if unit.high_criticality and principal.role not in HIGH_CRITICALITY_ROLES:
        raise ForbiddenError(
            f"High-criticality units need {PROGRAM_OWNER} or {PLATFORM_ADMIN} approval; "
            f"{WORKSTREAM_LEAD} is not sufficient"
        )

    reason = (reason or "").strip() or None
    if action == "reject" and not reason:
        raise InvalidStateError("A reason is required to reject a proof")

    if unit.is_archived:
        raise InvalidStateError("Unit is archived")
    if proof.approval_status != APPROVAL_PENDING:
        raise InvalidStateError(f"Proof is already {proof.approval_status}")

    old_status = unit.computed_status
    approved = action == "approve"
    superseded = 0
    if approved:
        superseded = _approve(proof, unit, principal.user_id, now)
    else:
        proof.approval_status = APPROVAL_REJECTED
        proof.rejection_reason = reason

    new_status = recompute_unit_status(unit, now, triggered_by=principal.user_id,
                                       reason=f"Proof {proof.id} {action}d")
    add_status_event(
        unit, "proof_approved" if approved else "proof_rejected", now,
        old_status=old_status, new_status=new_status,
        reason=reason, triggered_by=principal.user_id,
        metadata={"proof_id": proof.id, "superseded": superseded},
    )
    _notify_uploader(unit, proof, approved, reason)
    db.session.commit()

    logger.info("Proof %sd by %s (superseded=%d)", action, principal.role, superseded,
                extra={"unit_id": unit.id, "proof_id": proof.id, "tenant_id": unit.tenant_id,
                       "user_id": principal.user_id, "event_type": f"proof_{action}d"})
    return {
        "proof": proof.to_dict(),
        "unit_status": new_status,
        "superseded_count": superseded,
    }


def expire_proofs(now: datetime) -> dict:
    """Invalidate approved proofs whose expiry date has passed and recompute their units.

    One unit failing to recompute (e.g. malformed requirements) does not stop
    the others.
    """
    stmt = select(UnitProof).where(
        UnitProof.approval_status == APPROVAL_APPROVED,
        UnitProof.is_expired == False,  # noqa: E712
        UnitProof.expiry_date.is_not(None),
    )
    candidates = [
        p for p in db.session.execute(stmt).scalars().all()
        if as_utc(p.expiry_date) <= now
    ]

    by_unit: dict[int, list[int]] = {}
    for proof in candidates:
        by_unit.setdefault(proof.unit_id, []).append(proof.id)

    results = {"proofs_expired": 0, "units_recomputed": 0, "errors": []}
    for unit_id, proof_ids in by_unit.items():
        try:
            unit = db.session.get(Unit, unit_id)
            for pid in proof_ids:
                proof = db.session.get(UnitProof, pid)
                proof.is_expired = True
                proof.is_valid = False
            old_status = unit.computed_status
            new_status = recompute_unit_status(unit, now, reason="Proof expired")
            add_status_event(
                unit, "proof_expired", now,
                old_status=old_status, new_status=new_status,
                reason="Approved proof passed its expiry date",
                metadata={"proof_ids": proof_ids},
            )
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            results["errors"].append({"unit_id": unit_id, "error": str(exc)})
            logger.exception("Proof expiry failed for unit", extra={"unit_id": unit_id})
            continue
        results["proofs_expired"] += len(proof_ids)
        results["units_recomputed"] += 1

    logger.info("Proof expiry: %s", {k: v for k, v in results.items() if k != "errors"},
                extra={"event_type": "proof_expiry"})
    return results


def list_unit_proofs(unit_id: int, principal: Principal) -> list[dict]:
    unit = load_for_principal(Unit, unit_id, principal, allow_archived=True)
    stmt = select(UnitProof).where(UnitProof.unit_id == unit.id).order_by(UnitProof.uploaded_at.desc(), UnitProof.id.desc())
    return [p.to_dict() for p in db.session.execute(stmt).scalars().all()]
