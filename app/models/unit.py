"""
Unit tracking models.

Models:
    - Unit: atomic trackable deliverable with computed status and escalation level
    - UnitProof: evidence record submitted against a unit
    - UnitEscalation: append-only escalation event (automatic or manual)
    - UnitStatusEvent: append-only audit fact for status-relevant changes

Invariants kept by app/services (never by the ORM):
    - is_blocked=True  ⇔  computed_status == "BLOCKED"
    - current_escalation_level only moves upward, except when unblocked
    - escalation and status events are never updated except to mark an
      escalation resolved
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel
from app.models.archive import ArchiveMixin


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_GREEN = "GREEN"
STATUS_RED = "RED"
STATUS_BLOCKED = "BLOCKED"
UNIT_STATUSES = {STATUS_GREEN, STATUS_RED, STATUS_BLOCKED}

MAX_ESCALATION_LEVEL = 3

PROOF_TYPES = {"photo", "video", "document"}
APPROVAL_PENDING = "pending"
APPROVAL_APPROVED = "approved"
APPROVAL_REJECTED = "rejected"
APPROVAL_STATUSES = {APPROVAL_PENDING, APPROVAL_APPROVED, APPROVAL_REJECTED}

ESCALATION_AUTOMATIC = "automatic"
ESCALATION_MANUAL = "manual"
ESCALATION_ACTIVE = "active"
ESCALATION_RESOLVED = "resolved"

STATUS_EVENT_TYPES = {
    "blocked",
    "unblocked",
    "manual_escalation",
    "automatic_escalation",
    "proof_approved",
    "proof_rejected",
    "status_computed",
    "proof_expired",
    "unit_confirmed",
}

DEFAULT_PROOF_REQUIREMENTS = {"required_count": 1, "required_types": []}


def _utcnow():
    return datetime.now(timezone.utc)


class Unit(ArchiveMixin, TenantModel):
    """
    Atomic trackable deliverable inside a workstream.

    ``created_at`` anchors the percentage-elapsed calculation of the
    escalation sweep, so it is set explicitly by callers that import history.
    """

    __tablename__ = "units"

    id = db.Column(db.Integer, primary_key=True)
    workstream_id = db.Column(
        db.Integer, db.ForeignKey("workstreams.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    deadline = db.Column(db.DateTime(timezone=True), nullable=True,
                         comment="Date by which the unit must be GREEN")

    # Evidence requirements
    proof_requirements = db.Column(db.JSON, default=lambda: dict(DEFAULT_PROOF_REQUIREMENTS),
                                   comment='{"required_count": 1, "required_types": ["photo"]}')
    requires_reviewer_approval = db.Column(db.Boolean, nullable=False, default=True)
    requires_reference_number = db.Column(db.Boolean, nullable=False, default=False)
    requires_expiry_date = db.Column(db.Boolean, nullable=False, default=False)
    high_criticality = db.Column(db.Boolean, nullable=False, default=False)

    # Computed status
    computed_status = db.Column(db.String(20), nullable=False, default=STATUS_RED,
                                comment="GREEN | RED | BLOCKED")
    status_computed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_status_change_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Escalation
    current_escalation_level = db.Column(db.Integer, nullable=False, default=0,
                                         comment="0 = none, 1..3")
    escalation_level_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Block state
    is_blocked = db.Column(db.Boolean, nullable=False, default=False)
    blocked_reason = db.Column(db.Text, nullable=True)
    blocked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    blocked_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Confirmation (contributor-created units wait for ratification)
    is_confirmed = db.Column(db.Boolean, nullable=False, default=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    workstream = db.relationship("Workstream", back_populates="units")
    proofs = db.relationship("UnitProof", back_populates="unit", lazy="dynamic",
                             foreign_keys="UnitProof.unit_id")

    __table_args__ = (
        db.Index("ix_units_tenant_status", "tenant_id", "computed_status"),
        db.Index("ix_units_deadline", "deadline"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "workstream_id": self.workstream_id,
            "title": self.title,
            "description": self.description,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "proof_requirements": self.proof_requirements,
            "requires_reviewer_approval": self.requires_reviewer_approval,
            "requires_reference_number": self.requires_reference_number,
            "requires_expiry_date": self.requires_expiry_date,
            "high_criticality": self.high_criticality,
            "computed_status": self.computed_status,
            "status_computed_at": self.status_computed_at.isoformat() if self.status_computed_at else None,
            "current_escalation_level": self.current_escalation_level,
            "is_blocked": self.is_blocked,
            "blocked_reason": self.blocked_reason,
            "blocked_at": self.blocked_at.isoformat() if self.blocked_at else None,
            "blocked_by": self.blocked_by,
            "is_confirmed": self.is_confirmed,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "confirmed_by": self.confirmed_by,
            "is_archived": self.is_archived,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Unit {self.id}: {self.title[:40]} [{self.computed_status} L{self.current_escalation_level}]>"


class UnitProof(TenantModel):
    """
    Evidence record submitted against a unit.

    Supersession happens when a newer proof for the same unit is approved;
    the older approved proof keeps its approval but stops counting.
    """

    __tablename__ = "unit_proofs"

    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(
        db.Integer, db.ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    proof_type = db.Column(db.String(20), nullable=False, comment="photo | video | document")
    file_url = db.Column(db.String(1000), nullable=True)
    file_path = db.Column(db.String(1000), nullable=True)
    mime_type = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, default="")
    reference_number = db.Column(db.String(100), nullable=True)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)
    is_expired = db.Column(db.Boolean, nullable=False, default=False)

    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    uploaded_by_email = db.Column(db.String(200), nullable=True)
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    approval_status = db.Column(db.String(20), nullable=False, default=APPROVAL_PENDING,
                                comment="pending | approved | rejected")
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    is_valid = db.Column(db.Boolean, nullable=False, default=True)
    is_superseded = db.Column(db.Boolean, nullable=False, default=False)
    superseded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    superseded_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    superseded_by_proof_id = db.Column(
        db.Integer, db.ForeignKey("unit_proofs.id", ondelete="SET NULL"), nullable=True,
    )

    unit = db.relationship("Unit", back_populates="proofs", foreign_keys=[unit_id])

    __table_args__ = (
        db.Index("ix_unit_proofs_tenant_approval", "tenant_id", "approval_status"),
    )

    @property
    def counts_toward_status(self):
        """True when this proof may satisfy the unit's evidence requirement."""
        return (
            self.is_valid
            and not self.is_superseded
            and not self.is_expired
            and self.approval_status == APPROVAL_APPROVED
        )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "unit_id": self.unit_id,
            "proof_type": self.proof_type,
            "file_url": self.file_url,
            "file_path": self.file_path,
            "mime_type": self.mime_type,
            "notes": self.notes,
            "reference_number": self.reference_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "is_expired": self.is_expired,
            "uploaded_by": self.uploaded_by,
            "uploaded_by_email": self.uploaded_by_email,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "approval_status": self.approval_status,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejection_reason": self.rejection_reason,
            "is_valid": self.is_valid,
            "is_superseded": self.is_superseded,
            "superseded_at": self.superseded_at.isoformat() if self.superseded_at else None,
            "superseded_by_proof_id": self.superseded_by_proof_id,
        }

    def __repr__(self):
        return f"<UnitProof {self.id}: unit={self.unit_id} {self.proof_type} [{self.approval_status}]>"


class UnitEscalation(TenantModel):
    """Immutable record of an escalation raised on a unit.

    Created by the sweep (escalation_type="automatic") or by a person
    (escalation_type="manual"). Only ``status``/``resolved_*`` ever change,
    when the underlying problem is cleared.
    """

    __tablename__ = "unit_escalations"

    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(
        db.Integer, db.ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    escalation_type = db.Column(db.String(20), nullable=False, comment="automatic | manual")
    level = db.Column(db.Integer, nullable=False, comment="1..3")
    reason = db.Column(db.Text, default="")
    percent_elapsed = db.Column(db.Integer, nullable=True,
                                comment="Only for automatic escalations")
    status = db.Column(db.String(20), nullable=False, default=ESCALATION_ACTIVE,
                       comment="active | resolved")
    triggered_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    visible_to_roles = db.Column(db.JSON, default=list)
    recipients = db.Column(db.JSON, default=list, comment="Emails notified for this event")

    escalated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    proposed_blocked = db.Column(db.Boolean, nullable=False, default=False,
                                 comment="Reporter asked for a block but lacked authority")
    proposed_by_role = db.Column(db.String(30), nullable=True)

    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (
        db.Index("ix_unit_esc_unit_level", "unit_id", "level"),
        db.Index("ix_unit_esc_tenant_status", "tenant_id", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "unit_id": self.unit_id,
            "escalation_type": self.escalation_type,
            "level": self.level,
            "reason": self.reason,
            "percent_elapsed": self.percent_elapsed,
            "status": self.status,
            "triggered_at": self.triggered_at.isoformat() if self.triggered_at else None,
            "visible_to_roles": self.visible_to_roles or [],
            "recipients": self.recipients or [],
            "escalated_by": self.escalated_by,
            "proposed_blocked": self.proposed_blocked,
            "proposed_by_role": self.proposed_by_role,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
        }

    def __repr__(self):
        return f"<UnitEscalation {self.id}: unit={self.unit_id} L{self.level} {self.escalation_type}>"


class UnitStatusEvent(TenantModel):
    """Append-only audit fact: who changed what about a unit's status, and when."""

    __tablename__ = "unit_status_events"

    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(
        db.Integer, db.ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    event_type = db.Column(db.String(30), nullable=False)
    old_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    triggered_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    event_metadata = db.Column("metadata", db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        db.Index("ix_unit_status_events_unit_time", "unit_id", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "unit_id": self.unit_id,
            "event_type": self.event_type,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "reason": self.reason,
            "triggered_by": self.triggered_by,
            "metadata": self.event_metadata or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<UnitStatusEvent {self.id}: unit={self.unit_id} {self.event_type}>"
