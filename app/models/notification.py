"""
Notification request model.

Models:
    - EscalationNotification: queued outbound message, one row per recipient
      per event. Produced by the escalation sweep, the deadline reminder pass,
      manual escalation and evidence decisions; consumed by
      app/services/delivery_service.py.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

DELIVERY_PENDING = "pending"
DELIVERY_SENT = "sent"
DELIVERY_FAILED = "failed"
DELIVERY_STATUSES = {DELIVERY_PENDING, DELIVERY_SENT, DELIVERY_FAILED}

CHANNELS = {"email"}
PRIORITIES = {"normal", "high", "critical"}

NOTIFICATION_TYPES = {
    "automatic_escalation",
    "manual_escalation",
    "deadline_approaching",
    "deadline_tomorrow",
    "deadline_overdue",
    "proof_approved",
    "proof_rejected",
}


class EscalationNotification(TenantModel):
    """
    Outbound notification request.

    Delivery never rolls back the event that produced it: a transport failure
    is written to ``status``/``error_message`` and picked up on the next run.
    """

    __tablename__ = "escalation_notifications"

    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(
        db.Integer, db.ForeignKey("units.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    escalation_id = db.Column(
        db.Integer, db.ForeignKey("unit_escalations.id", ondelete="SET NULL"), nullable=True,
    )
    notification_type = db.Column(db.String(30), nullable=False)

    recipient_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    recipient_name = db.Column(db.String(200), nullable=True)
    recipient_role = db.Column(db.String(30), nullable=True)

    channel = db.Column(db.String(20), nullable=False, default="email")
    priority = db.Column(db.String(20), nullable=False, default="normal")
    subject = db.Column(db.String(500), nullable=False)
    message = db.Column(db.Text, default="")
    template_data = db.Column(db.JSON, default=dict)
    dedupe_key = db.Column(db.String(64), nullable=True,
                           comment="set for reminders; unique so overlapping runs queue once")

    status = db.Column(db.String(20), nullable=False, default=DELIVERY_PENDING,
                       comment="pending | sent | failed")
    error_message = db.Column(db.Text, nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_esc_notif_status_created", "status", "created_at"),
        db.Index("ix_esc_notif_unit_recipient", "unit_id", "recipient_email"),
        db.UniqueConstraint("dedupe_key", name="uq_esc_notif_dedupe_key"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "unit_id": self.unit_id,
            "escalation_id": self.escalation_id,
            "notification_type": self.notification_type,
            "recipient_user_id": self.recipient_user_id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "recipient_role": self.recipient_role,
            "channel": self.channel,
            "priority": self.priority,
            "subject": self.subject,
            "message": self.message,
            "template_data": self.template_data or {},
            "status": self.status,
            "error_message": self.error_message,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<EscalationNotification {self.id}: {self.subject[:40]} → {self.recipient_email}>"
