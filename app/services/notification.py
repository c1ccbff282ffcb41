"""
Unit Escalation Engine
Notification Service.

Resolves who should hear about a unit and queues EscalationNotification
rows for them. Nothing here sends anything: delivery is a separate pass
(app/services/delivery_service.py) so a transport failure can never roll
back the event that caused the notification.

Recipient resolution:
    - org-scoped roles are looked up inside the unit's tenant
    - roles in the policy's ``global_roles`` are looked up across all tenants
    - one recipient per email address (case-insensitive), first role wins
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import select

from app.models import db
from app.models.auth import User
from app.models.notification import DELIVERY_PENDING, EscalationNotification
from app.models.unit import Unit
from app.services.tenant_guard import Principal, load_for_principal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    email: str
    name: str
    role: str
    user_id: int | None = None


def unit_link(unit_id: int) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/")
    return f"{base}/units/{unit_id}"


class NotificationService:
    """Stateless service class for notification requests."""

    # ── Recipients ────────────────────────────────────────────────────────

    @staticmethod
    def resolve_recipients(
        tenant_id: int,
        roles,
        global_roles=frozenset(),
    ) -> list[Recipient]:
        """Active users holding any of ``roles``, deduplicated by email.

        Roles are visited in the given order so the first (most local) role
        is the one stamped on a person who holds several memberships.
        """
        recipients: list[Recipient] = []
        seen: set[str] = set()

        for role in roles:
            stmt = select(User).where(User.role == role, User.is_active == True)  # noqa: E712
            if role not in global_roles:
                stmt = stmt.where(User.tenant_id == tenant_id)
            users = db.session.execute(stmt.order_by(User.id)).scalars().all()

            for user in users:
                if not user.email:
                    continue
                key = user.email.strip().lower()
                if key in seen:
                    continue
                seen.add(key)
                recipients.append(Recipient(
                    email=user.email,
                    name=user.display_name,
                    role=role,
                    user_id=user.id,
                ))
        return recipients

    # ── Queue ─────────────────────────────────────────────────────────────

    @staticmethod
    def queue(
        *,
        unit: Unit | None,
        tenant_id: int,
        recipient: Recipient,
        notification_type: str,
        subject: str,
        message: str,
        priority: str = "normal",
        escalation_id: int | None = None,
        template_data: dict | None = None,
        dedupe_key: str | None = None,
    ) -> EscalationNotification:
        """Add one pending notification request to the session (no commit)."""
        notif = EscalationNotification(
            tenant_id=tenant_id,
            unit_id=unit.id if unit is not None else None,
            escalation_id=escalation_id,
            notification_type=notification_type,
            recipient_user_id=recipient.user_id,
            recipient_email=recipient.email,
            recipient_name=recipient.name,
            recipient_role=recipient.role,
            channel="email",
            priority=priority,
            subject=subject,
            message=message,
            template_data=template_data or {},
            dedupe_key=dedupe_key,
            status=DELIVERY_PENDING,
        )
        db.session.add(notif)
        return notif

    @classmethod
    def queue_for_recipients(
        cls,
        *,
        unit: Unit,
        recipients: list[Recipient],
        notification_type: str,
        subject: str,
        message: str,
        priority: str = "normal",
        escalation_id: int | None = None,
        template_data: dict | None = None,
    ) -> list[EscalationNotification]:
        """Queue the same message for each recipient (no commit)."""
        return [
            cls.queue(
                unit=unit,
                tenant_id=unit.tenant_id,
                recipient=r,
                notification_type=notification_type,
                subject=subject,
                message=message,
                priority=priority,
                escalation_id=escalation_id,
                template_data=template_data,
            )
            for r in recipients
        ]

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def dedupe_key(unit_id: int, recipient_email: str, subject: str) -> str:
        """Stable key for a (unit, recipient, subject) reminder."""
        raw = f"{unit_id}\n{recipient_email.strip().lower()}\n{subject}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    @staticmethod
    def already_queued(unit_id: int, recipient_email: str, subject: str) -> bool:
        """True when the same reminder was queued before, whatever its delivery status."""
        stmt = select(EscalationNotification.id).where(
            EscalationNotification.unit_id == unit_id,
            EscalationNotification.recipient_email == recipient_email,
            EscalationNotification.subject == subject,
        ).limit(1)
        return db.session.execute(stmt).scalar_one_or_none() is not None

    @staticmethod
    def list_for_unit(unit_id: int, principal: Principal) -> list[dict]:
        """Notification history for one unit, oldest first."""
        load_for_principal(Unit, unit_id, principal, allow_archived=True)
        stmt = (
            select(EscalationNotification)
            .where(EscalationNotification.unit_id == unit_id)
            .order_by(EscalationNotification.id)
        )
        return [n.to_dict() for n in db.session.execute(stmt).scalars().all()]
