"""
Unit Escalation Engine
Notification Delivery — drains pending EscalationNotification rows.

The engine only ever *queues* notifications; this pass hands them to SMTP.
When SMTP is not configured, messages are logged and marked sent (dev/test
mode) so the queue still drains.

Failure semantics:
    - one failed message is marked ``failed`` with its error and the batch
      continues; nothing is raised to the caller
    - failed rows are not retried automatically; the escalation event that
      produced them is never touched

Configuration (env vars):
    MAIL_SERVER          SMTP host (default: None → log-only mode)
    MAIL_PORT            SMTP port (default: 587)
    MAIL_USE_TLS         Use TLS (default: true)
    MAIL_USERNAME        SMTP username
    MAIL_PASSWORD        SMTP password
    MAIL_DEFAULT_SENDER  Default from address
    MAIL_TIMEOUT         Socket timeout in seconds (default: 30)
    NOTIFICATION_BATCH_SIZE  Rows per pass (default: 50)
"""

from __future__ import annotations

import html
import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app
from sqlalchemy import select

from app.models import db
from app.models.notification import (
    DELIVERY_FAILED,
    DELIVERY_PENDING,
    DELIVERY_SENT,
    EscalationNotification,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Template
# ═══════════════════════════════════════════════════════════════════════════

_TEMPLATE = """
<div style="font-family: 'Inter', Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #1e293b; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">Unit Escalation</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        <div style="background: {priority_color}; color: white; padding: 4px 12px; border-radius: 4px;
                    display: inline-block; font-size: 12px; font-weight: 600; text-transform: uppercase;">
            {priority}
        </div>
        <h3 style="margin: 16px 0 8px; color: #1e293b;">{subject}</h3>
        <p style="color: #64748b; line-height: 1.6; white-space: pre-line;">{message}</p>
        {unit_link}
    </div>
    <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                border: 1px solid #e2e8f0; border-top: none; text-align: center;">
        <p style="color: #94a3b8; font-size: 12px; margin: 0;">Automated notification</p>
    </div>
</div>
"""

PRIORITY_COLORS = {
    "normal": "#3b82f6",
    "high": "#f59e0b",
    "critical": "#ef4444",
}


def render_html(notif: EscalationNotification) -> str:
    """Render the HTML body for one notification."""
    data = notif.template_data or {}
    link = data.get("link")
    context = {
        "priority": html.escape(notif.priority or "normal"),
        "priority_color": PRIORITY_COLORS.get(notif.priority, PRIORITY_COLORS["normal"]),
        "subject": html.escape(notif.subject or ""),
        "message": html.escape(notif.message or ""),
        "unit_link": (
            f'<p><a href="{html.escape(link, quote=True)}">Open unit</a></p>' if link else ""
        ),
    }
    return _TEMPLATE.format_map(_SafeDict(context))


class DeliveryService:
    """Hands queued notifications to the mail transport."""

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @classmethod
    def deliver(cls, notif: EscalationNotification) -> bool:
        """Send one notification and record the outcome on it (no commit).

        Returns True when the row ended up ``sent``.
        """
        if not cls.is_configured():
            # Dev/test mode: log only
            notif.status = DELIVERY_SENT
            notif.sent_at = datetime.now(timezone.utc)
            notif.error_message = None
            logger.info(
                "Notification (dev mode): to=%s subject='%s'",
                notif.recipient_email, notif.subject,
                extra={"unit_id": notif.unit_id, "tenant_id": notif.tenant_id,
                       "event_type": notif.notification_type},
            )
            return True

        try:
            cls._send_smtp(
                to_email=notif.recipient_email,
                to_name=notif.recipient_name,
                subject=notif.subject,
                text_body=notif.message or "",
                html_body=render_html(notif),
            )
        except (smtplib.SMTPException, OSError) as exc:
            notif.status = DELIVERY_FAILED
            notif.error_message = str(exc)[:1000]
            logger.error(
                "Notification failed: to=%s error=%s", notif.recipient_email, exc,
                extra={"unit_id": notif.unit_id, "tenant_id": notif.tenant_id,
                       "event_type": notif.notification_type},
            )
            return False

        notif.status = DELIVERY_SENT
        notif.sent_at = datetime.now(timezone.utc)
        notif.error_message = None
        logger.info("Notification sent: to=%s subject='%s'", notif.recipient_email, notif.subject,
                    extra={"unit_id": notif.unit_id, "tenant_id": notif.tenant_id})
        return True

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, text_body: str, html_body: str) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")
        timeout = cfg.get("MAIL_TIMEOUT", 30)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=timeout) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


def deliver_pending(limit: int | None = None) -> dict:
    """Deliver up to ``limit`` pending notifications, oldest first.

    Returns:
        ``{"processed", "sent", "failed"}``
    """
    if limit is None:
        limit = current_app.config.get("NOTIFICATION_BATCH_SIZE", 50)

    stmt = (
        select(EscalationNotification)
        .where(EscalationNotification.status == DELIVERY_PENDING)
        .order_by(EscalationNotification.created_at, EscalationNotification.id)
        .limit(limit)
    )
    pending = db.session.execute(stmt).scalars().all()

    sent = failed = 0
    for notif in pending:
        if DeliveryService.deliver(notif):
            sent += 1
        else:
            failed += 1
        db.session.commit()

    if pending:
        logger.info("Notification delivery: processed=%d sent=%d failed=%d",
                    len(pending), sent, failed,
                    extra={"event_type": "notification_delivery"})
    return {"processed": len(pending), "sent": sent, "failed": failed}


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
