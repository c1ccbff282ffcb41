"""
Unit Escalation Engine
Scheduled Jobs.

Concrete job implementations triggered by the external cron.

Jobs:
    - unit_escalation_sweep: advances escalation levels by elapsed time
    - proof_expiry_check: invalidates approved proofs past their expiry date
    - deadline_reminders: queues approaching / overdue deadline reminders
    - notification_delivery: drains pending notification requests
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from app.services.deadline_reminders import run_deadline_reminders
from app.services.delivery_service import deliver_pending
from app.services.escalation_engine import run_escalation_sweep
from app.services.evidence_service import expire_proofs
from app.services.scheduler_service import register_job


@register_job("unit_escalation_sweep")
def unit_escalation_sweep(now: datetime) -> dict[str, Any]:
    """Advance unit escalation levels from elapsed-time thresholds."""
    return run_escalation_sweep(now)


@register_job("proof_expiry_check")
def proof_expiry_check(now: datetime) -> dict[str, Any]:
    """Expire approved proofs whose expiry date has passed."""
    return expire_proofs(now)


@register_job("deadline_reminders")
def deadline_reminders(now: datetime) -> dict[str, Any]:
    """Queue approaching and overdue deadline reminders."""
    return run_deadline_reminders(now)


@register_job("notification_delivery")
def notification_delivery(now: datetime) -> dict[str, Any]:
    """Deliver pending notification requests."""
    return deliver_pending()
