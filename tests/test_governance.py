"""
Tests: Manual Escalation & Block Governance.

Covers:
    - manual escalation advances exactly one level, capped at 3
    - block confirmed by reviewer roles, only proposed by everyone else
    - missing reason / already blocked are rejected
    - unblock authority, state checks, level reset, recompute from evidence
    - confirm_unit authority and state checks
    - is_blocked ⇔ BLOCKED after every operation
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.exceptions import ForbiddenError, InvalidStateError, TransientError
from app.models import db as _db
from app.models.notification import EscalationNotification
from app.models.unit import (
    APPROVAL_APPROVED,
    ESCALATION_ACTIVE,
    ESCALATION_MANUAL,
    ESCALATION_RESOLVED,
    STATUS_BLOCKED,
    STATUS_GREEN,
    STATUS_RED,
    UnitEscalation,
    UnitProof,
    UnitStatusEvent,
)
from app.services import governance_service as svc
from app.services.escalation_policy import DEFAULT_POLICY
from app.services.tenant_guard import Principal


def _escalate(unit, user, now, reason="Crane broke down", block=False):
    return svc.manual_escalate(
        unit.id, Principal.from_user(user), reason, now, propose_blocked=block, policy=DEFAULT_POLICY,
    )


def _assert_block_invariant(unit):
    assert unit.is_blocked == (unit.computed_status == STATUS_BLOCKED)


# ═════════════════════════════════════════════════════════════════════════════
# 1. MANUAL ESCALATION
# ═════════════════════════════════════════════════════════════════════════════


class TestManualEscalation:

    def test_advances_exactly_one_level_regardless_of_elapsed_time(self, org, make_unit, now):
        # Only 10% elapsed; manual escalation ignores the clock
        unit = make_unit(org, created_at=now - timedelta(days=1), deadline=now + timedelta(days=9))

        result = _escalate(unit, org.field, now)

        assert unit.current_escalation_level == 1
        assert result["escalation"]["level"] == 1
        assert result["escalation"]["escalation_type"] == ESCALATION_MANUAL
        assert result["escalation"]["escalated_by"] == org.field.id
        assert result["notifications_created"] == 1

    def test_level_is_capped_at_three(self, org, make_unit, now):
        unit = make_unit(org, current_escalation_level=3)
        result = _escalate(unit, org.lead, now)
        assert result["escalation"]["level"] == 3
        assert unit.current_escalation_level == 3

    def test_level_two_notifies_leads_and_owners(self, org, make_unit, now):
        unit = make_unit(org, current_escalation_level=1)
        _escalate(unit, org.field, now)

        emails = sorted(n.recipient_email for n in EscalationNotification.query.filter_by(unit_id=unit.id))
        assert emails == sorted([org.lead.email, org.owner.email])
        subjects = {n.subject for n in EscalationNotification.query.filter_by(unit_id=unit.id)}
        assert subjects == {f'MANUAL ESCALATION: "{unit.title}" - Action Required'}

    def test_reason_is_required(self, org, make_unit, now):
        unit = make_unit(org)
        with pytest.raises(InvalidStateError, match="reason"):
            _escalate(unit, org.lead, now, reason="   ")
        assert UnitEscalation.query.count() == 0

    def test_cross_tenant_escalation_is_forbidden(self, org, other_org, make_unit, now):
        unit = make_unit(org)
        with pytest.raises(ForbiddenError):
            _escalate(unit, other_org.lead, now)

    def test_concurrent_level_change_raises_transient(self, org, make_unit, now, monkeypatch):
        import app.services.governance_service as governance

        unit = make_unit(org)
        monkeypatch.setattr(governance, "advance_escalation_level", lambda *a, **k: False)

        with pytest.raises(TransientError):
            _escalate(unit, org.lead, now)
        assert UnitEscalation.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# 2. BLOCK AUTHORITY
# ═════════════════════════════════════════════════════════════════════════════


class TestBlockAuthority:

    @pytest.mark.parametrize("role_attr", ["lead", "owner"])
    def test_reviewer_roles_confirm_block(self, org, make_unit, now, role_attr):
        unit = make_unit(org)
        user = getattr(org, role_attr)

        result = _escalate(unit, user, now, reason="Permit revoked", block=True)

        assert result["blocked"] is True
        assert result["proposed_blocked"] is False
        assert unit.is_blocked is True
        assert unit.computed_status == STATUS_BLOCKED
        assert unit.blocked_reason == "Permit revoked"
        assert unit.blocked_by == user.id
        _assert_block_invariant(unit)
        assert UnitStatusEvent.query.filter_by(unit_id=unit.id, event_type="blocked").count() == 1

    @pytest.mark.parametrize("role_attr", ["client", "field"])
    def test_other_roles_only_propose_block(self, org, make_unit, now, role_attr):
        unit = make_unit(org)
        user = getattr(org, role_attr)

        result = _escalate(unit, user, now, block=True)

        assert result["blocked"] is False
        assert result["proposed_blocked"] is True
        assert result["escalation"]["proposed_blocked"] is True
        assert result["escalation"]["proposed_by_role"] == user.role
        assert unit.is_blocked is False
        assert unit.computed_status == STATUS_RED
        _assert_block_invariant(unit)

    def test_block_request_on_blocked_unit_is_rejected(self, org, make_unit, now):
        unit = make_unit(org)
        _escalate(unit, org.lead, now, block=True)
        with pytest.raises(InvalidStateError, match="already blocked"):
            _escalate(unit, org.owner, now, block=True)

    def test_plain_escalation_on_blocked_unit_is_allowed(self, org, make_unit, now):
        unit = make_unit(org)
        _escalate(unit, org.lead, now, block=True)
        result = _escalate(unit, org.field, now, reason="Still blocked, day 3")
        assert result["escalation"]["level"] == 2
        assert unit.is_blocked is True


# ═════════════════════════════════════════════════════════════════════════════
# 3. UNBLOCK
# ═════════════════════════════════════════════════════════════════════════════


class TestUnblock:

    def test_owner_unblocks_and_unit_reverts_to_red(self, org, make_unit, now):
        unit = make_unit(org)
        _escalate(unit, org.lead, now, block=True)

        result = svc.unblock(unit.id, Principal.from_user(org.owner), now + timedelta(hours=1))

        assert result["is_blocked"] is False
        assert result["computed_status"] == STATUS_RED
        assert result["blocked_reason"] is None
        assert result["blocked_at"] is None
        assert result["blocked_by"] is None
        assert result["current_escalation_level"] == 0
        _assert_block_invariant(unit)

    def test_unblock_recomputes_from_evidence(self, org, make_unit, now):
        unit = make_unit(org)
        _db.session.add(UnitProof(
            tenant_id=unit.tenant_id, unit_id=unit.id, proof_type="photo",
            file_url="https://files.example.com/ok.jpg", approval_status=APPROVAL_APPROVED,
            uploaded_at=now,
        ))
        _escalate(unit, org.lead, now, block=True)

        result = svc.unblock(unit.id, Principal.from_user(org.owner), now)
        assert result["computed_status"] == STATUS_GREEN

    def test_unblock_resolves_active_escalations(self, org, make_unit, now):
        unit = make_unit(org)
        _escalate(unit, org.lead, now, block=True)
        svc.unblock(unit.id, Principal.from_user(org.owner), now)

        statuses = {e.status for e in UnitEscalation.query.filter_by(unit_id=unit.id)}
        assert statuses == {ESCALATION_RESOLVED}
        assert ESCALATION_ACTIVE not in statuses

    def test_lead_cannot_unblock(self, org, make_unit, now):
        unit = make_unit(org)
        _escalate(unit, org.lead, now, block=True)
        with pytest.raises(ForbiddenError):
            svc.unblock(unit.id, Principal.from_user(org.lead), now)

    def test_unblocking_unblocked_unit_is_invalid(self, org, make_unit, now):
        unit = make_unit(org)
        with pytest.raises(InvalidStateError, match="not blocked"):
            svc.unblock(unit.id, Principal.from_user(org.owner), now)


# ═════════════════════════════════════════════════════════════════════════════
# 4. CONFIRMATION
# ═════════════════════════════════════════════════════════════════════════════


class TestConfirmUnit:

    def test_lead_confirms_contributor_unit(self, org, make_unit, now):
        unit = make_unit(org, is_confirmed=False, created_by=org.field.id)

        result = svc.confirm_unit(unit.id, Principal.from_user(org.lead), now)

        assert result["is_confirmed"] is True
        assert result["confirmed_by"] == org.lead.id
        assert UnitStatusEvent.query.filter_by(unit_id=unit.id, event_type="unit_confirmed").count() == 1

    def test_contributor_cannot_confirm(self, org, make_unit, now):
        unit = make_unit(org, is_confirmed=False)
        with pytest.raises(ForbiddenError):
            svc.confirm_unit(unit.id, Principal.from_user(org.field), now)

    def test_already_confirmed_is_invalid(self, org, make_unit, now):
        unit = make_unit(org)
        with pytest.raises(InvalidStateError, match="already confirmed"):
            svc.confirm_unit(unit.id, Principal.from_user(org.owner), now)

    def test_archived_unit_cannot_be_confirmed(self, org, make_unit, now):
        unit = make_unit(org, is_confirmed=False)
        unit.archive(org.owner.id)
        _db.session.flush()
        with pytest.raises(InvalidStateError, match="archived"):
            svc.confirm_unit(unit.id, Principal.from_user(org.owner), now)
