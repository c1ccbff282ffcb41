"""
API tests: /api/v1/units/*, /api/v1/proofs/*, /api/v1/attention-queue.

Requests go through the real JWT middleware with tokens minted by
``auth_header``. Timestamps inside the API come from the wall clock, so
deadlines here are relative to ``datetime.now`` rather than the fixed ``now``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.models.unit import STATUS_BLOCKED, STATUS_GREEN, STATUS_RED


def _real_now():
    return datetime.now(timezone.utc)


@pytest.fixture()
def live_unit(org, make_unit):
    real_now = _real_now()
    return make_unit(
        org, title="Pull cable",
        created_at=real_now - timedelta(days=2), deadline=real_now + timedelta(days=8),
    )


def _submit(client, unit, headers, **overrides):
    body = {"proof_type": "photo", "file_url": "https://files.example.com/cable.jpg"}
    body.update(overrides)
    return client.post(f"/api/v1/units/{unit.id}/proofs", json=body, headers=headers)


# ═════════════════════════════════════════════════════════════════════════════
# Authentication & tenant boundary
# ═════════════════════════════════════════════════════════════════════════════


class TestAuth:

    def test_missing_token_is_401(self, client, live_unit):
        res = client.get(f"/api/v1/units/{live_unit.id}/status")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_garbage_token_is_401(self, client, live_unit):
        res = client.get(
            f"/api/v1/units/{live_unit.id}/status",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid token"

    def test_inactive_user_is_401(self, client, org, live_unit, auth_header):
        org.lead.is_active = False
        res = client.get(f"/api/v1/units/{live_unit.id}/status", headers=auth_header(org.lead))
        assert res.status_code == 401

    def test_cross_tenant_is_403(self, client, other_org, live_unit, auth_header):
        res = client.get(f"/api/v1/units/{live_unit.id}/status", headers=auth_header(other_org.owner))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_unknown_unit_is_404(self, client, org, auth_header):
        res = client.get("/api/v1/units/98765/status", headers=auth_header(org.owner))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════════
# Status & evidence
# ═════════════════════════════════════════════════════════════════════════════


class TestEvidenceApi:

    def test_status_endpoint(self, client, org, live_unit, auth_header):
        res = client.get(f"/api/v1/units/{live_unit.id}/status", headers=auth_header(org.client))
        assert res.status_code == 200
        data = res.get_json()
        assert data["unit_id"] == live_unit.id
        assert data["computed_status"] == STATUS_RED

    def test_submit_then_approve_turns_green(self, client, org, live_unit, auth_header):
        res = _submit(client, live_unit, auth_header(org.field))
        assert res.status_code == 201
        proof = res.get_json()
        assert proof["approval_status"] == "pending"
        assert proof["unit_status"] == STATUS_RED

        res = client.post(
            f"/api/v1/proofs/{proof['id']}/decision",
            json={"action": "approve"}, headers=auth_header(org.lead),
        )
        assert res.status_code == 200
        assert res.get_json()["unit_status"] == STATUS_GREEN

        listing = client.get(f"/api/v1/units/{live_unit.id}/proofs", headers=auth_header(org.client))
        assert listing.status_code == 200
        assert listing.get_json()["total"] == 1

    def test_client_viewer_cannot_submit(self, client, org, live_unit, auth_header):
        res = _submit(client, live_unit, auth_header(org.client))
        assert res.status_code == 403

    def test_missing_proof_type_is_400(self, client, org, live_unit, auth_header):
        res = _submit(client, live_unit, auth_header(org.field), proof_type="")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_non_object_body_is_400(self, client, org, live_unit, auth_header):
        res = client.post(
            f"/api/v1/units/{live_unit.id}/proofs", json=["photo"], headers=auth_header(org.field),
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_unknown_proof_type_is_422(self, client, org, live_unit, auth_header):
        res = _submit(client, live_unit, auth_header(org.field), proof_type="hologram")
        assert res.status_code == 422
        assert "proof_type" in res.get_json()["details"]

    def test_self_review_is_403(self, client, org, live_unit, auth_header):
        proof = _submit(client, live_unit, auth_header(org.lead)).get_json()
        res = client.post(
            f"/api/v1/proofs/{proof['id']}/decision",
            json={"action": "approve"}, headers=auth_header(org.lead),
        )
        assert res.status_code == 403
        assert "Separation of duties" in res.get_json()["error"]

    def test_reject_without_reason_is_409(self, client, org, live_unit, auth_header):
        proof = _submit(client, live_unit, auth_header(org.field)).get_json()
        res = client.post(
            f"/api/v1/proofs/{proof['id']}/decision",
            json={"action": "reject"}, headers=auth_header(org.lead),
        )
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_INVALID_STATE"

    @pytest.mark.parametrize("body, code", [
        ({}, "ERR_VALIDATION_REQUIRED"),
        ({"action": "maybe"}, "ERR_VALIDATION_INVALID"),
    ])
    def test_bad_decision_action_is_400(self, client, org, live_unit, auth_header, body, code):
        proof = _submit(client, live_unit, auth_header(org.field)).get_json()
        res = client.post(f"/api/v1/proofs/{proof['id']}/decision", json=body, headers=auth_header(org.lead))
        assert res.status_code == 400
        assert res.get_json()["code"] == code


# ═════════════════════════════════════════════════════════════════════════════
# Governance
# ═════════════════════════════════════════════════════════════════════════════


class TestGovernanceApi:

    def test_escalate_requires_reason(self, client, org, live_unit, auth_header):
        res = client.post(f"/api/v1/units/{live_unit.id}/escalate", json={}, headers=auth_header(org.field))
        assert res.status_code == 400

    def test_contributor_escalation_only_proposes_block(self, client, org, live_unit, auth_header):
        res = client.post(
            f"/api/v1/units/{live_unit.id}/escalate",
            json={"reason": "Trench flooded", "mark_as_blocked": "true"},
            headers=auth_header(org.field),
        )
        assert res.status_code == 201
        data = res.get_json()
        assert data["escalation"]["level"] == 1
        assert data["proposed_blocked"] is True
        assert data["unit"]["is_blocked"] is False

    def test_block_and_unblock_round(self, client, org, live_unit, auth_header):
        res = client.post(
            f"/api/v1/units/{live_unit.id}/escalate",
            json={"reason": "Permit revoked", "mark_as_blocked": True},
            headers=auth_header(org.lead),
        )
        assert res.status_code == 201
        assert res.get_json()["unit"]["computed_status"] == STATUS_BLOCKED

        res = client.post(f"/api/v1/units/{live_unit.id}/unblock", json={}, headers=auth_header(org.lead))
        assert res.status_code == 403

        res = client.post(
            f"/api/v1/units/{live_unit.id}/unblock",
            json={"reason": "Permit reissued"}, headers=auth_header(org.owner),
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["is_blocked"] is False
        assert data["computed_status"] == STATUS_RED
        assert data["current_escalation_level"] == 0

        res = client.post(f"/api/v1/units/{live_unit.id}/unblock", json={}, headers=auth_header(org.owner))
        assert res.status_code == 409

    def test_notification_history(self, client, org, other_org, live_unit, auth_header):
        client.post(
            f"/api/v1/units/{live_unit.id}/escalate",
            json={"reason": "Trench flooded"}, headers=auth_header(org.field),
        )

        res = client.get(f"/api/v1/units/{live_unit.id}/notifications", headers=auth_header(org.owner))
        assert res.status_code == 200
        data = res.get_json()
        assert data["total"] == 1
        assert data["items"][0]["recipient_email"] == org.lead.email
        assert data["items"][0]["status"] == "pending"

        res = client.get(f"/api/v1/units/{live_unit.id}/notifications", headers=auth_header(other_org.owner))
        assert res.status_code == 403

    def test_confirm_unit(self, client, org, make_unit, auth_header):
        unit = make_unit(org, is_confirmed=False, created_by=org.field.id)

        res = client.post(f"/api/v1/units/{unit.id}/confirm", headers=auth_header(org.field))
        assert res.status_code == 403

        res = client.post(f"/api/v1/units/{unit.id}/confirm", headers=auth_header(org.lead))
        assert res.status_code == 200
        assert res.get_json()["is_confirmed"] is True


# ═════════════════════════════════════════════════════════════════════════════
# Attention queue
# ═════════════════════════════════════════════════════════════════════════════


class TestAttentionQueueApi:

    def test_requires_auth(self, client):
        assert client.get("/api/v1/attention-queue").status_code == 401

    def test_scoped_to_caller_org(self, client, org, other_org, make_unit, auth_header):
        real_now = _real_now()
        make_unit(org, title="Ours", deadline=real_now + timedelta(hours=10))
        make_unit(other_org, title="Theirs", deadline=real_now + timedelta(hours=10))

        res = client.get("/api/v1/attention-queue", headers=auth_header(org.lead))

        assert res.status_code == 200
        data = res.get_json()
        assert data["success"] is True
        assert data["user_role"] == org.lead.role
        assert [i["unit_title"] for i in data["items"]] == ["Ours"]
        assert data["items"][0]["priority"] == 650
        assert data["summary"]["units_at_risk"] == 1


# ═════════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════════


class TestHealth:

    @pytest.mark.parametrize("path", ["/api/v1/health", "/api/v1/health/ready"])
    def test_probes_need_no_auth(self, client, path):
        res = client.get(path)
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_live_reports_dependencies(self, client):
        data = client.get("/api/v1/health/live").get_json()
        assert data["checks"]["database"]["status"] == "ok"
        assert data["checks"]["scheduler"]["status"] == "ok"
        assert data["checks"]["scheduler"]["cron_secret_configured"] is True
