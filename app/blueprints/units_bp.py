"""
Units Blueprint — status, evidence and governance actions on a unit.

Endpoints:
    GET    /api/v1/units/<id>/status
           Returns: 200 with the freshly computed status.

    GET    /api/v1/units/<id>/proofs
    POST   /api/v1/units/<id>/proofs
           Body: { "proof_type": "photo|video|document", "file_url": "...",
                   "file_path": "...", "mime_type": "...", "notes": "...",
                   "reference_number": "...", "expiry_date": "ISO-8601" }
           Returns: 201 with the new proof and the unit's status.

    POST   /api/v1/proofs/<id>/decision
           Body: { "action": "approve|reject", "reason": "..." }

    POST   /api/v1/units/<id>/escalate
           Body: { "reason": "...", "mark_as_blocked": false }
           Returns: 201 with the escalation event.

    POST   /api/v1/units/<id>/unblock
           Body: { "reason": "..." (optional) }

    POST   /api/v1/units/<id>/confirm

    GET    /api/v1/units/<id>/notifications
           Returns: 200 with queued/sent/failed notification requests.

Layer contract:
    - Blueprint: parse + validate input, resolve the principal, call service.
    - NO db.session calls here; every write is owned by a service.
    - NO inline role checks; authorization lives in the services.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request

from app.auth import current_principal
from app.services import evidence_service, governance_service, status_service
from app.services.notification import NotificationService
from app.utils.errors import E, api_error, register_error_handlers
from app.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

units_bp = Blueprint("units", __name__, url_prefix="/api/v1")
register_error_handlers(units_bp)


def _now():
    return datetime.now(timezone.utc)


# ── Status ─────────────────────────────────────────────────────────────────────


@units_bp.route("/units/<int:unit_id>/status", methods=["GET"])
def get_status(unit_id: int):
    principal = current_principal()
    return jsonify(status_service.compute_status(unit_id, _now(), principal)), 200


# ── Evidence ───────────────────────────────────────────────────────────────────


@units_bp.route("/units/<int:unit_id>/proofs", methods=["GET"])
def list_proofs(unit_id: int):
    principal = current_principal()
    proofs = evidence_service.list_unit_proofs(unit_id, principal)
    return jsonify({"items": proofs, "total": len(proofs)}), 200


@units_bp.route("/units/<int:unit_id>/proofs", methods=["POST"])
def submit_proof(unit_id: int):
    """Upload evidence metadata for a unit.

    Field-level rules (type whitelist, reference number, expiry date) are
    enforced by evidence_service and come back as 422.
    """
    principal = current_principal()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    if not (data.get("proof_type") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "Field 'proof_type' is required.")

    result = evidence_service.submit_evidence(unit_id, principal, data, _now())
    return jsonify(result), 201


@units_bp.route("/proofs/<int:proof_id>/decision", methods=["POST"])
def decide_proof(proof_id: int):
    principal = current_principal()
    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").strip().lower()

    if not action:
        return api_error(E.VALIDATION_REQUIRED, "Field 'action' is required.")
    if action not in evidence_service.VALID_DECISIONS:
        return api_error(
            E.VALIDATION_INVALID,
            f"Invalid action '{action}'.",
            details={"valid_actions": sorted(evidence_service.VALID_DECISIONS)},
        )

    result = evidence_service.decide_evidence(
        proof_id, principal, action, _now(), reason=data.get("reason"),
    )
    return jsonify(result), 200


# ── Governance ─────────────────────────────────────────────────────────────────


@units_bp.route("/units/<int:unit_id>/escalate", methods=["POST"])
def escalate_unit(unit_id: int):
    """Raise an issue on a unit; reviewers may block it in the same call."""
    principal = current_principal()
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip()
    if not reason:
        return api_error(E.VALIDATION_REQUIRED, "Field 'reason' is required.")

    result = governance_service.manual_escalate(
        unit_id, principal, reason, _now(),
        propose_blocked=parse_bool(data.get("mark_as_blocked")),
    )
    return jsonify(result), 201


@units_bp.route("/units/<int:unit_id>/unblock", methods=["POST"])
def unblock_unit(unit_id: int):
    principal = current_principal()
    data = request.get_json(silent=True) or {}
    unit = governance_service.unblock(unit_id, principal, _now(), reason=data.get("reason"))
    return jsonify(unit), 200


@units_bp.route("/units/<int:unit_id>/confirm", methods=["POST"])
def confirm_unit(unit_id: int):
    principal = current_principal()
    unit = governance_service.confirm_unit(unit_id, principal, _now())
    return jsonify(unit), 200


# ── Notifications ──────────────────────────────────────────────────────────────


@units_bp.route("/units/<int:unit_id>/notifications", methods=["GET"])
def list_notifications(unit_id: int):
    principal = current_principal()
    items = NotificationService.list_for_unit(unit_id, principal)
    return jsonify({"items": items, "total": len(items)}), 200
