"""
Attention Queue Blueprint.

Endpoints:
    GET /api/v1/attention-queue
        Returns: 200 with ``{summary, items, user_role}``; items are sorted
        by descending priority and scoped to the caller's organization
        (platform admins see every organization).
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, jsonify

from app.auth import current_principal
from app.services.attention_queue import get_attention_queue
from app.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

attention_bp = Blueprint("attention", __name__, url_prefix="/api/v1")
register_error_handlers(attention_bp)


@attention_bp.route("/attention-queue", methods=["GET"])
def attention_queue():
    principal = current_principal()
    result = get_attention_queue(principal, datetime.now(timezone.utc))
    result["success"] = True
    return jsonify(result), 200
