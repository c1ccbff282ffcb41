"""
JWT Auth Middleware — resolves ``Authorization: Bearer <jwt>`` to a Principal.

Sets on ``flask.g``:
    g.principal   Principal | None
    g.auth_error  short reason when a credential was sent but rejected

The hook never rejects a request by itself; views that need an identity call
``app.auth.current_principal()``, which raises UnauthenticatedError.
Cron endpoints use their own shared secret and are skipped here.
"""

import logging

import jwt as pyjwt
from flask import g, request

from app.models import db
from app.models.auth import User
from app.services.jwt_service import decode_access_token
from app.services.tenant_guard import Principal

logger = logging.getLogger(__name__)


# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/api/v1/cron/",
)


def _resolve_principal(token: str) -> Principal | None:
    payload = decode_access_token(token)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise pyjwt.InvalidTokenError("Token subject is not a user id")

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        g.auth_error = "User not found or inactive"
        return None
    # The user row is authoritative for role and organization
    return Principal.from_user(user)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.principal = None
        g.auth_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            g.principal = _resolve_principal(token)
        except pyjwt.ExpiredSignatureError:
            g.auth_error = "Token expired"
        except pyjwt.InvalidTokenError as exc:
            g.auth_error = "Invalid token"
            logger.info("Rejected bearer token: %s", exc, extra={"path": path})
