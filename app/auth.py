"""
Unit Escalation Engine
Request authentication helpers.

Provides:
    - current_principal(): the Principal resolved by the JWT middleware
    - cron_secret_required: decorator guarding scheduled-trigger endpoints

Security model:
    - Every /api/v1/* endpoint except health and cron needs a bearer JWT
    - Cron endpoints need ``Authorization: Bearer <CRON_SECRET>``; when
      CRON_SECRET is not configured they refuse every call
"""

import functools
import hmac
import logging

from flask import current_app, g, request

from app.core.exceptions import UnauthenticatedError
from app.services.tenant_guard import Principal
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_principal() -> Principal:
    """Return the authenticated principal or raise UnauthenticatedError."""
    principal = getattr(g, "principal", None)
    if principal is None:
        raise UnauthenticatedError(getattr(g, "auth_error", None) or "Authentication required")
    return principal


def cron_secret_required(fn):
    """Decorator: require the shared cron secret as a bearer token.

    Fails closed: a missing CRON_SECRET answers 503 for every call, even one
    that sends no credential at all.
    """

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET")
        if not secret:
            logger.error("Cron trigger refused: CRON_SECRET is not configured",
                         extra={"path": request.path})
            return api_error(E.NOT_CONFIGURED, "Cron secret is not configured")

        auth_header = request.headers.get("Authorization", "")
        supplied = auth_header[7:] if auth_header.startswith("Bearer ") else ""
        if not supplied or not hmac.compare_digest(supplied.encode(), secret.encode()):
            logger.warning("Cron trigger rejected: bad secret",
                           extra={"path": request.path, "remote_addr": request.remote_addr})
            return api_error(E.UNAUTHENTICATED, "Unauthorized")
        return fn(*args, **kwargs)

    return wrapper
