"""
Tenant Guard — single authorization check shared by every engine operation.

Rule:
    The acting principal's organization must match the resource's
    organization, unless the principal is a PLATFORM_ADMIN.

Every service loads its target through ``load_for_principal`` (writes and
reads alike) instead of filtering by tenant ad hoc inside each query.

Missing or archived rows raise NotFoundError for every caller; an existing
row owned by another tenant raises ForbiddenError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.exceptions import ForbiddenError, NotFoundError
from app.models import db
from app.models.auth import PLATFORM_ADMIN, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated actor as resolved from a bearer credential."""

    user_id: int
    email: str
    role: str
    tenant_id: int

    @property
    def is_platform_admin(self) -> bool:
        return self.role == PLATFORM_ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(user_id=user.id, email=user.email, role=user.role, tenant_id=user.tenant_id)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "role": self.role,
            "tenant_id": self.tenant_id,
        }


def can_access_tenant(principal: Principal, tenant_id: int | None) -> bool:
    """True when the principal may read or write data owned by ``tenant_id``."""
    if principal.is_platform_admin:
        return True
    return tenant_id is not None and principal.tenant_id == tenant_id


def ensure_tenant_access(principal: Principal, tenant_id: int | None, resource: str = "resource") -> None:
    """Raise ForbiddenError unless the principal may touch ``tenant_id`` data."""
    if can_access_tenant(principal, tenant_id):
        return
    logger.warning(
        "Cross-tenant access denied: user=%s role=%s resource=%s",
        principal.user_id, principal.role, resource,
        extra={"tenant_id": principal.tenant_id, "user_id": principal.user_id,
               "event_type": "cross_tenant_denied"},
    )
    raise ForbiddenError(f"{resource} belongs to another organization")


def load_for_principal(model, pk: int, principal: Principal, *, allow_archived: bool = False):
    """Fetch ``model`` by primary key and apply the tenant rule.

    Args:
        model: A TenantModel subclass.
        pk: Primary key value.
        principal: The acting principal.
        allow_archived: Return archived rows instead of raising NotFoundError.

    Raises:
        NotFoundError: Row missing, or archived when ``allow_archived`` is False.
        ForbiddenError: Row belongs to another tenant.
    """
    obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    if not allow_archived and getattr(obj, "is_archived", False):
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    ensure_tenant_access(principal, obj.tenant_id, resource=model.__name__)
    return obj


def require_role(principal: Principal, allowed: frozenset[str] | set[str], action: str) -> None:
    """Raise ForbiddenError naming the action when the principal's role is not allowed."""
    if principal.role not in allowed:
        raise ForbiddenError(
            f"Role {principal.role} cannot {action}; requires one of: "
            f"{', '.join(sorted(allowed))}"
        )
