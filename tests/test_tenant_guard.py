"""
Tests: Tenant Guard — organization boundary shared by every operation.

Covers:
    - same-org access allowed, cross-org access forbidden
    - platform admins cross every organization
    - missing and archived rows are NotFound for everyone
    - role checks name the refused action
"""

import pytest

from app.core.exceptions import ForbiddenError, NotFoundError
from app.models.auth import REVIEWER_ROLES
from app.models.unit import Unit
from app.services.tenant_guard import (
    Principal,
    can_access_tenant,
    load_for_principal,
    require_role,
)


def test_same_org_principal_loads_unit(org, make_unit):
    unit = make_unit(org)
    assert load_for_principal(Unit, unit.id, Principal.from_user(org.client)) is unit


def test_other_org_principal_is_forbidden(org, other_org, make_unit):
    unit = make_unit(org)
    with pytest.raises(ForbiddenError):
        load_for_principal(Unit, unit.id, Principal.from_user(other_org.owner))


def test_platform_admin_crosses_organizations(other_org, make_unit, platform_admin):
    unit = make_unit(other_org)
    principal = Principal.from_user(platform_admin)
    assert principal.is_platform_admin
    assert load_for_principal(Unit, unit.id, principal) is unit


def test_missing_unit_is_not_found(org):
    with pytest.raises(NotFoundError):
        load_for_principal(Unit, 4242, Principal.from_user(org.owner))


def test_archived_unit_is_not_found_unless_allowed(org, make_unit):
    unit = make_unit(org)
    unit.archive(org.owner.id)
    principal = Principal.from_user(org.owner)

    with pytest.raises(NotFoundError):
        load_for_principal(Unit, unit.id, principal)
    assert load_for_principal(Unit, unit.id, principal, allow_archived=True) is unit


def test_can_access_tenant_rejects_missing_tenant(org):
    assert can_access_tenant(Principal.from_user(org.lead), None) is False


def test_require_role_names_action(org):
    with pytest.raises(ForbiddenError, match="approve evidence"):
        require_role(Principal.from_user(org.field), REVIEWER_ROLES, "approve evidence")
    require_role(Principal.from_user(org.lead), REVIEWER_ROLES, "approve evidence")
