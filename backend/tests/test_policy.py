"""
Authorization rules: who may create whom, and in which business.
"""
from __future__ import annotations

import pytest

from gateway.errors import Unauthorized
from gateway.policy import (
    gate_user_creation,
    require_business_member,
    resolve_staff_assignment,
    resolve_user_assignment,
)
from identity_access.profiles import Profile


def _caller(*roles: str, business_id: str | None = None) -> Profile:
    return Profile(uid="caller", roles=list(roles), business_id=business_id)


def test_superadmin_assigns_any_roles_and_business():
    a = resolve_user_assignment(_caller("superadmin"), ["business_admin"], "B9")
    assert a.roles == ["business_admin"]
    assert a.business_id == "B9"


def test_superadmin_keeps_requested_business_for_any_roles():
    mixed = resolve_user_assignment(_caller("superadmin"), ["superadmin", "business_admin"], "B7")
    assert mixed.roles == ["superadmin", "business_admin"]
    assert mixed.business_id == "B7"
    assert resolve_user_assignment(_caller("superadmin"), ["promoter"], "B7").business_id == "B7"
    assert resolve_user_assignment(_caller("superadmin"), ["promoter"], None).business_id is None


def test_business_admin_is_contained_to_own_business():
    a = resolve_user_assignment(_caller("business_admin", business_id="B1"), ["host", "promoter", "staff"], "B2")
    assert a.roles == ["host", "staff"]
    assert a.business_id == "B1"


def test_business_admin_only_forbidden_roles_is_rejected():
    with pytest.raises(Unauthorized) as exc_info:
        resolve_user_assignment(_caller("business_admin", business_id="B1"), ["superadmin"], None)
    assert exc_info.value.error == "role_not_permitted"


@pytest.mark.parametrize("roles", [("promoter",), ("staff",), ("host",), ()])
def test_other_roles_cannot_create_platform_users(roles):
    with pytest.raises(Unauthorized):
        gate_user_creation(_caller(*roles, business_id="B1"))


def test_business_admin_without_business_is_rejected():
    with pytest.raises(Unauthorized):
        gate_user_creation(_caller("business_admin"))


def test_business_member_requires_role_and_business():
    assert require_business_member(_caller("staff", business_id="B3")) == "B3"
    with pytest.raises(Unauthorized):
        require_business_member(_caller("staff"))
    with pytest.raises(Unauthorized):
        require_business_member(_caller("promoter", business_id="B3"))


def test_staff_assignment_filters_roles():
    a = resolve_staff_assignment(_caller("staff", business_id="B3"), ["host", "host", "superadmin"])
    assert a.roles == ["host"]
    assert a.business_id == "B3"
