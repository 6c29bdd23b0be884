"""
Authorization rules for privileged operations (step 4).

Pure functions over the caller's Profile and the requested assignment. They
never trust caller-supplied business ids for business-scoped callers: the new
user's business is always the caller's own.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from identity_access.domain import (
    BUSINESS_ADMIN,
    BUSINESS_ASSIGNABLE_ROLES,
    HOST,
    LECTOR_QR,
    PROMOTER,
    STAFF,
    SUPERADMIN,
)
from identity_access.profiles import Profile

from .errors import Unauthorized, role_not_permitted


@dataclass(frozen=True)
class Assignment:
    roles: List[str]
    business_id: Optional[str]


def require_any_role(profile: Profile, roles: Iterable[str], *, detail: str | None = None) -> None:
    wanted = tuple(roles)
    if not profile.has_role(*wanted):
        raise Unauthorized(detail)


def require_business_member(profile: Profile) -> str:
    """Caller must be business_admin or staff AND carry its own business id."""
    if not profile.has_role(BUSINESS_ADMIN, STAFF) or not profile.business_id:
        raise Unauthorized(
            "Permiso denegado. No eres admin/staff de un negocio o no tienes un negocio asociado."
        )
    return profile.business_id


def restrict_to_business_roles(requested: Iterable[str]) -> List[str]:
    allowed = [r for r in dict.fromkeys(requested) if r in BUSINESS_ASSIGNABLE_ROLES]
    if not allowed:
        raise role_not_permitted()
    return allowed


def gate_user_creation(caller: Profile) -> None:
    """Caller-level gate for platform user creation, before the payload is read."""
    require_any_role(caller, (SUPERADMIN, BUSINESS_ADMIN))
    if not caller.has_role(SUPERADMIN) and not caller.business_id:
        raise Unauthorized("Permiso denegado. No tienes un negocio asociado.")


def resolve_user_assignment(caller: Profile, requested_roles: Iterable[str], requested_business_id: Optional[str]) -> Assignment:
    """Roles and business for a new platform user.

    - superadmin: any roles and any target business, stored as requested.
    - business_admin: roles filtered to staff/host, business forced to the
      caller's own.
    """
    gate_user_creation(caller)
    requested = list(dict.fromkeys(requested_roles))
    if caller.has_role(SUPERADMIN):
        return Assignment(roles=requested, business_id=requested_business_id or None)
    return Assignment(roles=restrict_to_business_roles(requested), business_id=caller.business_id)


def resolve_staff_assignment(caller: Profile, requested_roles: Iterable[str]) -> Assignment:
    business_id = require_business_member(caller)
    return Assignment(roles=restrict_to_business_roles(requested_roles), business_id=business_id)


# Roles that may touch an entity's codes at all; entity-level checks follow.
CODE_ISSUER_ROLES = (SUPERADMIN, BUSINESS_ADMIN, STAFF, PROMOTER)
CODE_REGISTRAR_ROLES = CODE_ISSUER_ROLES + (HOST, LECTOR_QR)
DOOR_ROLES = (BUSINESS_ADMIN, STAFF, HOST, LECTOR_QR)


def require_door_operator(profile: Profile) -> str:
    """Caller scans codes at the door of its own business; returns that business id."""
    if not profile.has_role(*DOOR_ROLES) or not profile.business_id:
        raise Unauthorized("Permiso denegado. No tienes un negocio asociado para validar códigos.")
    return profile.business_id
