"""
Identity domain constants.

Why:
- Centralize the role vocabulary so routing, authorization and forms agree.
- Keep terms aligned with the glossary (Identity, Profile, Role, Business).
"""

from __future__ import annotations

SUPERADMIN = "superadmin"
BUSINESS_ADMIN = "business_admin"
STAFF = "staff"
HOST = "host"
LECTOR_QR = "lector_qr"
PROMOTER = "promoter"

# Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({SUPERADMIN, BUSINESS_ADMIN, STAFF, HOST, LECTOR_QR, PROMOTER})

# Roles a platform user form must pair with a business id.
ROLES_REQUIRING_BUSINESS = frozenset({BUSINESS_ADMIN, STAFF, HOST})

# Roles a business-scoped caller may hand out to new users of its own business.
BUSINESS_ASSIGNABLE_ROLES = (STAFF, HOST)

PROFILES_COLLECTION = "platformUsers"
BUSINESSES_COLLECTION = "businesses"
SOCIO_VIP_COLLECTION = "socioVipMembers"
BUSINESS_ENTITIES_COLLECTION = "businessEntities"
PROMOTER_LINKS_COLLECTION = "businessPromoterLinks"


__all__ = [
    "ALLOWED_ROLES",
    "BUSINESS_ADMIN",
    "BUSINESS_ASSIGNABLE_ROLES",
    "BUSINESS_ENTITIES_COLLECTION",
    "BUSINESSES_COLLECTION",
    "HOST",
    "LECTOR_QR",
    "PROFILES_COLLECTION",
    "PROMOTER",
    "PROMOTER_LINKS_COLLECTION",
    "ROLES_REQUIRING_BUSINESS",
    "SOCIO_VIP_COLLECTION",
    "STAFF",
    "SUPERADMIN",
]
