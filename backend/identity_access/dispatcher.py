"""
Post-login role routing.

Decides which area of the application an Identity lands on after login. The
decision is a pure function of (identity present?, profile, loading flags) so
the HTTP dispatcher, `/api/me` and tests all share it.

States: loading, unauthenticated, unprovisioned, routed.

Roles are not mutually exclusive; the first match in `ROLE_DESTINATIONS`
wins. host and lector_qr share the validation area.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .domain import BUSINESS_ADMIN, HOST, LECTOR_QR, PROMOTER, STAFF, SUPERADMIN
from .profiles import Profile

LOADING = "loading"
UNAUTHENTICATED = "unauthenticated"
UNPROVISIONED = "unprovisioned"
ROUTED = "routed"

LOGIN_PATH = "/login"
HOME_PATH = "/"
ADMIN_AREA = "/admin/dashboard"
BUSINESS_AREA = "/business-panel/dashboard"
PROMOTER_AREA = "/promoter/dashboard"
VALIDATION_AREA = "/lector-qr/validate"

ROLE_DESTINATIONS: tuple[tuple[str, str], ...] = (
    (SUPERADMIN, ADMIN_AREA),
    (BUSINESS_ADMIN, BUSINESS_AREA),
    (STAFF, BUSINESS_AREA),
    (PROMOTER, PROMOTER_AREA),
    (HOST, VALIDATION_AREA),
    (LECTOR_QR, VALIDATION_AREA),
)

NOTICE_PROFILE_MISSING = "profile_missing"
NOTICE_ROLES_INVALID = "profile_roles_invalid"
NOTICE_PANEL_UNDETERMINED = "panel_undetermined"
NOTICE_SESSION_EXPIRED = "session_expired"

NOTICE_MESSAGES = {
    NOTICE_PROFILE_MISSING: "No se encontró un perfil de usuario para tu cuenta. Por favor, contacta al soporte.",
    NOTICE_ROLES_INVALID: "Tu perfil de usuario no tiene roles asignados correctamente. Contacta al soporte.",
    NOTICE_PANEL_UNDETERMINED: "No se pudo determinar tu panel de control. Contacta al soporte si esto es un error.",
    NOTICE_SESSION_EXPIRED: "Tu sesión ha expirado. Por favor, inicia sesión de nuevo.",
}


@dataclass(frozen=True)
class Dispatch:
    state: str
    redirect: Optional[str] = None
    notice: Optional[str] = None
    force_logout: bool = False
    role: Optional[str] = None

    @property
    def notice_message(self) -> Optional[str]:
        return NOTICE_MESSAGES.get(self.notice) if self.notice else None

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "redirect": self.redirect,
            "notice": self.notice,
            "noticeMessage": self.notice_message,
            "forceLogout": self.force_logout,
            "role": self.role,
        }


def destination_for(roles: list[str]) -> tuple[Optional[str], Optional[str]]:
    """Return `(role, path)` of the first matching role, or `(None, None)`."""
    for role, path in ROLE_DESTINATIONS:
        if role in roles:
            return role, path
    return None, None


def dispatch(
    *,
    identity_present: bool,
    profile: Profile | None,
    identity_loading: bool = False,
    profile_loading: bool = False,
) -> Dispatch:
    # Only decide once both reads have settled; a partial read must not redirect.
    if identity_loading or profile_loading:
        return Dispatch(state=LOADING)
    if not identity_present:
        return Dispatch(state=UNAUTHENTICATED, redirect=LOGIN_PATH)
    if profile is None:
        return Dispatch(state=UNPROVISIONED, redirect=LOGIN_PATH, notice=NOTICE_PROFILE_MISSING, force_logout=True)
    if not profile.roles_valid or not isinstance(profile.roles, list):
        return Dispatch(state=UNPROVISIONED, redirect=LOGIN_PATH, notice=NOTICE_ROLES_INVALID, force_logout=True)
    role, path = destination_for(profile.roles)
    if path is None:
        return Dispatch(state=ROUTED, redirect=HOME_PATH, notice=NOTICE_PANEL_UNDETERMINED)
    return Dispatch(state=ROUTED, redirect=path, role=role)
