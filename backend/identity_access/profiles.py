"""
Profile records and the resolver that maps an Identity to its Profile.

Why:
    Every authenticated Identity that finished signup owns exactly one Profile
    document in `platformUsers`, keyed by the Identity's uid. Profiles carry the
    role set that drives routing and authorization, so reading them must be
    uniform across the login dispatcher and the privileged endpoints.

Behavior:
    - Legacy documents stored a single scalar `role`; newer ones a `roles` list.
      Both normalize to a list. Missing roles normalize to `[]`.
    - A roles value of any other shape (object, number, list with non-strings)
      normalizes to `[]` and marks the profile as `roles_valid = False`; the
      dispatcher treats that as corrupted data.
    - "Missing" and "read failed" both resolve to `None` for the caller but are
      logged differently.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import logging

from .domain import PROFILES_COLLECTION
from .stores import DocumentStore

logger = logging.getLogger("cloverpass.identity_access.profiles")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Profile:
    uid: str
    name: str = ""
    email: str = ""
    dni: str = ""
    roles: list[str] = field(default_factory=list)
    business_id: Optional[str] = None
    last_login: Optional[str] = None
    roles_valid: bool = True

    def has_role(self, *wanted: str) -> bool:
        return any(r in wanted for r in self.roles)

    def to_document(self) -> dict:
        return {
            "uid": self.uid,
            "name": self.name,
            "email": self.email,
            "dni": self.dni,
            "roles": list(self.roles),
            "businessId": self.business_id,
            "lastLogin": self.last_login,
        }

    def to_public(self) -> dict:
        return {
            "uid": self.uid,
            "name": self.name,
            "email": self.email,
            "roles": list(self.roles),
            "businessId": self.business_id,
        }


def normalize_roles(doc: dict) -> tuple[list[str], bool]:
    """Return `(roles, valid)` for a stored profile document."""
    raw = doc.get("roles")
    if raw is None:
        raw = doc.get("role")
    if raw is None:
        return [], True
    if isinstance(raw, str):
        raw = raw.strip()
        return ([raw] if raw else []), True
    if isinstance(raw, list):
        if all(isinstance(r, str) for r in raw):
            return [r for r in raw if r], True
        return [], False
    return [], False


def profile_from_document(uid: str, doc: dict) -> Profile:
    roles, valid = normalize_roles(doc)
    business_id = doc.get("businessId")
    if not isinstance(business_id, str) or not business_id.strip():
        business_id = None
    last_login = doc.get("lastLogin")
    return Profile(
        uid=uid,
        name=str(doc.get("name") or ""),
        email=str(doc.get("email") or ""),
        dni=str(doc.get("dni") or ""),
        roles=roles,
        business_id=business_id,
        last_login=str(last_login) if last_login is not None else None,
        roles_valid=valid,
    )


class ProfileRepository:
    """Read/write access to profile documents."""

    def __init__(self, store: DocumentStore, collection: str = PROFILES_COLLECTION) -> None:
        self.store = store
        self.collection = collection

    def get_document(self, uid: str) -> Optional[dict]:
        return self.store.get(self.collection, uid)

    def write(self, uid: str, document: dict) -> None:
        self.store.set(self.collection, uid, document)

    def touch_last_login(self, uid: str, *, at: str | None = None) -> str:
        stamp = at or utc_now_iso()
        self.store.update(self.collection, uid, {"lastLogin": stamp})
        return stamp


class ProfileResolver:
    def __init__(self, repo: ProfileRepository) -> None:
        self.repo = repo

    def resolve(self, uid: str) -> Optional[Profile]:
        """Fetch exactly one Profile for `uid`; None when missing or unreadable."""
        if not uid:
            return None
        try:
            doc = self.repo.get_document(uid)
        except Exception as exc:
            logger.warning("profile_read_failed uid=%s error=%s", uid, exc.__class__.__name__)
            return None
        if doc is None:
            logger.info("profile_missing uid=%s", uid)
            return None
        profile = profile_from_document(uid, doc if isinstance(doc, dict) else {})
        if not profile.roles_valid:
            logger.warning("profile_roles_invalid uid=%s", uid)
        return profile
