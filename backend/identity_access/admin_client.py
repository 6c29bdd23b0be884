"""
Identity admin client (minimal) for account provisioning.

Design:
- Framework-agnostic, callable from gateway services.
- Uses requests under the hood; errors surface as `AdminClientError` with a
  stable `code` so callers can map them (e.g. `email_exists` -> conflict).

Security:
- Do not log credentials or tokens.
- Bearer tokens come from the service account (see `credentials.py`).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

import requests

from .credentials import AccessTokenProvider, CredentialsError
from .provider import IdentityConfig


class AdminClientError(Exception):
    """Raised when an admin call fails; `code` is safe to log and map."""

    def __init__(self, code: str, detail: str | None = None):
        super().__init__(code)
        self.code = code
        self.detail = detail


@dataclass(frozen=True)
class IdentityRecord:
    uid: str
    email: Optional[str]
    display_name: Optional[str] = None
    disabled: bool = False


def _error_message(resp) -> str:
    try:
        return str(((resp.json() or {}).get("error") or {}).get("message") or "")
    except ValueError:
        return ""


def _body(resp) -> Dict[str, object]:
    try:
        body = resp.json()
    except ValueError as exc:
        raise AdminClientError("invalid_response", f"status={resp.status_code}") from exc
    return body if isinstance(body, dict) else {}


class AdminClient:
    def __init__(self, cfg: IdentityConfig, tokens: AccessTokenProvider) -> None:
        self.cfg = cfg
        self._tokens = tokens

    def _admin(self) -> Dict[str, str]:
        try:
            token = self._tokens.token()
        except CredentialsError as exc:
            if exc.code == "token_endpoint_unreachable":
                raise AdminClientError("transport_failed", exc.code) from exc
            raise AdminClientError("credentials_unavailable", exc.code) from exc
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    def _post(self, url: str, payload: Dict[str, object]):
        headers = self._admin()
        try:
            return requests.post(url, headers=headers, json=payload, timeout=10)
        except requests.RequestException as exc:
            raise AdminClientError("transport_failed", exc.__class__.__name__) from exc

    def get_user_by_email(self, email: str) -> IdentityRecord | None:
        """Return the account registered for `email`, or None when there is none."""
        r = self._post(f"{self.cfg.admin_accounts_endpoint}:lookup", {"email": [email]})
        if r.status_code != 200:
            if "USER_NOT_FOUND" in _error_message(r):
                return None
            raise AdminClientError("user_lookup_failed", f"status={r.status_code}")
        users = _body(r).get("users") or []
        if not users:
            return None
        u = users[0]
        return IdentityRecord(
            uid=str(u.get("localId", "")),
            email=u.get("email"),
            display_name=u.get("displayName"),
            disabled=bool(u.get("disabled", False)),
        )

    def create_user(self, *, email: str, password: str, display_name: str | None = None, email_verified: bool = True) -> str:
        """Create an account and return its uid.

        Accounts created by an operator are marked verified; the operator vouches
        for the address.
        """
        payload: Dict[str, object] = {
            "email": email,
            "password": password,
            "emailVerified": email_verified,
            **({"displayName": display_name} if display_name else {}),
        }
        r = self._post(self.cfg.admin_accounts_endpoint, payload)
        if r.status_code != 200:
            message = _error_message(r)
            if message.startswith("EMAIL_EXISTS") or message.startswith("DUPLICATE_EMAIL"):
                raise AdminClientError("email_exists")
            if message.startswith("WEAK_PASSWORD") or message.startswith("INVALID_PASSWORD"):
                raise AdminClientError("invalid_password", message)
            raise AdminClientError("user_create_failed", f"status={r.status_code}")
        uid = _body(r).get("localId")
        if not uid:
            raise AdminClientError("user_id_missing")
        return str(uid)

    def delete_user(self, uid: str) -> None:
        r = self._post(f"{self.cfg.admin_accounts_endpoint}:delete", {"localId": uid})
        if r.status_code != 200:
            if "USER_NOT_FOUND" in _error_message(r):
                return
            raise AdminClientError("user_delete_failed", f"status={r.status_code}")


class UnconfiguredAdminClient:
    """Admin surface used when no service account is configured (dev without credentials).

    Every call fails with `not_configured` so privileged endpoints answer 500
    instead of the process refusing to start.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason

    def get_user_by_email(self, email: str) -> IdentityRecord | None:
        raise AdminClientError("not_configured", self.reason)

    def create_user(self, *, email: str, password: str, display_name: str | None = None, email_verified: bool = True) -> str:
        raise AdminClientError("not_configured", self.reason)

    def delete_user(self, uid: str) -> None:
        raise AdminClientError("not_configured", self.reason)
