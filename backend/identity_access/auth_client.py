"""
Minimal client for the identity service's public password endpoints.

This module is a thin, framework-agnostic adapter used by the web layer to
sign a user in with email/password and to self-register promoter accounts.
It returns the raw token payload; callers decide what to mirror into cookies.

Security: Never log credentials. This client does not store or persist any
sensitive data; it simply forwards to the identity service.
"""

from __future__ import annotations

from typing import Dict

import requests

from . import provider
from .provider import IdentityConfig

# Identity service error messages mapped to stable codes for the web adapter.
_ERROR_CODES = {
    "EMAIL_EXISTS": "email_exists",
    "EMAIL_NOT_FOUND": "invalid_credentials",
    "INVALID_PASSWORD": "invalid_credentials",
    "INVALID_LOGIN_CREDENTIALS": "invalid_credentials",
    "USER_DISABLED": "user_disabled",
    "INVALID_EMAIL": "invalid_email",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "too_many_attempts",
}


class AuthClientError(Exception):
    """Raised when the identity service rejects a sign-in or sign-up."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


def _error_code(resp) -> str:
    try:
        message = str(((resp.json() or {}).get("error") or {}).get("message") or "")
    except ValueError:
        return "auth_request_failed"
    # Messages may carry a suffix, e.g. "WEAK_PASSWORD : Password should be ..."
    key = message.split(":", 1)[0].strip()
    if key == "WEAK_PASSWORD":
        return "weak_password"
    return _ERROR_CODES.get(key, "auth_request_failed")


def _call(url: str, payload: Dict[str, object]) -> Dict[str, object]:
    try:
        r = provider.http_post(url, json=payload)
    except requests.RequestException as exc:
        raise AuthClientError("auth_unreachable") from exc
    if r.status_code != 200:
        raise AuthClientError(_error_code(r))
    try:
        body = r.json()
    except ValueError as exc:
        raise AuthClientError("auth_request_failed") from exc
    return body if isinstance(body, dict) else {}


class AuthClient:
    """Authenticate against the identity service with email/password.

    `sign_in_with_password` returns a token dict on success (idToken, localId,
    refreshToken, expiresIn) and raises `AuthClientError` otherwise.
    """

    def __init__(self, cfg: IdentityConfig) -> None:
        self.cfg = cfg

    def sign_in_with_password(self, *, email: str, password: str) -> Dict[str, str]:
        payload = {"email": email, "password": password, "returnSecureToken": True}
        body = _call(self.cfg.sign_in_endpoint, payload)
        if not body.get("idToken") or not body.get("localId"):
            raise AuthClientError("id_token_missing")
        return body

    def sign_up(self, *, email: str, password: str, display_name: str | None = None) -> Dict[str, str]:
        payload: Dict[str, object] = {"email": email, "password": password, "returnSecureToken": True}
        if display_name:
            payload["displayName"] = display_name
        body = _call(self.cfg.sign_up_endpoint, payload)
        if not body.get("localId"):
            raise AuthClientError("account_id_missing")
        return body
