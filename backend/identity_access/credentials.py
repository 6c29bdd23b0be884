"""
Service-account credentials for privileged identity/database calls.

Why:
    Admin operations (account lookup, creation, deletion) need an OAuth2 bearer
    token for the project's service account. The token is obtained with the
    JWT-bearer grant: we sign a short assertion with the service account's
    private key and exchange it at the token endpoint.

Security:
    - Never log the private key or the access token.
    - The JSON comes from `FIREBASE_SERVICE_ACCOUNT_JSON`; placeholders are
      rejected so a half-configured deployment fails loudly.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import json
import os
import threading
import time

import requests
from jose import jwt

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
ADMIN_SCOPES = (
    "https://www.googleapis.com/auth/identitytoolkit",
    "https://www.googleapis.com/auth/cloud-platform",
)
_REQUIRED_KEYS = ("project_id", "client_email", "private_key")
_PLACEHOLDER_PREFIXES = ("TU_JSON_DE", "CHANGE_ME")


class CredentialsError(Exception):
    """Raised when service-account credentials are missing or unusable."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class ServiceAccount:
    project_id: str
    client_email: str
    private_key: str
    token_uri: str = GOOGLE_TOKEN_URI


def parse_service_account(raw: str | None) -> ServiceAccount:
    """Parse and validate a service-account JSON document.

    Raises `CredentialsError` with `not_configured`, `invalid_json` or
    `missing_fields`.
    """
    if not raw or raw.strip().upper().startswith(_PLACEHOLDER_PREFIXES):
        raise CredentialsError("not_configured")
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise CredentialsError("invalid_json") from exc
    if not isinstance(data, dict) or not all(data.get(k) for k in _REQUIRED_KEYS):
        raise CredentialsError("missing_fields")
    return ServiceAccount(
        project_id=str(data["project_id"]),
        client_email=str(data["client_email"]),
        # Keys pasted into env files often carry literal "\n" sequences.
        private_key=str(data["private_key"]).replace("\\n", "\n"),
        token_uri=str(data.get("token_uri") or GOOGLE_TOKEN_URI),
    )


def load_service_account() -> ServiceAccount:
    return parse_service_account(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON"))


class AccessTokenProvider:
    """Cache an OAuth2 access token for a service account until shortly before expiry."""

    def __init__(self, account: ServiceAccount, *, scopes=ADMIN_SCOPES, leeway_seconds: int = 60) -> None:
        self.account = account
        self.scopes = tuple(scopes)
        self.leeway_seconds = leeway_seconds
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    def _assertion(self, now: int) -> str:
        claims = {
            "iss": self.account.client_email,
            "scope": " ".join(self.scopes),
            "aud": self.account.token_uri,
            "iat": now,
            "exp": now + 3600,
        }
        return jwt.encode(claims, self.account.private_key, algorithm="RS256")

    def token(self) -> str:
        with self._lock:
            now = time.time()
            if self._token and self._expires_at - self.leeway_seconds > now:
                return self._token
            data = {
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": self._assertion(int(now)),
            }
            try:
                r = requests.post(self.account.token_uri, data=data, timeout=10)
            except requests.RequestException as exc:
                raise CredentialsError("token_endpoint_unreachable") from exc
            if r.status_code != 200:
                raise CredentialsError("token_exchange_failed")
            try:
                body: Dict[str, object] = r.json() or {}
            except ValueError as exc:
                raise CredentialsError("token_exchange_failed") from exc
            tok = body.get("access_token")
            if not tok:
                raise CredentialsError("access_token_missing")
            self._token = str(tok)
            self._expires_at = now + float(body.get("expires_in") or 3600)
            return self._token
