"""
Configuration for the hosted identity service (Identity Toolkit REST API).

Why: Keep endpoint composition out of the web adapter so clients, verifiers and
tests share one source of truth. The web layer builds an `IdentityConfig` once
per process and passes it into every client that needs it.

Security: The API key identifies the project for public sign-in calls only.
Privileged calls use the service-account credentials (see `credentials.py`).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict
import os

# Small indirection to ease monkeypatching in tests
import requests as http

DEFAULT_IDENTITY_BASE_URL = "https://identitytoolkit.googleapis.com/v1"
DEFAULT_JWKS_URL = "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
DEFAULT_ISSUER_BASE = "https://securetoken.google.com"


def http_post(url: str, *, json: Dict[str, object], headers: Dict[str, str] | None = None, timeout: int = 10):
    return http.post(url, json=json, headers=headers or {}, timeout=timeout)


@dataclass(frozen=True)
class IdentityConfig:
    project_id: str  # e.g., cloverpass-prod
    api_key: str  # web API key for password sign-in/sign-up
    base_url: str = DEFAULT_IDENTITY_BASE_URL
    jwks_url: str = DEFAULT_JWKS_URL
    issuer_base: str = DEFAULT_ISSUER_BASE

    @property
    def issuer(self) -> str:
        return f"{self.issuer_base.rstrip('/')}/{self.project_id}"

    @property
    def audience(self) -> str:
        return self.project_id

    @property
    def sign_in_endpoint(self) -> str:
        return f"{self.base_url}/accounts:signInWithPassword?key={self.api_key}"

    @property
    def sign_up_endpoint(self) -> str:
        return f"{self.base_url}/accounts:signUp?key={self.api_key}"

    @property
    def admin_accounts_endpoint(self) -> str:
        # Project-scoped admin surface; requires an OAuth2 bearer token.
        return f"{self.base_url}/projects/{self.project_id}/accounts"


def load_identity_config() -> IdentityConfig:
    base_url = (os.getenv("IDENTITY_BASE_URL") or DEFAULT_IDENTITY_BASE_URL).rstrip("/")
    return IdentityConfig(
        project_id=os.getenv("IDENTITY_PROJECT_ID", "cloverpass-dev"),
        api_key=os.getenv("IDENTITY_API_KEY", ""),
        base_url=base_url,
        jwks_url=os.getenv("IDENTITY_JWKS_URL", DEFAULT_JWKS_URL),
        issuer_base=os.getenv("IDENTITY_ISSUER_BASE", DEFAULT_ISSUER_BASE),
    )
