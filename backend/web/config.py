"""
Configuration and startup security checks for CloverPass.

Why: Privileged operations create accounts and assign roles. A deployment that
boots without service-account credentials, or with a placeholder, would fail
at the first operator action instead of at startup. This module provides a
single guard that enforces minimal production safety constraints without
burdening local development, plus the runtime settings read by `main`.

Permissions: The caller needs no special privileges. The functions simply read
environment variables and raise `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

from dataclasses import dataclass
import os

from gateway.dni import DEFAULT_DNI_API_BASE_URL
from identity_access.credentials import CredentialsError, parse_service_account


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes")


@dataclass
class AppSettings:
    environment: str = "dev"
    documents_backend: str = "memory"
    documents_table: str = "public.documents"
    dni_api_token: str | None = None
    dni_api_base_url: str = DEFAULT_DNI_API_BASE_URL
    stats_include_code_totals: bool = True
    expose_error_details: bool = False

    @property
    def prod_like(self) -> bool:
        return _is_prod_like(self.environment)


def load_settings() -> AppSettings:
    return AppSettings(
        environment=(os.getenv("CLOVERPASS_ENV", "dev") or "dev").lower(),
        documents_backend=(os.getenv("DOCUMENTS_BACKEND", "memory") or "memory").strip().lower(),
        documents_table=os.getenv("DOCUMENTS_TABLE", "public.documents"),
        dni_api_token=(os.getenv("DNI_API_TOKEN") or "").strip() or None,
        dni_api_base_url=os.getenv("DNI_API_BASE_URL", DEFAULT_DNI_API_BASE_URL),
        stats_include_code_totals=_flag("STATS_INCLUDE_CODE_TOTALS", "true"),
        expose_error_details=_flag("CLOVERPASS_EXPOSE_ERROR_DETAILS", "false"),
    )


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - FIREBASE_SERVICE_ACCOUNT_JSON must parse and carry project_id,
      client_email and private_key (placeholders are rejected).
    - IDENTITY_PROJECT_ID and IDENTITY_API_KEY must be set.
    - DATABASE_URL must not explicitly disable TLS when the db backend is used.
    - IDENTITY_BASE_URL must use https.
    """

    env = os.getenv("CLOVERPASS_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Service account for privileged identity calls
    try:
        parse_service_account(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON"))
    except CredentialsError as exc:
        raise SystemExit(
            f"Refusing to start: FIREBASE_SERVICE_ACCOUNT_JSON is unusable in production ({exc.code})."
        )

    # 2) Identity project
    for key in ("IDENTITY_PROJECT_ID", "IDENTITY_API_KEY"):
        val = (os.getenv(key, "") or "").strip()
        if not val or val.upper().startswith("CHANGE_ME"):
            raise SystemExit(f"Refusing to start: {key} is unset or a placeholder in production.")

    # 3) Postgres TLS: basic guard to avoid explicit disable
    if (os.getenv("DOCUMENTS_BACKEND", "memory") or "").strip().lower() == "db":
        dsn = os.getenv("DATABASE_URL", "")
        if "sslmode=disable" in dsn:
            raise SystemExit(
                "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
            )

    # 4) Identity endpoints must use HTTPS in production-like environments
    base = (os.getenv("IDENTITY_BASE_URL", "") or "").strip().lower()
    if base.startswith("http://"):
        raise SystemExit("Refusing to start: IDENTITY_BASE_URL must use https in production (got http).")
