"""
Process-wide wiring of adapters and gateway services.

Why:
    Every privileged endpoint needs the same collaborators: the token verifier,
    the profile resolver, the identity admin client, the document store and the
    DNI client. They are built once per process by `build_services()` and held
    on `app.state.services`; handlers receive them through `get_services`.
    Tests swap the whole container instead of patching module globals.

Behavior:
    - `DOCUMENTS_BACKEND=db` selects the Postgres store, except under pytest.
    - A missing or unusable service account keeps the app bootable in dev:
      privileged calls then fail with `not_configured` (prod refuses to start,
      see `config.ensure_secure_config_on_startup`).
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import sys
from typing import Dict

from fastapi import Request

from gateway.callers import CallerAuthenticator, TokenVerifier
from gateway.codes import EntityCodeService
from gateway.dni import DniLookupClient
from gateway.provisioning import AccountAdmin, UserProvisioningService
from gateway.reconciliation import ProfileReconciler, ReconciliationQueue
from identity_access.admin_client import AdminClient, UnconfiguredAdminClient
from identity_access.auth_client import AuthClient
from identity_access.credentials import AccessTokenProvider, CredentialsError, load_service_account
from identity_access.profiles import ProfileRepository, ProfileResolver
from identity_access.provider import IdentityConfig, load_identity_config
from identity_access.stores import DocumentStore, InMemoryDocumentStore
from identity_access.tokens import verify_id_token

from config import AppSettings, load_settings

logger = logging.getLogger("cloverpass.web")


def _under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


@dataclass
class Services:
    settings: AppSettings
    identity: IdentityConfig
    store: DocumentStore
    profiles: ProfileRepository
    resolver: ProfileResolver
    verifier: TokenVerifier
    authenticator: CallerAuthenticator
    auth_client: AuthClient
    accounts: AccountAdmin
    provisioning: UserProvisioningService
    reconciliation: ReconciliationQueue
    reconciler: ProfileReconciler
    codes: EntityCodeService
    dni: DniLookupClient


def build_document_store(settings: AppSettings) -> DocumentStore:
    if (not _under_pytest()) and settings.documents_backend == "db":
        from identity_access.stores_db import DBDocumentStore

        return DBDocumentStore(table=settings.documents_table)
    return InMemoryDocumentStore()


def build_account_admin(identity: IdentityConfig) -> AccountAdmin:
    try:
        account = load_service_account()
    except CredentialsError as exc:
        logger.warning("Identity admin client not configured: %s", exc.code)
        return UnconfiguredAdminClient(exc.code)
    return AdminClient(identity, AccessTokenProvider(account))


def token_verifier_for(identity: IdentityConfig) -> TokenVerifier:
    def _verify(token: str) -> Dict[str, object]:
        return verify_id_token(id_token=token, cfg=identity)

    return _verify


def build_services(
    settings: AppSettings | None = None,
    *,
    identity: IdentityConfig | None = None,
    store: DocumentStore | None = None,
    accounts: AccountAdmin | None = None,
    verifier: TokenVerifier | None = None,
    dni: DniLookupClient | None = None,
) -> Services:
    """Build the container; keyword overrides replace individual adapters."""
    settings = settings or load_settings()
    identity = identity or load_identity_config()
    store = store if store is not None else build_document_store(settings)
    accounts = accounts if accounts is not None else build_account_admin(identity)
    verifier = verifier or token_verifier_for(identity)
    profiles = ProfileRepository(store)
    resolver = ProfileResolver(profiles)
    queue = ReconciliationQueue(store)
    return Services(
        settings=settings,
        identity=identity,
        store=store,
        profiles=profiles,
        resolver=resolver,
        verifier=verifier,
        authenticator=CallerAuthenticator(verifier, resolver),
        auth_client=AuthClient(identity),
        accounts=accounts,
        provisioning=UserProvisioningService(accounts, profiles, store, queue),
        reconciliation=queue,
        reconciler=ProfileReconciler(queue, store, accounts),
        codes=EntityCodeService(store),
        dni=dni or DniLookupClient(token=settings.dni_api_token, base_url=settings.dni_api_base_url),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
