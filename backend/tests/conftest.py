"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
give every test a fresh `Services` container built from fakes so no test
reaches the identity service, the DNI registry or a database.
"""
import sys
from pathlib import Path

import pytest

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Clear env-driven toggles that may leak across tests (default dev env)."""
    for var in (
        "CLOVERPASS_ENV",
        "DOCUMENTS_BACKEND",
        "FIREBASE_SERVICE_ACCOUNT_JSON",
        "DNI_API_TOKEN",
        "STATS_INCLUDE_CODE_TOTALS",
        "CLOVERPASS_EXPOSE_ERROR_DETAILS",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def store():
    from identity_access.stores import InMemoryDocumentStore

    return InMemoryDocumentStore()


@pytest.fixture
def admin_client():
    from utils.fakes import FakeAdminClient

    return FakeAdminClient()


@pytest.fixture
def services(monkeypatch: pytest.MonkeyPatch, store, admin_client):
    """Install a fake-backed Services container on the app for one test.

    Tokens follow `utils.fakes.FakeVerifier`: `tok-<uid>` is valid for `<uid>`,
    `expired` is past its expiry, anything else is invalid.
    """
    import main  # type: ignore
    from config import AppSettings  # type: ignore
    from gateway.dni import DniLookupClient
    from identity_access.provider import IdentityConfig
    from services import build_services  # type: ignore
    from utils.fakes import FakeAuthClient, FakeVerifier, dni_transport

    svc = build_services(
        AppSettings(dni_api_token="test-dni-token"),
        identity=IdentityConfig(project_id="cloverpass-test", api_key="test-api-key"),
        store=store,
        accounts=admin_client,
        verifier=FakeVerifier(),
        dni=DniLookupClient(token="test-dni-token", transport=dni_transport({})),
    )
    svc.auth_client = FakeAuthClient()
    monkeypatch.setattr(main.app.state, "services", svc)
    return svc
