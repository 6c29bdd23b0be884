"""
Privileged user creation over HTTP.

Covers the uniform contract of the gateway endpoints: token extraction and
verification (401), caller profile lookup (401), authorization (403),
validation (400), duplicate email (409) and success (200), plus the
business-containment rule for business admins.
"""
from __future__ import annotations

import pytest
import httpx
from httpx import ASGITransport

import main  # type: ignore  # noqa: E402
from identity_access.admin_client import AdminClientError
from utils.fakes import bearer, seed_profile  # type: ignore  # noqa: E402


pytestmark = pytest.mark.anyio("asyncio")


async def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


def _user_payload(**profile_overrides) -> dict:
    profile = {
        "dni": "45678912",
        "name": "Lucía Fernández",
        "email": "lucia@clover.pe",
        "roles": ["staff"],
        "businessId": "B1",
    }
    profile.update(profile_overrides)
    return {
        "email": "lucia@clover.pe",
        "password": "secreto123",
        "displayName": "Lucía Fernández",
        "profile": profile,
    }


async def test_create_user_without_token_is_401_before_validation(services):
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json={"nonsense": True})
    assert r.status_code == 401
    assert r.json()["error"] == "unauthenticated"
    assert r.headers.get("Cache-Control") == "private, no-store"


async def test_expired_token_reports_session_expired(services):
    async with (await _client()) as c:
        r = await c.post(
            "/api/admin/create-user", json=_user_payload(), headers={"Authorization": "Bearer expired"}
        )
    assert r.status_code == 401
    assert r.json()["error"] == "session_expired"


async def test_invalid_token_and_malformed_header(services):
    async with (await _client()) as c:
        r1 = await c.post("/api/admin/create-user", json=_user_payload(), headers={"Authorization": "Bearer forged"})
        r2 = await c.post("/api/admin/create-user", json=_user_payload(), headers={"Authorization": "Token abc"})
    assert r1.status_code == 401 and r1.json()["error"] == "invalid_token"
    assert r2.status_code == 401 and r2.json()["error"] == "invalid_token"


async def test_caller_without_profile_is_401(services):
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json=_user_payload(), headers=bearer("ghost"))
    assert r.status_code == 401
    assert r.json()["error"] == "caller_profile_not_found"


async def test_cookie_token_is_accepted(services, store):
    seed_profile(store, "root", ["superadmin"])
    async with (await _client()) as c:
        c.cookies.set("idToken", "tok-root")
        r = await c.post("/api/admin/create-user", json=_user_payload())
    assert r.status_code == 200


async def test_promoter_cannot_create_users(services, store, admin_client):
    seed_profile(store, "p1", ["promoter"])
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json=_user_payload(), headers=bearer("p1"))
    assert r.status_code == 403
    assert r.headers.get("Cache-Control") == "private, no-store"
    assert admin_client.created == []


async def test_business_admin_cannot_escalate_to_superadmin(services, store, admin_client):
    seed_profile(store, "ba1", ["business_admin"], business_id="B1")
    payload = _user_payload(roles=["superadmin"], businessId="B2")
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json=payload, headers=bearer("ba1"))
    assert r.status_code == 403
    assert r.json()["error"] == "role_not_permitted"
    assert admin_client.created == []
    assert store.count("platformUsers") == 1


async def test_business_admin_user_lands_in_own_business(services, store, admin_client):
    seed_profile(store, "ba1", ["business_admin"], business_id="B1")
    payload = _user_payload(roles=["staff", "superadmin"], businessId="B2")
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json=payload, headers=bearer("ba1"))
    assert r.status_code == 200
    uid = r.json()["uid"]
    doc = store.get("platformUsers", uid)
    assert doc["roles"] == ["staff"]
    assert doc["businessId"] == "B1"


async def test_validation_errors_are_itemised(services, store):
    seed_profile(store, "root", ["superadmin"])
    payload = _user_payload(dni="12", roles=["host"], businessId="")
    payload["email"] = "no-es-correo"
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json=payload, headers=bearer("root"))
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "invalid_input"
    fields = body["details"]["fieldErrors"]
    assert "email" in fields
    assert "profile.dni" in fields


async def test_duplicate_email_is_409_and_nothing_created(services, store, admin_client):
    seed_profile(store, "root", ["superadmin"])
    admin_client.add_existing("lucia@clover.pe")
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json=_user_payload(), headers=bearer("root"))
    assert r.status_code == 409
    assert r.json()["error"] == "email_exists"
    assert admin_client.created == []


async def test_superadmin_creates_user(services, store, admin_client):
    seed_profile(store, "root", ["superadmin"])
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json=_user_payload(), headers=bearer("root"))
    assert r.status_code == 200
    body = r.json()
    assert body["uid"] == "uid-new-001"
    assert "lucia@clover.pe" in body["message"]
    assert admin_client.created[0]["email_verified"] is True
    doc = store.get("platformUsers", body["uid"])
    assert doc["roles"] == ["staff"]
    assert doc["businessId"] == "B1"
    assert doc["dni"] == "45678912"


async def test_create_staff_forces_caller_business(services, store):
    seed_profile(store, "st1", ["staff"], business_id="B7")
    payload = {
        "email": "host@clover.pe",
        "password": "secreto123",
        "displayName": "Hugo Host",
        "profile": {"dni": "41234567", "name": "Hugo Host", "email": "host@clover.pe", "roles": ["host", "business_admin"]},
    }
    async with (await _client()) as c:
        r = await c.post("/api/business-panel/create-staff", json=payload, headers=bearer("st1"))
    assert r.status_code == 200
    doc = store.get("platformUsers", r.json()["uid"])
    assert doc["roles"] == ["host"]
    assert doc["businessId"] == "B7"


async def test_create_staff_requires_business(services, store, admin_client):
    seed_profile(store, "st2", ["staff"])
    async with (await _client()) as c:
        r = await c.post("/api/business-panel/create-staff", json={}, headers=bearer("st2"))
    assert r.status_code == 403
    assert admin_client.created == []


async def test_create_promoter_writes_link(services, store):
    seed_profile(store, "ba1", ["business_admin"], business_id="B1")
    payload = {
        "email": "promo@clover.pe",
        "password": "secreto123",
        "displayName": "Paula Promo",
        "profile": {"dni": "47654321", "name": "Paula Promo", "email": "promo@clover.pe", "phone": "+51 987654321", "commissionRate": "10%"},
    }
    async with (await _client()) as c:
        r = await c.post("/api/business-panel/create-promoter", json=payload, headers=bearer("ba1"))
    assert r.status_code == 200
    uid = r.json()["uid"]
    assert store.get("platformUsers", uid)["roles"] == ["promoter"]
    links = [doc for _, doc in store.stream("businessPromoterLinks")]
    assert len(links) == 1
    assert links[0]["businessId"] == "B1"
    assert links[0]["platformUserUid"] == uid
    assert links[0]["commissionRate"] == "10%"


async def test_profile_write_failure_queues_reconciliation(monkeypatch: pytest.MonkeyPatch, services, store):
    from utils.fakes import FlakyDocumentStore  # type: ignore

    seed_profile(store, "root", ["superadmin"])
    flaky = FlakyDocumentStore()
    flaky.failing.add("platformUsers")
    monkeypatch.setattr(services.provisioning, "profiles", services.profiles.__class__(flaky))
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json=_user_payload(), headers=bearer("root"))
    assert r.status_code == 500
    assert r.json()["error"] == "profile_write_failed"
    assert "debug" not in r.json()
    assert len(services.reconciliation) == 1
    assert services.reconciliation.pending()[0].uid == "uid-new-001"


async def test_update_last_login_stamps_own_profile(services, store):
    seed_profile(store, "p1", ["promoter"])
    async with (await _client()) as c:
        r = await c.post("/api/user/update-last-login", headers=bearer("p1"))
    assert r.status_code == 200
    assert store.get("platformUsers", "p1")["lastLogin"] == r.json()["lastLogin"]


async def test_identity_service_outage_is_json_500(services, store, admin_client):
    seed_profile(store, "root", ["superadmin"])

    def unreachable(email):
        raise AdminClientError("transport_failed", "ConnectionError")

    admin_client.get_user_by_email = unreachable
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json=_user_payload(), headers=bearer("root"))
    assert r.status_code == 500
    assert r.json()["error"] == "upstream_failure"
    assert r.headers.get("Cache-Control") == "private, no-store"
    assert admin_client.created == []


async def test_business_admin_may_omit_business_id(services, store):
    seed_profile(store, "ba1", ["business_admin"], business_id="B1")
    payload = _user_payload(roles=["host"])
    del payload["profile"]["businessId"]
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json=payload, headers=bearer("ba1"))
    assert r.status_code == 200
    assert store.get("platformUsers", r.json()["uid"])["businessId"] == "B1"


async def test_superadmin_still_needs_business_for_scoped_roles(services, store):
    seed_profile(store, "root", ["superadmin"])
    payload = _user_payload(roles=["host"], businessId=None)
    async with (await _client()) as c:
        r = await c.post("/api/admin/create-user", json=payload, headers=bearer("root"))
    assert r.status_code == 400
    assert "profile.businessId" in r.json()["details"]["fieldErrors"]
