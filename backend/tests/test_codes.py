"""
Service-level lifecycle of promoter/QR codes.

A code only moves forward (available -> redeemed -> used), only inside an
entity that is currently running, and only for callers tied to the entity's
business (or assigned to it as promoter).
"""
from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from forms.schemas import CreateCodesPayload, RedeemCodePayload, ValidateCodePayload
from gateway.callers import Caller, VerifiedIdentity
from gateway.codes import (
    AVAILABLE,
    CODE_ALPHABET,
    CODE_LENGTH,
    REDEEMED,
    USED,
    EntityCodeService,
    is_entity_currently_activatable,
)
from gateway.errors import Conflict, NotFound, Unauthorized, UpstreamFailure
from identity_access.profiles import Profile
from identity_access.stores import DocumentStoreError, InMemoryDocumentStore

NOW = datetime(2026, 3, 15, 18, 30, tzinfo=timezone.utc)


def _caller(uid: str, *roles: str, business_id: str | None = None, name: str = "Operador") -> Caller:
    profile = Profile(uid=uid, name=name, roles=list(roles), business_id=business_id)
    return Caller(identity=VerifiedIdentity(uid=uid, email=f"{uid}@clover.pe", claims={}), profile=profile)


def _entity(**overrides) -> dict:
    doc = {
        "businessId": "B1",
        "type": "promotion",
        "name": "2x1 en cócteles",
        "startDate": "2026-03-01T00:00:00Z",
        "endDate": "2026-03-15T00:00:00Z",
        "isActive": True,
        "generatedCodes": [],
        "assignedPromoters": [{"promoterProfileId": "pr1", "promoterName": "Paula"}],
    }
    doc.update(overrides)
    return doc


def _service(store=None, **kwargs):
    store = store if store is not None else InMemoryDocumentStore()
    store.set("businessEntities", "E1", _entity())
    return EntityCodeService(store, now=lambda: NOW, **kwargs), store


def _issue(svc, count=1, caller=None) -> list:
    caller = caller or _caller("ba1", "business_admin", business_id="B1")
    return svc.create_codes(caller, "E1", CreateCodesPayload(count=count))["codes"]


def _redeem_payload(code: str) -> RedeemCodePayload:
    return RedeemCodePayload.model_validate({"code": code, "dni": "45678912", "name": "Ana", "surname": "Quispe"})


def test_activatable_window_is_inclusive_by_day():
    entity = _entity()
    assert is_entity_currently_activatable(entity, date(2026, 3, 1))
    assert is_entity_currently_activatable(entity, date(2026, 3, 15))
    assert not is_entity_currently_activatable(entity, date(2026, 2, 28))
    assert not is_entity_currently_activatable(entity, date(2026, 3, 16))
    assert not is_entity_currently_activatable(_entity(isActive=False), date(2026, 3, 10))
    assert not is_entity_currently_activatable(_entity(endDate="soon"), date(2026, 3, 10))


def test_create_codes_appends_available_codes():
    svc, store = _service()
    codes = _issue(svc, count=3, caller=_caller("ba1", "business_admin", business_id="B1", name="Bea Admin"))
    assert len(codes) == 3
    for code in codes:
        assert len(code["value"]) == CODE_LENGTH
        assert set(code["value"]) <= set(CODE_ALPHABET)
        assert code["status"] == AVAILABLE
        assert code["generatedByName"] == "Bea Admin"
        assert code["generatedByUid"] == "ba1"
        assert code["redeemedByInfo"] is None
    assert len({c["id"] for c in codes}) == 3
    assert store.get("businessEntities", "E1")["generatedCodes"] == codes


def test_generated_values_never_repeat_within_an_entity():
    # First candidate collides with the existing code; the second is used.
    script = iter("A" * CODE_LENGTH + "A" * CODE_LENGTH + "B" * CODE_LENGTH)
    svc, store = _service(choice=lambda alphabet: next(script))
    store.update("businessEntities", "E1", {"generatedCodes": [{"id": "old", "value": "A" * CODE_LENGTH}]})
    codes = _issue(svc)
    assert codes[0]["value"] == "B" * CODE_LENGTH


def test_observation_is_trimmed_and_count_bounded():
    assert CreateCodesPayload(count=2, observation="  Mesa VIP  ").observation == "Mesa VIP"
    assert CreateCodesPayload(count=2, observation="   ").observation is None
    with pytest.raises(ValueError):
        CreateCodesPayload(count=0)
    with pytest.raises(ValueError):
        CreateCodesPayload(count=51)


def test_issuers_are_scoped_to_the_entity():
    svc, _ = _service()
    assert _issue(svc, caller=_caller("pr1", "promoter"))
    assert _issue(svc, caller=_caller("sa", "superadmin"))
    with pytest.raises(Unauthorized):
        _issue(svc, caller=_caller("ba2", "business_admin", business_id="B2"))
    with pytest.raises(Unauthorized):
        _issue(svc, caller=_caller("pr2", "promoter"))
    with pytest.raises(Unauthorized):
        _issue(svc, caller=_caller("h1", "host", business_id="B1"))


def test_missing_entity_is_not_found():
    svc, _ = _service()
    with pytest.raises(NotFound):
        svc.create_codes(_caller("sa", "superadmin"), "ghost", CreateCodesPayload(count=1))


def test_redeem_moves_available_to_redeemed_once():
    svc, store = _service()
    code = _issue(svc)[0]
    host = _caller("h1", "host", business_id="B1")
    result = svc.redeem_code(host, "E1", _redeem_payload(code["value"].lower()))
    assert result["code"]["status"] == REDEEMED
    assert result["code"]["redeemedByInfo"] == {"dni": "45678912", "name": "Ana Quispe", "phone": None}
    assert result["code"]["redemptionDate"] == NOW.isoformat()
    with pytest.raises(Conflict) as exc:
        svc.redeem_code(host, "E1", _redeem_payload(code["id"]))
    assert exc.value.error == "code_already_used"
    assert store.get("businessEntities", "E1")["generatedCodes"][0]["redeemedByInfo"]["name"] == "Ana Quispe"


def test_redeem_unknown_code_or_inactive_entity():
    svc, store = _service()
    host = _caller("h1", "host", business_id="B1")
    with pytest.raises(NotFound):
        svc.redeem_code(host, "E1", _redeem_payload("ZZZZZZZZZ"))
    code = _issue(svc)[0]
    store.update("businessEntities", "E1", {"endDate": "2026-03-14T23:00:00Z"})
    with pytest.raises(Conflict) as exc:
        svc.redeem_code(host, "E1", _redeem_payload(code["value"]))
    assert exc.value.error == "entity_not_active"
    assert store.get("businessEntities", "E1")["generatedCodes"][0]["status"] == AVAILABLE


def test_validate_marks_redeemed_code_used():
    svc, store = _service()
    code = _issue(svc)[0]
    svc.redeem_code(_caller("pr1", "promoter"), "E1", _redeem_payload(code["value"]))
    reader = _caller("lq1", "lector_qr", business_id="B1", name="Luis Lector")
    result = svc.validate_code(reader, ValidateCodePayload(codeId=code["id"], isVipCandidate=True))
    assert result["entityName"] == "2x1 en cócteles"
    stored = store.get("businessEntities", "E1")["generatedCodes"][0]
    assert stored["status"] == USED
    assert stored["usedByInfo"] == {"uid": "lq1", "name": "Luis Lector"}
    assert stored["isVipCandidate"] is True
    with pytest.raises(Conflict) as exc:
        svc.validate_code(reader, ValidateCodePayload(codeId=code["id"]))
    assert exc.value.error == "code_not_redeemed"


def test_validate_requires_redeemed_code_of_own_business():
    svc, _ = _service()
    code = _issue(svc)[0]
    with pytest.raises(Conflict):
        svc.validate_code(_caller("h1", "host", business_id="B1"), ValidateCodePayload(codeId=code["id"]))
    with pytest.raises(NotFound):
        svc.validate_code(_caller("h2", "host", business_id="B2"), ValidateCodePayload(codeId=code["id"]))
    with pytest.raises(Unauthorized):
        svc.validate_code(_caller("pr1", "promoter"), ValidateCodePayload(codeId=code["id"]))


def test_store_failure_is_upstream_failure():
    svc, store = _service()

    def unavailable(collection, doc_id, mutate):
        raise DocumentStoreError("unavailable")

    store.modify = unavailable
    with pytest.raises(UpstreamFailure):
        _issue(svc)
