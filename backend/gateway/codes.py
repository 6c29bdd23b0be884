"""
Promoter/QR codes attached to promotions and events.

Every `businessEntities` document carries a `generatedCodes` list. A code
moves one way through its states:

    available --redeem--> redeemed --validate--> used

Business operators (or a promoter assigned to the entity) issue `available`
codes; a client claims one, which records who redeemed it; the door scans the
QR and marks it `used`. Status changes run inside `DocumentStore.modify`, so
two scanners can never both move the same code.

Permissions:
    create_codes  -> superadmin, business_admin/staff of the entity's business,
                     or a promoter assigned to the entity.
    redeem_code   -> as create_codes, plus host/lector_qr of the business.
    validate_code -> business_admin, staff, host or lector_qr with a business;
                     only active entities of the caller's business are searched.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Set
import logging
import secrets
import string

from forms.schemas import CreateCodesPayload, RedeemCodePayload, ValidateCodePayload
from identity_access.domain import BUSINESS_ADMIN, BUSINESS_ENTITIES_COLLECTION, HOST, LECTOR_QR, PROMOTER, STAFF, SUPERADMIN
from identity_access.stores import DocumentNotFound, DocumentStore, DocumentStoreError

from .callers import Caller
from .errors import Conflict, NotFound, Unauthorized, UpstreamFailure
from .policy import require_door_operator

logger = logging.getLogger("cloverpass.gateway.codes")

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 9

AVAILABLE = "available"
REDEEMED = "redeemed"
USED = "used"
EXPIRED = "expired"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_instant(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def is_entity_currently_activatable(entity: dict, today: date) -> bool:
    """Active flag set and `today` between the start day and the end day, inclusive.

    Missing or unparseable dates make the entity not activatable.
    """
    if entity.get("isActive") is not True:
        return False
    start = _parse_instant(entity.get("startDate"))
    end = _parse_instant(entity.get("endDate"))
    if start is None or end is None:
        return False
    return start.date() <= today <= end.date()


def generate_code_value(taken: Set[str], *, choice: Callable[[str], str] = secrets.choice) -> str:
    while True:
        value = "".join(choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
        if value not in taken:
            return value


def _codes(doc: dict) -> List[dict]:
    codes = doc.get("generatedCodes")
    return [c for c in codes if isinstance(c, dict)] if isinstance(codes, list) else []


def _same_business(caller: Caller, entity: dict) -> bool:
    business_id = caller.profile.business_id
    return bool(business_id) and business_id == entity.get("businessId")


def _assigned_promoter(caller: Caller, entity: dict) -> bool:
    assigned = entity.get("assignedPromoters")
    if not isinstance(assigned, list):
        return False
    return any(isinstance(p, dict) and p.get("promoterProfileId") == caller.uid for p in assigned)


def _may_issue(caller: Caller, entity: dict) -> bool:
    profile = caller.profile
    if profile.has_role(SUPERADMIN):
        return True
    if profile.has_role(BUSINESS_ADMIN, STAFF) and _same_business(caller, entity):
        return True
    return profile.has_role(PROMOTER) and _assigned_promoter(caller, entity)


def _entity_not_active() -> Conflict:
    return Conflict("La promoción o evento no está vigente.", error="entity_not_active")


class EntityCodeService:
    """Issue, redeem and validate the codes of promotions and events.

    `now` returns an aware datetime and `choice` picks one character; both are
    injectable for tests.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        now: Callable[[], datetime] = _utc_now,
        choice: Callable[[str], str] = secrets.choice,
    ) -> None:
        self.store = store
        self.now = now
        self.choice = choice

    # --- operations ----------------------------------------------------------------

    def create_codes(self, caller: Caller, entity_id: str, payload: CreateCodesPayload) -> dict:
        entity = self._entity(entity_id)
        if not _may_issue(caller, entity):
            raise Unauthorized("Permiso denegado. No puedes generar códigos para esta promoción o evento.")
        issued_at = self.now()
        stamp = int(issued_at.timestamp() * 1000)
        created: List[dict] = []

        def append_codes(doc: dict) -> dict:
            codes = _codes(doc)
            taken = {str(c.get("value")) for c in codes}
            for index in range(payload.count):
                value = generate_code_value(taken, choice=self.choice)
                taken.add(value)
                created.append(
                    {
                        "id": f"code-{entity_id}-{stamp}-{index}",
                        "value": value,
                        "entityId": entity_id,
                        "status": AVAILABLE,
                        "generatedByName": caller.profile.name,
                        "generatedByUid": caller.uid,
                        "generatedDate": issued_at.isoformat(),
                        "observation": payload.observation,
                        "redemptionDate": None,
                        "redeemedByInfo": None,
                        "isVipCandidate": False,
                    }
                )
            doc["generatedCodes"] = codes + created
            return doc

        self._modify(entity_id, append_codes)
        logger.info("codes_created entity=%s count=%d caller=%s", entity_id, len(created), caller.uid)
        return {"entityId": entity_id, "codes": created}

    def redeem_code(self, caller: Caller, entity_id: str, payload: RedeemCodePayload) -> dict:
        """Claim an `available` code for a client (by code value or id)."""
        entity = self._entity(entity_id)
        profile = caller.profile
        if not (_may_issue(caller, entity) or (profile.has_role(HOST, LECTOR_QR) and _same_business(caller, entity))):
            raise Unauthorized("Permiso denegado. No puedes registrar códigos de esta promoción o evento.")
        if not is_entity_currently_activatable(entity, self.now().date()):
            raise _entity_not_active()
        wanted = payload.code.strip()
        redeemed: dict = {}

        def mark_redeemed(doc: dict) -> dict:
            codes = _codes(doc)
            code = next((c for c in codes if c.get("id") == wanted or c.get("value") == wanted.upper()), None)
            if code is None:
                raise NotFound("El código del promotor no es válido para esta promoción.", error="code_not_found")
            if code.get("status") != AVAILABLE:
                raise Conflict("Este código ya ha sido utilizado.", error="code_already_used")
            code["status"] = REDEEMED
            code["redemptionDate"] = self.now().isoformat()
            code["redeemedByInfo"] = {
                "dni": payload.dni,
                "name": " ".join(p for p in (payload.name.strip(), (payload.surname or "").strip()) if p),
                "phone": payload.phone,
            }
            doc["generatedCodes"] = codes
            redeemed.update(code)
            return doc

        self._modify(entity_id, mark_redeemed)
        logger.info("code_redeemed entity=%s code=%s caller=%s", entity_id, redeemed.get("id"), caller.uid)
        return {"entityId": entity_id, "code": redeemed}

    def validate_code(self, caller: Caller, payload: ValidateCodePayload) -> dict:
        """Mark a scanned `redeemed` code as `used` at the door."""
        business_id = require_door_operator(caller.profile)
        entity_id, entity = self._find_entity_with_code(business_id, payload.code_id)
        if not is_entity_currently_activatable(entity, self.now().date()):
            raise _entity_not_active()
        used: dict = {}

        def mark_used(doc: dict) -> dict:
            codes = _codes(doc)
            code = next((c for c in codes if c.get("id") == payload.code_id), None)
            if code is None:
                raise NotFound("El código ya no existe en esta entidad.", error="code_not_found")
            if code.get("status") != REDEEMED:
                raise Conflict(
                    f"Este QR ya fue utilizado o su estado es inválido (estado actual: {code.get('status')}).",
                    error="code_not_redeemed",
                )
            code["status"] = USED
            code["usedDate"] = self.now().isoformat()
            code["usedByInfo"] = {"uid": caller.uid, "name": caller.profile.name}
            code["isVipCandidate"] = payload.is_vip_candidate
            doc["generatedCodes"] = codes
            used.update(code)
            return doc

        self._modify(entity_id, mark_used)
        logger.info("code_validated entity=%s code=%s caller=%s", entity_id, payload.code_id, caller.uid)
        return {"entityId": entity_id, "entityName": entity.get("name"), "code": used}

    # --- store access --------------------------------------------------------------

    def _entity(self, entity_id: str) -> dict:
        try:
            entity = self.store.get(BUSINESS_ENTITIES_COLLECTION, entity_id)
        except DocumentStoreError as exc:
            raise UpstreamFailure(debug=str(exc)) from exc
        if entity is None:
            raise NotFound("La promoción o evento no existe.", error="entity_not_found")
        return entity

    def _find_entity_with_code(self, business_id: str, code_id: str) -> tuple[str, dict]:
        try:
            for doc_id, doc in self.store.stream(BUSINESS_ENTITIES_COLLECTION):
                if doc.get("businessId") != business_id or doc.get("isActive") is not True:
                    continue
                if any(c.get("id") == code_id for c in _codes(doc)):
                    return doc_id, doc
        except DocumentStoreError as exc:
            raise UpstreamFailure(debug=str(exc)) from exc
        raise NotFound(
            "Código no encontrado en las promociones o eventos activos de tu negocio.", error="code_not_found"
        )

    def _modify(self, entity_id: str, mutate: Callable[[dict], dict]) -> None:
        try:
            self.store.modify(BUSINESS_ENTITIES_COLLECTION, entity_id, mutate)
        except DocumentNotFound as exc:
            raise NotFound("La promoción o evento no existe.", error="entity_not_found") from exc
        except DocumentStoreError as exc:
            logger.error("code_write_failed entity=%s error=%s", entity_id, exc)
            raise UpstreamFailure(debug=str(exc)) from exc
