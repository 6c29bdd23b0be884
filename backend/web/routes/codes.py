"""
Promoter/QR code routes.

Endpoints:
    - POST /api/entities/{entity_id}/codes          issue 1-50 `available` codes.
    - POST /api/entities/{entity_id}/codes/redeem   claim a code for a client.
    - POST /api/lector-qr/validate                  mark a scanned code `used`.

Each handler authenticates, applies the caller-level role gate, validates the
body and only then hands over to `EntityCodeService`, which checks the caller
against the entity's business before writing.
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Request

from forms.schemas import CreateCodesPayload, RedeemCodePayload, ValidateCodePayload
from gateway.policy import CODE_ISSUER_ROLES, CODE_REGISTRAR_ROLES, require_any_role, require_door_operator

from routes.common import authenticate, private_response, read_payload
from services import Services, get_services

codes_router = APIRouter(tags=["Codes"])


@codes_router.post("/api/entities/{entity_id}/codes")
async def create_codes(entity_id: str, request: Request, services: Services = Depends(get_services)):
    """Issue codes for a promotion or event.

    Permissions:
        superadmin, business_admin/staff of the entity's business, or a
        promoter assigned to the entity.
    """
    caller = await authenticate(request, services)
    require_any_role(caller.profile, CODE_ISSUER_ROLES)
    payload = await read_payload(request, CreateCodesPayload)
    result = await asyncio.to_thread(services.codes.create_codes, caller, entity_id, payload)
    return private_response(result, status_code=201)


@codes_router.post("/api/entities/{entity_id}/codes/redeem")
async def redeem_code(entity_id: str, request: Request, services: Services = Depends(get_services)):
    """Claim an available code; 409 if it was already claimed or the entity is not running."""
    caller = await authenticate(request, services)
    require_any_role(caller.profile, CODE_REGISTRAR_ROLES)
    payload = await read_payload(request, RedeemCodePayload)
    result = await asyncio.to_thread(services.codes.redeem_code, caller, entity_id, payload)
    return private_response(result)


@codes_router.post("/api/lector-qr/validate")
async def validate_code(request: Request, services: Services = Depends(get_services)):
    """Door validation of a scanned QR (redeemed -> used).

    Permissions:
        business_admin, staff, host or lector_qr with an associated business.
    """
    caller = await authenticate(request, services)
    require_door_operator(caller.profile)
    payload = await read_payload(request, ValidateCodePayload)
    result = await asyncio.to_thread(services.codes.validate_code, caller, payload)
    return private_response(result)
