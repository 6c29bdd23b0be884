"""
User provisioning API routes.

Why:
    Superadmins and business operators create platform accounts from the
    admin console and the business panel. Account creation requires the
    identity service's admin surface, so it runs server-side only.

Contract (all endpoints):
    1. bearer token from `Authorization` or the `idToken` cookie (401);
    2. token verified (401 `session_expired` / `invalid_token`);
    3. caller profile resolved (401 `caller_profile_not_found`);
    4. caller authorized (403);
    5. body validated (400 with `details.fieldErrors`);
    6. duplicate email rejected (409);
    7. account + profile created, `{"uid", "message"}` returned.
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Request

from forms.schemas import BUSINESS_FROM_CALLER, CreatePlatformUserPayload, CreatePromoterPayload, CreateStaffPayload
from gateway.policy import gate_user_creation, require_business_member
from identity_access.domain import SUPERADMIN

from routes.common import authenticate, private_response, read_payload
from services import Services, get_services

users_router = APIRouter(tags=["Users"])  # explicit paths below


@users_router.post("/api/admin/create-user")
async def create_platform_user(request: Request, services: Services = Depends(get_services)):
    """Create a platform user with roles and optional business.

    Permissions:
        superadmin (any roles), or business_admin with a business (staff/host
        only; the new user joins the caller's business).
    """
    caller = await authenticate(request, services)
    gate_user_creation(caller.profile)
    # Business operators always create users in their own business.
    context = {BUSINESS_FROM_CALLER: not caller.profile.has_role(SUPERADMIN)}
    payload = await read_payload(request, CreatePlatformUserPayload, context=context)
    result = await asyncio.to_thread(services.provisioning.create_platform_user, caller, payload)
    return private_response(result)


@users_router.post("/api/business-panel/create-staff")
async def create_staff(request: Request, services: Services = Depends(get_services)):
    """Create a staff/host account in the caller's business.

    Permissions:
        business_admin or staff with an associated business.
    """
    caller = await authenticate(request, services)
    require_business_member(caller.profile)
    payload = await read_payload(request, CreateStaffPayload)
    result = await asyncio.to_thread(services.provisioning.create_staff, caller, payload)
    return private_response(result)


@users_router.post("/api/business-panel/create-promoter")
async def create_promoter(request: Request, services: Services = Depends(get_services)):
    caller = await authenticate(request, services)
    require_business_member(caller.profile)
    payload = await read_payload(request, CreatePromoterPayload)
    result = await asyncio.to_thread(services.provisioning.create_promoter, caller, payload)
    return private_response(result)


@users_router.post("/api/user/update-last-login")
async def update_last_login(request: Request, services: Services = Depends(get_services)):
    """Stamp `lastLogin` on the caller's own profile."""
    caller = await authenticate(request, services)
    result = await asyncio.to_thread(services.provisioning.update_last_login, caller.uid)
    return private_response(result)
