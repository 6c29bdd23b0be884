"""Admin console API routes: dashboard statistics and DNI lookup."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Request

from forms.schemas import DniLookupPayload
from gateway.errors import UpstreamFailure
from gateway.policy import require_any_role
from gateway.stats import collect_dashboard_stats
from identity_access.domain import SUPERADMIN
from identity_access.stores import DocumentStoreError

from routes.common import authenticate, private_response, read_payload
from services import Services, get_services

admin_router = APIRouter(tags=["Admin"])
logger = logging.getLogger("cloverpass.web.admin")


@admin_router.get("/api/admin-stats")
async def admin_stats(request: Request, services: Services = Depends(get_services)):
    """Platform-wide counters for the superadmin dashboard.

    Permissions:
        Caller must have role `superadmin`.
    """
    caller = await authenticate(request, services)
    require_any_role(caller.profile, (SUPERADMIN,))
    try:
        stats = await asyncio.to_thread(
            collect_dashboard_stats,
            services.store,
            include_code_totals=services.settings.stats_include_code_totals,
        )
    except DocumentStoreError as exc:
        logger.error("admin_stats_failed caller=%s error=%s", caller.uid, exc)
        raise UpstreamFailure("No se pudieron obtener las estadísticas.", debug=str(exc)) from exc
    return private_response(stats)


@admin_router.post("/api/admin/consult-dni")
async def consult_dni(request: Request, services: Services = Depends(get_services)):
    """Resolve an 8-digit DNI to the holder's full name.

    Permissions:
        Any authenticated caller with a profile.
    Returns:
        `{"nombreCompleto": str}`; 404 when the registry has no complete record.
    """
    caller = await authenticate(request, services)
    payload = await read_payload(request, DniLookupPayload)
    name = await services.dni.full_name(payload.dni)
    logger.info("dni_lookup_ok caller=%s", caller.uid)
    return private_response({"nombreCompleto": name})
