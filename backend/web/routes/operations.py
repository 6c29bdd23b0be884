"""Operations endpoints (internal tooling for superadmins)."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Request

from gateway.errors import UpstreamFailure
from gateway.policy import require_any_role
from identity_access.domain import SUPERADMIN
from identity_access.stores import DocumentStoreError

from routes.common import authenticate, private_response
from services import Services, get_services

operations_router = APIRouter(tags=["Operations"])
logger = logging.getLogger("cloverpass.web.operations")


def _job_summary(job) -> dict:
    return {
        "jobId": job.job_id,
        "uid": job.uid,
        "collection": job.collection,
        "attempts": job.attempts,
        "lastError": job.last_error,
    }


def _store_unavailable(exc: DocumentStoreError) -> UpstreamFailure:
    logger.error("reconciliation_store_unavailable error=%s", exc)
    return UpstreamFailure("No se pudo acceder a la cola de reconciliación.", debug=str(exc))


@operations_router.get("/internal/reconciliation")
async def reconciliation_status(request: Request, services: Services = Depends(get_services)):
    """
    List pending profile reconciliation jobs.

    Permissions:
        Caller must have `superadmin` role.
    """
    caller = await authenticate(request, services)
    require_any_role(caller.profile, (SUPERADMIN,))
    try:
        jobs = await asyncio.to_thread(services.reconciliation.pending)
    except DocumentStoreError as exc:
        raise _store_unavailable(exc) from exc
    pending = [_job_summary(job) for job in jobs]
    return private_response({"pending": pending, "count": len(pending)})


@operations_router.post("/internal/reconciliation/run")
async def reconciliation_run(request: Request, services: Services = Depends(get_services)):
    """
    Process visible jobs once: retry profile writes, delete orphans past the limit.

    Permissions:
        Caller must have `superadmin` role.
    """
    caller = await authenticate(request, services)
    require_any_role(caller.profile, (SUPERADMIN,))
    try:
        report = await asyncio.to_thread(services.reconciler.run_once)
        remaining = await asyncio.to_thread(len, services.reconciliation)
    except DocumentStoreError as exc:
        raise _store_unavailable(exc) from exc
    body = report.to_dict()
    body["pending"] = remaining
    logger.info("reconciliation_run caller=%s report=%s", caller.uid, body)
    return private_response(body)
