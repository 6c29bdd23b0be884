"""
DNI (Peruvian national ID) lookup against a third-party registry API.

The upstream answers `GET {base}/{dni}` with
`{"success": bool, "data": {...}, "message": str}`. We only extract the full
name: `nombre_completo` when present, otherwise `nombres` + `apellido_paterno`
+ `apellido_materno` joined with single spaces.

Tests inject an `httpx.MockTransport` via `transport`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging

import httpx

from .errors import NotFound, UpstreamFailure

logger = logging.getLogger("cloverpass.gateway.dni")

DEFAULT_DNI_API_BASE_URL = "https://api.factiliza.com/v1/dni/info"


def full_name_from(data: dict) -> Optional[str]:
    full = data.get("nombre_completo")
    if isinstance(full, str) and full.strip():
        return " ".join(full.split())
    parts = [data.get("nombres"), data.get("apellido_paterno"), data.get("apellido_materno")]
    words = [p.strip() for p in parts if isinstance(p, str) and p.strip()]
    if not words:
        return None
    return " ".join(" ".join(words).split())


@dataclass
class DniLookupClient:
    token: Optional[str]
    base_url: str = DEFAULT_DNI_API_BASE_URL
    timeout: float = 10.0
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def full_name(self, dni: str) -> str:
        if not self.token:
            logger.error("dni_lookup_not_configured")
            raise UpstreamFailure("El servicio de consulta no está configurado en el servidor.", error="not_configured")
        url = f"{self.base_url.rstrip('/')}/{dni}"
        headers = {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as upstream:
                resp = await upstream.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("dni_lookup_transport_failed error=%s", exc.__class__.__name__)
            raise UpstreamFailure("Ocurrió un error interno al consultar el DNI.", debug=str(exc)) from exc
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message") if isinstance(body.get("message"), str) else None
        if resp.status_code == 404:
            raise NotFound(message or "No se encontraron datos para este DNI.", error="dni_not_found")
        if resp.status_code >= 300:
            logger.warning("dni_lookup_upstream_status status=%s", resp.status_code)
            raise UpstreamFailure(
                message or f"Error de la API externa: {resp.status_code}", debug=f"status={resp.status_code}"
            )
        data = body.get("data")
        name = full_name_from(data) if body.get("success") is not False and isinstance(data, dict) else None
        if not name:
            logger.info("dni_lookup_incomplete")
            raise NotFound(message or "La API no devolvió datos completos para este DNI.", error="dni_not_found")
        return name
