"""
Request helpers shared by the gateway routers.

Every privileged handler runs the same prefix: authenticate the caller
(bearer header or `idToken` cookie), authorize, then read and validate the
JSON body. Authentication happens before the body is parsed, so a missing
token yields 401 regardless of the payload.
"""
from __future__ import annotations

import asyncio
from typing import Optional, Type, TypeVar

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from forms.schemas import flatten_errors
from gateway.callers import Caller, extract_bearer
from gateway.errors import ValidationFailed

from services import Services

M = TypeVar("M", bound=BaseModel)

PRIVATE_HEADERS = {"Cache-Control": "private, no-store"}


def private_response(body: dict, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=dict(PRIVATE_HEADERS))


async def authenticate(request: Request, services: Services) -> Caller:
    token = extract_bearer(request.headers.get("authorization"), request.cookies)
    return await asyncio.to_thread(services.authenticator.authenticate, token)


async def read_json(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError as exc:
        raise ValidationFailed("El cuerpo de la solicitud no es JSON válido.") from exc
    if not isinstance(data, dict):
        raise ValidationFailed("El cuerpo de la solicitud debe ser un objeto JSON.")
    return data


def parse_payload(model: Type[M], data: dict, *, context: Optional[dict] = None) -> M:
    try:
        return model.model_validate(data, context=context)
    except ValidationError as exc:
        raise ValidationFailed(fields=flatten_errors(exc)) from exc


async def read_payload(request: Request, model: Type[M], *, context: Optional[dict] = None) -> M:
    return parse_payload(model, await read_json(request), context=context)
