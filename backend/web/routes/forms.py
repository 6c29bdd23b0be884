"""
Form pre-validation endpoint.

Why:
    Client forms show per-field messages before submitting. Exposing the
    server's own schemas keeps both sides on one set of rules.

Permissions:
    Public; the endpoint has no side effects and never echoes values back.
"""
from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import ValidationError

from forms.schemas import FORM_SCHEMAS, flatten_errors
from gateway.errors import NotFound

from routes.common import private_response, read_json

forms_router = APIRouter(tags=["Forms"])


@forms_router.post("/api/forms/{form}/validate")
async def validate_form(request: Request, form: str):
    schema = FORM_SCHEMAS.get(form)
    if schema is None:
        raise NotFound("Formulario desconocido.", error="unknown_form")
    data = await read_json(request)
    try:
        schema.model_validate(data)
    except ValidationError as exc:
        return private_response({"valid": False, "errors": flatten_errors(exc)})
    return private_response({"valid": True, "errors": {"formErrors": [], "fieldErrors": {}}})
