"CloverPass gateway"
from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

from gateway.errors import GatewayError

import config as _cfg
from services import Services, build_services


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out/opt-in via CLOVERPASS_ENABLE_DOTENV (default true
      outside pytest).
    """
    import sys
    # Under pytest, do not load .env – tests provide their own env.
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("CLOVERPASS_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

# --- App & Services Setup -------------------------------------------------------

logger = logging.getLogger("cloverpass.web")

app = FastAPI(title="CloverPass", description="Plataforma de beneficios Socio VIP", version="0.1.0")
app.state.services = build_services()

from routes.auth import auth_router
from routes.users import users_router
from routes.admin import admin_router
from routes.forms import forms_router
from routes.operations import operations_router
from routes.codes import codes_router


def current_services() -> Services:
    return app.state.services


# --- Error rendering ------------------------------------------------------------

@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    settings = app.state.services.settings
    if exc.status_code >= 500:
        logger.error("gateway_error path=%s error=%s", request.url.path, exc.error)
    body = exc.to_payload(expose_debug=settings.expose_error_details)
    return JSONResponse(body, status_code=exc.status_code, headers={"Cache-Control": "private, no-store"})


# --- Security Headers Middleware ----------------------------------------------

@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    # JSON API only: nothing may be framed, scripted or embedded.
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if current_services().settings.prod_like:
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    # HSTS: always on (dev = prod)
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


app.include_router(auth_router)
app.include_router(users_router)
app.include_router(admin_router)
app.include_router(forms_router)
app.include_router(operations_router)
app.include_router(codes_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})
