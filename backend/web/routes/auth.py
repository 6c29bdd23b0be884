"""
Authentication-related FastAPI routes (router-only module).

Why:
    The browser keeps its session as the identity service's ID token in the
    `idToken` cookie. These endpoints create and remove that cookie, and route
    a signed-in user to the area matching their roles.

Endpoints:
    - POST /auth/login     email/password sign-in; sets the cookie.
    - POST /auth/signup    promoter self-registration; sets the cookie.
    - POST /auth/session   auth-state sync from the client SDK.
    - POST /auth/logout    removes the cookie.
    - GET  /auth/dispatch  302 to the role's landing area.
    - GET  /api/me         caller profile plus the dispatch decision.

Security:
    Every response carries `Cache-Control: private, no-store`. Tokens and
    passwords are never logged.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from forms.schemas import LoginForm, SessionSyncPayload, SignupForm
from gateway.callers import ID_TOKEN_COOKIE, verify_identity
from gateway.errors import Conflict, GatewayError, UpstreamFailure, Unauthenticated, ValidationFailed
from identity_access import dispatcher
from identity_access.auth_client import AuthClientError
from identity_access.profiles import Profile

from auth_utils import clear_id_token_cookie, remaining_lifetime, set_id_token_cookie
from routes.common import PRIVATE_HEADERS, authenticate, private_response, read_payload
from services import Services, get_services

auth_router = APIRouter(tags=["Auth"])  # explicit paths, no prefix
logger = logging.getLogger("cloverpass.web.auth")


def _auth_client_error(exc: AuthClientError) -> GatewayError:
    if exc.code == "invalid_credentials":
        return Unauthenticated("Credenciales incorrectas.", error="invalid_credentials")
    if exc.code == "email_exists":
        return Conflict()
    if exc.code == "weak_password":
        return ValidationFailed(
            "La contraseña es demasiado débil.",
            fields={"formErrors": [], "fieldErrors": {"password": ["La contraseña es demasiado débil."]}},
        )
    if exc.code == "too_many_attempts":
        return Unauthenticated("Demasiados intentos. Inténtalo más tarde.", error="too_many_attempts")
    logger.warning("Identity service call failed: %s", exc.code)
    return UpstreamFailure(debug=exc.code)


def _redirect_with_notice(path: str, notice: str | None) -> str:
    return f"{path}?{urlencode({'notice': notice})}" if notice else path


@auth_router.post("/auth/login")
async def auth_login(request: Request, services: Services = Depends(get_services)):
    """
    Sign in with email/password and start the cookie session.

    Behavior:
        - Validates the body (`LoginForm`).
        - Exchanges credentials for an ID token, verifies it and stamps
          `lastLogin` (best effort; a failed stamp never fails the login).
        - Runs the role router: a profile-less identity gets no cookie and a
          forced-logout dispatch instead.
    Permissions:
        Public.
    """
    form = await read_payload(request, LoginForm)
    try:
        tokens = await asyncio.to_thread(
            services.auth_client.sign_in_with_password, email=str(form.email), password=form.password
        )
    except AuthClientError as exc:
        raise _auth_client_error(exc) from exc
    id_token = tokens["idToken"]
    identity = await asyncio.to_thread(verify_identity, id_token, services.verifier)
    profile = await asyncio.to_thread(services.resolver.resolve, identity.uid)
    decision = dispatcher.dispatch(identity_present=True, profile=profile)
    environment = services.settings.environment
    if decision.force_logout:
        resp = private_response({"uid": identity.uid, "dispatch": decision.to_dict()})
        clear_id_token_cookie(resp, environment=environment)
        return resp
    try:
        await asyncio.to_thread(services.profiles.touch_last_login, identity.uid)
    except Exception as exc:
        logger.warning("last_login_stamp_failed uid=%s error=%s", identity.uid, exc.__class__.__name__)
    resp = private_response({"uid": identity.uid, "dispatch": decision.to_dict()})
    set_id_token_cookie(resp, id_token, environment=environment, max_age=remaining_lifetime(identity.claims))
    return resp


@auth_router.post("/auth/signup")
async def auth_signup(request: Request, services: Services = Depends(get_services)):
    """
    Self-registration for promoters.

    Behavior:
        Creates the account through the public sign-up call, then writes the
        Profile with roles `["promoter"]`. If the profile write fails the
        account is queued for reconciliation and 500 is returned. The cookie
        is set only for a verified token and lives as long as the token.
    Permissions:
        Public.
    """
    form = await read_payload(request, SignupForm)
    try:
        tokens = await asyncio.to_thread(
            services.auth_client.sign_up, email=str(form.email), password=form.password, display_name=form.name
        )
    except AuthClientError as exc:
        raise _auth_client_error(exc) from exc
    uid = str(tokens["localId"])
    await asyncio.to_thread(services.provisioning.register_self_signup, uid, name=form.name, email=str(form.email))
    resp = private_response(
        {"uid": uid, "message": "Registro exitoso.", "redirect": dispatcher.PROMOTER_AREA}, status_code=201
    )
    id_token = tokens.get("idToken")
    if not id_token:
        return resp
    try:
        identity = await asyncio.to_thread(verify_identity, id_token, services.verifier)
    except GatewayError as exc:
        # Account and profile exist; the user can still sign in normally.
        logger.warning("signup_token_unverified uid=%s error=%s", uid, exc.error)
        return resp
    if identity.uid != uid:
        logger.warning("signup_token_uid_mismatch uid=%s", uid)
        return resp
    set_id_token_cookie(
        resp, id_token, environment=services.settings.environment, max_age=remaining_lifetime(identity.claims)
    )
    return resp


@auth_router.post("/auth/session")
async def auth_session(request: Request, services: Services = Depends(get_services)):
    """
    Mirror the client's auth state into the cookie.

    `{"idToken": "<jwt>"}` sets the cookie after verifying the token;
    `{"idToken": null}` removes it.
    """
    payload = await read_payload(request, SessionSyncPayload)
    environment = services.settings.environment
    if not payload.id_token:
        resp = private_response({"status": "signed_out"})
        clear_id_token_cookie(resp, environment=environment)
        return resp
    identity = await asyncio.to_thread(verify_identity, payload.id_token, services.verifier)
    resp = private_response({"status": "signed_in", "uid": identity.uid})
    set_id_token_cookie(resp, payload.id_token, environment=environment, max_age=remaining_lifetime(identity.claims))
    return resp


@auth_router.post("/auth/logout")
async def auth_logout(services: Services = Depends(get_services)):
    resp = private_response({"status": "signed_out"})
    clear_id_token_cookie(resp, environment=services.settings.environment)
    return resp


@auth_router.get("/auth/dispatch")
async def auth_dispatch(request: Request, services: Services = Depends(get_services)):
    """
    Route the cookie identity to its landing area (302).

    Behavior:
        - No cookie: `/login`.
        - Expired token: `/login?notice=session_expired`, cookie cleared.
        - Invalid token: `/login`, cookie cleared.
        - Signing keys unreachable: 500, cookie kept (the token was not
          judged).
        - Otherwise the role router decides; forced logouts clear the cookie
          and the notice travels as `?notice=`.
    """
    environment = services.settings.environment
    token = request.cookies.get(ID_TOKEN_COOKIE)
    if not token:
        return RedirectResponse(url=dispatcher.LOGIN_PATH, status_code=302, headers=dict(PRIVATE_HEADERS))
    try:
        identity = await asyncio.to_thread(verify_identity, token, services.verifier)
    except Unauthenticated as exc:
        notice = dispatcher.NOTICE_SESSION_EXPIRED if exc.error == "session_expired" else None
        resp = RedirectResponse(
            url=_redirect_with_notice(dispatcher.LOGIN_PATH, notice), status_code=302, headers=dict(PRIVATE_HEADERS)
        )
        clear_id_token_cookie(resp, environment=environment)
        return resp
    profile = await asyncio.to_thread(services.resolver.resolve, identity.uid)
    decision = dispatcher.dispatch(identity_present=True, profile=profile)
    resp = RedirectResponse(
        url=_redirect_with_notice(decision.redirect or dispatcher.LOGIN_PATH, decision.notice),
        status_code=302,
        headers=dict(PRIVATE_HEADERS),
    )
    if decision.force_logout:
        logger.info("dispatch_forced_logout uid=%s notice=%s", identity.uid, decision.notice)
        clear_id_token_cookie(resp, environment=environment)
    return resp


@auth_router.get("/api/me")
async def get_me(request: Request, services: Services = Depends(get_services)):
    """Return the caller's profile (without DNI) and where the router sends them."""
    caller = await authenticate(request, services)
    profile: Profile = caller.profile
    decision = dispatcher.dispatch(identity_present=True, profile=profile)
    return private_response({"profile": profile.to_public(), "dispatch": decision.to_dict()})
