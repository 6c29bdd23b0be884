"""
Shared session-cookie utilities.

Why:
    The `idToken` cookie is written by login, signup and the auth-state sync,
    and cleared by logout and forced logouts in the dispatcher. Keeping one
    helper makes every writer agree on the flags.

Design:
    The cookie carries the identity service's ID token so server-rendered
    pages can authenticate the request. Flags are production-grade in every
    environment: `Secure`, `HttpOnly`, `SameSite=Strict`, path `/`.
"""

from __future__ import annotations

import time
from typing import Mapping

from fastapi.responses import Response

from gateway.callers import ID_TOKEN_COOKIE

MAX_COOKIE_AGE = 3600


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    Returns a mapping with keys:
      - secure: True
      - samesite: "strict"
    """
    # Login is a same-site form post, never a cross-site redirect, so Strict
    # does not break any flow.
    return {"secure": True, "samesite": "strict"}


def remaining_lifetime(claims: Mapping[str, object], *, now: int | None = None) -> int:
    """Seconds until the token's `exp`, clamped to [0, MAX_COOKIE_AGE]."""
    try:
        exp = int(claims.get("exp"))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return MAX_COOKIE_AGE
    current = int(now if now is not None else time.time())
    return max(0, min(MAX_COOKIE_AGE, exp - current))


def set_id_token_cookie(response: Response, token: str, *, environment: str, max_age: int | None = None) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=ID_TOKEN_COOKIE,
        value=token,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=max_age if max_age is not None else MAX_COOKIE_AGE,
    )


def clear_id_token_cookie(response: Response, *, environment: str) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=ID_TOKEN_COOKIE,
        value="",
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        expires=0,
        max_age=0,
    )
