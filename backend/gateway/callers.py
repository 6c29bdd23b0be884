"""
Caller authentication for privileged endpoints.

Steps 1-3 of every privileged operation:
    1. extract the bearer token (Authorization header, else the `idToken` cookie);
    2. verify it against the identity service's keys (expired vs. invalid);
    3. resolve the caller's Profile by the verified uid.

The functions here are framework-agnostic: the web adapter passes plain header
and cookie values in.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional
import logging

from identity_access.profiles import Profile, ProfileResolver
from identity_access.tokens import IDTokenVerificationError

from .errors import Unauthenticated, UpstreamFailure, caller_profile_not_found, invalid_token, session_expired

logger = logging.getLogger("cloverpass.gateway.callers")

ID_TOKEN_COOKIE = "idToken"

TokenVerifier = Callable[[str], Dict[str, object]]


@dataclass(frozen=True)
class VerifiedIdentity:
    uid: str
    email: Optional[str]
    claims: Mapping[str, object]


@dataclass(frozen=True)
class Caller:
    identity: VerifiedIdentity
    profile: Profile

    @property
    def uid(self) -> str:
        return self.identity.uid


def extract_bearer(authorization: Optional[str], cookies: Mapping[str, str] | None = None) -> Optional[str]:
    """Return the bearer token from the header or the session cookie.

    A present but malformed Authorization header is an invalid credential, not
    an absent one; we do not fall back to the cookie in that case.
    """
    if authorization is not None and authorization.strip():
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise invalid_token()
        return token.strip()
    token = (cookies or {}).get(ID_TOKEN_COOKIE)
    return token or None


def verify_identity(token: Optional[str], verifier: TokenVerifier) -> VerifiedIdentity:
    if not token:
        raise Unauthenticated()
    try:
        claims = verifier(token)
    except IDTokenVerificationError as exc:
        if exc.expired:
            raise session_expired() from exc
        if exc.code.startswith("jwks_"):
            # Key set unreachable: the token was never checked.
            logger.error("token_keys_unavailable code=%s", exc.code)
            raise UpstreamFailure(
                "No se pudo verificar la sesión en este momento. Inténtalo más tarde.", debug=exc.code
            ) from exc
        logger.info("token_rejected code=%s", exc.code)
        raise invalid_token() from exc
    uid = str(claims.get("sub") or claims.get("user_id") or "")
    if not uid:
        raise invalid_token()
    email = claims.get("email")
    return VerifiedIdentity(uid=uid, email=str(email) if email else None, claims=claims)


class CallerAuthenticator:
    def __init__(self, verifier: TokenVerifier, resolver: ProfileResolver) -> None:
        self.verifier = verifier
        self.resolver = resolver

    def identify(self, token: Optional[str]) -> VerifiedIdentity:
        return verify_identity(token, self.verifier)

    def authenticate(self, token: Optional[str]) -> Caller:
        identity = self.identify(token)
        profile = self.resolver.resolve(identity.uid)
        if profile is None:
            raise caller_profile_not_found()
        return Caller(identity=identity, profile=profile)
