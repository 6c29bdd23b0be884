"""
ID token verification for the identity_access bounded context.

Why: Every session cookie and bearer header carries an ID token issued by the
hosted identity service. Verifying it here, away from the web adapter, keeps
the cryptography unit-testable and lets the gateway and the dispatcher share
one set of rules.

Security:
    - Signature: RS256 only, against the project's published key set (JWKS).
    - Claims: `aud` is the project id, `iss` is `<issuer_base>/<project_id>`,
      `sub` is a non-empty uid of at most 128 chars.
    - Time: `exp` in the past is reported as `id_token_expired`; `iat`,
      `nbf` and `auth_time` in the future are invalid. A few seconds of skew
      are tolerated.

Key rotation:
    The key set is cached for the `max-age` the publisher advertises (bounded
    by `JWKSCache.max_ttl_seconds`). A token signed with a kid we have not
    seen triggers one forced refresh before it is rejected.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional
import re
import time

import requests
from jose import jwt
from jose.exceptions import JOSEError

from .provider import IdentityConfig

EXPIRED = "id_token_expired"
INVALID = "invalid_id_token"
MALFORMED = "malformed_id_token"

MAX_CLOCK_SKEW_SECONDS = 5
MAX_UID_LENGTH = 128

_MAX_AGE_RE = re.compile(r"max-age=(\d+)")


class IDTokenVerificationError(Exception):
    """Raised when the ID token fails verification; `code` is safe to log."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code

    @property
    def expired(self) -> bool:
        return self.code == EXPIRED


@dataclass
class _KeySet:
    keys: Dict[str, dict]
    expires_at: float


def _max_age(headers: Mapping[str, str]) -> Optional[int]:
    match = _MAX_AGE_RE.search(headers.get("Cache-Control", "") or "")
    return int(match.group(1)) if match else None


class JWKSCache:
    """Process-local key cache keyed by JWKS URL."""

    def __init__(self, ttl_seconds: int = 300, max_ttl_seconds: int = 6 * 3600):
        self.ttl_seconds = ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds
        self._sets: Dict[str, _KeySet] = {}

    def get(self, cfg: IdentityConfig) -> Dict[str, object]:
        return {"keys": list(self._key_set(cfg).keys.values())}

    def key_for(self, cfg: IdentityConfig, kid: str) -> Optional[dict]:
        key = self._key_set(cfg).keys.get(kid)
        if key is None:
            # Unknown kid: the publisher may have rotated since our last fetch.
            key = self._key_set(cfg, force=True).keys.get(kid)
        return key

    def _key_set(self, cfg: IdentityConfig, *, force: bool = False) -> _KeySet:
        now = time.time()
        cached = self._sets.get(cfg.jwks_url)
        if cached and not force and cached.expires_at > now:
            return cached
        keys, max_age = self._fetch(cfg.jwks_url)
        ttl = min(max_age if max_age is not None else self.ttl_seconds, self.max_ttl_seconds)
        fresh = _KeySet(keys=keys, expires_at=now + ttl)
        self._sets[cfg.jwks_url] = fresh
        return fresh

    @staticmethod
    def _fetch(url: str) -> tuple[Dict[str, dict], Optional[int]]:
        try:
            resp = requests.get(url, timeout=5)
        except requests.RequestException as exc:
            raise IDTokenVerificationError("jwks_fetch_failed") from exc
        if resp.status_code != 200:
            raise IDTokenVerificationError("jwks_fetch_failed")
        try:
            body = resp.json()
        except ValueError as exc:
            raise IDTokenVerificationError("jwks_invalid") from exc
        if not isinstance(body, dict) or not isinstance(body.get("keys"), list):
            raise IDTokenVerificationError("jwks_invalid")
        keys = {str(k["kid"]): k for k in body["keys"] if isinstance(k, dict) and k.get("kid")}
        return keys, _max_age(resp.headers)


JWKS_CACHE = JWKSCache()


def _lookup_key(cache, cfg: IdentityConfig, kid: str) -> Optional[dict]:
    if hasattr(cache, "key_for"):
        return cache.key_for(cfg, kid)
    # Plain caches only expose the JWKS document.
    for key in cache.get(cfg).get("keys") or []:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def verify_id_token(
    *,
    id_token: str,
    cfg: IdentityConfig,
    cache: JWKSCache | None = None,
) -> Dict[str, object]:
    """Validate an ID token and return its claims.

    Parameters
    ----------
    id_token:
        The raw JWT string issued by the identity service.
    cfg:
        Identity configuration (project id, JWKS URL, issuer base).
    cache:
        Optional key cache (defaults to the module-level cache). Anything with
        `get(cfg) -> {"keys": [...]}` works; `key_for(cfg, kid)` is preferred.

    Raises
    ------
    IDTokenVerificationError:
        `malformed_id_token` when the token cannot be parsed,
        `id_token_expired` when it is past its expiry, `missing_kid` /
        `unknown_kid` / `jwks_*` for key lookup failures, and
        `invalid_id_token` for everything else.
    """
    if not id_token or not isinstance(id_token, str):
        raise IDTokenVerificationError(MALFORMED)
    try:
        header = jwt.get_unverified_header(id_token)
    except JOSEError as exc:
        raise IDTokenVerificationError(MALFORMED) from exc
    kid = header.get("kid")
    if not kid:
        raise IDTokenVerificationError("missing_kid")
    key = _lookup_key(cache or JWKS_CACHE, cfg, str(kid))
    if not key:
        raise IDTokenVerificationError("unknown_kid")

    try:
        claims = jwt.decode(
            id_token,
            key,
            # Only RS256; never trust the algorithm advertised by the key set.
            algorithms=["RS256"],
            audience=cfg.audience,
            issuer=cfg.issuer,
            # Time claims are checked below so expiry gets its own code.
            options={
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
                "verify_at_hash": False,
            },
        )
    except JOSEError as exc:
        raise IDTokenVerificationError(INVALID) from exc

    _check_times(claims, now=time.time())
    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub or len(sub) > MAX_UID_LENGTH:
        raise IDTokenVerificationError(INVALID)
    return claims


def _check_times(claims: Dict[str, object], *, now: float) -> None:
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise IDTokenVerificationError(INVALID)
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise IDTokenVerificationError(EXPIRED)
    for name in ("iat", "nbf", "auth_time"):
        value = claims.get(name)
        if isinstance(value, (int, float)) and value - MAX_CLOCK_SKEW_SECONDS > now:
            raise IDTokenVerificationError(INVALID)
