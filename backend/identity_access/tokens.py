"""
JWT verification helpers for Supabase access tokens.

Why: Tokens relayed from the URL fragment (implicit flow) reach the server
straight from the browser. Validate them locally before asking the provider
for the user, so forged or expired tokens never leave the process.

Security: Projects configured with the legacy shared secret sign with HS256;
projects using asymmetric signing keys publish a JWKS. Issuer, audience and
expiry are enforced in both cases; the algorithm list is fixed per mode and
never taken from the token header.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Tuple
import time

import requests
from jose import jwt
from jose.exceptions import JOSEError

if TYPE_CHECKING:  # pragma: no cover
    from .supabase_auth import SupabaseAuthConfig


SUPABASE_AUDIENCE = "authenticated"
ASYMMETRIC_ALGORITHMS = ["RS256", "ES256"]
MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers


class AccessTokenVerificationError(Exception):
    """Raised when an access token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass
class _CacheEntry:
    jwks: Dict[str, object]
    expires_at: float


class JWKSCache:
    """Very small in-memory cache for JWKS responses."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[Tuple[str, str], _CacheEntry] = {}

    def get(self, cfg: "SupabaseAuthConfig") -> Dict[str, object]:
        key = (cfg.url, cfg.anon_key)
        now = time.time()
        entry = self._entries.get(key)
        if entry and entry.expires_at > now:
            return entry.jwks

        jwks = self._fetch(cfg)
        self._entries[key] = _CacheEntry(jwks=jwks, expires_at=now + self.ttl_seconds)
        return jwks

    def _fetch(self, cfg: "SupabaseAuthConfig") -> Dict[str, object]:
        try:
            resp = requests.get(cfg.jwks_endpoint, headers={"apikey": cfg.anon_key}, timeout=5)
        except requests.RequestException as exc:
            raise AccessTokenVerificationError("jwks_fetch_failed") from exc
        if resp.status_code != 200:
            raise AccessTokenVerificationError("jwks_fetch_failed")
        try:
            jwks = resp.json()
        except ValueError as exc:
            raise AccessTokenVerificationError("jwks_invalid") from exc
        if not isinstance(jwks, dict) or "keys" not in jwks:
            raise AccessTokenVerificationError("jwks_invalid")
        return jwks


JWKS_CACHE = JWKSCache()


def verify_access_token(
    *,
    access_token: str,
    cfg: "SupabaseAuthConfig",
    cache: JWKSCache | None = None,
) -> Dict[str, object]:
    """Validate a Supabase access token and return its claims.

    Parameters
    ----------
    access_token:
        The raw JWT string issued by Supabase Auth.
    cfg:
        Supabase configuration (URL, anon key, optional JWT secret).
    cache:
        Optional JWKS cache (defaults to module-level cache). Unused when a
        shared secret is configured.

    Raises
    ------
    AccessTokenVerificationError:
        When the token is invalid (signature, issuer, audience, expiry, kid).
    """
    if not access_token or not isinstance(access_token, str):
        raise AccessTokenVerificationError("missing_token")

    try:
        header = jwt.get_unverified_header(access_token)
    except JOSEError as exc:
        raise AccessTokenVerificationError("invalid_access_token") from exc

    if cfg.jwt_secret:
        key: object = cfg.jwt_secret
        algorithms = ["HS256"]
    else:
        kid = header.get("kid")
        if not kid:
            raise AccessTokenVerificationError("missing_kid")
        key_dict = _find_key((cache or JWKS_CACHE).get(cfg), kid)
        if not key_dict:
            raise AccessTokenVerificationError("unknown_kid")
        key = key_dict
        algorithms = ASYMMETRIC_ALGORITHMS

    try:
        claims = jwt.decode(
            access_token,
            key,
            algorithms=algorithms,
            audience=SUPABASE_AUDIENCE,
            issuer=cfg.issuer,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
                "verify_at_hash": False,
            },
        )
    except JOSEError as exc:
        raise AccessTokenVerificationError("invalid_access_token") from exc

    _validate_temporal_claims(claims)
    if not claims.get("sub"):
        raise AccessTokenVerificationError("invalid_access_token")
    return claims


def _find_key(jwks: Dict[str, object], kid: str) -> Dict[str, object] | None:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        return None
    for key in keys:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise AccessTokenVerificationError("invalid_access_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise AccessTokenVerificationError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - MAX_CLOCK_SKEW_SECONDS > now:
        raise AccessTokenVerificationError("invalid_access_token")
