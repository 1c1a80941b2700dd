"""
Configuration and startup security checks for PDS.

Why: Parents' and pupils' data must not end up behind an accidentally insecure
deployment. This module provides a single guard that enforces minimal
production safety constraints without burdening local development.

Permissions: The caller needs no special privileges. The function reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

from urllib.parse import urlparse
import os

# Default secret shipped with the local Supabase stack; never valid in prod.
SUPABASE_DEV_JWT_SECRET = "super-secret-jwt-token-with-at-least-32-characters-long"
MIN_JWT_SECRET_LENGTH = 32


def _is_prod_like(env: str) -> bool:
    return (env or "").lower() in {"prod", "production", "stage", "staging"}


def _is_placeholder(value: str) -> bool:
    upper = value.strip().upper()
    return not upper or upper == "DUMMY_DO_NOT_USE" or upper.startswith("CHANGE_ME")


def _must_be_https(url_value: str, var_name: str) -> None:
    if not url_value:
        return
    parsed = urlparse(url_value.strip())
    if parsed.scheme.lower() != "https" or not parsed.netloc:
        raise SystemExit(f"Refusing to start: {var_name} must be an https URL in production.")


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod-like environments only):
    - SUPABASE_URL and SUPABASE_ANON_KEY are set; the key is no placeholder.
    - Supabase and callback URLs use https.
    - SUPABASE_JWT_SECRET, when used, is neither the local default nor short.
    - DATABASE_URL does not disable TLS.
    """
    env = os.getenv("PDS_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    if not (os.getenv("SUPABASE_URL") or "").strip():
        raise SystemExit("Refusing to start: SUPABASE_URL is unset in production.")
    if _is_placeholder(os.getenv("SUPABASE_ANON_KEY", "")):
        raise SystemExit("Refusing to start: SUPABASE_ANON_KEY is unset or a placeholder in production.")

    _must_be_https(os.getenv("SUPABASE_URL", ""), "SUPABASE_URL")
    _must_be_https(os.getenv("SUPABASE_PUBLIC_URL", ""), "SUPABASE_PUBLIC_URL")
    _must_be_https(os.getenv("REDIRECT_URI", ""), "REDIRECT_URI")

    secret = os.getenv("SUPABASE_JWT_SECRET", "")
    if secret and (secret == SUPABASE_DEV_JWT_SECRET or len(secret) < MIN_JWT_SECRET_LENGTH):
        raise SystemExit(
            "Refusing to start: SUPABASE_JWT_SECRET is the development default or too short in production."
        )

    dsn = os.getenv("DATABASE_URL", "")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )
