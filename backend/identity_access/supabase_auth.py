"""
Minimal Supabase Auth client for the PDS identity flow.

Why: Keep web framework independent identity logic in a separate module. The
web adapter (FastAPI) creates one client per request, seeds it with the
browser's existing session (if any), and lets the callback handler drive it.

Security: Uses PKCE (S256); the caller stores the code_verifier server-side
(see `stores.StateStore`). Tokens relayed from the browser are verified
locally before the provider is asked for the user.

Behavior: Like the provider's browser SDK, the client notifies subscribers
(`on_auth_state_change`) whenever its session changes. Notifications are
awaited before the triggering call returns.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode
import asyncio
import base64
import hashlib
import logging
import os
import time

# Small indirection to ease monkeypatching in tests
import requests as http

from .domain import Identity
from .provider import AuthError, AuthEvent, AuthResult, AuthSession, AuthStateListener, AuthUser
from .tokens import AccessTokenVerificationError, verify_access_token

logger = logging.getLogger("pds.identity_access")

HTTP_TIMEOUT_SECONDS = 5
PROFILE_COLUMNS = "id,email,name,role,school_id,children"
UNREACHABLE_MESSAGE = "The sign-in service is currently unreachable. Please try again."


def http_post(url: str, json: Dict[str, Any] | None, headers: Dict[str, str]):
    return http.post(url, json=json, headers=headers, timeout=HTTP_TIMEOUT_SECONDS)


def http_get(url: str, params: Dict[str, str] | None, headers: Dict[str, str]):
    return http.get(url, params=params, headers=headers, timeout=HTTP_TIMEOUT_SECONDS)


@dataclass(frozen=True)
class SupabaseAuthConfig:
    url: str  # internal base URL (server-to-server), e.g., http://kong:8000
    anon_key: str  # project anon key, sent as `apikey`
    redirect_uri: str  # e.g., https://app.localhost/auth/callback
    public_url: str | None = None  # browser-facing URL, e.g., https://db.pds.example
    jwt_secret: str | None = None  # legacy HS256 secret; JWKS is used when unset
    profile_table: str = "user_profiles"
    verify_tokens: bool = True

    @property
    def authorize_endpoint(self) -> str:
        base = (self.public_url or self.url).rstrip("/")
        return f"{base}/auth/v1/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.url.rstrip('/')}/auth/v1/token"

    @property
    def user_endpoint(self) -> str:
        return f"{self.url.rstrip('/')}/auth/v1/user"

    @property
    def logout_endpoint(self) -> str:
        return f"{self.url.rstrip('/')}/auth/v1/logout"

    @property
    def jwks_endpoint(self) -> str:
        return f"{self.url.rstrip('/')}/auth/v1/.well-known/jwks.json"

    @property
    def issuer(self) -> str:
        # Tokens carry the browser-facing issuer when a public URL is configured
        return f"{(self.public_url or self.url).rstrip('/')}/auth/v1"

    def profile_endpoint(self) -> str:
        return f"{self.url.rstrip('/')}/rest/v1/{self.profile_table}"


class SupabaseAuthClient:
    def __init__(self, config: SupabaseAuthConfig, session: Optional[AuthSession] = None):
        self.cfg = config
        self._session = session
        self._listeners: List[AuthStateListener] = []

    @property
    def current_session(self) -> Optional[AuthSession]:
        return self._session

    # --- PKCE helpers ------------------------------------------------------

    @staticmethod
    def generate_code_verifier(length: int = 64) -> str:
        """Generate a high-entropy URL-safe code_verifier.

        Note: RFC suggests length between 43 and 128 characters.
        """
        return base64.urlsafe_b64encode(os.urandom(length)).decode("ascii").rstrip("=")

    @staticmethod
    def code_challenge_s256(code_verifier: str) -> str:
        """Derive S256 code challenge from verifier."""
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    def build_authorization_url(self, *, code_challenge: str, redirect_to: str | None = None, provider: str = "google") -> str:
        """Return the authorize URL that starts a third-party login.

        Parameters
        - code_challenge: The S256 code challenge derived from the verifier
        - redirect_to: Callback URL including our opaque `state` query value
        - provider: External provider configured in Supabase (default: google)
        """
        params = {
            "provider": provider,
            "redirect_to": redirect_to or self.cfg.redirect_uri,
            "code_challenge": code_challenge,
            "code_challenge_method": "s256",
        }
        return f"{self.cfg.authorize_endpoint}?{urlencode(params)}"

    # --- Subscriptions -----------------------------------------------------

    def on_auth_state_change(self, listener: AuthStateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, session)
            except Exception as exc:
                logger.warning("Auth state listener failed: %s", exc.__class__.__name__)

    # --- Provider calls ----------------------------------------------------

    def _headers(self, access_token: str | None = None) -> Dict[str, str]:
        headers = {"apikey": self.cfg.anon_key, "Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def exchange_code_for_session(self, code: str, code_verifier: Optional[str] = None) -> AuthResult:
        """Exchange an authorization code (PKCE) for a session."""
        if not code_verifier:
            # Unknown or already consumed state; the provider would reject it anyway.
            return AuthResult(error=AuthError("Invalid or expired sign-in link. Please try again.", code="invalid_flow_state"))
        url = f"{self.cfg.token_endpoint}?grant_type=pkce"
        try:
            resp = await asyncio.to_thread(
                http_post, url, {"auth_code": code, "code_verifier": code_verifier}, self._headers()
            )
        except http.RequestException as exc:
            logger.warning("Code exchange request failed: %s", exc.__class__.__name__)
            return AuthResult(error=AuthError(UNREACHABLE_MESSAGE, code="provider_unreachable"))
        if resp.status_code != 200:
            return AuthResult(error=_error_from_response(resp))
        session = _session_from_payload(_json_or_empty(resp))
        if session is None:
            return AuthResult(error=AuthError("Authentication failed", code="invalid_session_payload"))
        self._session = session
        await self._emit(AuthEvent.SIGNED_IN, session)
        return AuthResult(session=session)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        """Email/password sign-in (`grant_type=password`); emits SIGNED_IN."""
        url = f"{self.cfg.token_endpoint}?grant_type=password"
        body = {"email": email.strip().lower(), "password": password}
        try:
            resp = await asyncio.to_thread(http_post, url, body, self._headers())
        except http.RequestException as exc:
            logger.warning("Password sign-in request failed: %s", exc.__class__.__name__)
            return AuthResult(error=AuthError(UNREACHABLE_MESSAGE, code="provider_unreachable"))
        if resp.status_code != 200:
            return AuthResult(error=_error_from_response(resp))
        session = _session_from_payload(_json_or_empty(resp))
        if session is None:
            return AuthResult(error=AuthError("No user returned from authentication", code="invalid_session_payload"))
        self._session = session
        await self._emit(AuthEvent.SIGNED_IN, session)
        return AuthResult(session=session)

    async def get_session(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None) -> AuthResult:
        """Return the current session, or adopt one from relayed tokens.

        Without tokens this never calls the provider; it reports whatever
        session the client was seeded with or obtained earlier.
        """
        if not access_token:
            return AuthResult(session=self._session)

        claims: Dict[str, object] = {}
        if self.cfg.verify_tokens:
            try:
                claims = await asyncio.to_thread(verify_access_token, access_token=access_token, cfg=self.cfg)
            except AccessTokenVerificationError as exc:
                logger.warning("Access token verification failed: %s", exc.code)
                return AuthResult(error=AuthError("Invalid or expired session. Please sign in again.", code=exc.code))

        try:
            resp = await asyncio.to_thread(http_get, self.cfg.user_endpoint, None, self._headers(access_token))
        except http.RequestException as exc:
            logger.warning("User lookup request failed: %s", exc.__class__.__name__)
            return AuthResult(error=AuthError(UNREACHABLE_MESSAGE, code="provider_unreachable"))
        if resp.status_code != 200:
            return AuthResult(error=_error_from_response(resp))
        user = _user_from_payload(_json_or_empty(resp))
        if user is None:
            return AuthResult(error=AuthError("Authentication failed", code="invalid_user_payload"))
        exp = claims.get("exp")
        session = AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            user=user,
            expires_at=int(exp) if isinstance(exp, (int, float)) else None,
        )
        self._session = session
        await self._emit(AuthEvent.SIGNED_IN, session)
        return AuthResult(session=session)

    async def refresh_session(self) -> AuthResult:
        """Trade the refresh token for a new session (TOKEN_REFRESHED)."""
        current = self._session
        if current is None or not current.refresh_token:
            return AuthResult(error=AuthError("Session expired. Please sign in again.", code="no_refresh_token"))
        url = f"{self.cfg.token_endpoint}?grant_type=refresh_token"
        try:
            resp = await asyncio.to_thread(http_post, url, {"refresh_token": current.refresh_token}, self._headers())
        except http.RequestException as exc:
            logger.warning("Token refresh request failed: %s", exc.__class__.__name__)
            return AuthResult(error=AuthError(UNREACHABLE_MESSAGE, code="provider_unreachable"))
        if resp.status_code != 200:
            return AuthResult(error=_error_from_response(resp))
        session = _session_from_payload(_json_or_empty(resp))
        if session is None:
            return AuthResult(error=AuthError("Authentication failed", code="invalid_session_payload"))
        self._session = session
        await self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return AuthResult(session=session)

    async def load_identity(self, session: AuthSession) -> Optional[Identity]:
        """Fetch the PDS profile row for the session user.

        Returns None when the row is missing, the role is not allowed, or the
        profile endpoint fails. Callers treat None as "not provisioned".
        """
        params = {"id": f"eq.{session.user.id}", "select": PROFILE_COLUMNS}
        try:
            resp = await asyncio.to_thread(http_get, self.cfg.profile_endpoint(), params, self._headers(session.access_token))
        except http.RequestException as exc:
            logger.warning("Profile lookup request failed: %s", exc.__class__.__name__)
            return None
        if resp.status_code != 200:
            logger.warning("Profile lookup failed: status=%s", resp.status_code)
            return None
        rows = _json_or_empty(resp)
        if isinstance(rows, dict):
            rows = [rows]
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            return None
        user = {"id": session.user.id, "email": session.user.email}
        identity = Identity.from_profile(user, rows[0])
        if identity is None:
            logger.warning("Profile rejected: invalid role")
        return identity

    async def sign_out(self) -> Optional[AuthError]:
        """Revoke the current session at the provider (best-effort)."""
        current = self._session
        self._session = None
        error: Optional[AuthError] = None
        if current is not None:
            try:
                resp = await asyncio.to_thread(http_post, self.cfg.logout_endpoint, None, self._headers(current.access_token))
                if resp.status_code not in (200, 204, 401, 404):
                    error = _error_from_response(resp)
            except http.RequestException as exc:
                logger.warning("Sign out request failed: %s", exc.__class__.__name__)
                error = AuthError(UNREACHABLE_MESSAGE, code="provider_unreachable")
        await self._emit(AuthEvent.SIGNED_OUT, None)
        return error


def _json_or_empty(resp: Any) -> Any:
    try:
        return resp.json()
    except ValueError:
        return {}


def _error_from_response(resp: Any) -> AuthError:
    """Build an AuthError from a GoTrue error body.

    GoTrue answers either `{"error", "error_description"}` (OAuth style) or
    `{"code", "error_code", "msg"}`; prefer the human readable field.
    """
    body = _json_or_empty(resp)
    if not isinstance(body, dict):
        body = {}
    message = body.get("msg") or body.get("error_description") or body.get("message") or body.get("error")
    code = body.get("error_code") or body.get("error")
    return AuthError(
        message=str(message) if message else "Authentication failed",
        status=getattr(resp, "status_code", None),
        code=str(code) if code else None,
    )


def _user_from_payload(payload: Any) -> Optional[AuthUser]:
    if not isinstance(payload, dict) or not payload.get("id"):
        return None
    metadata = payload.get("user_metadata")
    return AuthUser(
        id=str(payload["id"]),
        email=str(payload.get("email") or ""),
        metadata=metadata if isinstance(metadata, dict) else {},
    )


def _session_from_payload(payload: Any) -> Optional[AuthSession]:
    if not isinstance(payload, dict):
        return None
    access_token = payload.get("access_token")
    user = _user_from_payload(payload.get("user"))
    if not access_token or user is None:
        return None
    expires_at = payload.get("expires_at")
    if not isinstance(expires_at, (int, float)):
        expires_in = payload.get("expires_in")
        expires_at = int(time.time()) + int(expires_in) if isinstance(expires_in, (int, float)) else None
    return AuthSession(
        access_token=str(access_token),
        refresh_token=payload.get("refresh_token"),
        user=user,
        expires_at=int(expires_at) if expires_at is not None else None,
    )
