"""
Authentication-related FastAPI routes (router-only module).

Why:
    Keep login, callback and logout in one router. The routes import the
    active `main` module inside functions to share its provider factory, state
    and session stores, and cookie policy; tests monkeypatch those on `main`.

Flow:
    /auth/login -> provider authorize URL (PKCE) -> /auth/callback -> callback
    handler -> browser session cookie -> 302 to the resolved destination.
    POST /login (email/password) ends the same way, with a 303.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode
import logging
import re

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import ValidationError

from components import CallbackStatusCard, Layout, LoginCard, LogoutSuccessCard
from identity_access.callback import (
    CallbackOutcome,
    CallbackParams,
    CallbackStatus,
    LOADING_MESSAGE,
    OAuthCallbackHandler,
)
from identity_access.domain import LOGIN_ROUTE, ONBOARDING_ROUTE, Identity, default_route_for_role, needs_onboarding
from identity_access.onboarding import is_safe_next
from identity_access.redirects import TIMEOUT_REDIRECT_DELAY_SECONDS, RedirectContext, resolve_destination
from identity_access.session import AuthStateStore
from identity_access.supabase_auth import SupabaseAuthClient
from models.auth import CallbackRelayForm, LoginForm

from .security import hostport_from_url, is_same_origin, request_app_base

try:
    from ..auth_utils import clear_session_cookie, session_id_from_request
except ImportError:  # pragma: no cover - flat layout
    from auth_utils import clear_session_cookie, session_id_from_request


auth_router = APIRouter(tags=["Auth"])
logger = logging.getLogger("pds.web.auth")

NO_STORE = {"Cache-Control": "private, no-store"}
PROVIDER_PATTERN = re.compile(r"^[a-z][a-z0-9_]{1,31}$")
CALLBACK_SCRIPT = "/static/js/auth_callback.js"
MISSING_CREDENTIALS_MESSAGE = "Please enter your email and password."


def _resolve_active_main(request: Request):
    """Return the main module whose `app` serves this request.

    Tests may import the app as either `main` or `backend.web.main`.
    """
    import sys as _sys

    candidates = [m for m in (_sys.modules.get("main"), _sys.modules.get("backend.web.main")) if m]
    for m in candidates:
        if getattr(m, "app", None) is getattr(request, "app", None):
            return m
    if candidates:
        return candidates[0]
    import main as mod  # type: ignore  # pragma: no cover

    return mod


def _safe_redirect(value: Optional[str]) -> Optional[str]:
    return value if is_safe_next(value) else None


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


def _callback_redirect_uri(request: Request, configured: str) -> str:
    """Callback URL on the current host when it is the configured app host.

    Prevents Host-header spoofing from steering the provider redirect.
    """
    import os

    dynamic = f"{request_app_base(request).rstrip('/')}/auth/callback"
    allowed_base = (os.getenv("WEB_BASE") or configured).rstrip("/")
    return dynamic if hostport_from_url(dynamic) == hostport_from_url(allowed_base) else configured


def _page(request: Request, title: str, content: str, *, status_code: int = 200, refresh: Optional[tuple[float, str]] = None, scripts: tuple[str, ...] = ()) -> HTMLResponse:
    headers = dict(NO_STORE)
    if refresh is not None:
        headers["Refresh"] = f"{refresh[0]:g}; url={refresh[1]}"
    layout = Layout(
        title=title,
        content=content,
        show_nav=False,
        current_path=request.url.path,
        refresh_after=refresh[0] if refresh else None,
        refresh_url=refresh[1] if refresh else None,
        scripts=scripts,
    )
    return HTMLResponse(content=layout.render(), status_code=status_code, headers=headers)


# --- Login ------------------------------------------------------------------------


@auth_router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, redirect: str | None = None, error: str | None = None):
    """Login page; signed-in visitors are sent straight to their landing route."""
    mod = _resolve_active_main(request)
    sid = session_id_from_request(request)
    rec = mod.SESSION_STORE.get(sid) if sid else None
    if rec is not None:
        identity = rec.identity
        dest = ONBOARDING_ROUTE if needs_onboarding(identity) else default_route_for_role(identity.role)
        return RedirectResponse(url=dest, status_code=302, headers=dict(NO_STORE))
    available = mod.SUPABASE_CFG is not None
    card = LoginCard(available=available, redirect=_safe_redirect(redirect), error=(error or None) and error[:200])
    return _page(request, "Sign in", card.render(), status_code=200 if available else 503)


@auth_router.post("/login")
async def login_submit(request: Request):
    """
    Email/password sign-in (form post, PRG).

    Behavior:
        - Same-origin only.
        - Rejected credentials or a missing PDS profile re-render the login
          card with the message (400). The email is prefilled, the password never.
        - Success: 303 to onboarding for incomplete parents, else to the role
          dashboard (or the validated `redirect`), with the session cookie.
    """
    mod = _resolve_active_main(request)
    if not is_same_origin(request):
        return JSONResponse({"error": "csrf_violation"}, status_code=403, headers=dict(NO_STORE))
    form_data = await request.form()
    raw = {k: v for k, v in form_data.items() if isinstance(v, str)}
    redirect = _safe_redirect(raw.get("redirect"))
    if mod.SUPABASE_CFG is None:
        card = LoginCard(available=False, redirect=redirect)
        return _page(request, "Sign in", card.render(), status_code=503)
    try:
        form = LoginForm(**raw)
    except ValidationError:
        card = LoginCard(redirect=redirect, error=MISSING_CREDENTIALS_MESSAGE, email=(raw.get("email") or "")[:254])
        return _page(request, "Sign in", card.render(), status_code=400)

    sid = session_id_from_request(request)
    existing = mod.SESSION_STORE.get(sid) if sid else None
    provider = mod.make_auth_client(session=mod.session_from_record(existing))
    state = AuthStateStore(provider)
    try:
        result = await state.sign_in_with_password(form.email, form.password)
    finally:
        state.close()
    if not result.success:
        card = LoginCard(redirect=redirect, error=result.error or "Login failed", email=form.email)
        return _page(request, "Sign in", card.render(), status_code=400)

    identity = result.identity
    dest = resolve_destination(identity, RedirectContext()).route or default_route_for_role(identity.role)
    logger.info("Password sign-in succeeded (role=%s)", identity.role)
    return _complete_login(mod, identity, dest, provider, existing, redirect=redirect, status_code=303)


@auth_router.get("/auth/login")
async def auth_login(request: Request, redirect: str | None = None, signup: str | None = None, provider: str | None = None):
    """
    Start the provider login with PKCE and server-side state.

    Behavior:
        - Generates code_verifier + S256 code_challenge and stores the verifier
          with the validated in-app `redirect` and the signup intent.
        - The provider does not echo an OAuth `state`, so the opaque state id
          travels in the callback URL (`redirect_to`).
        - Responds 302 with `private, no-store`.
    """
    mod = _resolve_active_main(request)
    if mod.SUPABASE_CFG is None:
        logger.error("Login requested but identity provider is not configured")
        return RedirectResponse(url=LOGIN_ROUTE, status_code=302, headers=dict(NO_STORE))
    provider_name = provider if provider and PROVIDER_PATTERN.match(provider) else "google"
    signup_intent = _truthy(signup)

    code_verifier = SupabaseAuthClient.generate_code_verifier()
    code_challenge = SupabaseAuthClient.code_challenge_s256(code_verifier)
    rec = mod.STATE_STORE.create(code_verifier=code_verifier, redirect=_safe_redirect(redirect), signup=signup_intent)

    callback_query = {"state": rec.state}
    if signup_intent:
        callback_query["signup"] = "true"
    callback_uri = _callback_redirect_uri(request, mod.SUPABASE_CFG.redirect_uri)
    client = mod.make_auth_client()
    url = client.build_authorization_url(
        code_challenge=code_challenge,
        redirect_to=f"{callback_uri}?{urlencode(callback_query)}",
        provider=provider_name,
    )
    logger.info("Login started (provider=%s, signup=%s)", provider_name, signup_intent)
    return RedirectResponse(url=url, status_code=302, headers=dict(NO_STORE))


# --- Callback ---------------------------------------------------------------------


async def _run_callback(mod, request: Request, params: CallbackParams, *, redirect: Optional[str] = None) -> Response:
    """Drive the callback handler and turn its outcome into an HTTP response."""
    sid = session_id_from_request(request)
    existing = mod.SESSION_STORE.get(sid) if sid else None
    provider = mod.make_auth_client(session=mod.session_from_record(existing))
    state = AuthStateStore(provider)
    handler = OAuthCallbackHandler(provider, state, identity_timeout=mod.identity_timeout_seconds())
    try:
        outcome = await handler.handle(params)
    finally:
        handler.close()
        state.close()

    if outcome.status is CallbackStatus.SUCCESS and outcome.identity is not None:
        dest = outcome.redirect_to or default_route_for_role(outcome.identity.role)
        return _complete_login(mod, outcome.identity, dest, provider, existing, redirect=redirect)
    return _error_page(request, outcome, unavailable=provider is None)


def _complete_login(
    mod,
    identity: Identity,
    dest: str,
    provider,
    existing,
    *,
    redirect: Optional[str],
    status_code: int = 302,
) -> Response:
    """Persist the browser session and redirect to `dest`."""
    session = getattr(provider, "current_session", None)
    access_token = getattr(session, "access_token", None)
    refresh_token = getattr(session, "refresh_token", None)
    token_expires_at = getattr(session, "expires_at", None)

    rec = None
    if existing is not None and existing.user_id == identity.id:
        rec = mod.SESSION_STORE.update_identity(
            existing.session_id,
            identity,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=token_expires_at,
        )
    if rec is None:
        if existing is not None:
            mod.SESSION_STORE.delete(existing.session_id)
        rec = mod.SESSION_STORE.create(
            identity=identity,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=token_expires_at,
        )

    # A stored in-app target only replaces the role dashboard, never onboarding.
    if redirect and dest == default_route_for_role(identity.role):
        dest = redirect
    # Published so the onboarding gate does not overrule this redirect.
    mod.NAV_INTENTS.begin(rec.session_id, dest)

    resp = RedirectResponse(url=dest, status_code=status_code, headers=dict(NO_STORE))
    max_age = rec.ttl_seconds if mod.SETTINGS.environment == "prod" else None
    mod._set_session_cookie(resp, rec.session_id, max_age=max_age)
    return resp


def _error_page(request: Request, outcome: CallbackOutcome, *, unavailable: bool) -> Response:
    target = outcome.redirect_to or LOGIN_ROUTE
    card = CallbackStatusCard(outcome.status.value, outcome.message, redirect_to=target)
    status_code = 503 if unavailable else 400
    return _page(request, "Sign-in failed", card.render(), status_code=status_code, refresh=(outcome.redirect_after, target))


@auth_router.get("/auth/callback")
async def auth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    signup: str | None = None,
    step: str | None = None,
):
    """
    Provider callback (authorization code flow).

    Behavior:
        - `error` or `code` present: run the callback handler now.
        - Neither present and no browser session: render the loading card. Its
          script relays URL-fragment tokens (implicit flow) via POST; without
          a fragment it posts an empty form and the server waits for the
          identity (bounded).
        - Success: 302 to the destination with the session cookie.
        - Failure: error card with `Refresh` back to /login.
    """
    mod = _resolve_active_main(request)
    sid = session_id_from_request(request)
    has_session = bool(sid and mod.SESSION_STORE.get(sid))
    signup_flag = _truthy(signup)

    if not code and not error and not has_session and mod.SUPABASE_CFG is not None:
        card = CallbackStatusCard(
            CallbackStatus.LOADING.value,
            LOADING_MESSAGE,
            relay_fragment=True,
            state=state,
            signup=signup_flag,
            step=step if step and step.isdigit() else None,
        )
        # Without JavaScript the relay never fires; fall back to /login.
        fallback_delay = mod.identity_timeout_seconds() + TIMEOUT_REDIRECT_DELAY_SECONDS
        return _page(
            request,
            "Signing in",
            card.render(),
            refresh=(fallback_delay, LOGIN_ROUTE),
            scripts=(CALLBACK_SCRIPT,),
        )

    rec = mod.STATE_STORE.pop_valid(state) if state else None
    params = CallbackParams.from_mappings(
        {
            "code": code or "",
            "error": error or "",
            "error_description": error_description or "",
            "step": step or "",
        },
        code_verifier=rec.code_verifier if rec else None,
        signup=signup_flag or bool(rec and rec.signup),
    )
    return await _run_callback(mod, request, params, redirect=rec.redirect if rec else None)


@auth_router.post("/auth/callback")
async def auth_callback_relay(request: Request):
    """Implicit-flow relay: tokens from the URL fragment, posted by the loading page."""
    mod = _resolve_active_main(request)
    if not is_same_origin(request):
        return JSONResponse({"error": "csrf_violation"}, status_code=403, headers=dict(NO_STORE))
    form_data = await request.form()
    raw = {k: v for k, v in form_data.items() if isinstance(v, str)}
    try:
        form = CallbackRelayForm(**raw)
    except ValidationError:
        return JSONResponse({"error": "invalid_callback_payload"}, status_code=400, headers=dict(NO_STORE))

    rec = mod.STATE_STORE.pop_valid(form.state) if form.state else None
    fragment = {
        "access_token": form.access_token or "",
        "refresh_token": form.refresh_token or "",
        "error": form.error or "",
        "error_description": form.error_description or "",
    }
    params = CallbackParams.from_mappings(
        {"step": form.step or ""},
        fragment,
        signup=form.signup or bool(rec and rec.signup),
    )
    return await _run_callback(mod, request, params, redirect=rec.redirect if rec else None)


# --- Logout -----------------------------------------------------------------------


@auth_router.get("/auth/logout")
async def auth_logout(request: Request, redirect: str | None = None):
    """
    Sign out: revoke the provider session, drop the browser session, clear the cookie.

    Provider errors never block logout; they are logged. Only in-app paths are
    accepted for `redirect`.
    """
    mod = _resolve_active_main(request)
    sid = session_id_from_request(request)
    if sid:
        rec = None
        try:
            rec = mod.SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session lookup failed during logout: %s", exc.__class__.__name__)
        provider = mod.make_auth_client(session=mod.session_from_record(rec))
        if provider is not None and rec is not None:
            err = await provider.sign_out()
            if err is not None:
                logger.warning("Provider sign out failed: %s", err.code or "provider_error")
        try:
            mod.SESSION_STORE.delete(sid)
        except Exception as exc:
            logger.warning("Session delete failed during logout: %s", exc.__class__.__name__)
        mod.NAV_INTENTS.clear(sid)

    dest = _safe_redirect(redirect) or "/auth/logout/success"
    resp = RedirectResponse(url=dest, status_code=302, headers=dict(NO_STORE))
    clear_session_cookie(resp, environment=mod.SETTINGS.environment)
    return resp


@auth_router.get("/auth/logout/success", response_class=HTMLResponse)
async def auth_logout_success(request: Request):
    """Public confirmation page after logout; shows no user data."""
    return _page(request, "Signed out", LogoutSuccessCard().render())


__all__ = ["auth_router"]
