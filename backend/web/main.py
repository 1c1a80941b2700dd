"PDS web adapter"
from __future__ import annotations

from pathlib import Path
import os
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from dotenv import load_dotenv

from components import Layout, Component

from identity_access.domain import default_route_for_role, needs_onboarding
from identity_access.navigation import NavigationIntentStore
from identity_access.onboarding import evaluate_onboarding_gate, is_safe_next
from identity_access.provider import AuthSession, AuthUser
from identity_access.redirects import IDENTITY_TIMEOUT_SECONDS
from identity_access.stores import SessionRecord, SessionStore, StateStore
from identity_access.supabase_auth import SupabaseAuthClient, SupabaseAuthConfig
from models.auth import MeResponse
import sys as _sys

try:
    from .auth_utils import SESSION_COOKIE_NAME, session_id_from_request, set_session_cookie
except ImportError:
    from auth_utils import SESSION_COOKIE_NAME, session_id_from_request, set_session_cookie

# Ensure legacy imports consistently reference the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("backend.web.main", _sys.modules[__name__])
elif __name__ == "backend.web.main":
    _sys.modules["main"] = _sys.modules[__name__]


def _under_pytest() -> bool:
    return "pytest" in _sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating the test env.
    - Allow explicit opt-out via PDS_ENABLE_DOTENV (default true outside pytest).
    """
    if _under_pytest():
        return False
    flag = (os.getenv("PDS_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
# Support both "flat" (container) and package (repo test) layouts.
try:
    import config as _cfg  # type: ignore
except ImportError:  # pragma: no cover
    from backend.web import config as _cfg  # type: ignore
_cfg.ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------


class AuthSettings:
    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return os.getenv("PDS_ENV", "dev").lower()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env


logger = logging.getLogger("pds.identity_access")
SETTINGS = AuthSettings()

app = FastAPI(title="PDS", description="Positive Discipline System - identity access", version="0.1.0")

static_dir = Path(__file__).parent / "static"
app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

from routes.auth import auth_router
from routes.parent import parent_router

# --- Identity Provider & Stores -------------------------------------------------


def load_supabase_config() -> Optional[SupabaseAuthConfig]:
    """Provider config from env; None when the deployment is not configured."""
    url = (os.getenv("SUPABASE_URL") or "").strip()
    anon_key = (os.getenv("SUPABASE_ANON_KEY") or "").strip()
    if not url or not anon_key:
        return None
    return SupabaseAuthConfig(
        url=url,
        anon_key=anon_key,
        redirect_uri=os.getenv("REDIRECT_URI", "https://app.localhost/auth/callback"),
        public_url=(os.getenv("SUPABASE_PUBLIC_URL") or "").strip() or None,
        jwt_secret=(os.getenv("SUPABASE_JWT_SECRET") or "").strip() or None,
        profile_table=os.getenv("SUPABASE_PROFILE_TABLE", "user_profiles"),
    )


SUPABASE_CFG = load_supabase_config()


def make_auth_client(session: Optional[AuthSession] = None) -> Optional[SupabaseAuthClient]:
    """One client per request; listeners must never cross browser sessions."""
    if SUPABASE_CFG is None:
        return None
    return SupabaseAuthClient(SUPABASE_CFG, session=session)


def session_from_record(rec: Optional[SessionRecord]) -> Optional[AuthSession]:
    """Provider session equivalent of a stored browser session."""
    if rec is None or not rec.access_token:
        return None
    return AuthSession(
        access_token=rec.access_token,
        refresh_token=rec.refresh_token,
        user=AuthUser(id=rec.user_id, email=rec.email),
        expires_at=rec.token_expires_at,
    )


def identity_timeout_seconds() -> float:
    raw = os.getenv("PDS_IDENTITY_TIMEOUT_SECONDS", "")
    try:
        value = float(raw)
    except ValueError:
        return IDENTITY_TIMEOUT_SECONDS
    return value if value > 0 else IDENTITY_TIMEOUT_SECONDS


STATE_STORE = StateStore()
NAV_INTENTS = NavigationIntentStore()

if (not _under_pytest()) and os.getenv("SESSIONS_BACKEND", "memory").lower() == "db":
    from identity_access.stores_db import DBSessionStore

    SESSION_STORE = DBSessionStore()
else:
    SESSION_STORE = SessionStore()

# --- Auth Helpers & Middleware --------------------------------------------------

NO_STORE = {"Cache-Control": "private, no-store"}


def _set_session_cookie(response: Response, value: str, *, max_age: int | None = None) -> None:
    set_session_cookie(response, value, environment=SETTINGS.environment, max_age=max_age)


def _is_public_path(path: str) -> bool:
    return path.startswith(("/auth/", "/static/")) or path in ("/login", "/health", "/favicon.ico")


def _is_api_path(path: str) -> bool:
    return path.startswith("/api/")


def render_page(
    request: Request,
    layout: Layout,
    *,
    status_code: int = 200,
    headers: dict[str, str] | None = None,
) -> HTMLResponse:
    """Render Layout and return an HTMLResponse.

    Personalized pages default to `private, no-store`.
    """
    response = HTMLResponse(content=layout.render(), status_code=status_code)
    if getattr(request.state, "user", None) and not (headers and "Cache-Control" in headers):
        response.headers["Cache-Control"] = "private, no-store"
    if headers:
        for key, value in headers.items():
            response.headers[key] = value
    return response


def _unavailable_response(request: Request) -> Response:
    """Provider not configured: explain instead of looping through /login."""
    if _is_api_path(request.url.path):
        return JSONResponse({"error": "auth_unavailable"}, status_code=503, headers=NO_STORE)
    content = """
    <section class="auth-card card">
        <h1>Sign-in unavailable</h1>
        <p>The identity provider is not configured. Please contact your school administrator.</p>
    </section>"""
    layout = Layout(title="Sign-in unavailable", content=content, show_nav=False, current_path=request.url.path)
    return render_page(request, layout, status_code=503, headers=dict(NO_STORE))


def _redirect(url: str) -> Response:
    return RedirectResponse(url=url, status_code=302, headers=dict(NO_STORE))


# Registration order matters: the last registered middleware runs first.
# Request flow: security_headers -> auth_enforcement -> onboarding_gate -> route.


@app.middleware("http")
async def onboarding_gate(request: Request, call_next):
    """Send parents with incomplete linkage to the onboarding wizard.

    Evaluated on every protected page request against the live identity. A
    login redirect still in flight for this browser session is left alone.
    """
    identity = getattr(request.state, "identity", None)
    path = request.url.path
    if identity is None or _is_public_path(path) or _is_api_path(path):
        return await call_next(request)
    sid = getattr(request.state, "session_id", None)
    decision = evaluate_onboarding_gate(identity, path, navigation_in_flight=NAV_INTENTS.is_active(sid))
    if decision.deferred:
        logger.debug("Onboarding gate deferred to in-flight navigation")
    if decision.redirect_to:
        return _redirect(decision.redirect_to)
    return await call_next(request)


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    sid = session_id_from_request(request)
    rec = None
    if sid:
        try:
            rec = SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)

    if not rec:
        if SUPABASE_CFG is None:
            return _unavailable_response(request)
        if _is_api_path(path):
            headers = {"Vary": "Origin", **NO_STORE}
            return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)
        target = f"/login?redirect={path}" if path != "/" and is_safe_next(path) else "/login"
        return RedirectResponse(url=target, status_code=302, headers=dict(NO_STORE))

    # Minimal, read-only user context for downstream handlers; tokens stay in the store.
    identity = rec.identity
    request.state.identity = identity
    request.state.session_id = rec.session_id
    request.state.user = identity.to_dict()
    return await call_next(request)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    if SETTINGS.environment == "prod":
        # No inline script/style in prod; the callback relay is a static file.
        csp = "default-src 'self'; script-src 'self'; style-src 'self'; img-src 'self' data:; connect-src 'self';"
    else:
        csp = (
            "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data:; connect-src 'self';"
        )
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if SETTINGS.environment == "prod":
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- Pages ----------------------------------------------------------------------

DASHBOARD_ROLES = {
    "/admin": ("admin", "school_admin"),
    "/teacher": ("teacher",),
    "/super-admin": ("super_admin",),
    "/parent": ("parent",),
}


@app.get("/", response_class=HTMLResponse)
async def home(request: Request):
    identity = request.state.identity
    return RedirectResponse(url=default_route_for_role(identity.role), status_code=302, headers=dict(NO_STORE))


def _dashboard(request: Request, path: str, title: str, body: str) -> Response:
    identity = request.state.identity
    if identity.role not in DASHBOARD_ROLES[path]:
        # Wrong dashboard for this role: send the user to their own.
        return _redirect(default_route_for_role(identity.role))
    content = f"""
    <div class="container">
        <h1>{Component.escape(title)}</h1>
        <p>Welcome, {Component.escape(identity.name or identity.email)}.</p>
        {body}
    </div>"""
    layout = Layout(title=title, content=content, user=request.state.user, current_path=path)
    return render_page(request, layout)


@app.get("/super-admin", response_class=HTMLResponse)
async def super_admin_dashboard(request: Request):
    return _dashboard(request, "/super-admin", "Platform Administration", "<p>Manage schools and platform settings.</p>")


@app.get("/admin", response_class=HTMLResponse)
async def admin_dashboard(request: Request):
    return _dashboard(request, "/admin", "Administration", "<p>Manage staff, classes and behaviour settings.</p>")


@app.get("/teacher", response_class=HTMLResponse)
async def teacher_dashboard(request: Request):
    return _dashboard(request, "/teacher", "Teacher Dashboard", "<p>Record merits, incidents and detentions.</p>")


@app.get("/parent", response_class=HTMLResponse)
async def parent_dashboard(request: Request):
    identity = request.state.identity
    children = len(identity.children)
    body = f"<p>You are linked to {children} child{'ren' if children != 1 else ''}.</p>"
    return _dashboard(request, "/parent", "Parent Portal", body)


@app.get("/api/me")
async def get_me(request: Request):
    sid = getattr(request.state, "session_id", None)
    rec = SESSION_STORE.get(sid) if sid else None
    if not rec:
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=dict(NO_STORE))
    payload = MeResponse.from_record(rec, onboarding_required=needs_onboarding(rec.identity))
    return JSONResponse(payload.model_dump(), headers=dict(NO_STORE))


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    status = "healthy" if SUPABASE_CFG is not None else "degraded"
    return JSONResponse({"status": status, "identity_provider": SUPABASE_CFG is not None}, headers=dict(NO_STORE))


app.include_router(auth_router)
app.include_router(parent_router)
