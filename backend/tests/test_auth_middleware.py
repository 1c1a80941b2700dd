"""
Tests for authentication-enforcing middleware and role dashboards.

Requirements:
- HTML requests without session -> 302 to /login (attempted path preserved)
- JSON/API requests without session -> 401 JSON
- Unconfigured provider -> 503 explanation instead of a login loop
- Allowlist: /auth/*, /login, /health, /static/* are not redirected
- Wrong dashboard for the role -> redirect to the caller's own dashboard
"""

import httpx
import pytest
from httpx import ASGITransport

import main  # type: ignore

from utils.fake_provider import make_identity


pytestmark = pytest.mark.anyio("asyncio")


def _client(sid: str | None = None):
    client = httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")
    if sid:
        client.cookies.set("pds_session", sid)
    return client


def _login(role: str, **overrides) -> str:
    return main.SESSION_STORE.create(identity=make_identity(role, **overrides), access_token="at").session_id


@pytest.mark.anyio
async def test_html_request_without_session_redirects_to_login(configure_provider):
    configure_provider()
    async with _client() as client:
        r_root = await client.get("/", follow_redirects=False)
        r_page = await client.get("/teacher", follow_redirects=False)
    assert r_root.status_code == 302
    assert r_root.headers["location"] == "/login"
    assert r_page.headers["location"] == "/login?redirect=/teacher"
    assert r_page.headers["Cache-Control"] == "private, no-store"


@pytest.mark.anyio
async def test_json_request_without_session_returns_401(configure_provider):
    configure_provider()
    async with _client() as client:
        r = await client.get("/api/me")
    assert r.status_code == 401
    assert r.json() == {"error": "unauthenticated"}
    assert r.headers["Cache-Control"] == "private, no-store"


@pytest.mark.anyio
async def test_unconfigured_provider_returns_503_not_a_login_loop():
    async with _client() as client:
        r_html = await client.get("/teacher", follow_redirects=False)
        r_api = await client.get("/api/me")
    assert r_html.status_code == 503
    assert "Sign-in unavailable" in r_html.text
    assert r_api.status_code == 503
    assert r_api.json() == {"error": "auth_unavailable"}


@pytest.mark.anyio
async def test_allowlist_paths_not_redirected():
    async with _client() as client:
        r_health = await client.get("/health")
        r_static = await client.get("/static/js/auth_callback.js", follow_redirects=False)
        r_logout_ok = await client.get("/auth/logout/success")
        r_favicon = await client.get("/favicon.ico", follow_redirects=False)
    assert r_health.status_code == 200
    assert r_health.json() == {"status": "degraded", "identity_provider": False}
    assert r_static.status_code == 200
    assert r_logout_ok.status_code == 200
    assert r_favicon.status_code != 302


@pytest.mark.anyio
async def test_health_reports_healthy_when_configured(configure_provider):
    configure_provider()
    async with _client() as client:
        r = await client.get("/health")
    assert r.json() == {"status": "healthy", "identity_provider": True}


@pytest.mark.anyio
@pytest.mark.parametrize(
    "role, path",
    [("teacher", "/teacher"), ("admin", "/admin"), ("school_admin", "/admin"), ("super_admin", "/super-admin"), ("parent", "/parent")],
)
async def test_dashboards_render_for_their_roles(configure_provider, role, path):
    configure_provider()
    async with _client(_login(role)) as client:
        r_root = await client.get("/", follow_redirects=False)
        r_page = await client.get(path)
    assert r_root.headers["location"] == path
    assert r_page.status_code == 200
    assert r_page.headers["Cache-Control"] == "private, no-store"
    assert "Sign out" in r_page.text or "/auth/logout" in r_page.text


@pytest.mark.anyio
async def test_role_mismatch_redirects_to_own_dashboard(configure_provider):
    configure_provider()
    async with _client(_login("teacher")) as client:
        r_admin = await client.get("/admin", follow_redirects=False)
        r_parent = await client.get("/parent", follow_redirects=False)
    assert r_admin.status_code == 302 and r_admin.headers["location"] == "/teacher"
    assert r_parent.headers["location"] == "/teacher"


@pytest.mark.anyio
async def test_xhr_style_headers_get_plain_redirects(configure_provider):
    configure_provider()
    async with _client() as client:
        r = await client.get("/parent", headers={"HX-Request": "true"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/login?redirect=/parent"
    assert "HX-Redirect" not in r.headers


@pytest.mark.anyio
async def test_unknown_session_id_is_treated_as_anonymous(configure_provider):
    configure_provider()
    async with _client("does-not-exist") as client:
        r = await client.get("/teacher", follow_redirects=False)
    assert r.headers["location"] == "/login?redirect=/teacher"


@pytest.mark.anyio
async def test_api_me_returns_snapshot_without_tokens(configure_provider):
    configure_provider()
    sid = _login("parent", children=())
    async with _client(sid) as client:
        r = await client.get("/api/me")
    assert r.status_code == 200
    body = r.json()
    assert body["user"]["role"] == "parent"
    assert body["user"]["onboarding_required"] is True
    assert body["expires_at"]
    assert "access_token" not in r.text
