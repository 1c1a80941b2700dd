"""
Security headers and cookie flags.
"""

import httpx
import pytest
from httpx import ASGITransport

import main  # type: ignore
from auth_utils import cookie_opts  # type: ignore

from utils.fake_provider import FakeProvider, make_identity


pytestmark = pytest.mark.anyio("asyncio")


def _client():
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


@pytest.mark.anyio
async def test_baseline_headers_present():
    async with _client() as client:
        r = await client.get("/health")
    assert r.headers["X-Frame-Options"] == "SAMEORIGIN"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
    assert "max-age=31536000" in r.headers["Strict-Transport-Security"]
    assert "default-src 'self'" in r.headers["Content-Security-Policy"]


@pytest.mark.anyio
async def test_prod_csp_forbids_inline_script():
    main.SETTINGS.override_environment("prod")
    async with _client() as client:
        r = await client.get("/login")
    csp = r.headers["Content-Security-Policy"]
    assert "script-src 'self';" in csp
    assert "unsafe-inline" not in csp
    assert r.headers["Cross-Origin-Opener-Policy"] == "same-origin"


def test_cookie_flags_are_hardened_in_every_environment():
    for env in ("dev", "prod"):
        assert cookie_opts(env) == {"secure": True, "samesite": "lax"}


@pytest.mark.anyio
async def test_prod_session_cookie_has_max_age(configure_provider):
    configure_provider(FakeProvider(make_identity("teacher")))
    main.SETTINGS.override_environment("prod")
    state = main.STATE_STORE.create(code_verifier="v").state
    async with _client() as client:
        r = await client.get("/auth/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    cookie = r.headers["set-cookie"]
    assert "Max-Age=3600" in cookie
    assert "HttpOnly" in cookie and "Secure" in cookie
