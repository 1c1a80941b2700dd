"""
Email/password sign-in through the login form.

Requirements:
- Valid credentials -> 303 with the session cookie; incomplete parents land
  on onboarding, everyone else on their dashboard (or the stored redirect).
- Rejected credentials or a missing PDS profile re-render the login card
  (400) without setting a cookie; a missing profile is signed out again.
- Cross-origin posts are rejected; an unconfigured provider answers 503.
"""

import httpx
import pytest
from httpx import ASGITransport

import main  # type: ignore
from identity_access.provider import AuthError

from utils.fake_provider import FakeProvider, make_identity


pytestmark = pytest.mark.anyio("asyncio")


def _client():
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


def _sid(response) -> str:
    return response.headers["set-cookie"].split(";", 1)[0].split("=", 1)[1]


@pytest.mark.anyio
async def test_valid_credentials_sign_in_and_redirect_to_dashboard(configure_provider):
    provider = configure_provider(FakeProvider(make_identity("teacher")))
    async with _client() as client:
        r = await client.post(
            "/login", data={"email": " Teacher@School.example", "password": "pw"}, follow_redirects=False
        )
    assert r.status_code == 303
    assert r.headers["location"] == "/teacher"
    assert r.headers["Cache-Control"] == "private, no-store"
    assert provider.sign_in_calls == ["teacher@school.example"]
    sid = _sid(r)
    rec = main.SESSION_STORE.get(sid)
    assert rec is not None and rec.role == "teacher" and rec.access_token == "at-password"
    assert main.NAV_INTENTS.is_active(sid)


@pytest.mark.anyio
async def test_incomplete_parent_goes_to_onboarding(configure_provider):
    configure_provider(FakeProvider(make_identity("parent", children=())))
    async with _client() as client:
        r = await client.post(
            "/login",
            data={"email": "parent@school.example", "password": "pw", "redirect": "/parent/reports"},
            follow_redirects=False,
        )
    assert r.status_code == 303
    assert r.headers["location"] == "/parent/onboarding"


@pytest.mark.anyio
async def test_stored_redirect_replaces_dashboard(configure_provider):
    configure_provider(FakeProvider(make_identity("teacher")))
    async with _client() as client:
        r = await client.post(
            "/login",
            data={"email": "teacher@school.example", "password": "pw", "redirect": "/teacher/reports"},
            follow_redirects=False,
        )
    assert r.headers["location"] == "/teacher/reports"


@pytest.mark.anyio
async def test_rejected_credentials_rerender_login_with_message(configure_provider):
    configure_provider(
        FakeProvider(make_identity("teacher"), password_error=AuthError("Invalid login credentials", status=400))
    )
    async with _client() as client:
        r = await client.post(
            "/login", data={"email": "teacher@school.example", "password": "wrong"}, follow_redirects=False
        )
    assert r.status_code == 400
    assert "Invalid login credentials" in r.text
    assert 'value="teacher@school.example"' in r.text
    assert "wrong" not in r.text
    assert "set-cookie" not in r.headers


@pytest.mark.anyio
async def test_missing_profile_is_signed_out_and_reported(configure_provider):
    provider = configure_provider(FakeProvider(None))
    async with _client() as client:
        r = await client.post("/login", data={"email": "ghost@school.example", "password": "pw"}, follow_redirects=False)
    assert r.status_code == 400
    assert "User profile not found. Please contact support." in r.text
    assert provider.sign_out_calls == 1
    assert "set-cookie" not in r.headers


@pytest.mark.anyio
async def test_missing_password_is_rejected_before_provider(configure_provider):
    provider = configure_provider(FakeProvider(make_identity("teacher")))
    async with _client() as client:
        r = await client.post("/login", data={"email": "teacher@school.example", "password": ""}, follow_redirects=False)
    assert r.status_code == 400
    assert "Please enter your email and password." in r.text
    assert provider.sign_in_calls == []


@pytest.mark.anyio
async def test_cross_origin_post_is_rejected(configure_provider):
    provider = configure_provider(FakeProvider(make_identity("teacher")))
    async with _client() as client:
        r = await client.post(
            "/login",
            data={"email": "teacher@school.example", "password": "pw"},
            headers={"Origin": "http://evil.example"},
            follow_redirects=False,
        )
    assert r.status_code == 403
    assert r.json() == {"error": "csrf_violation"}
    assert provider.sign_in_calls == []


@pytest.mark.anyio
async def test_unconfigured_provider_answers_503():
    async with _client() as client:
        r = await client.post("/login", data={"email": "a@b.c", "password": "pw"}, follow_redirects=False)
    assert r.status_code == 503
    assert "identity provider is not configured" in r.text
