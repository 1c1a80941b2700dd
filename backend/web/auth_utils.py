"""
Shared authentication utilities for the web adapter.

Why:
    The session cookie is set by the callback and cleared by logout, which
    live in different modules. One helper keeps the flags identical.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request, Response

SESSION_COOKIE_NAME = "pds_session"


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    SameSite=Lax so the cookie is sent on the top-level redirect back from the
    identity provider; Strict would drop it on that cross-site navigation.
    """
    return {"secure": True, "samesite": "lax"}


def set_session_cookie(response: Response, value: str, *, environment: str, max_age: Optional[int] = None) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=max_age,
    )


def clear_session_cookie(response: Response, *, environment: str) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value="",
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        expires=0,
        max_age=0,
    )


def session_id_from_request(request: Request) -> Optional[str]:
    """Opaque session id from the cookie, with a raw header fallback."""
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    if sid:
        return sid
    for part in (request.headers.get("cookie") or "").split(";"):
        part = part.strip()
        if part.startswith(f"{SESSION_COOKIE_NAME}="):
            return part.split("=", 1)[1] or None
    return None
