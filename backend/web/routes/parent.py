"""
Parent onboarding routes.

The wizard itself is exempt from the onboarding gate. Completeness is always
derived from the live identity: the refresh endpoint re-reads the profile from
the provider and updates the browser session before deciding where to go.
"""

from __future__ import annotations

from typing import Optional
import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import ValidationError
from urllib.parse import urlencode

from components import Layout, OnboardingCard
from components.cards import clamp_step
from identity_access.domain import ONBOARDING_ROUTE, default_route_for_role, needs_onboarding
from identity_access.onboarding import is_onboarding_path, is_safe_next
from models.auth import OnboardingRefreshForm

from .auth import _resolve_active_main
from .security import is_same_origin

parent_router = APIRouter(tags=["Parent"])
logger = logging.getLogger("pds.web.auth")

NO_STORE = {"Cache-Control": "private, no-store"}
INCOMPLETE_NOTICE = "Your school and child links are not complete yet."


def _safe_next(value: Optional[str]) -> Optional[str]:
    if value and value != "/" and is_safe_next(value) and not is_onboarding_path(value):
        return value
    return None


@parent_router.get("/parent/onboarding", response_class=HTMLResponse)
async def parent_onboarding(request: Request, step: str | None = None, next: str | None = None, incomplete: str | None = None):
    """Onboarding wizard; completed parents continue to `next` or their dashboard."""
    mod = _resolve_active_main(request)
    identity = request.state.identity
    if identity.role != "parent":
        return RedirectResponse(url=default_route_for_role(identity.role), status_code=302, headers=dict(NO_STORE))
    next_path = _safe_next(next)
    if not needs_onboarding(identity) and step is None:
        return RedirectResponse(url=next_path or "/parent", status_code=302, headers=dict(NO_STORE))
    card = OnboardingCard(
        step=clamp_step(step),
        has_school=bool(identity.school_id),
        has_child=bool(identity.children),
        next_path=next_path,
        name=identity.name,
        notice=INCOMPLETE_NOTICE if incomplete else None,
    )
    layout = Layout(title="Welcome", content=card.render(), user=request.state.user, current_path=ONBOARDING_ROUTE)
    return mod.render_page(request, layout)


@parent_router.post("/parent/onboarding/refresh")
async def parent_onboarding_refresh(request: Request):
    """
    Re-read the live profile after linking a school or child.

    Behavior:
        - Loads the profile with the session's access token; on failure tries
          one token refresh.
        - Stores the new identity on the browser session.
        - Complete: 303 to the safe `next` path or `/parent`. Otherwise 303
          back to the wizard with an "incomplete" notice.
    """
    mod = _resolve_active_main(request)
    if not is_same_origin(request):
        return JSONResponse({"error": "csrf_violation"}, status_code=403, headers=dict(NO_STORE))
    form_data = await request.form()
    try:
        form = OnboardingRefreshForm(**{k: v for k, v in form_data.items() if isinstance(v, str)})
    except ValidationError:
        return JSONResponse({"error": "invalid_payload"}, status_code=400, headers=dict(NO_STORE))

    sid = request.state.session_id
    rec = mod.SESSION_STORE.get(sid)
    identity = request.state.identity
    provider = mod.make_auth_client(session=mod.session_from_record(rec))
    if provider is not None and provider.current_session is not None:
        fresh = await provider.load_identity(provider.current_session)
        if fresh is None:
            refreshed = await provider.refresh_session()
            if refreshed.session is not None:
                fresh = await provider.load_identity(refreshed.session)
        if fresh is not None:
            session = provider.current_session
            mod.SESSION_STORE.update_identity(
                sid,
                fresh,
                access_token=getattr(session, "access_token", None),
                refresh_token=getattr(session, "refresh_token", None),
                token_expires_at=getattr(session, "expires_at", None),
            )
            identity = fresh
        else:
            logger.warning("Onboarding refresh could not reload the profile")

    next_path = _safe_next(form.next)
    if not needs_onboarding(identity):
        return RedirectResponse(url=next_path or "/parent", status_code=303, headers=dict(NO_STORE))
    query = {"incomplete": "1"}
    if form.step and form.step.isdigit():
        query["step"] = form.step
    if next_path:
        query["next"] = next_path
    return RedirectResponse(url=f"{ONBOARDING_ROUTE}?{urlencode(query)}", status_code=303, headers=dict(NO_STORE))
