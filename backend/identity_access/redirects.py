"""
Role-based redirect resolution after login.

`resolve_destination` is pure: it looks at the identity and the callback
context and says where the browser should go next, or that it should keep
waiting. It is re-run on every identity change because the identity may show
up after the page has already loaded.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from .domain import LOGIN_ROUTE, ONBOARDING_ROUTE, Identity, default_route_for_role, needs_onboarding

IDENTITY_TIMEOUT_SECONDS = 5.0
TIMEOUT_REDIRECT_DELAY_SECONDS = 2.0
AUTH_FAILED_MESSAGE = "Authentication failed. Please try again."


@dataclass(frozen=True)
class RedirectContext:
    signup_intent: bool = False
    loading: bool = False
    waited: float = 0.0
    identity_timeout: float = IDENTITY_TIMEOUT_SECONDS
    step: Optional[str] = None


@dataclass(frozen=True)
class Destination:
    route: Optional[str]
    failed: bool = False
    message: str = ""
    delay: float = 0.0

    @property
    def waiting(self) -> bool:
        return self.route is None


WAIT = Destination(route=None)


def resolve_destination(identity: Optional[Identity], context: RedirectContext) -> Destination:
    if identity is None:
        if context.loading or context.waited < context.identity_timeout:
            return WAIT
        return Destination(route=LOGIN_ROUTE, failed=True, message=AUTH_FAILED_MESSAGE, delay=TIMEOUT_REDIRECT_DELAY_SECONDS)

    if identity.role == "parent" and (context.signup_intent or needs_onboarding(identity)):
        if context.step and context.step.isdigit():
            return Destination(route=f"{ONBOARDING_ROUTE}?{urlencode({'step': context.step})}")
        return Destination(route=ONBOARDING_ROUTE)

    return Destination(route=default_route_for_role(identity.role))
