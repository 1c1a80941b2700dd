"""
Onboarding completion gate for protected routes.

Parents without a linked school or without linked children are sent to the
onboarding wizard, from any protected page, on every request. The attempted
path is preserved in `next` so the wizard can return there afterwards.

While a login redirect is still in flight (see `navigation`), the gate defers
and lets that redirect land.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode
import re

from .domain import ONBOARDING_PATHS, ONBOARDING_ROUTE, Identity, needs_onboarding

# Absolute in-app path without scheme/host, double slashes or traversal.
SAFE_NEXT_PATTERN = re.compile(r"^(?!.*//)(?!.*\.\.)/[A-Za-z0-9._\-/]*$")
MAX_NEXT_LEN = 256


@dataclass(frozen=True)
class GateDecision:
    redirect_to: Optional[str] = None
    deferred: bool = False

    @property
    def allowed(self) -> bool:
        return self.redirect_to is None


ALLOW = GateDecision()


def is_safe_next(value: Optional[str]) -> bool:
    if not value or not isinstance(value, str) or len(value) > MAX_NEXT_LEN:
        return False
    return bool(SAFE_NEXT_PATTERN.match(value))


def onboarding_url(next_path: Optional[str] = None) -> str:
    if next_path and next_path != "/" and is_safe_next(next_path) and not is_onboarding_path(next_path):
        return f"{ONBOARDING_ROUTE}?{urlencode({'next': next_path})}"
    return ONBOARDING_ROUTE


def is_onboarding_path(path: str) -> bool:
    """Wizard pages and their sub-resources (e.g. the profile refresh)."""
    return any(path == p or path.startswith(p + "/") for p in ONBOARDING_PATHS)


def evaluate_onboarding_gate(identity: Optional[Identity], path: str, *, navigation_in_flight: bool) -> GateDecision:
    if not needs_onboarding(identity):
        return ALLOW
    if is_onboarding_path(path):
        return ALLOW
    if navigation_in_flight:
        return GateDecision(deferred=True)
    return GateDecision(redirect_to=onboarding_url(path))
