"""
Identity domain constants and simple helpers.

Why:
- Centralize allowed roles and landing routes to avoid drift between the
  callback flow, the onboarding gate and the web layer.
- Keep exactly one definition of "profile complete" for parents. The login
  flow, the callback flow and the gate all call `needs_onboarding`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"super_admin", "admin", "teacher", "parent", "school_admin"})

LOGIN_ROUTE = "/login"
ONBOARDING_ROUTE = "/parent/onboarding"

# Parent pages that belong to the onboarding wizard itself.
ONBOARDING_PATHS = frozenset({ONBOARDING_ROUTE, "/parent/link-school", "/parent/link-child"})

# Roles whose dashboard is not simply "/{role}".
_DASHBOARD_ALIASES = {"school_admin": "/admin", "super_admin": "/super-admin"}


@dataclass(frozen=True)
class Identity:
    """Read-only snapshot of the authenticated user.

    Built from the provider's user object and the PDS profile row. Owned by the
    identity provider; the application never mutates it, it only replaces it.
    """

    id: str
    email: str
    role: str
    school_id: Optional[str] = None
    children: tuple[str, ...] = field(default_factory=tuple)
    name: str = ""

    @classmethod
    def from_profile(cls, user: Mapping[str, Any], profile: Mapping[str, Any]) -> Optional["Identity"]:
        """Merge provider user + profile row; return None for unknown roles."""
        role = str(profile.get("role") or "").strip().lower()
        if role not in ALLOWED_ROLES:
            return None
        user_id = str(profile.get("id") or user.get("id") or "")
        if not user_id:
            return None
        email = str(profile.get("email") or user.get("email") or "")
        school_id = profile.get("school_id")
        name = profile.get("name") or (email.split("@")[0] if email else "")
        return cls(
            id=user_id,
            email=email,
            role=role,
            school_id=str(school_id) if school_id not in (None, "") else None,
            children=_child_refs(profile.get("children")),
            name=str(name),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "school_id": self.school_id,
            "children": list(self.children),
            "name": self.name,
        }


def _child_refs(raw: object) -> tuple[str, ...]:
    """Normalize the linked-children column into a tuple of ids.

    PostgREST embeds come back as a list of objects (`[{"student_id": 7}]`),
    plain array columns as a list of scalars. Order is preserved.
    """
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        return ()
    refs: list[str] = []
    for item in raw:
        if isinstance(item, Mapping):
            ref = item.get("id") or item.get("student_id")
        else:
            ref = item
        if ref not in (None, ""):
            refs.append(str(ref))
    return tuple(refs)


def needs_onboarding(identity: Optional[Identity]) -> bool:
    """Return True for parents without a linked school or without linked children."""
    if identity is None or identity.role != "parent":
        return False
    return not identity.school_id or len(identity.children) == 0


def default_route_for_role(role: Optional[str]) -> str:
    """Landing dashboard for a role; unknown roles go back to the login page."""
    if not role or role not in ALLOWED_ROLES:
        return LOGIN_ROUTE
    return _DASHBOARD_ALIASES.get(role, f"/{role}")


__all__ = [
    "ALLOWED_ROLES",
    "Identity",
    "LOGIN_ROUTE",
    "ONBOARDING_PATHS",
    "ONBOARDING_ROUTE",
    "default_route_for_role",
    "needs_onboarding",
]
