"""
Identity provider port.

Why: The callback handler and the session store depend on this small contract
only, so the Supabase adapter can be swapped for fakes in tests. Results follow
the provider's `{session, error}` shape instead of raising, which keeps the
callback state machine a flat sequence of checks.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol

from .domain import Identity


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    user: AuthUser
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None


@dataclass(frozen=True)
class AuthError:
    """Provider-supplied failure. `message` is safe to show to the user."""

    message: str
    status: Optional[int] = None
    code: Optional[str] = None


@dataclass(frozen=True)
class AuthResult:
    session: Optional[AuthSession] = None
    error: Optional[AuthError] = None


AuthStateListener = Callable[[AuthEvent, Optional[AuthSession]], Awaitable[None]]


class IdentityProvider(Protocol):
    async def exchange_code_for_session(self, code: str, code_verifier: Optional[str] = None) -> AuthResult: ...

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult: ...

    async def get_session(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None) -> AuthResult: ...

    async def refresh_session(self) -> AuthResult: ...

    async def load_identity(self, session: AuthSession) -> Optional[Identity]: ...

    async def sign_out(self) -> Optional[AuthError]: ...

    def on_auth_state_change(self, listener: AuthStateListener) -> Callable[[], None]: ...


__all__ = [
    "AuthError",
    "AuthEvent",
    "AuthResult",
    "AuthSession",
    "AuthStateListener",
    "AuthUser",
    "IdentityProvider",
]
