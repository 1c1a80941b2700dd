"""
Session Store: the single source of truth for "who is logged in right now".

Why: The callback handler, the redirect resolver and the onboarding page all
react to identity changes rather than polling the provider. The store
subscribes to the provider once and fans changes out to its own listeners.

Behavior:
- `get_session()` never blocks; it returns the last-known identity, also while
  a refresh is in flight.
- A missing provider (unconfigured deployment) is reported as `unavailable`,
  never as an anonymous visitor.
- `wait_for_identity(timeout)` races one future against a timeout instead of
  combining timers and re-checks.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Set, Union
import asyncio
import logging

from .domain import Identity
from .provider import AuthEvent, AuthSession, IdentityProvider

logger = logging.getLogger("pds.identity_access")

PROFILE_MISSING_MESSAGE = "User profile not found. Please contact support."
UNAVAILABLE_MESSAGE = "Sign-in is currently unavailable."
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"

ChangeListener = Callable[[AuthEvent, Optional[Identity]], Union[None, Awaitable[None]]]

_IDENTITY_EVENTS = frozenset(
    {AuthEvent.INITIAL_SESSION, AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED, AuthEvent.USER_UPDATED}
)


class SessionStatus(str, Enum):
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class SignInResult:
    identity: Optional[Identity] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.identity is not None


class AuthStateStore:
    def __init__(self, provider: Optional[IdentityProvider]):
        self._provider = provider
        self._identity: Optional[Identity] = None
        self._status = SessionStatus.UNAVAILABLE if provider is None else SessionStatus.LOADING
        self._listeners: List[ChangeListener] = []
        self._waiters: Set[asyncio.Future] = set()
        self.last_error: Optional[str] = None
        self._unsubscribe_provider = provider.on_auth_state_change(self._handle_provider_event) if provider else None

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def loading(self) -> bool:
        return self._status is SessionStatus.LOADING

    @property
    def available(self) -> bool:
        return self._status is not SessionStatus.UNAVAILABLE

    def get_session(self) -> Optional[Identity]:
        return self._identity

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Register `listener(event, identity)`; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def initialize(self) -> Optional[Identity]:
        """Restore a pre-existing session (e.g., page reload after login)."""
        if self._provider is None:
            return None
        result = await self._provider.get_session()
        if result.error is not None:
            logger.warning("Session restore failed: %s", result.error.code or "provider_error")
        if result.session is None:
            # Only settle to anonymous if no event arrived in the meantime
            if self._status is SessionStatus.LOADING and self._identity is None:
                self._status = SessionStatus.ANONYMOUS
            return None
        await self._apply(AuthEvent.INITIAL_SESSION, result.session)
        return self._identity

    async def sign_in_with_password(self, email: str, password: str) -> SignInResult:
        """Sign in with credentials and resolve the PDS identity.

        A provider account without a PDS profile is signed out again and
        reported as an error; no half-authenticated session survives.
        """
        if self._provider is None:
            return SignInResult(error=UNAVAILABLE_MESSAGE)
        try:
            result = await self._provider.sign_in_with_password(email, password)
        except Exception as exc:
            logger.warning("Password sign-in failed: %s", exc.__class__.__name__)
            return SignInResult(error=UNEXPECTED_ERROR_MESSAGE)
        if result.error is not None:
            logger.info("Password sign-in rejected (%s)", result.error.code or "provider_error")
            return SignInResult(error=result.error.message)
        if result.session is None:
            return SignInResult(error="No user returned from authentication")
        current = self._identity
        if (current is None or current.id != result.session.user.id) and not self.last_error:
            # Providers that do not emit events synchronously
            await self._apply(AuthEvent.SIGNED_IN, result.session)
        if self._identity is None or self._identity.id != result.session.user.id:
            return SignInResult(error=self.last_error or PROFILE_MISSING_MESSAGE)
        return SignInResult(identity=self._identity)

    async def wait_for_identity(self, timeout: float) -> Optional[Identity]:
        """Return the identity once known; None on timeout or failed resolution."""
        if self._identity is not None:
            return self._identity
        if self._status is SessionStatus.UNAVAILABLE:
            return None
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiters.add(fut)
        try:
            return await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self._waiters.discard(fut)

    def close(self) -> None:
        """Detach from the provider and cancel pending waits."""
        if self._unsubscribe_provider is not None:
            self._unsubscribe_provider()
            self._unsubscribe_provider = None
        for fut in list(self._waiters):
            if not fut.done():
                fut.cancel()
        self._waiters.clear()
        self._listeners.clear()

    async def _handle_provider_event(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        await self._apply(event, session)

    async def _apply(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        if event is AuthEvent.SIGNED_OUT or session is None:
            self._identity = None
            self._status = SessionStatus.ANONYMOUS
            await self._notify(AuthEvent.SIGNED_OUT, None)
            return
        if event not in _IDENTITY_EVENTS:
            return
        if self._provider is None:
            return
        identity = await self._provider.load_identity(session)
        if identity is None:
            # Authenticated at the provider but not provisioned in PDS; never
            # leave such a half-authenticated session behind.
            self.last_error = PROFILE_MISSING_MESSAGE
            self._identity = None
            self._status = SessionStatus.ANONYMOUS
            await self._provider.sign_out()
            self._resolve_waiters(None)
            return
        self.last_error = None
        self._identity = identity
        self._status = SessionStatus.AUTHENTICATED
        await self._notify(event, identity)

    async def _notify(self, event: AuthEvent, identity: Optional[Identity]) -> None:
        self._resolve_waiters(identity)
        for listener in list(self._listeners):
            try:
                result = listener(event, identity)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                logger.warning("Session listener failed: %s", exc.__class__.__name__)

    def _resolve_waiters(self, identity: Optional[Identity]) -> None:
        for fut in list(self._waiters):
            if not fut.done():
                fut.set_result(identity)
