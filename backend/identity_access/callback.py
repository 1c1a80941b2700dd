"""
OAuth callback handling for third-party logins.

Why: The provider redirects back with either an error, an authorization code
(PKCE) or, in the older implicit flow, an access token in the URL fragment.
This handler turns that into exactly one outcome: a destination route or a
user-facing error with a delayed return to the login page.

Behavior:
- `process()` inspects the parameters once per handler instance; a second call
  is a no-op, so the code exchange never runs twice.
- Successful exchanges do not navigate directly. The provider's SIGNED_IN
  event reaches the Session Store, which notifies this handler; whichever path
  sees the identity first claims the navigation intent, the other does nothing.
- Without any artifact the handler waits for the Session Store, bounded by the
  identity timeout.

All failures end in the error state with provider text or fixed copy.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Optional
import logging
import time

from .domain import LOGIN_ROUTE, Identity, needs_onboarding
from .navigation import NavigationIntent
from .provider import AuthEvent, IdentityProvider
from .redirects import IDENTITY_TIMEOUT_SECONDS, RedirectContext, resolve_destination
from .session import AuthStateStore

logger = logging.getLogger("pds.identity_access")

ERROR_REDIRECT_DELAY_SECONDS = 3.0
FALLBACK_ERROR_MESSAGE = "Authentication failed"
UNCONFIGURED_MESSAGE = "Identity provider is not configured"
LOADING_MESSAGE = "Processing authentication..."
SIGNED_IN_MESSAGE = "Signed in successfully!"
ACCOUNT_CREATED_MESSAGE = "Account created successfully!"


class CallbackStatus(str, Enum):
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


def _truthy(value: object) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class CallbackParams:
    code: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    signup: bool = False
    step: Optional[str] = None
    code_verifier: Optional[str] = None

    @classmethod
    def from_mappings(
        cls,
        query: Mapping[str, str],
        fragment: Optional[Mapping[str, str]] = None,
        *,
        code_verifier: Optional[str] = None,
        signup: bool = False,
    ) -> "CallbackParams":
        fragment = fragment or {}
        return cls(
            code=query.get("code") or None,
            error=query.get("error") or fragment.get("error") or None,
            error_description=query.get("error_description") or fragment.get("error_description") or None,
            access_token=fragment.get("access_token") or None,
            refresh_token=fragment.get("refresh_token") or None,
            signup=signup or _truthy(query.get("signup")),
            step=query.get("step") or None,
            code_verifier=code_verifier,
        )


@dataclass(frozen=True)
class CallbackOutcome:
    status: CallbackStatus
    message: str
    redirect_to: Optional[str] = None
    redirect_after: float = 0.0
    identity: Optional[Identity] = None


class OAuthCallbackHandler:
    def __init__(
        self,
        provider: Optional[IdentityProvider],
        state: AuthStateStore,
        *,
        identity_timeout: float = IDENTITY_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._provider = provider
        self._state = state
        self._identity_timeout = identity_timeout
        self._clock = clock
        self._intent = NavigationIntent(clock=clock)
        self._params = CallbackParams()
        self._processed = False
        self._outcome: Optional[CallbackOutcome] = None
        self._unsubscribe: Optional[Callable[[], None]] = state.on_change(self._on_identity_change)

    @property
    def status(self) -> CallbackStatus:
        return self._outcome.status if self._outcome else CallbackStatus.LOADING

    @property
    def message(self) -> str:
        return self._outcome.message if self._outcome else LOADING_MESSAGE

    @property
    def outcome(self) -> Optional[CallbackOutcome]:
        return self._outcome

    async def handle(self, params: CallbackParams) -> CallbackOutcome:
        """Process the callback and wait (bounded) until an outcome exists."""
        started = self._clock()
        await self.process(params)
        if self._outcome is None:
            identity = self._state.get_session()
            if identity is None and not self._state.last_error:
                identity = await self._state.wait_for_identity(self._identity_timeout)
            if identity is not None:
                self._route(identity)
            elif self._outcome is None and self._state.last_error:
                self._fail(self._state.last_error)
            elif self._outcome is None:
                dest = resolve_destination(
                    None,
                    RedirectContext(
                        loading=False,
                        waited=max(self._clock() - started, self._identity_timeout),
                        identity_timeout=self._identity_timeout,
                    ),
                )
                self._fail(dest.message, redirect_after=dest.delay)
        if self._outcome is None:
            raise RuntimeError("callback finished without an outcome")
        return self._outcome

    async def process(self, params: CallbackParams) -> None:
        if self._processed:
            return
        self._processed = True
        self._params = params

        if self._provider is None:
            logger.error("Callback: identity provider not configured")
            self._fail(UNCONFIGURED_MESSAGE)
            return

        try:
            if params.error:
                logger.info("Callback: provider rejected login (%s)", params.error)
                self._fail(params.error_description or params.error)
                return

            if params.code:
                result = await self._provider.exchange_code_for_session(params.code, params.code_verifier)
                if result.error is not None:
                    # A refreshed callback page replays a consumed code; an
                    # already established session still counts as success.
                    existing = await self._provider.get_session()
                    if existing.session is not None:
                        logger.info("Callback: code rejected, existing session found")
                        await self._ensure_identity_loaded()
                        return
                    logger.warning("Callback: code exchange failed (%s)", result.error.code or "provider_error")
                    self._fail(result.error.message or FALLBACK_ERROR_MESSAGE)
                    return
                if result.session is not None:
                    return

            if params.access_token:
                result = await self._provider.get_session(access_token=params.access_token, refresh_token=params.refresh_token)
                if result.error is not None:
                    logger.warning("Callback: implicit session failed (%s)", result.error.code or "provider_error")
                    self._fail(result.error.message or FALLBACK_ERROR_MESSAGE)
                    return
                if result.session is not None:
                    return

            existing = await self._provider.get_session()
            if existing.session is not None:
                await self._ensure_identity_loaded()
        except Exception as exc:
            logger.warning("Callback: unexpected failure: %s", exc.__class__.__name__)
            self._fail(FALLBACK_ERROR_MESSAGE)

    def close(self) -> None:
        """Stop reacting to identity changes; pending waits are cancelled by the store."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _ensure_identity_loaded(self) -> None:
        if self._state.get_session() is None and self._outcome is None:
            await self._state.initialize()

    def _on_identity_change(self, event: AuthEvent, identity: Optional[Identity]) -> None:
        if identity is None or self._outcome is not None:
            return
        self._route(identity)

    def _route(self, identity: Identity) -> None:
        dest = resolve_destination(identity, RedirectContext(signup_intent=self._params.signup, step=self._params.step))
        if dest.route is None:
            return
        if not self._intent.claim(dest.route):
            return
        onboarding = identity.role == "parent" and (self._params.signup or needs_onboarding(identity))
        self._outcome = CallbackOutcome(
            status=CallbackStatus.SUCCESS,
            message=ACCOUNT_CREATED_MESSAGE if onboarding else SIGNED_IN_MESSAGE,
            redirect_to=dest.route,
            identity=identity,
        )
        logger.info("Callback: redirecting role=%s", identity.role)

    def _fail(self, message: str, *, redirect_after: float = ERROR_REDIRECT_DELAY_SECONDS) -> None:
        if self._outcome is not None:
            return
        self._intent.claim(LOGIN_ROUTE)
        self._outcome = CallbackOutcome(
            status=CallbackStatus.ERROR,
            message=message or FALLBACK_ERROR_MESSAGE,
            redirect_to=LOGIN_ROUTE,
            redirect_after=redirect_after,
        )
