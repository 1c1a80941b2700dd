"""
In-memory identity provider for callback, session and route tests.

Mirrors the event behavior of `SupabaseAuthClient`: a successful exchange,
token adoption or refresh notifies subscribers before the call returns,
unless `emit_events=False` (used to deliver events later, out of band).
"""
from __future__ import annotations

from typing import Callable, List, Optional

from identity_access.domain import Identity
from identity_access.provider import AuthError, AuthEvent, AuthResult, AuthSession, AuthUser

# Fixed token expiry so tests can tell it apart from the browser session TTL.
TOKEN_EXPIRES_AT = 4102444800


def make_identity(role: str = "teacher", **overrides) -> Identity:
    base = {
        "id": f"{role}-1",
        "email": f"{role}@school.example",
        "role": role,
        "name": role.title(),
        "school_id": None,
        "children": (),
    }
    if role == "parent":
        base.update(school_id="school-1", children=("child-1",))
    base.update(overrides)
    return Identity(**base)


class FakeProvider:
    def __init__(
        self,
        identity: Optional[Identity] = None,
        *,
        exchange_error: Optional[AuthError] = None,
        token_error: Optional[AuthError] = None,
        refresh_error: Optional[AuthError] = None,
        session: Optional[AuthSession] = None,
        emit_events: bool = True,
        exchange_raises: Optional[Exception] = None,
        password_error: Optional[AuthError] = None,
    ):
        self.identity = identity
        self.exchange_error = exchange_error
        self.token_error = token_error
        self.refresh_error = refresh_error
        self.emit_events = emit_events
        self.exchange_raises = exchange_raises
        self.password_error = password_error
        self._session = session
        self._listeners: List[Callable] = []
        self.exchange_calls: list[tuple[str, Optional[str]]] = []
        self.sign_in_calls: list[str] = []
        self.load_calls = 0
        self.sign_out_calls = 0

    def seed(self, session: Optional[AuthSession]) -> None:
        """Adopt the browser session the app hands to its client factory."""
        if session is not None:
            self._session = session

    @property
    def current_session(self) -> Optional[AuthSession]:
        return self._session

    def _new_session(self, access_token: str, refresh_token: Optional[str] = "rt-1") -> AuthSession:
        user_id = self.identity.id if self.identity else "user-unknown"
        email = self.identity.email if self.identity else ""
        return AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            user=AuthUser(id=user_id, email=email),
            expires_at=TOKEN_EXPIRES_AT,
        )

    def on_auth_state_change(self, listener):
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def emit(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            await listener(event, session)

    async def exchange_code_for_session(self, code: str, code_verifier: Optional[str] = None) -> AuthResult:
        self.exchange_calls.append((code, code_verifier))
        if self.exchange_raises is not None:
            raise self.exchange_raises
        if self.exchange_error is not None:
            return AuthResult(error=self.exchange_error)
        self._session = self._new_session(f"at-{code}")
        if self.emit_events:
            await self.emit(AuthEvent.SIGNED_IN, self._session)
        return AuthResult(session=self._session)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        self.sign_in_calls.append(email)
        if self.password_error is not None:
            return AuthResult(error=self.password_error)
        self._session = self._new_session("at-password")
        if self.emit_events:
            await self.emit(AuthEvent.SIGNED_IN, self._session)
        return AuthResult(session=self._session)

    async def get_session(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None) -> AuthResult:
        if not access_token:
            return AuthResult(session=self._session)
        if self.token_error is not None:
            return AuthResult(error=self.token_error)
        self._session = self._new_session(access_token, refresh_token)
        if self.emit_events:
            await self.emit(AuthEvent.SIGNED_IN, self._session)
        return AuthResult(session=self._session)

    async def refresh_session(self) -> AuthResult:
        if self.refresh_error is not None or self._session is None:
            return AuthResult(error=self.refresh_error or AuthError("Session expired", code="no_refresh_token"))
        self._session = self._new_session("at-refreshed", "rt-2")
        if self.emit_events:
            await self.emit(AuthEvent.TOKEN_REFRESHED, self._session)
        return AuthResult(session=self._session)

    async def load_identity(self, session: AuthSession) -> Optional[Identity]:
        self.load_calls += 1
        return self.identity

    async def sign_out(self) -> Optional[AuthError]:
        self.sign_out_calls += 1
        self._session = None
        await self.emit(AuthEvent.SIGNED_OUT, None)
        return None
