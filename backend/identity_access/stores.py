"""
In-memory stores for development: StateStore and SessionStore.

Why: Keep server-side state (PKCE code_verifier, signup intent, post-login
redirect) and sessions opaque to the client. For production, use the DB-backed
session store (`stores_db.DBSessionStore`).

Security: Cookies carry only an opaque session id. Provider tokens and the
resolved PDS identity stay server-side.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Optional
import secrets
import threading
import time

from .domain import Identity

STATE_TTL_SECONDS = 900
SESSION_TTL_SECONDS = 3600


def _now() -> int:
    return int(time.time())


@dataclass
class StateRecord:
    state: str
    code_verifier: str
    redirect: Optional[str]
    signup: bool
    expires_at: int


class StateStore:
    """One-shot PKCE state entries; `pop_valid` consumes them."""

    def __init__(self):
        self._data: Dict[str, StateRecord] = {}
        self._lock = threading.Lock()

    def create(
        self,
        *,
        code_verifier: str,
        ttl_seconds: int = STATE_TTL_SECONDS,
        redirect: Optional[str] = None,
        signup: bool = False,
    ) -> StateRecord:
        state = secrets.token_urlsafe(24)
        rec = StateRecord(
            state=state,
            code_verifier=code_verifier,
            redirect=redirect,
            signup=signup,
            expires_at=_now() + ttl_seconds,
        )
        with self._lock:
            self._data[state] = rec
        return rec

    def pop_valid(self, state: Optional[str]) -> Optional[StateRecord]:
        if not state:
            return None
        with self._lock:
            rec = self._data.pop(state, None)
        if not rec or rec.expires_at < _now():
            return None
        return rec


@dataclass
class SessionRecord:
    session_id: str
    user_id: str
    email: str
    role: str
    name: str = ""
    school_id: Optional[str] = None
    children: list[str] = field(default_factory=list)
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None  # browser session TTL
    token_expires_at: Optional[int] = None  # provider access token expiry
    ttl_seconds: int = SESSION_TTL_SECONDS

    @property
    def identity(self) -> Identity:
        return Identity(
            id=self.user_id,
            email=self.email,
            role=self.role,
            school_id=self.school_id,
            children=tuple(self.children),
            name=self.name,
        )


class SessionStore:
    def __init__(self):
        self._data: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(
        self,
        *,
        identity: Identity,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        token_expires_at: Optional[int] = None,
        ttl_seconds: int = SESSION_TTL_SECONDS,
    ) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        rec = SessionRecord(
            session_id=sid,
            user_id=identity.id,
            email=identity.email,
            role=identity.role,
            name=identity.name,
            school_id=identity.school_id,
            children=list(identity.children),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_now() + ttl_seconds,
            token_expires_at=token_expires_at,
            ttl_seconds=ttl_seconds,
        )
        with self._lock:
            self._data[sid] = rec
        return rec

    def get(self, session_id: Optional[str]) -> Optional[SessionRecord]:
        if not session_id:
            return None
        with self._lock:
            rec = self._data.get(session_id)
            if not rec:
                return None
            if rec.expires_at and rec.expires_at < _now():
                self._data.pop(session_id, None)
                return None
            return rec

    def update_identity(
        self,
        session_id: str,
        identity: Identity,
        *,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        token_expires_at: Optional[int] = None,
    ) -> Optional[SessionRecord]:
        """Replace the cached identity (and rotated tokens) of a live session."""
        with self._lock:
            rec = self._data.get(session_id)
            if not rec:
                return None
            updated = replace(
                rec,
                email=identity.email,
                role=identity.role,
                name=identity.name,
                school_id=identity.school_id,
                children=list(identity.children),
                access_token=access_token or rec.access_token,
                refresh_token=refresh_token or rec.refresh_token,
                token_expires_at=token_expires_at or rec.token_expires_at,
            )
            self._data[session_id] = updated
            return updated

    def delete(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        with self._lock:
            self._data.pop(session_id, None)
