"""
Navigation intent: who may redirect the browser right after a login.

Why: After the callback decides where a user lands, the onboarding gate on the
next request must not overrule that decision with a redirect of its own. An
intent is claimed exactly once per login transition and stays active for a
short window; any other redirect-capable component consults it first.

States: idle -> navigating -> settled. Settling happens explicitly or lazily on
the first check after the window has passed, so no timer has to fire.
"""
from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Optional
import threading
import time

# Legacy name of the tab-scoped marker; kept as the store namespace.
SESSION_FLAG_KEY = "auth_callback_redirect"
NAVIGATION_WINDOW_SECONDS = 0.5


class IntentState(str, Enum):
    IDLE = "idle"
    NAVIGATING = "navigating"
    SETTLED = "settled"


class NavigationIntent:
    def __init__(self, *, window_seconds: float = NAVIGATION_WINDOW_SECONDS, clock: Callable[[], float] = time.monotonic):
        self._window = window_seconds
        self._clock = clock
        self._state = IntentState.IDLE
        self._started_at: Optional[float] = None
        self.target: Optional[str] = None

    @property
    def state(self) -> IntentState:
        if self._state is IntentState.NAVIGATING and self._started_at is not None:
            if self._clock() - self._started_at >= self._window:
                self._state = IntentState.SETTLED
        return self._state

    def claim(self, target: str) -> bool:
        """Move idle -> navigating. Only the first caller wins."""
        if self._state is not IntentState.IDLE:
            return False
        self._state = IntentState.NAVIGATING
        self._started_at = self._clock()
        self.target = target
        return True

    def is_active(self) -> bool:
        return self.state is IntentState.NAVIGATING

    def settle(self) -> None:
        if self._state is not IntentState.IDLE:
            self._state = IntentState.SETTLED


class NavigationIntentStore:
    """Intents keyed by browser session id.

    Thread-safe because FastAPI may run sync helpers in a threadpool. Settled
    entries are dropped on access so the mapping stays small.
    """

    def __init__(self, *, window_seconds: float = NAVIGATION_WINDOW_SECONDS, clock: Callable[[], float] = time.monotonic):
        self._window = window_seconds
        self._clock = clock
        self._data: Dict[str, NavigationIntent] = {}
        self._lock = threading.Lock()

    def begin(self, key: str, target: str) -> bool:
        """Publish a fresh navigating intent for `key`; False if one is active."""
        with self._lock:
            current = self._data.get(key)
            if current is not None and current.is_active():
                return False
            intent = NavigationIntent(window_seconds=self._window, clock=self._clock)
            intent.claim(target)
            self._data[key] = intent
            return True

    def is_active(self, key: Optional[str]) -> bool:
        if not key:
            return False
        with self._lock:
            intent = self._data.get(key)
            if intent is None:
                return False
            if intent.is_active():
                return True
            self._data.pop(key, None)
            return False

    def clear(self, key: Optional[str]) -> None:
        if not key:
            return
        with self._lock:
            intent = self._data.pop(key, None)
        if intent is not None:
            intent.settle()

    def purge(self) -> int:
        """Drop settled intents; returns how many were removed."""
        with self._lock:
            stale = [k for k, intent in self._data.items() if not intent.is_active()]
            for k in stale:
                self._data.pop(k, None)
        return len(stale)
