"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors).
"""
import os
import importlib
import sys
from pathlib import Path
import pytest

# The app module runs its startup guard at import; tests opt into prod per case.
for _var in ("PDS_ENV", "SESSIONS_BACKEND"):
    os.environ.pop(_var, None)

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


def _main_modules():
    modules = []
    for name in ("main", "backend.web.main"):
        mod = sys.modules.get(name)
        if mod is None:
            try:
                mod = importlib.import_module(name)  # type: ignore[assignment]
            except Exception:
                continue
        if mod not in modules:
            modules.append(mod)
    return modules


@pytest.fixture(autouse=True)
def _reset_auth_stores(monkeypatch: pytest.MonkeyPatch):
    """
    Reset the global state, session and navigation stores before each case.

    Why:
        Auth tests share the `main.*_STORE` singletons; without a reset, PKCE
        state entries, sessions and in-flight navigation intents leak across
        tests and change redirect decisions.
    Behavior:
        - Re-imports `main` / `backend.web.main` if necessary.
        - Replaces their stores with fresh in-memory instances shared by all
          module aliases.
    """
    try:
        from identity_access.navigation import NavigationIntentStore  # type: ignore
        from identity_access.stores import SessionStore, StateStore  # type: ignore
    except Exception:
        yield
        return

    shared_state = StateStore()
    shared_sessions = SessionStore()
    shared_intents = NavigationIntentStore()
    for mod in _main_modules():
        monkeypatch.setattr(mod, "STATE_STORE", shared_state, raising=False)
        monkeypatch.setattr(mod, "SESSION_STORE", shared_sessions, raising=False)
        monkeypatch.setattr(mod, "NAV_INTENTS", shared_intents, raising=False)
        # Unconfigured unless a test opts in via `configure_provider`.
        monkeypatch.setattr(mod, "SUPABASE_CFG", None, raising=False)
    yield


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Clear env-driven toggles so every case starts from dev defaults.

    Behavior:
        - `PDS_ENV` unset (dev) unless a test opts into prod explicitly.
        - Proxy trust, app base and identity timeout overrides cleared.
    """
    for var in (
        "PDS_ENV",
        "PDS_TRUST_PROXY",
        "WEB_BASE",
        "PDS_IDENTITY_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_settings_environment_override():
    """Reset main.SETTINGS.override_environment between tests.

    Why:
        Some tests force `prod` semantics via
        `main.SETTINGS.override_environment("prod")`. A missed cleanup would
        leak into unrelated tests and change cookie and header decisions.
    """
    for mod in _main_modules():
        if hasattr(mod, "SETTINGS") and hasattr(mod.SETTINGS, "override_environment"):
            mod.SETTINGS.override_environment(None)
    yield


@pytest.fixture
def configure_provider(monkeypatch: pytest.MonkeyPatch):
    """Mark the identity provider as configured; optionally inject a fake client.

    Returns a callable `install(provider=None)`. Without a provider the real
    Supabase client is built (no network is used for the authorize URL).
    """
    import main  # type: ignore
    from identity_access.supabase_auth import SupabaseAuthConfig  # type: ignore

    cfg = SupabaseAuthConfig(
        url="http://supabase.test",
        anon_key="anon-test",
        redirect_uri="http://test/auth/callback",
    )
    monkeypatch.setattr(main, "SUPABASE_CFG", cfg)
    monkeypatch.setenv("PDS_IDENTITY_TIMEOUT_SECONDS", "0.05")

    def install(provider=None):
        if provider is not None:

            def make(session=None):
                provider.seed(session)
                return provider

            monkeypatch.setattr(main, "make_auth_client", make)
        return provider

    return install
