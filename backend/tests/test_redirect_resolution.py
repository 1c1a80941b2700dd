"""
Role-based redirect resolution after login.

Requirements:
- Parents without a school or child land on onboarding regardless of signup.
- Complete parents without signup intent land on /parent.
- No identity after the timeout: failure to /login with a 2 s delay.
"""

from identity_access.redirects import (
    AUTH_FAILED_MESSAGE,
    RedirectContext,
    TIMEOUT_REDIRECT_DELAY_SECONDS,
    resolve_destination,
)

from utils.fake_provider import make_identity


def test_parent_without_school_goes_to_onboarding_regardless_of_signup():
    parent = make_identity("parent", school_id=None)
    for signup in (False, True):
        dest = resolve_destination(parent, RedirectContext(signup_intent=signup))
        assert dest.route == "/parent/onboarding"
        assert not dest.failed


def test_complete_parent_without_signup_goes_to_dashboard():
    dest = resolve_destination(make_identity("parent"), RedirectContext())
    assert dest.route == "/parent"


def test_signup_intent_sends_complete_parent_to_onboarding():
    dest = resolve_destination(make_identity("parent"), RedirectContext(signup_intent=True))
    assert dest.route == "/parent/onboarding"


def test_step_is_carried_to_onboarding_when_numeric():
    parent = make_identity("parent", children=())
    assert resolve_destination(parent, RedirectContext(step="2")).route == "/parent/onboarding?step=2"
    assert resolve_destination(parent, RedirectContext(step="x")).route == "/parent/onboarding"


def test_staff_roles_go_to_their_dashboards():
    assert resolve_destination(make_identity("teacher"), RedirectContext()).route == "/teacher"
    assert resolve_destination(make_identity("admin"), RedirectContext(signup_intent=True)).route == "/admin"
    assert resolve_destination(make_identity("school_admin"), RedirectContext()).route == "/admin"
    assert resolve_destination(make_identity("super_admin"), RedirectContext()).route == "/super-admin"


def test_missing_identity_waits_until_timeout():
    assert resolve_destination(None, RedirectContext(waited=1.0)).waiting
    assert resolve_destination(None, RedirectContext(loading=True, waited=10.0)).waiting


def test_missing_identity_after_timeout_fails_to_login_after_two_seconds():
    dest = resolve_destination(None, RedirectContext(waited=5.0))
    assert dest.failed
    assert dest.route == "/login"
    assert dest.message == AUTH_FAILED_MESSAGE == "Authentication failed. Please try again."
    assert dest.delay == TIMEOUT_REDIRECT_DELAY_SECONDS == 2.0
