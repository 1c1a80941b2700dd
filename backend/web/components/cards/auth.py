"""
Auth cards: login, callback status and logout confirmation.

These cards are rendered without navigation (`Layout(show_nav=False)`); they
carry no user data besides short status messages.
"""

from typing import Optional
from urllib.parse import urlencode

from ..base import Component


class LoginCard(Component):
    """
    Sign-in card: email/password form, the Google button and the parent sign-up link.

    Args:
        available: False when the identity provider is not configured; the
            buttons are replaced by a configuration notice.
        redirect: Validated in-app path to return to after login.
        error: Optional message from a failed previous attempt.
        email: Address to prefill after a rejected password sign-in.
    """

    def __init__(
        self,
        *,
        available: bool = True,
        redirect: Optional[str] = None,
        error: Optional[str] = None,
        email: Optional[str] = None,
    ):
        self.available = available
        self.redirect = redirect
        self.error = error
        self.email = email

    def render(self) -> str:
        error_html = (
            f'<div class="alert alert-error" role="alert">{self.escape(self.error)}</div>' if self.error else ""
        )
        if not self.available:
            body = """
            <div class="alert alert-warning" role="alert">
                Sign-in is currently unavailable: the identity provider is not configured.
            </div>"""
        else:
            login_query = {"provider": "google"}
            if self.redirect:
                login_query["redirect"] = self.redirect
            signup_query = {"provider": "google", "signup": "true"}
            body = f"""
            {self._render_password_form()}
            <p class="auth-card__divider">or</p>
            <a class="button button--primary button--block" href="/auth/login?{self.escape(urlencode(login_query))}">
                Sign in with Google
            </a>
            <p class="auth-card__divider">New parent?</p>
            <a class="button button--secondary button--block" href="/auth/login?{self.escape(urlencode(signup_query))}">
                Sign up as Parent
            </a>"""
        return f"""
        <section class="auth-card card" aria-labelledby="login-title">
            <h1 id="login-title">Welcome Back</h1>
            <p class="text-muted">Sign in to continue to your dashboard</p>
            {error_html}
            {body}
        </section>"""

    def _render_password_form(self) -> str:
        redirect_input = (
            f'<input type="hidden" name="redirect" value="{self.escape(self.redirect)}">' if self.redirect else ""
        )
        return f"""
            <form class="login-form" method="post" action="/login">
                <label for="login-email">Email Address</label>
                <input id="login-email" type="email" name="email" autocomplete="email" required
                       value="{self.escape(self.email or "")}">
                <label for="login-password">Password</label>
                <input id="login-password" type="password" name="password" autocomplete="current-password" required>
                {redirect_input}
                <button type="submit" class="button button--primary button--block">Sign in</button>
            </form>"""


class CallbackStatusCard(Component):
    """
    Visual state of the OAuth callback: loading spinner, success or error.

    Args:
        status: "loading", "success" or "error".
        message: Status text (escaped).
        redirect_to: Where the browser goes next; shown as a fallback link.
        relay_fragment: Render the hidden form used by the fragment relay script.
    """

    def __init__(
        self,
        status: str,
        message: str,
        *,
        redirect_to: Optional[str] = None,
        relay_fragment: bool = False,
        state: Optional[str] = None,
        signup: bool = False,
        step: Optional[str] = None,
    ):
        self.status = status
        self.message = message
        self.redirect_to = redirect_to
        self.relay_fragment = relay_fragment
        self.state = state
        self.signup = signup
        self.step = step

    def render(self) -> str:
        card_class = self.classes("auth-card", "card", "status-card", f"status-card--{self.status}")
        icon = {"loading": '<span class="spinner" aria-hidden="true"></span>', "success": "&#10003;", "error": "&#10007;"}
        link_html = ""
        if self.redirect_to and self.status != "loading":
            label = "Back to login" if self.status == "error" else "Continue"
            link_html = f'<p><a class="button button--secondary" href="{self.escape(self.redirect_to)}">{label}</a></p>'
        return f"""
        <section class="{card_class}" role="status" aria-live="polite">
            <div class="status-card__icon">{icon.get(self.status, "")}</div>
            <p class="status-card__message">{self.escape(self.message)}</p>
            {link_html}
            {self._render_relay_form() if self.relay_fragment else ""}
        </section>"""

    def _render_relay_form(self) -> str:
        # Filled and submitted by /static/js/auth_callback.js from location.hash.
        attrs = self.attributes(
            id="auth-fragment-relay",
            method="post",
            action="/auth/callback",
            hidden=True,
        )
        return f"""
            <form {attrs}>
                <input type="hidden" name="access_token" value="">
                <input type="hidden" name="refresh_token" value="">
                <input type="hidden" name="error" value="">
                <input type="hidden" name="error_description" value="">
                <input type="hidden" name="state" value="{self.escape(self.state or "")}">
                <input type="hidden" name="signup" value="{"true" if self.signup else ""}">
                <input type="hidden" name="step" value="{self.escape(self.step or "")}">
            </form>"""


class LogoutSuccessCard(Component):
    def render(self) -> str:
        return """
        <section class="auth-card card">
            <h1>Signed out</h1>
            <p>You have been signed out of PDS.</p>
            <p><a class="button button--primary" href="/login">Sign in again</a></p>
        </section>"""
