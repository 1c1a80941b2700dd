"""
Parent onboarding wizard card.

Five steps: welcome, link school, link child, features, done. The linking
forms post to the school-code and child-link endpoints; completeness is always
read from the live identity, never from a client-side flag.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from ..base import Component


@dataclass(frozen=True)
class OnboardingStep:
    title: str
    description: str


STEPS = (
    OnboardingStep("Welcome to the PDS Parent Portal", "Track your child's progress, attendance and behaviour at school."),
    OnboardingStep("Link Your School", "Connect your account to your child's school using a school code."),
    OnboardingStep("Link Your Child", "Connect your account to your child's school record using a link code."),
    OnboardingStep("Explore Features", "Attendance, behaviour, notifications and messages in one place."),
    OnboardingStep("You're All Set!", "Start exploring your parent portal."),
)

SCHOOL_STEP = 1
CHILD_STEP = 2


def clamp_step(raw: Optional[str]) -> int:
    if raw is None or not str(raw).isdigit():
        return 0
    return min(int(raw), len(STEPS) - 1)


class OnboardingCard(Component):
    """
    Args:
        step: Current step index (already clamped).
        has_school: Parent is linked to a school.
        has_child: Parent is linked to at least one child.
        next_path: Safe in-app path to return to once onboarding is complete.
        name: Parent display name for the welcome step.
        notice: Optional message (e.g. "link a school first").
    """

    def __init__(
        self,
        *,
        step: int,
        has_school: bool,
        has_child: bool,
        next_path: Optional[str] = None,
        name: str = "",
        notice: Optional[str] = None,
    ):
        self.step = step
        self.has_school = has_school
        self.has_child = has_child
        self.next_path = next_path
        self.name = name
        self.notice = notice

    def render(self) -> str:
        current = STEPS[self.step]
        notice_html = f'<div class="alert alert-info" role="alert">{self.escape(self.notice)}</div>' if self.notice else ""
        return f"""
        <section class="card onboarding" aria-labelledby="onboarding-title">
            <p class="onboarding__progress">Step {self.step + 1} of {len(STEPS)}</p>
            {self._render_step_list()}
            <h1 id="onboarding-title">{self.escape(current.title)}</h1>
            <p class="text-muted">{self.escape(current.description)}</p>
            {notice_html}
            {self._render_step_body()}
            {self._render_controls()}
        </section>"""

    def _render_step_list(self) -> str:
        items = []
        for index, step in enumerate(STEPS):
            done = (index == SCHOOL_STEP and self.has_school) or (index == CHILD_STEP and self.has_child) or index < self.step
            cls = self.classes("onboarding__step", current=index == self.step, done=done)
            items.append(f'<li class="{cls}">{self.escape(step.title)}</li>')
        return f'<ol class="onboarding__steps">{"".join(items)}</ol>'

    def _render_step_body(self) -> str:
        if self.step == 0:
            return f"<p>Welcome, {self.escape(self.name or 'there')}!</p>"
        if self.step == SCHOOL_STEP:
            if self.has_school:
                return '<p class="alert alert-success">School linked successfully! You can proceed to the next step.</p>'
            return """
            <form method="post" action="/parent/link-school" class="form-inline">
                <label for="school-code">School code</label>
                <input id="school-code" name="school_code" required maxlength="32" autocomplete="off">
                <button type="submit" class="button button--primary">Link school</button>
            </form>"""
        if self.step == CHILD_STEP:
            if not self.has_school:
                return '<p class="alert alert-warning">You must link a school first before you can link a child.</p>'
            if self.has_child:
                return '<p class="alert alert-success">Child linked successfully!</p>'
            return """
            <form method="post" action="/parent/link-child" class="form-inline">
                <label for="link-code">Child link code</label>
                <input id="link-code" name="link_code" required maxlength="32" autocomplete="off">
                <button type="submit" class="button button--primary">Link child</button>
            </form>"""
        return ""

    def _render_controls(self) -> str:
        back = ""
        if self.step > 0:
            back = f'<a class="button button--secondary" href="{self._step_href(self.step - 1)}">Back</a>'
        if self.step < len(STEPS) - 1:
            forward = f'<a class="button button--primary" href="{self._step_href(self.step + 1)}">Next</a>'
        else:
            forward = ""
        # Re-reads the live profile; leaves the wizard once both links exist.
        hidden_next = f'<input type="hidden" name="next" value="{self.escape(self.next_path)}">' if self.next_path else ""
        refresh = f"""
            <form method="post" action="/parent/onboarding/refresh" class="form-inline">
                {hidden_next}
                <input type="hidden" name="step" value="{self.step}">
                <button type="submit" class="button button--primary">Get Started</button>
            </form>""" if self.step == len(STEPS) - 1 or (self.has_school and self.has_child) else ""
        return f'<div class="onboarding__controls">{back}{forward}{refresh}</div>'

    def _step_href(self, step: int) -> str:
        query = {"step": str(step)}
        if self.next_path:
            query["next"] = self.next_path
        return self.escape(f"/parent/onboarding?{urlencode(query)}")
