# PDS Component System
# Pure Python Components for server-side HTML generation

from .base import Component
from .layout import Layout
from .navigation import Navigation
from .cards import (
    LoginCard,
    CallbackStatusCard,
    LogoutSuccessCard,
    OnboardingCard,
)

__all__ = [
    "Component",
    "Layout",
    "Navigation",
    "LoginCard",
    "CallbackStatusCard",
    "LogoutSuccessCard",
    "OnboardingCard",
]
