"""
Card components for PDS.

Auth cards (login, callback status, logout) and the parent onboarding wizard.
"""

from .auth import LoginCard, CallbackStatusCard, LogoutSuccessCard
from .onboarding import OnboardingCard, OnboardingStep, STEPS as ONBOARDING_STEPS, clamp_step

__all__ = [
    "LoginCard",
    "CallbackStatusCard",
    "LogoutSuccessCard",
    "OnboardingCard",
    "OnboardingStep",
    "ONBOARDING_STEPS",
    "clamp_step",
]
