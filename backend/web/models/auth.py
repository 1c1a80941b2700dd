"""
Request/response models of the web adapter.

Why:
    `/api/me` exposes the persisted user snapshot; the callback relay and the
    onboarding refresh accept browser form posts. Pydantic keeps both shapes
    explicit and strips empty form fields to None.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field
from pydantic.functional_validators import field_validator

from identity_access.domain import Identity
from identity_access.stores import SessionRecord


def _blank_to_none(v):
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


class UserSnapshot(BaseModel):
    """Serialized identity as seen by the browser (never includes tokens)."""

    id: str
    email: str
    role: str
    name: str = ""
    school_id: Optional[str] = None
    children: list[str] = Field(default_factory=list)
    onboarding_required: bool = False

    @classmethod
    def from_identity(cls, identity: Identity, *, onboarding_required: bool) -> "UserSnapshot":
        return cls(**identity.to_dict(), onboarding_required=onboarding_required)


class MeResponse(BaseModel):
    user: UserSnapshot
    expires_at: Optional[str] = None

    @classmethod
    def from_record(cls, rec: SessionRecord, *, onboarding_required: bool) -> "MeResponse":
        exp_iso = (
            datetime.fromtimestamp(rec.expires_at, tz=timezone.utc).isoformat(timespec="seconds")
            if rec.expires_at
            else None
        )
        return cls(user=UserSnapshot.from_identity(rec.identity, onboarding_required=onboarding_required), expires_at=exp_iso)


class CallbackRelayForm(BaseModel):
    """Fields relayed from the callback URL fragment (implicit flow)."""

    access_token: Optional[str] = Field(default=None, max_length=8192)
    refresh_token: Optional[str] = Field(default=None, max_length=1024)
    error: Optional[str] = Field(default=None, max_length=256)
    error_description: Optional[str] = Field(default=None, max_length=1024)
    state: Optional[str] = Field(default=None, max_length=128)
    signup: bool = False
    step: Optional[str] = Field(default=None, max_length=4)

    @field_validator("access_token", "refresh_token", "error", "error_description", "state", mode="before")
    @classmethod
    def _strip_empty(cls, v):
        return _blank_to_none(v)

    @field_validator("signup", mode="before")
    @classmethod
    def _truthy(cls, v):
        return str(v or "").strip().lower() in ("1", "true", "yes")

    @field_validator("step", mode="before")
    @classmethod
    def _digits_only(cls, v):
        v = _blank_to_none(v)
        return v if isinstance(v, str) and v.isdigit() else None


class OnboardingRefreshForm(BaseModel):
    next: Optional[str] = Field(default=None, max_length=256)
    step: Optional[str] = Field(default=None, max_length=4)

    @field_validator("next", "step", mode="before")
    @classmethod
    def _strip_empty(cls, v):
        return _blank_to_none(v)


class LoginForm(BaseModel):
    """Email/password sign-in form posted by the login page."""

    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=1, max_length=1024)
    redirect: Optional[str] = Field(default=None, max_length=256)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("redirect", mode="before")
    @classmethod
    def _strip_empty(cls, v):
        return _blank_to_none(v)
