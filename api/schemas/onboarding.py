"""Pydantic schemas for onboarding state, accounts, and API bodies."""

from __future__ import annotations
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field


# ── Enums ──────────────────────────────────────────────────

class Role(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"


class Step(str, Enum):
    ROLE_SELECTION = "role_selection"
    PHONE_INPUT = "phone_input"
    OTP_VERIFICATION = "otp_verification"
    AADHAAR_KYC = "aadhaar_kyc"
    PROFILE_SETUP = "profile_setup"
    COMPLETE = "complete"
    LOGGED_IN = "logged_in"


class NotificationKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# ── Domain records ─────────────────────────────────────────

class AccountRecord(BaseModel):
    id: str
    phone_number: str
    full_name: str
    email: str | None = None
    role: Role
    services: list[str] = Field(default_factory=list)
    verified: bool = False
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class Notification(BaseModel):
    """Outcome event for the presentation layer to render."""
    kind: NotificationKind
    message: str
    retry: bool = False


class OnboardingSnapshot(BaseModel):
    """Read-only view of a flow for rendering."""
    step: Step
    selected_role: Role | None = None
    phone_number: str | None = None
    resend_available: bool = False
    resend_seconds_remaining: int = 0
    otp_verified: bool = False
    busy: bool = False


# ── API bodies ─────────────────────────────────────────────

class FlowStartIn(BaseModel):
    """Optional stable id of the client instance; sessions are keyed by it."""
    client_id: str | None = Field(None, min_length=1, max_length=64)


class RoleIn(BaseModel):
    role: Role


class PhoneIn(BaseModel):
    phone_number: str = Field(..., max_length=32)


class OtpIn(BaseModel):
    code: str = Field(..., max_length=12)


class AadhaarIn(BaseModel):
    aadhaar_number: str = Field(..., max_length=32)
    consent: bool = False


class ProfileIn(BaseModel):
    full_name: str = ""
    email: str | None = None
    services: list[str] = Field(default_factory=list)


class FlowResponse(BaseModel):
    flow_id: str
    client_id: str
    state: OnboardingSnapshot
    notifications: list[Notification] = Field(default_factory=list)
