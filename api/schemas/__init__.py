"""Pydantic schemas for API request/response models."""

from schemas.onboarding import (
    AadhaarIn,
    AccountRecord,
    FlowResponse,
    FlowStartIn,
    Notification,
    NotificationKind,
    OnboardingSnapshot,
    OtpIn,
    PhoneIn,
    ProfileIn,
    Role,
    RoleIn,
    Step,
)

__all__ = [
    "AadhaarIn", "AccountRecord", "FlowResponse", "FlowStartIn", "Notification",
    "NotificationKind", "OnboardingSnapshot", "OtpIn", "PhoneIn",
    "ProfileIn", "Role", "RoleIn", "Step",
]
