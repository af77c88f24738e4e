"""
Onboarding error taxonomy.

Every error carries a user-facing ``message``. The state machine catches
``OnboardingError`` at its boundary and turns it into a notification, so
none of these ever aborts a flow.
"""


class OnboardingError(Exception):
    """Base class for all recoverable onboarding failures."""

    message = "Something went wrong. Please try again."
    retryable = False

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ── Validation (user-correctable, never retried) ───────────

class ValidationError(OnboardingError):
    message = "Invalid input"


class InvalidRole(ValidationError):
    message = "Please choose Customer or Provider"


class InvalidPhoneNumber(ValidationError):
    message = "Please enter a valid phone number"


class InvalidNationalId(ValidationError):
    message = "Please enter a valid 12-digit Aadhaar number"


class InvalidEmail(ValidationError):
    message = "Please enter a valid email address"


class UnknownService(ValidationError):
    message = "Unknown service category"


class MissingName(ValidationError):
    message = "Please enter your full name"


class MissingServices(ValidationError):
    message = "Please select at least one service category"


class DuplicatePhone(ValidationError):
    message = "An account with this phone number already exists"


class InvalidOtpFormat(ValidationError):
    message = "Please enter the 6-digit OTP"


# ── OTP ────────────────────────────────────────────────────

class RateLimited(OnboardingError):
    """Resend requested before the cooldown elapsed."""

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Please wait {retry_after} seconds before requesting a new OTP")


class VerifyFailure(OnboardingError):
    message = "OTP verification failed"


class OtpMismatch(VerifyFailure):
    def __init__(self, attempts_remaining: int):
        self.attempts_remaining = attempts_remaining
        super().__init__(f"Incorrect OTP. {attempts_remaining} attempts remaining.")


class OtpExpired(VerifyFailure):
    message = "OTP expired. Please request a new one."


class OtpAttemptsExceeded(VerifyFailure):
    message = "Too many attempts. Please request a new OTP."


class OtpNotFound(VerifyFailure):
    message = "No active OTP. Please request a new one."


class OtpTransportError(OnboardingError):
    message = "Could not send OTP. Please try again."
    retryable = True


# ── Aadhaar KYC ────────────────────────────────────────────

class IdentityError(OnboardingError):
    message = "Aadhaar verification failed"


class ConsentRequired(IdentityError):
    message = "Please provide consent to verify your Aadhaar"


class VerificationDenied(IdentityError):
    message = "Aadhaar verification failed"


class ServiceUnavailable(IdentityError):
    message = "Aadhaar verification service is unavailable. Please try again."
    retryable = True
