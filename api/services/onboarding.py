"""
Onboarding State Machine — Drives one visitor through identity establishment.

Flow:
  1. Role → 2. Phone → 3. OTP
  → existing account: logged in
  → new provider: 4. Aadhaar KYC → 5. Profile → complete
  → new customer: 5. Profile → complete

OTP success is the gate for both login and registration, and the directory
is only consulted after it. Every domain error is turned into a
notification here; nothing escapes to the presentation layer.
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Iterable

from config import settings
from schemas.onboarding import (
    Notification,
    NotificationKind,
    OnboardingSnapshot,
    Role,
    Step,
)
from services.countdown import ResendCountdown
from services.directory import UserDirectory
from services.errors import (
    InvalidPhoneNumber,
    InvalidRole,
    OnboardingError,
    OtpTransportError,
    RateLimited,
)
from services.identity import IdentityVerificationService
from services.otp import OTPService
from services.otp_transport import OtpTransport
from services.validators import digits_only, is_valid_phone_number, mask_phone

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "Please wait, a request is already in progress."
WRONG_STEP_MESSAGE = "This action is not available right now."
UNEXPECTED_MESSAGE = "Something went wrong. Please try again."

NotificationListener = Callable[[Notification], None]
TickListener = Callable[[int], None]


class OnboardingStateMachine:
    def __init__(
        self,
        otp: OTPService,
        transport: OtpTransport,
        identity: IdentityVerificationService,
        directory: UserDirectory,
        countdown_seconds: int = settings.OTP_RESEND_COOLDOWN_SECONDS,
        countdown_interval: float = 1.0,
        listener: NotificationListener | None = None,
        tick_listener: TickListener | None = None,
    ) -> None:
        self.otp = otp
        self.transport = transport
        self.identity = identity
        self.directory = directory
        self.listener = listener
        self.tick_listener = tick_listener
        self.countdown = ResendCountdown(
            seconds=countdown_seconds,
            interval=countdown_interval,
            on_tick=self._on_countdown_tick,
            on_complete=self._on_countdown_complete,
        )
        self._notifications: list[Notification] = []
        # Bumped on every reset; results of calls started before it are dropped
        self._epoch = 0
        self._busy = False
        self._reset_fields()

    def _reset_fields(self) -> None:
        self.step = Step.ROLE_SELECTION
        self.selected_role: Role | None = None
        self.phone_number: str | None = None
        self.otp_verified = False
        self.kyc_verified = False
        self.resend_available = False
        self.resend_seconds_remaining = 0

    # ── Outcome events ──────────────────────────────────────

    @property
    def busy(self) -> bool:
        return self._busy

    def snapshot(self) -> OnboardingSnapshot:
        return OnboardingSnapshot(
            step=self.step,
            selected_role=self.selected_role,
            phone_number=self.phone_number,
            resend_available=self.resend_available,
            resend_seconds_remaining=self.resend_seconds_remaining,
            otp_verified=self.otp_verified,
            busy=self._busy,
        )

    def drain_notifications(self) -> list[Notification]:
        drained, self._notifications = self._notifications, []
        return drained

    def _notify(self, kind: NotificationKind, message: str, retry: bool = False) -> None:
        notification = Notification(kind=kind, message=message, retry=retry)
        self._notifications.append(notification)
        if self.listener:
            self.listener(notification)

    def _notify_failure(self, error: OnboardingError) -> None:
        kind = NotificationKind.WARNING if isinstance(error, RateLimited) else NotificationKind.ERROR
        self._notify(kind, error.message, retry=error.retryable)

    # ── Guards ──────────────────────────────────────────────

    def _accepts(self, step: Step) -> bool:
        if self._busy:
            self._notify(NotificationKind.WARNING, BUSY_MESSAGE)
            return False
        if self.step is not step:
            logger.debug("Event rejected: step=%s expected=%s", self.step.value, step.value)
            self._notify(NotificationKind.WARNING, WRONG_STEP_MESSAGE)
            return False
        return True

    def _stale(self, epoch: int) -> bool:
        return epoch != self._epoch

    @asynccontextmanager
    async def _in_flight(self):
        """Hold the flow busy for one external call and recover its errors."""
        epoch = self._epoch
        self._busy = True
        try:
            yield epoch
        except OnboardingError as e:
            if not self._stale(epoch):
                self._notify_failure(e)
        except Exception:
            logger.exception("Unexpected onboarding error: step=%s", self.step.value)
            if not self._stale(epoch):
                self._notify(NotificationKind.ERROR, UNEXPECTED_MESSAGE)
        finally:
            if not self._stale(epoch):
                self._busy = False

    # ── Countdown ───────────────────────────────────────────

    def _on_countdown_tick(self, remaining: int) -> None:
        self.resend_seconds_remaining = remaining
        if self.tick_listener:
            self.tick_listener(remaining)

    def _on_countdown_complete(self) -> None:
        self.resend_available = True
        logger.debug("Resend available: phone=%s", mask_phone(self.phone_number or ""))

    def _start_countdown(self, seconds: int) -> None:
        self.resend_available = False
        self.countdown.start(seconds)

    def _stop_countdown(self) -> None:
        self.countdown.cancel()
        self.resend_available = False
        self.resend_seconds_remaining = 0

    # ── Events ──────────────────────────────────────────────

    async def role_chosen(self, role: Role | str) -> Step:
        if not self._accepts(Step.ROLE_SELECTION):
            return self.step
        try:
            self.selected_role = Role(role)
        except ValueError:
            self._notify_failure(InvalidRole())
            return self.step

        self.step = Step.PHONE_INPUT
        return self.step

    async def phone_submitted(self, raw: str) -> Step:
        """Validate the phone, issue a code and hand it to the transport."""
        if not self._accepts(Step.PHONE_INPUT):
            return self.step

        phone = digits_only(raw)
        if not is_valid_phone_number(phone):
            self._notify_failure(InvalidPhoneNumber())
            return self.step

        async with self._in_flight() as epoch:
            await self._issue_code(phone)
            cooldown = await self.otp.resend_available_in(phone)
            if self._stale(epoch):
                await self.otp.discard(phone)
                return self.step
            self.phone_number = phone
            self.step = Step.OTP_VERIFICATION
            self._start_countdown(cooldown)
            self._notify(NotificationKind.SUCCESS, "OTP sent successfully")
        return self.step

    async def resend_requested(self) -> Step:
        if not self._accepts(Step.OTP_VERIFICATION):
            return self.step

        phone = self.phone_number
        async with self._in_flight() as epoch:
            await self._issue_code(phone)
            cooldown = await self.otp.resend_available_in(phone)
            if self._stale(epoch):
                await self.otp.discard(phone)
                return self.step
            self._start_countdown(cooldown)
            self._notify(NotificationKind.SUCCESS, "OTP resent successfully")
        return self.step

    async def _issue_code(self, phone: str) -> None:
        challenge = await self.otp.request_code(phone)
        try:
            await self.transport.send_code(phone, challenge.code)
        except OtpTransportError:
            # Drop the unsent code so a manual retry is not rate limited
            await self.otp.discard(phone)
            raise

    async def otp_submitted(self, code: str) -> Step:
        if not self._accepts(Step.OTP_VERIFICATION):
            return self.step

        async with self._in_flight() as epoch:
            # A code already accepted in this flow is not asked for again;
            # only the account lookup is retried.
            if not self.otp_verified:
                await self.otp.verify_code(self.phone_number, code)
                if self._stale(epoch):
                    return self.step
                self.otp_verified = True

            existing = await self.directory.find_by_phone(self.phone_number)
            if self._stale(epoch):
                return self.step
            if existing is not None:
                await self.directory.set_current_session(existing.id)
                if self._stale(epoch):
                    return self.step
                self._stop_countdown()
                self.step = Step.LOGGED_IN
                logger.info("Login: account=%s phone=%s", existing.id, mask_phone(self.phone_number))
                self._notify(NotificationKind.SUCCESS, "Welcome back!")
            elif self.selected_role is Role.PROVIDER:
                self._stop_countdown()
                self.step = Step.AADHAAR_KYC
            else:
                self._stop_countdown()
                self.step = Step.PROFILE_SETUP
        return self.step

    async def aadhaar_submitted(self, national_id: str, consent: bool) -> Step:
        if not self._accepts(Step.AADHAAR_KYC):
            return self.step

        async with self._in_flight() as epoch:
            await self.identity.verify(national_id, consent)
            if self._stale(epoch):
                return self.step
            self.kyc_verified = True
            self.step = Step.PROFILE_SETUP
            self._notify(NotificationKind.SUCCESS, "Aadhaar verified successfully")
        return self.step

    async def profile_submitted(
        self,
        full_name: str,
        email: str | None = None,
        services: Iterable[str] = (),
    ) -> Step:
        if not self._accepts(Step.PROFILE_SETUP):
            return self.step

        verified = self.otp_verified and (self.selected_role is Role.CUSTOMER or self.kyc_verified)
        async with self._in_flight() as epoch:
            account = await self.directory.create(
                phone_number=self.phone_number,
                full_name=full_name,
                role=self.selected_role,
                services=services,
                email=email,
                verified=verified,
            )
            if self._stale(epoch):
                logger.info("Flow reset during registration; account %s kept without session", account.id)
                return self.step
            await self.directory.set_current_session(account.id)
            if self._stale(epoch):
                return self.step
            self.step = Step.COMPLETE
            self._notify(NotificationKind.SUCCESS, "Registration successful! Welcome to QuickServe")
        return self.step

    async def flow_cancelled(self) -> Step:
        """Close the flow from any step: back to role selection with nothing carried over."""
        self._epoch += 1
        self._busy = False
        self._stop_countdown()
        if self.phone_number:
            await self.otp.discard(self.phone_number)
        self._reset_fields()
        return self.step

    async def logout(self) -> Step:
        await self.directory.clear_current_session()
        await self.flow_cancelled()
        self._notify(NotificationKind.INFO, "You have been logged out")
        return self.step
