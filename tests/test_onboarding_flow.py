"""End-to-end tests for the onboarding state machine."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))
sys.path.insert(0, os.path.dirname(__file__))

import asyncio
import pytest
import pytest_asyncio

from helpers import BlockingTransport, FailingTransport, FakeClock, FakeIdBackend
from schemas.onboarding import NotificationKind, Role, Step
from services.directory import InMemoryAccountRepository, UserDirectory
from services.identity import IdCheckResult, IdentityVerificationService
from services.onboarding import BUSY_MESSAGE, UNEXPECTED_MESSAGE, WRONG_STEP_MESSAGE, OnboardingStateMachine
from services.otp import OTPService
from services.otp_transport import LoggingTransport

PHONE = "9876543210"
AADHAAR = "234567890123"


class FlakyLookupRepository(InMemoryAccountRepository):
    """First phone lookup fails as if the database were down."""

    def __init__(self):
        super().__init__()
        self.lookups = 0

    async def get_by_phone(self, phone_number):
        self.lookups += 1
        if self.lookups == 1:
            raise ConnectionError("database unavailable")
        return await super().get_by_phone(phone_number)


class BlockingRepository(InMemoryAccountRepository):
    """Holds account inserts until `release()`."""

    def __init__(self):
        super().__init__()
        self._gate = asyncio.Event()

    def release(self) -> None:
        self._gate.set()

    async def add(self, record):
        await self._gate.wait()
        return await super().add(record)


class Harness:
    def __init__(self, transport=None, backend=None, repository=None, countdown_interval=3600.0, cooldown=30):
        self.clock = FakeClock()
        self.otp = OTPService(clock=self.clock, hash_rounds=4, resend_cooldown_seconds=cooldown)
        self.transport = transport or LoggingTransport()
        self.backend = backend or FakeIdBackend()
        self.repository = repository or InMemoryAccountRepository()
        self.directory = UserDirectory(self.repository)
        self.ticks: list[int] = []
        self.machine = OnboardingStateMachine(
            otp=self.otp,
            transport=self.transport,
            identity=IdentityVerificationService(self.backend),
            directory=self.directory,
            countdown_seconds=30,
            countdown_interval=countdown_interval,
            tick_listener=self.ticks.append,
        )

    @property
    def last_code(self) -> str:
        return self.transport.sent[-1][1]

    def messages(self) -> list[str]:
        return [n.message for n in self.machine.drain_notifications()]

    async def reach_otp(self, role: Role = Role.CUSTOMER) -> None:
        await self.machine.role_chosen(role)
        await self.machine.phone_submitted(PHONE)
        self.machine.drain_notifications()

    def close(self) -> None:
        self.machine.countdown.cancel()


@pytest_asyncio.fixture
async def harness():
    h = Harness()
    yield h
    h.close()


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


# ── Happy paths ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_new_customer_registration(harness):
    machine = harness.machine
    assert machine.step is Step.ROLE_SELECTION

    assert await machine.role_chosen("customer") is Step.PHONE_INPUT
    assert await machine.phone_submitted("98765 43210") is Step.OTP_VERIFICATION
    assert harness.messages() == ["OTP sent successfully"]
    assert harness.transport.sent[-1][0] == PHONE

    assert await machine.otp_submitted(harness.last_code) is Step.PROFILE_SETUP
    assert not machine.countdown.running

    assert await machine.profile_submitted("Asha Rao", email="asha@example.com") is Step.COMPLETE
    assert harness.messages() == ["Registration successful! Welcome to QuickServe"]

    account = await harness.directory.get_current_session()
    assert account.phone_number == PHONE
    assert account.role is Role.CUSTOMER
    assert account.services == []
    assert account.verified


@pytest.mark.asyncio
async def test_new_provider_registration_goes_through_kyc(harness):
    machine = harness.machine
    await harness.reach_otp(Role.PROVIDER)

    assert await machine.otp_submitted(harness.last_code) is Step.AADHAAR_KYC
    assert await machine.aadhaar_submitted(AADHAAR, consent=True) is Step.PROFILE_SETUP
    assert harness.messages() == ["Aadhaar verified successfully"]
    assert harness.backend.calls == [AADHAAR]

    assert await machine.profile_submitted("Ravi", services=["Plumbing", "electrical"]) is Step.COMPLETE
    account = await harness.directory.get_current_session()
    assert account.role is Role.PROVIDER
    assert account.services == ["plumbing", "electrical"]
    assert account.verified


@pytest.mark.asyncio
async def test_existing_account_logs_in_regardless_of_role(harness):
    existing = await harness.directory.create(PHONE, "Asha", Role.CUSTOMER)
    machine = harness.machine
    await harness.reach_otp(Role.PROVIDER)

    assert await machine.otp_submitted(harness.last_code) is Step.LOGGED_IN
    assert harness.messages() == ["Welcome back!"]
    assert harness.backend.calls == []
    assert (await harness.directory.get_current_session()).id == existing.id


@pytest.mark.asyncio
async def test_logout_clears_session_and_resets(harness):
    await harness.directory.create(PHONE, "Asha", Role.CUSTOMER)
    machine = harness.machine
    await harness.reach_otp()
    await machine.otp_submitted(harness.last_code)
    harness.messages()

    assert await machine.logout() is Step.ROLE_SELECTION
    assert harness.messages() == ["You have been logged out"]
    assert await harness.directory.get_current_session() is None
    assert machine.phone_number is None


# ── Validation ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_invalid_role_stays_on_role_selection(harness):
    assert await harness.machine.role_chosen("admin") is Step.ROLE_SELECTION
    notes = harness.machine.drain_notifications()
    assert notes[0].kind is NotificationKind.ERROR
    assert notes[0].message == "Please choose Customer or Provider"


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["12345", "0876543210", "98765432101"])
async def test_invalid_phone_sends_nothing(harness, raw):
    await harness.machine.role_chosen(Role.CUSTOMER)
    assert await harness.machine.phone_submitted(raw) is Step.PHONE_INPUT
    assert harness.messages() == ["Please enter a valid phone number"]
    assert harness.transport.sent == []


@pytest.mark.asyncio
async def test_event_for_wrong_step_is_ignored(harness):
    assert await harness.machine.otp_submitted("123456") is Step.ROLE_SELECTION
    notes = harness.machine.drain_notifications()
    assert notes[0].kind is NotificationKind.WARNING
    assert notes[0].message == WRONG_STEP_MESSAGE


@pytest.mark.asyncio
async def test_provider_profile_without_services_stays(harness):
    machine = harness.machine
    await harness.reach_otp(Role.PROVIDER)
    await machine.otp_submitted(harness.last_code)
    await machine.aadhaar_submitted(AADHAAR, consent=True)
    harness.messages()

    assert await machine.profile_submitted("Ravi", services=[]) is Step.PROFILE_SETUP
    assert harness.messages() == ["Please select at least one service category"]
    assert await harness.directory.find_by_phone(PHONE) is None


# ── OTP failures ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_wrong_otp_reports_remaining_attempts(harness):
    machine = harness.machine
    await harness.reach_otp()
    code = harness.last_code

    assert await machine.otp_submitted(_wrong(code)) is Step.OTP_VERIFICATION
    assert harness.messages() == ["Incorrect OTP. 2 attempts remaining."]


@pytest.mark.asyncio
async def test_three_wrong_codes_lock_out_the_challenge(harness):
    machine = harness.machine
    await harness.reach_otp()
    code = harness.last_code
    for _ in range(3):
        await machine.otp_submitted(_wrong(code))
    harness.messages()

    assert await machine.otp_submitted(code) is Step.OTP_VERIFICATION
    assert harness.messages() == ["Too many attempts. Please request a new OTP."]


@pytest.mark.asyncio
async def test_expired_code_rejected(harness):
    machine = harness.machine
    await harness.reach_otp()
    harness.clock.advance(301)
    assert await machine.otp_submitted(harness.last_code) is Step.OTP_VERIFICATION
    assert harness.messages() == ["OTP expired. Please request a new one."]


@pytest.mark.asyncio
async def test_resend_before_cooldown_is_rate_limited(harness):
    machine = harness.machine
    await harness.reach_otp()
    harness.clock.advance(10)

    await machine.resend_requested()
    notes = machine.drain_notifications()
    assert notes[0].kind is NotificationKind.WARNING
    assert notes[0].message == "Please wait 20 seconds before requesting a new OTP"
    assert len(harness.transport.sent) == 1


@pytest.mark.asyncio
async def test_resend_after_cooldown_issues_new_code(harness):
    machine = harness.machine
    await harness.reach_otp()
    harness.clock.advance(30)

    assert await machine.resend_requested() is Step.OTP_VERIFICATION
    assert harness.messages() == ["OTP resent successfully"]
    assert len(harness.transport.sent) == 2
    assert await machine.otp_submitted(harness.last_code) is Step.PROFILE_SETUP


@pytest.mark.asyncio
async def test_transport_failure_allows_immediate_retry():
    h = Harness(transport=FailingTransport())
    try:
        await h.machine.role_chosen(Role.CUSTOMER)
        assert await h.machine.phone_submitted(PHONE) is Step.PHONE_INPUT
        notes = h.machine.drain_notifications()
        assert notes[0].message == "Could not send OTP. Please try again."
        assert notes[0].retry
        assert not h.machine.busy

        await h.machine.phone_submitted(PHONE)
        assert h.messages() == ["Could not send OTP. Please try again."]
        assert h.transport.attempts == 2
    finally:
        h.close()


# ── KYC failures ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_kyc_without_consent_does_not_call_backend(harness):
    machine = harness.machine
    await harness.reach_otp(Role.PROVIDER)
    await machine.otp_submitted(harness.last_code)

    assert await machine.aadhaar_submitted(AADHAAR, consent=False) is Step.AADHAAR_KYC
    assert harness.messages() == ["Please provide consent to verify your Aadhaar"]
    assert harness.backend.calls == []


@pytest.mark.asyncio
async def test_kyc_unavailable_is_retryable():
    h = Harness(backend=FakeIdBackend(IdCheckResult.UNAVAILABLE))
    try:
        await h.reach_otp(Role.PROVIDER)
        await h.machine.otp_submitted(h.last_code)
        assert await h.machine.aadhaar_submitted(AADHAAR, consent=True) is Step.AADHAAR_KYC
        notes = h.machine.drain_notifications()
        assert notes[0].retry
        assert notes[0].message == "Aadhaar verification service is unavailable. Please try again."
    finally:
        h.close()


# ── Concurrency and cancellation ────────────────────────────

@pytest.mark.asyncio
async def test_events_rejected_while_busy():
    h = Harness(backend=FakeIdBackend(block=True))
    try:
        await h.reach_otp(Role.PROVIDER)
        await h.machine.otp_submitted(h.last_code)

        pending = asyncio.create_task(h.machine.aadhaar_submitted(AADHAAR, consent=True))
        await asyncio.sleep(0)
        assert h.machine.busy
        assert h.machine.snapshot().busy

        await h.machine.aadhaar_submitted(AADHAAR, consent=True)
        assert h.messages() == [BUSY_MESSAGE]

        h.backend.release()
        assert await pending is Step.PROFILE_SETUP
        assert h.backend.calls == [AADHAAR]
        assert not h.machine.busy
    finally:
        h.close()


@pytest.mark.asyncio
async def test_cancel_during_kyc_drops_late_result():
    h = Harness(backend=FakeIdBackend(block=True))
    try:
        await h.reach_otp(Role.PROVIDER)
        await h.machine.otp_submitted(h.last_code)

        pending = asyncio.create_task(h.machine.aadhaar_submitted(AADHAAR, consent=True))
        await asyncio.sleep(0)
        assert await h.machine.flow_cancelled() is Step.ROLE_SELECTION
        assert not h.machine.busy

        h.backend.release()
        await pending
        assert h.machine.step is Step.ROLE_SELECTION
        assert h.machine.selected_role is None
        assert h.machine.drain_notifications() == []
    finally:
        h.close()


@pytest.mark.asyncio
async def test_cancel_during_send_discards_code():
    transport = BlockingTransport()
    h = Harness(transport=transport)
    try:
        await h.machine.role_chosen(Role.CUSTOMER)
        pending = asyncio.create_task(h.machine.phone_submitted(PHONE))
        await asyncio.sleep(0)
        assert h.machine.busy

        await h.machine.flow_cancelled()
        transport.release()
        await pending

        assert h.machine.step is Step.ROLE_SELECTION
        assert not h.machine.countdown.running
        assert await h.otp.store.get(PHONE) is None
    finally:
        h.close()


@pytest.mark.asyncio
async def test_cancel_during_registration_keeps_account_without_session():
    repo = BlockingRepository()
    h = Harness(repository=repo)
    try:
        await h.reach_otp()
        await h.machine.otp_submitted(h.last_code)

        pending = asyncio.create_task(h.machine.profile_submitted("Asha"))
        await asyncio.sleep(0)
        await h.machine.flow_cancelled()
        repo.release()
        await pending

        assert h.machine.step is Step.ROLE_SELECTION
        assert await h.directory.find_by_phone(PHONE) is not None
        assert await h.directory.get_current_session() is None
    finally:
        h.close()


@pytest.mark.asyncio
async def test_cancel_discards_pending_challenge(harness):
    await harness.reach_otp()
    await harness.machine.flow_cancelled()

    assert harness.machine.step is Step.ROLE_SELECTION
    assert await harness.otp.store.get(PHONE) is None
    await harness.machine.role_chosen(Role.CUSTOMER)
    await harness.machine.phone_submitted(PHONE)
    assert harness.messages() == ["OTP sent successfully"]
    assert len(harness.transport.sent) == 2


# ── Countdown ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_countdown_runs_to_zero_and_enables_resend():
    h = Harness(countdown_interval=0)
    try:
        await h.reach_otp()
        await h.machine.countdown.wait()
        assert h.ticks == list(range(30, -1, -1))
        snapshot = h.machine.snapshot()
        assert snapshot.resend_available
        assert snapshot.resend_seconds_remaining == 0
    finally:
        h.close()


@pytest.mark.asyncio
async def test_countdown_starts_at_full_cooldown(harness):
    await harness.reach_otp()
    assert harness.ticks == [30]
    assert harness.machine.snapshot().resend_seconds_remaining == 30
    assert not harness.machine.snapshot().resend_available
    assert harness.machine.countdown.running


@pytest.mark.asyncio
async def test_countdown_follows_stored_cooldown():
    h = Harness(cooldown=45)
    try:
        await h.reach_otp()
        assert h.ticks == [45]
        h.clock.advance(10)
        await h.machine.resend_requested()
        assert h.messages() == ["Please wait 35 seconds before requesting a new OTP"]
    finally:
        h.close()


# ── Recovery ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_lookup_failure_after_verified_code_can_be_retried():
    """The accepted code is not needed again once the phone is verified."""
    h = Harness(repository=FlakyLookupRepository())
    try:
        await h.reach_otp()
        code = h.last_code

        assert await h.machine.otp_submitted(code) is Step.OTP_VERIFICATION
        assert h.messages() == [UNEXPECTED_MESSAGE]
        assert h.machine.snapshot().otp_verified
        assert not h.machine.busy

        assert await h.machine.otp_submitted(code) is Step.PROFILE_SETUP
        assert h.messages() == []
        assert len(h.transport.sent) == 1
    finally:
        h.close()


@pytest.mark.asyncio
async def test_malformed_code_keeps_attempts(harness):
    await harness.reach_otp()
    assert await harness.machine.otp_submitted("12") is Step.OTP_VERIFICATION
    assert harness.messages() == ["Please enter the 6-digit OTP"]
    assert await harness.machine.otp_submitted(harness.last_code) is Step.PROFILE_SETUP
