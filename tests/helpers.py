"""Shared fakes for onboarding tests."""

import asyncio
from datetime import datetime, timedelta, timezone

from services.errors import OtpTransportError
from services.identity import IdCheckResult


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 2, 27, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeIdBackend:
    """Returns a fixed result; optionally blocks until `release()`."""

    def __init__(self, result: IdCheckResult = IdCheckResult.VERIFIED, block: bool = False):
        self.result = result
        self.calls: list[str] = []
        self._gate = asyncio.Event()
        if not block:
            self._gate.set()

    def release(self) -> None:
        self._gate.set()

    async def check_id(self, national_id: str) -> IdCheckResult:
        self.calls.append(national_id)
        await self._gate.wait()
        return self.result


class FailingTransport:
    """Transport whose sends always fail."""

    def __init__(self):
        self.attempts = 0

    async def send_code(self, phone_number: str, code: str) -> None:
        self.attempts += 1
        raise OtpTransportError()


class BlockingTransport:
    """Records the code, then waits for `release()` before returning."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self._gate = asyncio.Event()

    def release(self) -> None:
        self._gate.set()

    async def send_code(self, phone_number: str, code: str) -> None:
        self.sent.append((phone_number, code))
        await self._gate.wait()
