"""
Flow Registry — One onboarding state machine per client instance.

Services (OTP, transport, KYC backend, account repository) are shared by
all flows. Each flow gets its own UserDirectory bound to a client id, so
the session pointer belongs to the client rather than to the flow and
outlives it. Flows live in process memory only; they are released on
cancel or after sitting idle for FLOW_IDLE_TIMEOUT_SECONDS.
"""

import logging
import time
import uuid
from typing import Callable

from config import settings
from services.directory import AccountRepository, UserDirectory
from services.identity import IdentityVerificationService
from services.onboarding import OnboardingStateMachine
from services.otp import OTPService
from services.otp_transport import OtpTransport

logger = logging.getLogger(__name__)


class FlowRegistry:
    def __init__(
        self,
        otp: OTPService,
        transport: OtpTransport,
        identity: IdentityVerificationService,
        repository: AccountRepository,
        countdown_interval: float = 1.0,
        idle_timeout: float = settings.FLOW_IDLE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.otp = otp
        self.transport = transport
        self.identity = identity
        self.repository = repository
        self.countdown_interval = countdown_interval
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._flows: dict[str, OnboardingStateMachine] = {}
        self._touched: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._flows)

    def directory_for(self, client_id: str) -> UserDirectory:
        return UserDirectory(self.repository, client_id=client_id)

    async def create(self, client_id: str | None = None) -> tuple[str, OnboardingStateMachine]:
        """Open a flow; without a client id the flow id doubles as one."""
        await self.prune_idle()

        flow_id = uuid.uuid4().hex
        machine = OnboardingStateMachine(
            otp=self.otp,
            transport=self.transport,
            identity=self.identity,
            directory=self.directory_for(client_id or flow_id),
            countdown_seconds=int(self.otp.resend_cooldown.total_seconds()),
            countdown_interval=self.countdown_interval,
        )
        self._flows[flow_id] = machine
        self._touched[flow_id] = self._clock()
        logger.info("Flow created: id=%s client=%s active=%d", flow_id, machine.directory.client_id, len(self._flows))
        return flow_id, machine

    def get(self, flow_id: str) -> OnboardingStateMachine | None:
        machine = self._flows.get(flow_id)
        if machine is not None:
            self._touched[flow_id] = self._clock()
        return machine

    async def discard(self, flow_id: str) -> OnboardingStateMachine | None:
        """Cancel and forget a flow. Returns the reset machine, if there was one."""
        self._touched.pop(flow_id, None)
        machine = self._flows.pop(flow_id, None)
        if machine is not None:
            await machine.flow_cancelled()
            logger.info("Flow discarded: id=%s active=%d", flow_id, len(self._flows))
        return machine

    async def prune_idle(self) -> int:
        """Discard flows untouched for longer than the idle timeout, skipping busy ones."""
        cutoff = self._clock() - self.idle_timeout
        idle = [
            flow_id for flow_id, touched in self._touched.items()
            if touched < cutoff and not self._flows[flow_id].busy
        ]
        for flow_id in idle:
            await self.discard(flow_id)
        return len(idle)

    async def shutdown(self) -> None:
        """Cancel every flow's countdown; accounts and sessions are left in place."""
        for machine in self._flows.values():
            machine.countdown.cancel()
        self._flows.clear()
        self._touched.clear()
