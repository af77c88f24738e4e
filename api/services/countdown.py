"""
Resend Countdown — Cancellable background timer for the OTP step.

Surfaces the remaining seconds once per interval, from `seconds` down to
exactly 0, then fires `on_complete` once. Runs as an asyncio task next to
the flow and must be cancelled when the flow leaves the OTP step.
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], None]
CompleteCallback = Callable[[], None]


class ResendCountdown:
    def __init__(
        self,
        seconds: int = 30,
        interval: float = 1.0,
        on_tick: TickCallback | None = None,
        on_complete: CompleteCallback | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.seconds = seconds
        self.interval = interval
        self.on_tick = on_tick
        self.on_complete = on_complete
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self.remaining = seconds
        self.done = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, seconds: int | None = None) -> None:
        """(Re)start from `seconds` (default: the full duration). Requires a running event loop."""
        self.cancel()
        self.remaining = self.seconds if seconds is None else seconds
        self.done = False
        self._emit(self.remaining)
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("Resend countdown cancelled at %ds", self.remaining)
        self._task = None

    async def wait(self) -> None:
        """Block until the countdown finishes or is cancelled."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def _run(self) -> None:
        while self.remaining > 0:
            await self._sleep(self.interval)
            self.remaining -= 1
            self._emit(self.remaining)

        self.done = True
        if self.on_complete:
            self.on_complete()

    def _emit(self, remaining: int) -> None:
        if self.on_tick:
            self.on_tick(remaining)
