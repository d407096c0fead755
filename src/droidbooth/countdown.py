"""Pre-shutter countdown ticking once per second."""

from __future__ import annotations

import asyncio
from typing import Callable

TickCallback = Callable[[int], None]
CompleteCallback = Callable[[], None]


class CaptureCountdown:
    def __init__(
        self,
        seconds: int,
        *,
        on_tick: TickCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> None:
        self.seconds = seconds
        self.ticks = 0
        self._on_tick = on_tick
        self._on_complete = on_complete
        self._started_at: float | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return asyncio.get_running_loop().time() - self._started_at

    @property
    def time_remaining(self) -> float:
        """Seconds left until zero; negative once the countdown has overrun."""

        return self.seconds - self.elapsed

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("Countdown already started")
        self._started_at = asyncio.get_running_loop().time()
        self._tick(self.seconds)
        self._task = asyncio.create_task(self._run(), name="capture-countdown")

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        assert self._started_at is not None
        for remaining in range(self.seconds - 1, -1, -1):
            deadline = self._started_at + (self.seconds - remaining)
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            self._tick(remaining)
        if self._on_complete is not None:
            self._on_complete()

    def _tick(self, remaining: int) -> None:
        self.ticks += 1
        if self._on_tick is not None:
            self._on_tick(remaining)
