"""Cancellable timer tasks: periodic loops and cancellation scopes."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine

logger = logging.getLogger(__name__)

LoopAction = Callable[[], Awaitable[Any]]
ProgressCallback = Callable[[str, float], None]
StateCallback = Callable[[str, bool], None]

DEFAULT_TICK = 0.25


class PeriodicLoop:
    """Runs an action at the end of every interval and reports progress while waiting."""

    def __init__(
        self,
        name: str,
        interval: float,
        action: LoopAction,
        *,
        on_progress: ProgressCallback | None = None,
        on_state: StateCallback | None = None,
        tick: float = DEFAULT_TICK,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.name = name
        self.interval = interval
        self._action = action
        self._on_progress = on_progress
        self._on_state = on_state
        self._tick = min(tick, interval)
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        if self.running:
            logger.debug("%s loop already running", self.name)
            return False
        self._task = asyncio.create_task(self._run(), name=f"{self.name}-loop")
        logger.info("Started %s loop (every %.1fs)", self.name, self.interval)
        self._notify_state(True)
        return True

    async def stop(self) -> bool:
        if not self.running:
            return False
        assert self._task is not None
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped %s loop", self.name)
        self._notify_state(False)
        return True

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        cycle_started = loop.time()
        while True:
            await asyncio.sleep(self._tick)
            fraction = (loop.time() - cycle_started) / self.interval
            if fraction < 1.0:
                self._notify_progress(fraction)
                continue

            try:
                await self._action()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - the loop outlives a failed round
                logger.error("%s loop action failed: %s", self.name, exc)
            cycle_started = loop.time()
            self._notify_progress(0.0)

    def _notify_progress(self, fraction: float) -> None:
        if self._on_progress is not None:
            self._on_progress(self.name, min(fraction, 1.0))

    def _notify_state(self, running: bool) -> None:
        if self._on_state is not None:
            self._on_state(self.name, running)


class TaskScope:
    """A group of tasks cancelled together.

    A task that has started work which must not be interrupted calls ``claim()``;
    ``cancel()`` then only reaches tasks that are still waiting.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._pending: set[asyncio.Task[Any]] = set()
        self._claimed: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._pending) + len(self._claimed)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=f"{self.name}-{len(self) + 1}")
        self._pending.add(task)
        task.add_done_callback(self._forget)
        return task

    def claim(self) -> None:
        task = asyncio.current_task()
        if task in self._pending:
            self._pending.discard(task)
            self._claimed.add(task)

    def cancel(self, *, include_claimed: bool = False) -> int:
        targets = set(self._pending)
        if include_claimed:
            targets |= self._claimed
        for task in targets:
            task.cancel()
        return len(targets)

    async def wait(self) -> None:
        tasks = self._pending | self._claimed
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _forget(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        self._claimed.discard(task)
