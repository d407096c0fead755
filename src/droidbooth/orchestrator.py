"""Camera action orchestrator: one camera action in flight at a time."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Iterator

from .adb import ADBError, LaunchFailure
from .config import Settings
from .countdown import CaptureCountdown
from .devices import AndroidDevice, DeviceManager
from .logbook import LogBook
from .probe import ProbeFailure
from .session import (
    ADBFactory,
    CameraActionError,
    DeviceSession,
    DeviceUnavailable,
    SessionPhase,
    default_adb_factory,
    open_session,
)
from .timers import PeriodicLoop, TaskScope

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = __name__.split(".")[0]

WAKE_COMMAND = "input keyevent 82"
ENTER_COMMAND = "input keyevent 66"
BACK_COMMAND = "input keyevent 4"
POWER_COMMAND = "input keyevent 26"
SHUTTER_COMMAND = "input keyevent KEYCODE_VOLUME_UP"
FOCUS_COMMAND = "input keyevent KEYCODE_FOCUS"

WAKE_ATTEMPTS = 5
UNLOCK_ATTEMPTS = 10
POLL_INTERVAL = 0.2
KEYSTROKE_DELAY = 0.1
CAMERA_SETTLE_DELAY = 1.0
LOCK_SETTLE_DELAY = 0.5
RESET_DOWNLOAD_WAIT = 30.0

DOWNLOAD_LOOP = "download"
FOCUS_LOOP = "focus"

# Errors that have already produced their log entry when they leave a public operation.
REPORTED_ERRORS = (CameraActionError, ADBError, ProbeFailure, OSError)


class DeviceNotInteractive(CameraActionError):
    """The screen did not turn on within the wake attempts."""


class DeviceLocked(CameraActionError):
    """The device stayed locked after the unlock attempts."""


class WakeOutcome(Enum):
    READY = auto()
    NOT_INTERACTIVE = auto()
    LOCKED = auto()


@dataclass(slots=True)
class OrchestratorHooks:
    countdown_tick: Callable[[int], None] | None = None
    countdown_complete: Callable[[], None] | None = None
    camera_action: Callable[[], None] | None = None
    loop_state: Callable[[str, bool], None] | None = None
    loop_progress: Callable[[str, float], None] | None = None


class CameraOrchestrator:
    """Coordinates interactive camera actions, downloads and background timers.

    Interactive actions (open, photo, focus, lock) share one gate; download passes
    share another. Neither gate is held while waiting on the other.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        adb_factory: ADBFactory = default_adb_factory,
        hooks: OrchestratorHooks | None = None,
        logbook: LogBook | None = None,
        poll_interval: float = POLL_INTERVAL,
        keystroke_delay: float = KEYSTROKE_DELAY,
        settle_delay: float = CAMERA_SETTLE_DELAY,
        lock_settle_delay: float = LOCK_SETTLE_DELAY,
    ) -> None:
        self._settings = settings
        self._adb_factory = adb_factory
        self.hooks = hooks or OrchestratorHooks()
        self.logbook = logbook or LogBook()
        self.logbook.attach(logging.getLogger(PACKAGE_LOGGER))
        self._poll_interval = poll_interval
        self._keystroke_delay = keystroke_delay
        self._settle_delay = settle_delay
        self._lock_settle_delay = lock_settle_delay

        self._session: DeviceSession | None = None
        self._interactive_gate = asyncio.Lock()
        self._download_gate = asyncio.Lock()
        self._last_camera_action: float | None = None
        self._last_download_initiated = float("-inf")
        self._last_known_counter = 0
        self._lock_task: asyncio.Task[None] | None = None
        self._download_scope: TaskScope | None = None
        self._countdown: CaptureCountdown | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._download_loop, self._focus_loop = self._build_loops()

    # ---------- State ----------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def phase(self) -> SessionPhase:
        if self._session is None:
            return SessionPhase.UNBOUND
        return self._session.phase

    @property
    def session(self) -> DeviceSession | None:
        return self._session

    @property
    def busy(self) -> bool:
        return self._interactive_gate.locked()

    @property
    def last_known_counter(self) -> int:
        return self._last_known_counter

    @property
    def download_loop_running(self) -> bool:
        return self._download_loop.running

    @property
    def focus_loop_running(self) -> bool:
        return self._focus_loop.running

    # ---------- Session ----------

    async def detect_device(self, *, force: bool = False) -> AndroidDevice:
        with self._reported("Device detection"):
            session = self._bind()
            return await self._detect(session, force=force)

    async def reset(self) -> None:
        await self._cancel_downloads()
        if self._session is not None:
            self._session.unbind()
        self._session = None
        logger.info("Device session reset")

    async def apply_settings(self, settings: Settings) -> None:
        restart_download = await self._download_loop.stop()
        restart_focus = await self._focus_loop.stop()
        await self.reset()
        self._settings = settings
        self._download_loop, self._focus_loop = self._build_loops()
        if restart_download:
            self._download_loop.start()
        if restart_focus:
            self._focus_loop.start()

    async def close(self) -> None:
        await self._download_loop.stop()
        await self._focus_loop.stop()
        if self._lock_task is not None:
            self._lock_task.cancel()
        if self._countdown is not None:
            self._countdown.cancel()
        for task in self._background:
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._download_scope = None
        self._session = None
        self.logbook.detach()

    def _bind(self) -> DeviceSession:
        if self._session is None:
            self._session = open_session(self._settings, self._adb_factory)
        return self._session

    async def _session_for_action(self) -> DeviceSession:
        session = self._bind()
        if session.device is None:
            await self._detect(session)
        return session

    async def _detect(self, session: DeviceSession, *, force: bool = False) -> AndroidDevice:
        if session.device is not None and not force:
            return session.device
        result = await DeviceManager(session.adb).detect()
        if not result.connected or result.device is None:
            session.unbind()
            message = result.message or "No device found"
            logger.error(message)
            raise DeviceUnavailable(message)
        session.bind(result.device)
        logger.info("Connected to device %s", result.device)
        return result.device

    @contextmanager
    def _reported(self, operation: str) -> Iterator[None]:
        try:
            yield
        except CameraActionError:
            raise
        except LaunchFailure as exc:
            self._session = None
            logger.error("%s failed: %s", operation, exc)
            raise
        except (ADBError, ProbeFailure, OSError) as exc:
            logger.error("%s failed: %s", operation, exc)
            raise

    # ---------- Wake / unlock ----------

    async def ensure_awake_and_unlocked(self) -> WakeOutcome:
        async with self._interactive_gate:
            with self._reported("Wake device"):
                return await self._ensure_awake_and_unlocked()

    async def _ensure_awake_and_unlocked(self) -> WakeOutcome:
        """Wake and unlock the device; the caller holds the interactive gate."""

        session = await self._session_for_action()
        prober = session.prober

        if not await prober.is_interactive():
            started = time.perf_counter()
            await session.adb.shell(WAKE_COMMAND)
            logger.info("Device interactive enabled", extra={"duration": time.perf_counter() - started})
            if not await self._poll(prober.is_interactive, expected=True, attempts=WAKE_ATTEMPTS):
                logger.error("Unable to activate device screen")
                return WakeOutcome.NOT_INTERACTIVE

        if await prober.is_locked():
            await self._unlock(session)
            if not await self._poll(prober.is_locked, expected=False, attempts=UNLOCK_ATTEMPTS):
                logger.error("Unable to unlock device. Is the pin code correct?")
                return WakeOutcome.LOCKED

        return WakeOutcome.READY

    async def _poll(
        self,
        probe: Callable[[], Awaitable[bool]],
        *,
        expected: bool,
        attempts: int,
    ) -> bool:
        for attempt in range(1, attempts + 1):
            await asyncio.sleep(self._poll_interval)
            try:
                if await probe() == expected:
                    return True
            except LaunchFailure:
                raise
            except (ProbeFailure, ADBError) as exc:
                logger.debug("Probe attempt %d/%d failed: %s", attempt, attempts, exc)
        return False

    async def _unlock(self, session: DeviceSession) -> None:
        pin = self._settings.device.pin_code
        started = time.perf_counter()
        await session.adb.shell(WAKE_COMMAND)
        if pin:
            await asyncio.sleep(self._keystroke_delay)
            await session.adb.shell(f"input text {pin}")
            await asyncio.sleep(self._keystroke_delay)
            await session.adb.shell(ENTER_COMMAND)
        logger.info(
            "Device unlocked with pin" if pin else "Device unlocked without pin",
            extra={"duration": time.perf_counter() - started},
        )

    async def _lock(self, session: DeviceSession) -> None:
        started = time.perf_counter()
        # back twice to leave e.g. the camera's photo mode
        await session.adb.shell(BACK_COMMAND)
        await asyncio.sleep(self._keystroke_delay)
        await session.adb.shell(BACK_COMMAND)
        await asyncio.sleep(self._keystroke_delay)
        await session.adb.shell(POWER_COMMAND)
        logger.info("Device locked", extra={"duration": time.perf_counter() - started})

    # ---------- Interactive actions ----------

    async def open_camera(self) -> None:
        async with self._interactive_gate:
            with self._reported("Open camera"):
                await self._open_camera(await self._session_for_action())

    async def _open_camera(self, session: DeviceSession) -> None:
        outcome = await self._ensure_awake_and_unlocked()
        if outcome is WakeOutcome.NOT_INTERACTIVE:
            raise DeviceNotInteractive("Unable to activate device screen")
        if outcome is WakeOutcome.LOCKED:
            raise DeviceLocked("Unable to unlock device. Is the pin code correct?")

        started = time.perf_counter()
        await session.adb.shell(f"am start -a {self._settings.device.camera_action}")
        logger.info("Camera opened", extra={"duration": time.perf_counter() - started})
        self._record_camera_action()

    async def take_photo(self) -> None:
        timing = self._settings.timing
        async with self._interactive_gate:
            with self._reported("Take photo"):
                started = time.perf_counter()
                countdown = CaptureCountdown(
                    timing.countdown_seconds,
                    on_tick=self._on_countdown_tick,
                    on_complete=self._on_countdown_complete,
                )
                self._countdown = countdown
                countdown.start()

                shutter_pressed = False
                try:
                    session = await self._session_for_action()
                    if self._camera_idle() or not await session.prober.is_interactive_and_unlocked():
                        await self._open_camera(session)
                        await asyncio.sleep(self._settle_delay)

                    time_to_wait = countdown.time_remaining - timing.countdown_adjustment
                    if time_to_wait > 0:
                        logger.debug(
                            "Waiting %dms for countdown to finish (%dms adjustment)",
                            int(time_to_wait * 1000),
                            int(timing.countdown_adjustment * 1000),
                        )
                        await asyncio.sleep(time_to_wait)

                    await session.adb.shell(SHUTTER_COMMAND)
                    shutter_pressed = True
                finally:
                    if not shutter_pressed:
                        countdown.cancel()

                self._record_camera_action()
                self._schedule_downloads()
                logger.info("Photo taken", extra={"duration": time.perf_counter() - started})

    def trigger_capture(self) -> asyncio.Task[None]:
        """Queue a photo from an external trigger such as a joystick button."""

        return self._track(asyncio.create_task(self._capture_from_trigger(), name="trigger-capture"))

    async def _capture_from_trigger(self) -> None:
        try:
            await self.take_photo()
        except REPORTED_ERRORS:
            pass

    async def focus(self) -> None:
        async with self._interactive_gate:
            with self._reported("Focus"):
                session = await self._session_for_action()
                started = time.perf_counter()
                await session.adb.shell(FOCUS_COMMAND)
                logger.debug("Camera focused", extra={"duration": time.perf_counter() - started})

    async def lock_now(self) -> bool:
        """Lock the device if it is still on; gives up if the gate stays busy."""

        timeout = self._settings.timing.lock_gate_timeout
        try:
            await asyncio.wait_for(self._interactive_gate.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Skipped locking device: camera busy for more than %.0fs", timeout)
            return False

        try:
            with self._reported("Lock device"):
                session = await self._session_for_action()
                if not await session.prober.is_interactive():
                    logger.debug("Device screen already off")
                    return False
                await self._lock(session)
                await asyncio.sleep(self._lock_settle_delay)
                return True
        finally:
            self._interactive_gate.release()

    def _camera_idle(self) -> bool:
        if self._last_camera_action is None:
            return True
        idle_for = asyncio.get_running_loop().time() - self._last_camera_action
        return idle_for > self._settings.timing.camera_open_timeout

    def _record_camera_action(self) -> None:
        self._last_camera_action = asyncio.get_running_loop().time()
        if self._lock_task is not None:
            self._lock_task.cancel()
        self._lock_task = self._track(
            asyncio.create_task(
                self._lock_after_inactivity(self._settings.timing.inactivity_lock_timeout),
                name="inactivity-lock",
            )
        )
        if self.hooks.camera_action is not None:
            self.hooks.camera_action()

    async def _lock_after_inactivity(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self.lock_now()
        except asyncio.CancelledError:
            pass
        except REPORTED_ERRORS:
            pass

    def _on_countdown_tick(self, seconds_remaining: int) -> None:
        logger.info("Countdown: %d", seconds_remaining)
        if self.hooks.countdown_tick is not None:
            self.hooks.countdown_tick(seconds_remaining)

    def _on_countdown_complete(self) -> None:
        logger.debug("Countdown complete")
        if self.hooks.countdown_complete is not None:
            self.hooks.countdown_complete()

    # ---------- Downloads ----------

    async def download_files(self) -> int:
        """Run one download pass now and return the last publish counter used."""

        async with self._download_gate:
            return await self._download_pass()

    async def _download_pass(self) -> int:
        self._last_download_initiated = asyncio.get_running_loop().time()
        with self._reported("Download"):
            session = await self._session_for_action()
            try:
                await session.publisher.download_all(self._last_known_counter)
            finally:
                self._last_known_counter = max(self._last_known_counter, session.publisher.last_counter)
        return self._last_known_counter

    def _schedule_downloads(self) -> None:
        if self._download_scope is not None:
            cancelled = self._download_scope.cancel()
            if cancelled:
                logger.debug("Cancelled %d pending download attempt(s)", cancelled)
        scope = TaskScope("download")
        for delay in self._settings.timing.download_retry_delays:
            self._track(scope.spawn(self._download_attempt(delay, scope)))
        self._download_scope = scope

    async def _download_attempt(self, delay: float, scope: TaskScope) -> None:
        initiate_at = asyncio.get_running_loop().time() + delay
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            async with self._download_gate:
                scope.claim()
                if self._last_download_initiated > initiate_at:
                    logger.info("Skipping download attempt; a newer download has already run")
                    return
                await self._download_pass()
        except asyncio.CancelledError:
            pass
        except REPORTED_ERRORS:
            pass

    async def _cancel_downloads(self) -> None:
        if self._download_scope is None:
            return
        try:
            await asyncio.wait_for(self._download_gate.acquire(), timeout=RESET_DOWNLOAD_WAIT)
            acquired = True
        except asyncio.TimeoutError:
            acquired = False
        try:
            self._download_scope.cancel()
            self._download_scope = None
        finally:
            if acquired:
                self._download_gate.release()

    # ---------- Background loops ----------

    def start_periodic_download(self) -> bool:
        return self._download_loop.start()

    async def stop_periodic_download(self) -> bool:
        return await self._download_loop.stop()

    def start_focus_keepalive(self) -> bool:
        return self._focus_loop.start()

    async def stop_focus_keepalive(self) -> bool:
        return await self._focus_loop.stop()

    async def _periodic_download_round(self) -> None:
        try:
            await self.download_files()
        except REPORTED_ERRORS:
            pass

    async def _focus_round(self) -> None:
        try:
            await self.focus()
        except REPORTED_ERRORS:
            pass

    def _build_loops(self) -> tuple[PeriodicLoop, PeriodicLoop]:
        timing = self._settings.timing
        download_loop = PeriodicLoop(
            DOWNLOAD_LOOP,
            timing.download_interval,
            self._periodic_download_round,
            on_progress=self._on_loop_progress,
            on_state=self._on_loop_state,
        )
        focus_loop = PeriodicLoop(
            FOCUS_LOOP,
            timing.focus_interval,
            self._focus_round,
            on_progress=self._on_loop_progress,
            on_state=self._on_loop_state,
        )
        return download_loop, focus_loop

    def _on_loop_state(self, name: str, running: bool) -> None:
        if self.hooks.loop_state is not None:
            self.hooks.loop_state(name, running)

    def _on_loop_progress(self, name: str, fraction: float) -> None:
        if self.hooks.loop_progress is not None:
            self.hooks.loop_progress(name, fraction)

    def _track(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
