"""Screen state probes: is the device awake, is it locked."""

from __future__ import annotations

import logging
import time
from typing import Protocol

from .adb import ADBClient

logger = logging.getLogger(__name__)

POWER_INTERACTIVE_COMMAND = "service call power 12"
TRUST_LOCKED_COMMAND = "service call trust 7"
NFC_DUMP_COMMAND = "dumpsys nfc"
NFC_SCREEN_STATE_PREFIX = "Screen State:"
BINARY_TRUE_PATTERN = "00000001"

# value -> (screen_on, screen_locked)
NFC_SCREEN_STATES: dict[str, tuple[bool, bool]] = {
    "ON_UNLOCKED": (True, False),
    "ON_LOCKED": (True, True),
    "OFF_UNLOCKED": (False, False),
    "OFF_LOCKED": (False, True),
}


class ProbeFailure(RuntimeError):
    """Raised when probe output does not match any known shape."""


class ParseFailure(ProbeFailure):
    """No ``Result`` line in a binary service call reply."""


class UnexpectedState(ProbeFailure):
    """The NFC dump reported a screen state we do not know."""


class StateNotFound(ProbeFailure):
    """The NFC dump carried no screen state line."""


class ScreenProber(Protocol):
    async def is_interactive(self) -> bool:
        ...

    async def is_locked(self) -> bool:
        ...

    async def is_interactive_and_unlocked(self) -> bool:
        ...


def parse_binary_result(lines: list[str]) -> bool:
    for line in lines:
        if line.lower().startswith("result"):
            return BINARY_TRUE_PATTERN in line
    raise ParseFailure(f"Unable to parse result: {lines!r}")


def parse_nfc_screen_state(lines: list[str]) -> tuple[bool, bool]:
    for raw in lines:
        line = raw.strip()
        if not line.startswith(NFC_SCREEN_STATE_PREFIX):
            continue
        value = line[len(NFC_SCREEN_STATE_PREFIX):].strip().upper()
        try:
            return NFC_SCREEN_STATES[value]
        except KeyError:
            raise UnexpectedState(f"Unexpected screen state: {line}") from None
    raise StateNotFound("Unable to find NFC screen state")


class BinaryResultProber:
    """Probes via ``service call`` replies carrying a binary result parcel."""

    def __init__(self, adb: ADBClient) -> None:
        self._adb = adb

    async def is_interactive(self) -> bool:
        started = time.perf_counter()
        result = parse_binary_result(await self._adb.shell(POWER_INTERACTIVE_COMMAND, check=False))
        logger.debug("IsInteractive: %s", result, extra={"duration": time.perf_counter() - started})
        return result

    async def is_locked(self) -> bool:
        started = time.perf_counter()
        result = parse_binary_result(await self._adb.shell(TRUST_LOCKED_COMMAND, check=False))
        logger.debug("IsLocked: %s", result, extra={"duration": time.perf_counter() - started})
        return result

    async def is_interactive_and_unlocked(self) -> bool:
        return await self.is_interactive() and not await self.is_locked()


class NfcStateProber:
    """Probes via the screen state line of the NFC service dump."""

    def __init__(self, adb: ADBClient) -> None:
        self._adb = adb

    async def screen_state(self) -> tuple[bool, bool]:
        return parse_nfc_screen_state(await self._adb.shell(NFC_DUMP_COMMAND, check=False))

    async def is_interactive(self) -> bool:
        started = time.perf_counter()
        screen_on, _ = await self.screen_state()
        logger.debug("IsInteractive: %s", screen_on, extra={"duration": time.perf_counter() - started})
        return screen_on

    async def is_locked(self) -> bool:
        started = time.perf_counter()
        _, screen_locked = await self.screen_state()
        logger.debug("IsLocked: %s", screen_locked, extra={"duration": time.perf_counter() - started})
        return screen_locked

    async def is_interactive_and_unlocked(self) -> bool:
        started = time.perf_counter()
        screen_on, screen_locked = await self.screen_state()
        logger.debug(
            "IsInteractive: %s. IsLocked: %s.",
            screen_on,
            screen_locked,
            extra={"duration": time.perf_counter() - started},
        )
        return screen_on and not screen_locked


def build_prober(adb: ADBClient, *, use_nfc_screen_api: bool) -> ScreenProber:
    if use_nfc_screen_api:
        return NfcStateProber(adb)
    return BinaryResultProber(adb)
