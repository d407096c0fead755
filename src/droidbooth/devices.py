"""Device abstractions used by the orchestrator."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from .adb import ADBClient

logger = logging.getLogger(__name__)

UNAUTHORIZED_STATE = "unauthorized"
USABLE_STATES = frozenset({"device", UNAUTHORIZED_STATE})


@dataclass(slots=True)
class AndroidDevice:
    serial: str
    state: str
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def authorized(self) -> bool:
        return self.state != UNAUTHORIZED_STATE

    @property
    def model(self) -> str | None:
        return self.attributes.get("model")

    @property
    def product(self) -> str | None:
        return self.attributes.get("product")

    @classmethod
    def parse(cls, line: str) -> AndroidDevice | None:
        """Parse one ``adb devices -l`` line, ignoring offline and other states."""

        parts = line.split()
        if len(parts) < 2 or parts[1] not in USABLE_STATES:
            return None
        attributes: dict[str, str] = {}
        for token in parts[2:]:
            key, sep, value = token.partition(":")
            if sep:
                attributes[key] = value
        return cls(serial=parts[0], state=parts[1], attributes=attributes)

    def __str__(self) -> str:
        if self.model:
            return f"{self.serial} ({self.model.replace('_', ' ')})"
        return self.serial


@dataclass(slots=True)
class DetectionResult:
    connected: bool
    device: AndroidDevice | None = None
    message: str | None = None


class DeviceManager:
    """Detects the single device the booth talks to."""

    def __init__(self, adb: ADBClient) -> None:
        self._adb = adb

    async def detect(self) -> DetectionResult:
        started = time.perf_counter()
        lines = await self._adb.list_devices()

        for line in lines:
            device = AndroidDevice.parse(line)
            if device is None:
                continue
            if not device.authorized:
                message = (
                    f"Device {device.serial} not authorized. Please enable usb debugging "
                    "and whitelist computer from the device."
                )
                logger.debug(message, extra={"duration": time.perf_counter() - started})
                return DetectionResult(connected=False, device=device, message=message)

            logger.debug(
                "Detected device: %s", device, extra={"duration": time.perf_counter() - started}
            )
            return DetectionResult(connected=True, device=device)

        message = "No device found"
        logger.debug(message, extra={"duration": time.perf_counter() - started})
        return DetectionResult(connected=False, message=message)
