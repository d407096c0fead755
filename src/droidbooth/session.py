"""Device session: the one logical connection to the booth phone."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable

from .adb import ADBClient
from .config import Settings
from .devices import AndroidDevice
from .listing import FileLister
from .probe import ScreenProber, build_prober
from .publish import Publisher

logger = logging.getLogger(__name__)


class CameraActionError(RuntimeError):
    """Base class for failures surfaced by camera actions."""


class DeviceUnavailable(CameraActionError):
    """The bridge binary is unusable or no authorized device is attached."""


class SessionPhase(Enum):
    UNBOUND = auto()
    BOUND = auto()
    DETECTED = auto()


ADBFactory = Callable[[Settings], ADBClient]


def default_adb_factory(settings: Settings) -> ADBClient:
    return ADBClient(folder=settings.bridge.folder, command_timeout=settings.bridge.command_timeout)


@dataclass(slots=True)
class DeviceSession:
    adb: ADBClient
    prober: ScreenProber
    lister: FileLister
    publisher: Publisher
    device: AndroidDevice | None = field(default=None)

    @property
    def phase(self) -> SessionPhase:
        return SessionPhase.DETECTED if self.device is not None else SessionPhase.BOUND

    @property
    def device_id(self) -> str | None:
        return self.device.serial if self.device is not None else None

    @property
    def authorized(self) -> bool:
        return self.device is not None and self.device.authorized

    @property
    def binary_valid(self) -> bool:
        return self.adb.validate() is None

    def bind(self, device: AndroidDevice) -> None:
        self.device = device
        self.adb.serial = device.serial

    def unbind(self) -> None:
        self.device = None
        self.adb.serial = None


def open_session(settings: Settings, adb_factory: ADBFactory = default_adb_factory) -> DeviceSession:
    """Create a session around a validated bridge binary; no device is contacted yet."""

    adb = adb_factory(settings)
    problem = adb.validate()
    if problem is not None:
        logger.error(problem)
        raise DeviceUnavailable(problem)

    lister = FileLister(
        adb,
        folder=settings.device.image_folder,
        selection_pattern=settings.device.file_selection_pattern,
    )
    publisher = Publisher(
        adb,
        lister,
        device_folder=settings.device.image_folder,
        publish=settings.publish,
        delete_after_download=settings.device.delete_after_download,
    )
    return DeviceSession(
        adb=adb,
        prober=build_prober(adb, use_nfc_screen_api=settings.device.use_nfc_screen_api),
        lister=lister,
        publisher=publisher,
    )
