from __future__ import annotations

import pytest

from adb_fakes import ScriptedADB
from droidbooth.devices import AndroidDevice, DeviceManager


def test_parse_reads_state_and_attributes() -> None:
    device = AndroidDevice.parse("R58M12345 device usb:1-1 product:beyond1 model:SM_G973F transport_id:3")

    assert device is not None
    assert device.serial == "R58M12345"
    assert device.authorized
    assert device.model == "SM_G973F"
    assert device.product == "beyond1"
    assert str(device) == "R58M12345 (SM G973F)"


@pytest.mark.parametrize("line", ["", "List of devices attached", "emulator-5554 offline"])
def test_parse_ignores_other_lines(line: str) -> None:
    assert AndroidDevice.parse(line) is None


@pytest.mark.asyncio
async def test_detect_returns_first_device() -> None:
    adb = ScriptedADB()
    manager = DeviceManager(adb)

    result = await manager.detect()

    assert result.connected
    assert result.device is not None
    assert result.device.serial == "R58M12345"
    assert adb.calls.count("devices -l") == 1


@pytest.mark.asyncio
async def test_detect_reports_unauthorized_device() -> None:
    adb = ScriptedADB()
    adb.script("devices -l", ["0123456789ABCDEF unauthorized usb:1-1 transport_id:4"])

    result = await DeviceManager(adb).detect()

    assert not result.connected
    assert result.device is not None and not result.device.authorized
    assert result.message is not None and "not authorized" in result.message


@pytest.mark.asyncio
async def test_detect_reports_missing_device() -> None:
    adb = ScriptedADB()
    adb.script("devices -l", ["List of devices attached"])

    result = await DeviceManager(adb).detect()

    assert not result.connected
    assert result.message == "No device found"
