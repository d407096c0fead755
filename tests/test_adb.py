from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from droidbooth.adb import ADBClient, ADBError, LaunchFailure, PullFailure

pytestmark = pytest.mark.skipif(os.name == "nt", reason="uses a POSIX shell script as adb")


def _fake_adb(folder: Path, body: str) -> ADBClient:
    script = folder / "adb"
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return ADBClient(folder=str(folder), command_timeout=5)


@pytest.mark.asyncio
async def test_execute_returns_stdout_lines_in_order(tmp_path: Path) -> None:
    adb = _fake_adb(tmp_path, 'echo "first $1"\necho "second $2"')

    lines = await adb.execute("shell", "echo")

    assert lines == ["first shell", "second echo"]


@pytest.mark.asyncio
async def test_execute_runs_in_binary_folder(tmp_path: Path) -> None:
    adb = _fake_adb(tmp_path, "pwd")

    lines = await adb.execute("version")

    assert Path(lines[0]).resolve() == tmp_path.resolve()


@pytest.mark.asyncio
async def test_execute_prefixes_bound_serial(tmp_path: Path) -> None:
    adb = _fake_adb(tmp_path, 'echo "$@"')
    adb.serial = "R58M12345"

    lines = await adb.shell("input keyevent 82")

    assert lines == ["-s R58M12345 shell input keyevent 82"]


@pytest.mark.asyncio
async def test_missing_binary_raises_launch_failure(tmp_path: Path) -> None:
    adb = ADBClient(folder=str(tmp_path / "nowhere"))

    assert adb.validate() is not None
    with pytest.raises(LaunchFailure):
        await adb.execute("devices")


@pytest.mark.asyncio
async def test_shell_checks_exit_status(tmp_path: Path) -> None:
    adb = _fake_adb(tmp_path, 'echo "error: no devices/emulators found" >&2\nexit 1')

    with pytest.raises(ADBError, match="no devices"):
        await adb.shell("input keyevent 82")

    assert await adb.shell("input keyevent 82", check=False) == []


@pytest.mark.asyncio
async def test_command_timeout_kills_process(tmp_path: Path) -> None:
    adb = _fake_adb(tmp_path, "sleep 5")
    adb.command_timeout = 0.2

    with pytest.raises(ADBError, match="timed out"):
        await adb.execute("shell", "sleep")


@pytest.mark.asyncio
async def test_pull_requires_single_pulled_line(tmp_path: Path) -> None:
    good = _fake_adb(tmp_path, 'echo "$2: 1 file pulled, 0 skipped."')
    assert await good.pull("/sdcard/DCIM/Camera/a.jpg", str(tmp_path)) == [
        "/sdcard/DCIM/Camera/a.jpg: 1 file pulled, 0 skipped."
    ]

    bad = _fake_adb(tmp_path, "echo \"adb: error: remote object '$2' does not exist\"")
    with pytest.raises(PullFailure, match="does not exist"):
        await bad.pull("/sdcard/DCIM/Camera/missing.jpg", str(tmp_path))


@pytest.mark.asyncio
async def test_list_devices_skips_header(tmp_path: Path) -> None:
    adb = _fake_adb(
        tmp_path,
        'echo "* daemon started successfully"\n'
        'echo "List of devices attached"\n'
        'echo "R58M12345 device usb:1-1 model:SM_G973F"\n'
        "echo",
    )

    assert await adb.list_devices() == ["R58M12345 device usb:1-1 model:SM_G973F"]


def test_validate_reports_missing_executable(tmp_path: Path) -> None:
    adb = ADBClient(folder=str(tmp_path))

    message = adb.validate()

    assert message is not None
    assert "does not exist" in message
