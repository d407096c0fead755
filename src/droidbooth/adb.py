"""Thin async wrappers around adb commands."""

from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

PULL_SUCCESS_MARKER = "pulled"


class ADBError(RuntimeError):
    """Raised when adb times out or returns a non-zero status."""


class LaunchFailure(ADBError):
    """Raised when the adb executable cannot be started at all."""


class UnexpectedOutput(ADBError):
    """Raised when a command's output does not have the expected shape."""


class PullFailure(UnexpectedOutput):
    """Raised when ``adb pull`` does not report a pulled file."""


def _binary_name() -> str:
    return "adb.exe" if os.name == "nt" else "adb"


@dataclass(slots=True)
class ADBClient:
    """Asynchronous helper for invoking adb commands."""

    folder: str | None = None
    command_timeout: float | None = 15.0
    serial: str | None = None

    @property
    def executable(self) -> str:
        if self.folder:
            return str(Path(self.folder) / _binary_name())
        return shutil.which("adb") or "adb"

    def validate(self) -> str | None:
        """Return a problem description for the binary path, or ``None``."""

        if not self.folder:
            if shutil.which("adb") is None:
                return "Missing adb binaries folder. Check settings."
            return None
        if not Path(self.executable).is_file():
            return f"File '{self.executable}' does not exist. Check settings."
        return None

    async def list_devices(self) -> list[str]:
        """Return the raw `devices -l` lines describing attached devices."""

        lines = await self._exec("devices", "-l")
        return [
            line
            for line in lines
            if line.strip() and not line.startswith("List of devices") and not line.startswith("*")
        ]

    async def execute(self, *args: str, check: bool = False) -> list[str]:
        """Run adb against the bound device and return its stdout lines."""

        if self.serial:
            args = ("-s", self.serial, *args)
        return await self._exec(*args, check=check)

    async def shell(self, command: str, *, check: bool = True) -> list[str]:
        return await self.execute("shell", command, check=check)

    async def pull(self, remote: str, local_dir: str) -> list[str]:
        lines = await self.execute("pull", remote, local_dir)
        if len(lines) != 1 or PULL_SUCCESS_MARKER not in lines[0]:
            first = lines[0] if lines else "no output"
            raise PullFailure(f"Unable to pull file {remote}. Error: {first}")
        return lines

    async def _exec(self, *args: str, check: bool = False) -> list[str]:
        executable = self.executable
        cwd = self.folder if self.folder and Path(self.folder).is_dir() else None
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise LaunchFailure(f"Unable to start process {executable}: {exc}") from exc

        try:
            if self.command_timeout is None:
                stdout_bytes, stderr_bytes = await process.communicate()
            else:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(
                    process.communicate(),
                    timeout=self.command_timeout,
                )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise ADBError(f"adb {' '.join(args)} timed out after {self.command_timeout}s") from exc
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        returncode = int(process.returncode or 0)
        if check and returncode != 0:
            rendered_args = " ".join(args)
            details = stderr.strip() or "no stderr output"
            raise ADBError(f"adb {rendered_args} exited with {returncode}: {details}")
        return stdout.splitlines()
