"""Remote file listing and detection of files that are fully written."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass

from .adb import ADBClient

logger = logging.getLogger(__name__)

LISTING_LINE_PATTERN = re.compile(r"^\s*(?P<blocks>\d+)\s+(?P<filename>.*\S)\s*")
STABILITY_DELAY = 0.2


@dataclass(slots=True, frozen=True)
class RemoteFileRecord:
    name: str
    blocks: int


def parse_listing(lines: list[str]) -> dict[str, int]:
    listing: dict[str, int] = {}
    for line in lines:
        match = LISTING_LINE_PATTERN.match(line)
        if match is None:
            continue
        listing[match.group("filename")] = int(match.group("blocks"))
    return listing


class FileLister:
    """Lists the device image folder and picks the files safe to pull."""

    def __init__(
        self,
        adb: ADBClient,
        *,
        folder: str,
        selection_pattern: str,
        stability_delay: float = STABILITY_DELAY,
    ) -> None:
        self._adb = adb
        self._folder = folder
        self._pattern = re.compile(selection_pattern, re.IGNORECASE)
        self._stability_delay = stability_delay

    async def list_records(self) -> list[RemoteFileRecord]:
        listing = await self.list_files()
        return [RemoteFileRecord(name=name, blocks=blocks) for name, blocks in listing.items()]

    async def list_files(self) -> dict[str, int]:
        return parse_listing(await self._adb.shell(f"ls -s {self._folder}", check=False))

    async def stable_files(self) -> list[str]:
        logger.debug("Assembling list of stable files on device")
        first_listing = await self.list_files()
        await asyncio.sleep(self._stability_delay)
        second_listing = await self.list_files()
        return select_stable(first_listing, second_listing, self._pattern)


def select_stable(
    first_listing: dict[str, int],
    second_listing: dict[str, int],
    pattern: re.Pattern[str],
) -> list[str]:
    stable: list[str] = []
    for filename, first_blocks in first_listing.items():
        if not pattern.search(filename):
            logger.debug("File '%s' does not match pattern '%s'", filename, pattern.pattern)
            continue
        if first_blocks == 0:
            logger.debug("File '%s' is empty.", filename)
            continue
        second_blocks = second_listing.get(filename)
        if second_blocks is None:
            logger.debug("File '%s' was not found in second listing.", filename)
            continue
        if second_blocks != first_blocks:
            logger.debug(
                "File '%s' has changed from %d to %d blocks and is probably being written to.",
                filename,
                first_blocks,
                second_blocks,
            )
            continue
        logger.debug(
            "File '%s' is stable and will be included. Size: %d blocks.", filename, first_blocks
        )
        stable.append(filename)
    return stable
