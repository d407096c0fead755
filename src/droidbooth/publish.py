"""Pulling stable files off the device and publishing them locally."""

from __future__ import annotations

import logging
import shlex
import shutil
import time
from pathlib import Path, PurePosixPath

from .adb import ADBClient, UnexpectedOutput
from .config import PublishSettings
from .listing import FileLister

logger = logging.getLogger(__name__)

TOKEN_SUFFIX = ".token"


def bucket_bounds(counter: int, files_per_folder: int) -> tuple[int, int]:
    lower = counter // files_per_folder * files_per_folder
    return lower, lower + files_per_folder - 1


class Publisher:
    """Downloads every stable device file exactly once into numbered publish slots."""

    def __init__(
        self,
        adb: ADBClient,
        lister: FileLister,
        *,
        device_folder: str,
        publish: PublishSettings,
        delete_after_download: bool,
    ) -> None:
        self._adb = adb
        self._lister = lister
        self._device_folder = device_folder if device_folder.endswith("/") else f"{device_folder}/"
        self._publish = publish
        self._delete_after_download = delete_after_download
        # last counter used; updated as each file is published, also when a pass fails midway
        self.last_counter = 0

    @property
    def working_folder(self) -> Path:
        return self._publish.working_folder

    async def download_all(self, last_known_counter: int) -> int:
        started = time.perf_counter()
        self.last_counter = last_known_counter
        files = await self._lister.stable_files()
        logger.info(
            "%d files ready for download",
            len(files),
            extra={"duration": time.perf_counter() - started},
        )

        for filename in files:
            self.last_counter = await self._download_one(filename, self.last_counter)

        logger.debug("All files downloaded", extra={"duration": time.perf_counter() - started})
        return self.last_counter

    def token_path(self, filename: str) -> Path:
        return self.working_folder / f"{filename}{TOKEN_SUFFIX}"

    def publish_slot(self, counter: int, filename: str) -> Path:
        lower, upper = bucket_bounds(counter, self._publish.files_per_folder)
        name = f"{self._publish.filename_pattern.format(counter)}{PurePosixPath(filename).suffix}"
        return self._publish.publish_folder / f"{lower}-{upper}" / name

    def next_free_counter(self, last_known_counter: int, filename: str) -> int:
        counter = last_known_counter + 1
        while self.publish_slot(counter, filename).exists():
            counter += 1
        return counter

    async def _download_one(self, filename: str, last_known_counter: int) -> int:
        if self.token_path(filename).exists():
            logger.warning("File '%s' has already been downloaded", filename)
            await self._delete_if_configured(filename)
            return last_known_counter

        await self._pull(filename)
        counter = self._publish_file(filename, last_known_counter)
        self.token_path(filename).touch()
        await self._delete_if_configured(filename)
        return counter

    async def _pull(self, filename: str) -> None:
        remote = self._device_path(filename)
        logger.debug("Downloading file '%s'", remote)
        self.working_folder.mkdir(parents=True, exist_ok=True)
        await self._adb.pull(remote, str(self.working_folder))
        logger.info("Downloaded file '%s'", filename)

    def _publish_file(self, filename: str, last_known_counter: int) -> int:
        logger.debug("Trying to publish file '%s'. Last counter: %d", filename, last_known_counter)
        counter = self.next_free_counter(last_known_counter, filename)
        target = self.publish_slot(counter, filename)

        if not target.parent.exists():
            target.parent.mkdir(parents=True)
            logger.info("Created new publish directory '%s'", target.parent)

        shutil.move(str(self.working_folder / filename), str(target))
        logger.info("Published file '%s' as '%s'", filename, target.name)
        return counter

    async def _delete_if_configured(self, filename: str) -> None:
        remote = self._device_path(filename)
        logger.debug("Considering deleting file '%s'", remote)
        if not self._delete_after_download:
            logger.debug("Deletion disabled in settings")
            return

        lines = await self._adb.shell(f"rm {shlex.quote(remote)}", check=False)
        if lines:
            raise UnexpectedOutput(f"Error deleting file '{remote}': {lines[0]}")
        logger.info("Deleted file '%s'", filename)

    def _device_path(self, filename: str) -> str:
        return f"{self._device_folder}{filename}"
