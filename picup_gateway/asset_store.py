"""On-disk asset store: one directory per category plus per-request scratch space."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import uuid
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Iterable, List, Optional, Protocol, Sequence, Tuple

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
ASSET_DIR_NAME = "asset"
TEMP_DIR_NAME = "temp"


class FilePart(Protocol):
    """One part of a multipart upload, readable once."""
    filename: Optional[str]
    content_type: Optional[str]

    async def read(self, size: int = -1) -> bytes:
        ...


class StorageLayoutError(RuntimeError):
    """Scratch and asset directories cannot be used together."""
    pass


class ClientStreamError(Exception):
    """Reading the uploaded part from the client failed."""
    pass


class AssetExistsError(FileExistsError):
    """A commit without overwrite found its destination already taken."""

    def __init__(self, category: str, filename: str):
        super().__init__(f"file existed: {filename}")
        self.category = category
        self.filename = filename


def _backup_dir(scratch: Path) -> Path:
    # Sibling of the scratch dir: staged names can be any plain filename.
    return scratch.with_name(f"{scratch.name}.prev")


def is_plain_filename(name: Optional[str]) -> bool:
    if not name or name in (".", ".."):
        return False
    if "/" in name or "\\" in name or "\x00" in name:
        return False
    return Path(name).name == name


class AssetStore:
    """
    Maps ``(category, filename)`` to ``<root>/asset/<category>/<filename>``.

    Scratch directories live under ``<root>/temp`` so every commit is a rename
    within one filesystem.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.asset_dir = self.root / ASSET_DIR_NAME
        self.temp_dir = self.root / TEMP_DIR_NAME
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def ensure_layout(self, categories: Iterable[str]) -> None:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        for category in categories:
            self.category_dir(category).mkdir(parents=True, exist_ok=True)
        self.asset_dir.mkdir(parents=True, exist_ok=True)
        if os.stat(self.temp_dir).st_dev != os.stat(self.asset_dir).st_dev:
            raise StorageLayoutError(
                f"scratch directory {self.temp_dir} and asset directory {self.asset_dir} "
                "are on different filesystems"
            )
        logger.info(f"Asset store ready at {self.root}")

    def category_dir(self, category: str) -> Path:
        return self.asset_dir / category

    def asset_path(self, category: str, filename: str) -> Path:
        return self.category_dir(category) / filename

    async def exists(self, category: str, filename: str) -> bool:
        try:
            await aiofiles.os.stat(self.asset_path(category, filename))
        except FileNotFoundError:
            return False
        return True

    @asynccontextmanager
    async def staging(self) -> AsyncIterator[Path]:
        """
        Yield a scratch directory private to one request.

        The directory and anything staged in it are removed on exit, whether the
        batch was committed, rejected or cancelled.
        """
        scratch = self.temp_dir / uuid.uuid4().hex
        await aiofiles.os.makedirs(scratch, exist_ok=True)
        try:
            yield scratch
        finally:
            await asyncio.to_thread(shutil.rmtree, scratch, ignore_errors=True)
            await asyncio.to_thread(shutil.rmtree, _backup_dir(scratch), ignore_errors=True)

    async def stage(self, scratch: Path, filename: str, part: FilePart) -> int:
        """
        Stream ``part`` into ``scratch/filename``.

        Raises:
            ClientStreamError: Reading from the client failed
            OSError: Writing the scratch file failed
        """
        written = 0
        async with aiofiles.open(scratch / filename, "wb") as out:
            while True:
                try:
                    chunk = await part.read(CHUNK_SIZE)
                except Exception as exc:
                    raise ClientStreamError(f"bad file: {filename}") from exc
                if not chunk:
                    break
                await out.write(chunk)
                written += len(chunk)
        return written

    @asynccontextmanager
    async def _locked(self, keys: Sequence[Tuple[str, str]]) -> AsyncIterator[None]:
        # Sorted acquisition keeps overlapping batches from deadlocking.
        locks: List[asyncio.Lock] = []
        for key in sorted(set(keys)):
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            locks.append(lock)
        async with AsyncExitStack() as stack:
            for lock in locks:
                await stack.enter_async_context(lock)
            yield

    async def commit(
        self,
        scratch: Path,
        category: str,
        filenames: Sequence[str],
        overwrite: bool,
    ) -> List[Path]:
        """
        Move every staged file from ``scratch`` into the category directory.

        Collisions are re-checked under the per-asset locks before anything is
        moved. Replaced assets are parked beside the scratch dir until the whole
        batch has landed; a failed rename moves everything back, so a batch
        either lands completely or not at all.

        Raises:
            AssetExistsError: overwrite is false and a destination exists
            OSError: A rename failed; the category is left as it was
        """
        backups = _backup_dir(scratch)
        async with self._locked([(category, name) for name in filenames]):
            if not overwrite:
                for name in filenames:
                    if await self.exists(category, name):
                        raise AssetExistsError(category, name)
            committed: List[str] = []
            parked: List[str] = []
            try:
                for name in filenames:
                    destination = self.asset_path(category, name)
                    if overwrite and await self.exists(category, name):
                        await aiofiles.os.makedirs(backups, exist_ok=True)
                        await aiofiles.os.replace(destination, backups / name)
                        parked.append(name)
                    await aiofiles.os.replace(scratch / name, destination)
                    committed.append(name)
            except OSError:
                logger.error(f"Commit into category '{category}' failed, rolling back {len(committed)} file(s)")
                await self._rollback(scratch, category, committed, parked)
                raise
        logger.info(f"Committed {len(committed)} file(s) into category '{category}'")
        return [self.asset_path(category, name) for name in committed]

    async def _rollback(
        self,
        scratch: Path,
        category: str,
        committed: Sequence[str],
        parked: Sequence[str],
    ) -> None:
        backups = _backup_dir(scratch)
        for name in reversed(committed):
            try:
                await aiofiles.os.replace(self.asset_path(category, name), scratch / name)
            except OSError as exc:
                logger.error(f"Rollback could not withdraw {category}/{name}: {exc}")
        for name in reversed(parked):
            try:
                await aiofiles.os.replace(backups / name, self.asset_path(category, name))
            except OSError as exc:
                logger.error(f"Rollback could not restore previous {category}/{name}: {exc}")

    async def open(self, category: str, filename: str):
        """Open a committed asset for binary reading; raises OSError when absent."""
        return await aiofiles.open(self.asset_path(category, filename), "rb")
