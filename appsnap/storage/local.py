# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Local filesystem blob store.

Objects are plain files directly under the root directory. Writers stream
into a temp file inside a hidden subdirectory and publish with a hard link,
so list() never sees a partial archive and an existing object is never
replaced.
"""

import asyncio
import os
from datetime import datetime, UTC
from pathlib import Path
from typing import List

import aiofiles
import aiofiles.os
import structlog
from ulid import ULID

from appsnap.exceptions import BlobExistsError, BlobNotFoundError, BlobStoreError
from appsnap.storage.base import BlobObject, BlobReader, BlobWriter

logger = structlog.get_logger()

TEMP_DIRNAME = ".appsnap_partial"


class LocalBlobWriter(BlobWriter):
    """Writes to <root>/.appsnap_partial/<ulid>, linked into place on close."""

    def __init__(self, key: str, final_path: Path, temp_path: Path):
        self.key = key
        self._final_path = final_path
        self._temp_path = temp_path
        self._file = None
        self._done = False

    async def _ensure_open(self) -> None:
        if self._file is None:
            self._file = await aiofiles.open(self._temp_path, "wb")

    async def write(self, data: bytes) -> None:
        if self._done:
            raise BlobStoreError("Writer already closed", details={"key": self.key})
        await self._ensure_open()
        await self._file.write(data)

    async def close(self) -> None:
        if self._done:
            return
        try:
            await self._ensure_open()
            await self._file.flush()
            await self._file.close()
            self._file = None
            # link() fails on an existing target, unlike rename()
            await aiofiles.os.link(self._temp_path, self._final_path)
            self._done = True
        except FileExistsError as e:
            await self.abort()
            raise BlobExistsError(
                f"Object already exists: {self.key}",
                details={"key": self.key},
            ) from e
        except Exception as e:
            await self.abort()
            raise BlobStoreError(
                f"Failed to finalize object: {e}",
                details={"key": self.key},
            ) from e

        try:
            await aiofiles.os.remove(self._temp_path)
        except OSError as e:
            logger.warning("local_blob_temp_not_removed", key=self.key, error=str(e))

        logger.debug("local_blob_written", key=self.key, path=str(self._final_path))

    async def abort(self) -> None:
        if self._done:
            return
        self._done = True
        if self._file is not None:
            try:
                await self._file.close()
            finally:
                self._file = None
        try:
            await aiofiles.os.remove(self._temp_path)
        except FileNotFoundError:
            pass

        logger.debug("local_blob_aborted", key=self.key)


class LocalBlobReader(BlobReader):
    def __init__(self, key: str, handle):
        self.key = key
        self._handle = handle

    async def read(self, size: int = -1) -> bytes:
        return await self._handle.read(size)

    async def close(self) -> None:
        await self._handle.close()


class LocalBlobStore:
    """Blob store backed by a local directory."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self._temp_dir = self.root / TEMP_DIRNAME
        self.root.mkdir(parents=True, exist_ok=True)
        self._temp_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        """Map a key to a file path, refusing anything that escapes the root."""
        if not key or key in (".", "..") or "/" in key or "\\" in key or "\x00" in key:
            raise BlobStoreError(f"Invalid object key: {key!r}", details={"key": key})
        if key == TEMP_DIRNAME:
            raise BlobStoreError(f"Reserved object key: {key!r}", details={"key": key})
        return self.root / key

    def _lookup_path(self, key: str) -> Path:
        """Like _path_for, but an unusable key simply has no object behind it."""
        try:
            return self._path_for(key)
        except BlobStoreError as e:
            raise BlobNotFoundError(f"Object not found: {key}", details={"key": key}) from e

    @staticmethod
    def _to_object(key: str, stat: os.stat_result) -> BlobObject:
        return BlobObject(
            key=key,
            size=stat.st_size,
            modified=datetime.fromtimestamp(stat.st_mtime, UTC),
        )

    async def list(self, prefix: str = "") -> List[BlobObject]:
        def _scan() -> List[BlobObject]:
            objects: List[BlobObject] = []
            with os.scandir(self.root) as entries:
                for entry in entries:
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    if not entry.name.startswith(prefix):
                        continue
                    objects.append(self._to_object(entry.name, entry.stat()))
            objects.sort(key=lambda o: o.key)
            return objects

        try:
            return await asyncio.to_thread(_scan)
        except OSError as e:
            raise BlobStoreError(
                f"Failed to list objects: {e}",
                details={"root": str(self.root)},
            ) from e

    async def attributes(self, key: str) -> BlobObject:
        path = self._lookup_path(key)
        try:
            stat = await aiofiles.os.stat(path)
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Object not found: {key}", details={"key": key}) from e
        if not path.is_file():
            raise BlobNotFoundError(f"Object not found: {key}", details={"key": key})
        return self._to_object(key, stat)

    async def exists(self, key: str) -> bool:
        try:
            await self.attributes(key)
            return True
        except BlobNotFoundError:
            return False

    async def open_writer(self, key: str) -> LocalBlobWriter:
        final_path = self._path_for(key)
        await aiofiles.os.makedirs(self._temp_dir, exist_ok=True)
        temp_path = self._temp_dir / str(ULID())
        return LocalBlobWriter(key, final_path, temp_path)

    async def open_reader(self, key: str) -> LocalBlobReader:
        path = self._lookup_path(key)
        try:
            handle = await aiofiles.open(path, "rb")
        except (FileNotFoundError, IsADirectoryError) as e:
            raise BlobNotFoundError(f"Object not found: {key}", details={"key": key}) from e
        return LocalBlobReader(key, handle)

    async def delete(self, key: str) -> None:
        path = self._lookup_path(key)
        try:
            await aiofiles.os.remove(path)
        except (FileNotFoundError, IsADirectoryError) as e:
            raise BlobNotFoundError(f"Object not found: {key}", details={"key": key}) from e
        except OSError as e:
            raise BlobStoreError(f"Failed to delete object: {e}", details={"key": key}) from e

        logger.debug("local_blob_deleted", key=key)

    async def close(self) -> None:
        """Nothing to release for the local store."""
        return None
