# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Snapshot Builder - Point-in-time archive of the data directory.

A snapshot is one ZIP archive holding a consistent copy of every configured
SQLite database (at the archive root) plus the file-storage tree under
"storage/". The archive is assembled in a staging directory and then
streamed into the blob store, which publishes it only once complete.
"""

import asyncio
import os
import shutil
import zipfile
from datetime import datetime, UTC
from pathlib import Path
from typing import Iterable, List

import aiofiles
import aiosqlite
import structlog
from ulid import ULID

from appsnap.config import AppSnapConfig
from appsnap.core import BackupState
from appsnap.exceptions import BackupError, BlobExistsError
from appsnap.names import name_taken_error
from appsnap.storage import BlobObject, BlobWriter

logger = structlog.get_logger()

DB_STAGING_DIRNAME = "db"
ARCHIVE_FILENAME = "snapshot.zip"


async def copy_database(source: Path, target: Path) -> None:
    """
    Copy a live SQLite database with SQLite's online backup API.

    The copy is consistent even while other connections keep writing to
    the source (WAL mode included).

    Raises:
        BackupError: If the source database does not exist
    """
    if not source.is_file():
        raise BackupError(
            f"Database file not found: {source.name}",
            details={"path": str(source)},
        )

    async with aiosqlite.connect(source) as src_db, aiosqlite.connect(target) as dst_db:
        await src_db.backup(dst_db)

    logger.debug("database_copied", source=str(source), target=str(target))


def _add_tree(
    archive: zipfile.ZipFile,
    root: Path,
    arc_root: str,
    exclude_dirnames: Iterable[str] = (),
) -> int:
    """Add a directory tree under arc_root, keeping relative paths. Returns file count."""
    excluded = set(exclude_dirnames)
    count = 0

    archive.mkdir(arc_root)
    if not root.is_dir():
        return count

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in excluded)
        rel_dir = Path(dirpath).relative_to(root)

        for dirname in dirnames:
            archive.mkdir(f"{arc_root}/{(rel_dir / dirname).as_posix()}")

        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if not path.is_file():
                continue
            archive.write(path, arcname=f"{arc_root}/{(rel_dir / filename).as_posix()}")
            count += 1

    return count


def write_snapshot_archive(
    archive_path: Path,
    db_copies: List[Path],
    storage_path: Path,
    storage_dirname: str,
    exclude_dirnames: Iterable[str] = (),
) -> int:
    """
    Write the snapshot ZIP (blocking; run in a worker thread).

    Returns:
        Number of storage files archived
    """
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for db_copy in db_copies:
            archive.write(db_copy, arcname=db_copy.name)
        return _add_tree(archive, storage_path, storage_dirname, exclude_dirnames)


async def stream_file_to_writer(path: Path, writer: BlobWriter, chunk_size: int) -> int:
    """Copy a local file into an open blob writer. Returns bytes written."""
    written = 0
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            if not chunk:
                break
            await writer.write(chunk)
            written += len(chunk)
    return written


async def _assemble(config: AppSnapConfig, staging: Path) -> tuple[Path, int]:
    db_dir = staging / DB_STAGING_DIRNAME
    await asyncio.to_thread(db_dir.mkdir, parents=True, exist_ok=True)

    db_copies: List[Path] = []
    for db_name in config.db_files:
        target = db_dir / db_name
        await copy_database(config.data_dir / db_name, target)
        db_copies.append(target)

    archive_path = staging / ARCHIVE_FILENAME
    file_count = await asyncio.to_thread(
        write_snapshot_archive,
        archive_path,
        db_copies,
        config.storage_path,
        config.storage_dirname,
        config.exclude_dirnames,
    )
    return archive_path, file_count


async def build_snapshot(state: BackupState, name: str) -> BlobObject:
    """
    Build a snapshot archive and store it under `name`.

    The coordinator must already hold `name`; it is released here on
    every exit path.

    Args:
        state: Runtime state
        name: Target object key (already validated and locked)

    Returns:
        The stored object's attributes

    Raises:
        BackupError: If any step fails (nothing is left in the store)
        ValidationError: If an upload published `name` while the archive was built
    """
    config = state["config"]
    store = state["store"]
    staging = config.temp_path / str(ULID())
    start_time = datetime.now(UTC)

    logger.info("backup_started", name=name, staging=str(staging))

    try:
        await asyncio.to_thread(staging.mkdir, parents=True, exist_ok=True)
        archive_path, file_count = await _assemble(config, staging)

        writer = await store.open_writer(name)
        async with writer:
            size = await stream_file_to_writer(archive_path, writer, config.chunk_size)

        blob = await store.attributes(name)

    except BlobExistsError as e:
        logger.warning("backup_name_taken", name=name)
        raise name_taken_error() from e

    except Exception as e:
        state["last_error"] = str(e)
        logger.error(
            "backup_failed",
            name=name,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise BackupError(
            "Failed to create backup.",
            details={"name": name, "error": str(e)},
        ) from e

    finally:
        await asyncio.to_thread(shutil.rmtree, staging, ignore_errors=True)
        state["coordinator"].release()

    state["last_backup_at"] = datetime.now(UTC)
    state["total_created"] += 1

    logger.info(
        "backup_created",
        name=name,
        size=size,
        storage_files=file_count,
        duration_seconds=(datetime.now(UTC) - start_time).total_seconds(),
    )
    return blob
