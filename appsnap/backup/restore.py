# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Restore Engine - Replace the live data directory with a backup.

A restore is acknowledged as soon as it is admitted and then runs on the
background executor:

1. Stage: download and extract the archive next to the live data
2. Verify: every configured database is present in the archive
3. Commit: rename the databases and the storage tree into place
4. Restart: hand over to the restart hook so the server comes back up
   against the restored state

Nothing live is touched before step 3. A failure there is unrecoverable
in-process, so the server is restarted regardless.
"""

import asyncio
import inspect
import os
import shutil
import zipfile
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import Callable, List

import aiofiles
import structlog
from ulid import ULID

from appsnap.backup.manager import ensure_backup_exists
from appsnap.config import AppSnapConfig
from appsnap.core import OLD_TREE_MARKER, RESTORE_STAGING_PREFIX, BackupState
from appsnap.exceptions import RestoreError

logger = structlog.get_logger()

ARCHIVE_FILENAME = "archive.zip"
EXTRACT_DIRNAME = "extracted"
SQLITE_SIDECAR_SUFFIXES = ("-wal", "-shm", "-journal")


@dataclass
class RestoreResult:
    """Outcome of a restore run (logged; never returned to an HTTP client)."""

    name: str
    committed: bool
    error: str | None = None
    duration_seconds: float = 0.0


async def schedule_restore(state: BackupState, name: str) -> None:
    """
    Admit a restore and start it in the background.

    Args:
        state: Runtime state
        name: Backup to restore from

    Raises:
        NotFoundError: No such backup
        ConflictError: Another backup/restore is running
    """
    await ensure_backup_exists(state, name)
    state["coordinator"].acquire_or_raise(name)

    # run_restore owns the lock from here on
    state["executor"].submit(run_restore, state, name, name=f"restore:{name}")

    logger.info("restore_scheduled", name=name)


def extract_archive(archive_path: Path, destination: Path) -> List[str]:
    """
    Extract a backup archive, refusing members that escape `destination`.

    Returns:
        The archive's member names

    Raises:
        RestoreError: If a member has an absolute path or climbs out with ".."
    """
    destination.mkdir(parents=True, exist_ok=True)
    root = destination.resolve()

    with zipfile.ZipFile(archive_path) as archive:
        names = archive.namelist()
        for member in names:
            if member.startswith(("/", "\\")) or ".." in Path(member).parts:
                raise RestoreError(
                    f"Unsafe archive member: {member}",
                    details={"member": member},
                )
            if not (root / member).resolve().is_relative_to(root):
                raise RestoreError(
                    f"Unsafe archive member: {member}",
                    details={"member": member},
                )
        archive.extractall(destination)

    return names


def verify_extracted(config: AppSnapConfig, extracted: Path) -> None:
    """Every configured database must be present in the extracted tree."""
    missing = [db for db in config.db_files if not (extracted / db).is_file()]
    if missing:
        raise RestoreError(
            "Backup archive is missing database files",
            details={"missing": missing},
        )


def swap_in_restored_state(
    config: AppSnapConfig,
    extracted: Path,
    marker: str,
    on_commit: Callable[[], None] | None = None,
) -> None:
    """
    Move the extracted state over the live data directory.

    Databases are replaced with an atomic rename each, after their stale
    WAL/SHM sidecars are removed. The storage tree is renamed aside,
    replaced, and the old tree deleted.

    `on_commit` is called once, right after the first change to live
    state succeeds. A failure before that point leaves the live data
    directory untouched.
    """
    changed = False

    def apply(step: Callable, *args, **kwargs) -> None:
        nonlocal changed
        step(*args, **kwargs)
        if not changed:
            changed = True
            if on_commit is not None:
                on_commit()

    for db_name in config.db_files:
        live = config.data_dir / db_name
        for suffix in SQLITE_SIDECAR_SUFFIXES:
            sidecar = live.with_name(live.name + suffix)
            if sidecar.exists():
                apply(sidecar.unlink)
        apply(os.replace, extracted / db_name, live)

    live_storage = config.storage_path
    staged_storage = extracted / config.storage_dirname
    old_storage = config.data_dir / f"{config.storage_dirname}{OLD_TREE_MARKER}{marker}"

    if live_storage.exists():
        apply(os.replace, live_storage, old_storage)

    if staged_storage.is_dir():
        apply(os.replace, staged_storage, live_storage)
    else:
        apply(live_storage.mkdir, parents=True, exist_ok=True)

    shutil.rmtree(old_storage, ignore_errors=True)


async def _download_archive(state: BackupState, name: str, target: Path) -> int:
    size = 0
    reader = await state["store"].open_reader(name)
    async with reader:
        async with aiofiles.open(target, "wb") as f:
            async for chunk in reader.iter_chunks(state["config"].chunk_size):
                await f.write(chunk)
                size += len(chunk)
    return size


async def _invoke_restart_hook(state: BackupState) -> None:
    result = state["restart_hook"]()
    if inspect.isawaitable(result):
        await result


async def run_restore(state: BackupState, name: str) -> RestoreResult:
    """
    Restore the data directory from a backup, then restart.

    The coordinator must already hold `name`. It is released if the
    restore fails before the commit point; after that, the lock dies with
    the process.

    Args:
        state: Runtime state
        name: Backup to restore from

    Returns:
        RestoreResult describing how far the restore got
    """
    config = state["config"]
    marker = str(ULID())
    staging = config.data_dir / f"{RESTORE_STAGING_PREFIX}{marker}"
    extracted = staging / EXTRACT_DIRNAME
    start_time = datetime.now(UTC)
    committed = False

    logger.info("restore_started", name=name, staging=str(staging))

    try:
        await asyncio.to_thread(staging.mkdir, parents=True, exist_ok=True)

        archive_path = staging / ARCHIVE_FILENAME
        size = await _download_archive(state, name, archive_path)
        logger.debug("restore_archive_downloaded", name=name, size=size)

        await asyncio.to_thread(extract_archive, archive_path, extracted)
        await asyncio.to_thread(verify_extracted, config, extracted)

        def mark_committed() -> None:
            nonlocal committed
            committed = True

        await asyncio.to_thread(
            swap_in_restored_state, config, extracted, marker, mark_committed
        )

        logger.info("restore_committed", name=name)

    except Exception as e:
        state["last_error"] = str(e)
        duration = (datetime.now(UTC) - start_time).total_seconds()

        if not committed:
            logger.error(
                "restore_failed",
                name=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            await asyncio.to_thread(shutil.rmtree, staging, ignore_errors=True)
            state["coordinator"].release()
            return RestoreResult(name=name, committed=False, error=str(e), duration_seconds=duration)

        logger.critical(
            "restore_commit_failed",
            name=name,
            error=str(e),
            error_type=type(e).__name__,
        )
        await asyncio.to_thread(shutil.rmtree, staging, ignore_errors=True)
        await _invoke_restart_hook(state)
        return RestoreResult(name=name, committed=True, error=str(e), duration_seconds=duration)

    await asyncio.to_thread(shutil.rmtree, staging, ignore_errors=True)
    duration = (datetime.now(UTC) - start_time).total_seconds()

    logger.info("restore_restarting", name=name, duration_seconds=duration)
    await _invoke_restart_hook(state)

    return RestoreResult(name=name, committed=True, duration_seconds=duration)
