# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Core - Runtime state shared by services and HTTP handlers.

Everything a backup operation needs (blob store, coordinator, executor,
token codecs) is created once here and passed around explicitly.
"""

import asyncio
import os
import shutil
import signal
from datetime import datetime
from typing import Any, Callable, TypedDict

import structlog

from appsnap.config import AppSnapConfig
from appsnap.coordinator import BackupCoordinator
from appsnap.executor import BackgroundExecutor
from appsnap.storage import BlobStore, open_blob_store
from appsnap.tokens import FileTokenCodec, SessionTokenCodec

logger = structlog.get_logger()

RESTORE_STAGING_PREFIX = ".appsnap_restore_"
OLD_TREE_MARKER = ".old_"


class BackupState(TypedDict):
    """Runtime state for backup operations."""

    config: AppSnapConfig
    store: BlobStore
    coordinator: BackupCoordinator
    executor: BackgroundExecutor
    session_tokens: SessionTokenCodec
    file_tokens: FileTokenCodec
    restart_hook: Callable[[], Any]  # Ends the process after a restore
    scheduler: Any  # APScheduler instance if scheduled backups are enabled
    last_backup_at: datetime | None
    total_created: int
    last_error: str | None


def terminate_process() -> None:
    """
    Ask the server process to exit so its supervisor restarts it.

    SIGTERM lets the ASGI server shut down gracefully; the new process
    starts with an empty coordinator and the restored files.
    """
    logger.warning("process_terminating_for_restore", pid=os.getpid())
    os.kill(os.getpid(), signal.SIGTERM)


def cleanup_staging_leftovers(config: AppSnapConfig) -> int:
    """
    Remove staging directories left behind by a crashed run.

    Returns:
        Number of paths removed
    """
    removed = 0
    if not config.data_dir.exists():
        return removed

    candidates = [config.temp_path]
    for entry in config.data_dir.iterdir():
        if entry.name.startswith(RESTORE_STAGING_PREFIX):
            candidates.append(entry)
        elif entry.name.startswith(f"{config.storage_dirname}{OLD_TREE_MARKER}"):
            candidates.append(entry)

    for path in candidates:
        if not path.exists():
            continue
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
            removed += 1
            logger.info("staging_leftover_removed", path=str(path))
        except OSError as e:
            logger.warning("staging_cleanup_failed", path=str(path), error=str(e))

    return removed


async def initialize_backup_state(
    config: AppSnapConfig,
    *,
    store: BlobStore | None = None,
    restart_hook: Callable[[], Any] | None = None,
) -> BackupState:
    """
    Initialize runtime state for backup operations.

    Args:
        config: AppSnap configuration
        store: Blob store override (default: selected from config)
        restart_hook: Called after a restore swapped the files in
            (default: terminate_process)

    Returns:
        Initialized BackupState dictionary
    """
    if not config.data_dir.exists():
        from appsnap.errors import explain_missing_data_dir
        from appsnap.exceptions import ConfigurationError

        raise ConfigurationError(explain_missing_data_dir(str(config.data_dir)))

    await asyncio.to_thread(cleanup_staging_leftovers, config)

    state = BackupState(
        config=config,
        store=store or open_blob_store(config),
        coordinator=BackupCoordinator(),
        executor=BackgroundExecutor(),
        session_tokens=SessionTokenCodec(config.session_token_secret, config.session_token_ttl),
        file_tokens=FileTokenCodec(config.file_token_secret, config.file_token_ttl),
        restart_hook=restart_hook or terminate_process,
        scheduler=None,
        last_backup_at=None,
        total_created=0,
        last_error=None,
    )

    logger.info(
        "backup_state_initialized",
        data_dir=str(config.data_dir),
        backend=config.storage_backend.value,
    )
    return state


async def shutdown_backup_state(state: BackupState) -> None:
    """Cleanup resources."""
    if state["scheduler"] is not None:
        try:
            state["scheduler"].shutdown(wait=False)
        except Exception as e:
            logger.warning("scheduler_stop_failed", error=str(e))

    await state["executor"].shutdown()

    try:
        await state["store"].close()
    except Exception as e:
        logger.warning("blob_store_close_failed", error=str(e))

    logger.info("backup_state_shutdown_complete")
