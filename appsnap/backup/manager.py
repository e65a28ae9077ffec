# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Backup Manager - Backup lifecycle management.

This module admits create/upload/delete requests against the blob store
and the coordinator. Every rejection happens before anything is written.
"""

import asyncio
import zipfile
from typing import BinaryIO, List

import structlog

from appsnap.backup.snapshot import build_snapshot
from appsnap.core import BackupState
from appsnap.exceptions import (
    BlobExistsError,
    BlobNotFoundError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from appsnap.names import (
    generate_backup_name,
    name_taken_error,
    sanitize_upload_name,
    validate_backup_name,
)
from appsnap.storage import BlobObject, BlobReader

logger = structlog.get_logger()


async def list_backups(state: BackupState) -> List[BlobObject]:
    """Return every finalized backup in the store, sorted by key."""
    return await state["store"].list()


async def ensure_unique_name(state: BackupState, name: str, field: str = "name") -> None:
    """
    Reject a name that already exists in the store.

    Raises:
        ValidationError: Scoped to `field` if the key is taken
    """
    if await state["store"].exists(name):
        raise name_taken_error(field)


async def ensure_backup_exists(state: BackupState, name: str) -> BlobObject:
    """
    Look a backup up by name.

    Raises:
        NotFoundError: If no such backup exists
    """
    try:
        return await state["store"].attributes(name)
    except BlobNotFoundError as e:
        raise NotFoundError(
            "Missing or invalid backup file.",
            details={"name": name},
        ) from e


async def create_backup(state: BackupState, name: str | None = None) -> BlobObject:
    """
    Create a new backup and wait for it to be stored.

    The snapshot itself runs on the background executor, so a caller that
    goes away (client disconnect, cancelled request) does not interrupt it.

    Args:
        state: Runtime state
        name: Optional backup name (default: generated from UTC time)

    Returns:
        The stored backup

    Raises:
        ValidationError: Invalid or duplicate name
        ConflictError: Another backup/restore is running
        BackupError: The snapshot failed
    """
    config = state["config"]
    coordinator = state["coordinator"]

    if name:
        validate_backup_name(name)
    else:
        name = generate_backup_name(config.backup_name_prefix)

    coordinator.acquire_or_raise(name)
    try:
        await ensure_unique_name(state, name)
    except BaseException:
        coordinator.release()
        raise

    # build_snapshot owns the lock from here on
    task = state["executor"].submit(build_snapshot, state, name, name=f"snapshot:{name}")
    return await asyncio.shield(task)


async def upload_backup(
    state: BackupState,
    source: BinaryIO,
    filename: str | None,
    name: str | None = None,
) -> BlobObject:
    """
    Store an uploaded archive as a new backup.

    Args:
        state: Runtime state
        source: Readable binary file object (e.g. UploadFile.file)
        filename: Original filename of the upload
        name: Optional explicit backup name (validated like create)

    Returns:
        The stored backup

    Raises:
        ValidationError: Missing file, not a ZIP archive, or duplicate name
        ConflictError: The derived name is in use by a running operation
    """
    config = state["config"]
    store = state["store"]

    if source is None:
        raise ValidationError.for_field("file", "validation_required", "Missing required value.")

    if name:
        field = "name"
        validate_backup_name(name)
    else:
        field = "file"
        name = sanitize_upload_name(filename or "")
        if not name:
            raise ValidationError.for_field(
                "file", "validation_invalid_file_name", "Invalid file name."
            )

    is_zip = await asyncio.to_thread(zipfile.is_zipfile, source)
    if not is_zip:
        raise ValidationError.for_field(
            "file", "validation_invalid_mime_type", "The file must be a ZIP archive."
        )

    if state["coordinator"].is_active_name(name):
        raise ConflictError(
            "The backup is currently being used and cannot be replaced.",
            details={"name": name},
        )

    await ensure_unique_name(state, name, field)

    await asyncio.to_thread(source.seek, 0)
    size = 0
    writer = await store.open_writer(name)
    try:
        async with writer:
            while True:
                chunk = await asyncio.to_thread(source.read, config.chunk_size)
                if not chunk:
                    break
                await writer.write(chunk)
                size += len(chunk)
    except BlobExistsError as e:
        # Another create or upload published the same name first
        raise name_taken_error(field) from e

    logger.info("backup_uploaded", name=name, size=size)
    return await store.attributes(name)


async def delete_backup(state: BackupState, name: str) -> None:
    """
    Delete a backup by name.

    Deleting is allowed while an unrelated backup/restore runs; only the
    archive that operation is using is protected.

    Raises:
        ConflictError: The backup is in use by the running operation
        NotFoundError: No such backup
    """
    if state["coordinator"].is_active_name(name):
        raise ConflictError(
            "The backup is currently being used and cannot be deleted.",
            details={"name": name},
        )

    try:
        await state["store"].delete(name)
    except BlobNotFoundError as e:
        raise NotFoundError(
            "Missing or invalid backup file.",
            details={"name": name},
        ) from e

    logger.info("backup_deleted", name=name)


async def open_backup_download(state: BackupState, name: str) -> tuple[BlobObject, BlobReader]:
    """
    Open a backup for streaming to a client.

    Returns:
        (attributes, reader); the caller closes the reader

    Raises:
        NotFoundError: No such backup
    """
    blob = await ensure_backup_exists(state, name)
    try:
        reader = await state["store"].open_reader(name)
    except BlobNotFoundError as e:
        raise NotFoundError(
            "Missing or invalid backup file.",
            details={"name": name},
        ) from e

    logger.debug("backup_download_opened", name=name, size=blob.size)
    return blob, reader
