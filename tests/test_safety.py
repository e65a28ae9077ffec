# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Critical Safety Tests for AppSnap.

These tests verify the core safety guarantees:
1. Exclusivity - At most one backup/restore runs at a time
2. No overwrites - An existing backup is NEVER replaced by create/upload
3. Name rules - Only well-formed names reach the blob store
4. Token boundary - Session tokens NEVER open a download, file tokens NEVER act as a session
5. Configuration - Misconfigured secrets are refused at startup

These tests MUST pass before any production deployment.
"""

import asyncio
import io
import threading
import zipfile
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, UTC
from pathlib import Path

import pytest

from appsnap.backup import (
    build_snapshot,
    create_backup,
    delete_backup,
    schedule_restore,
    upload_backup,
)
from appsnap.coordinator import BackupCoordinator
from appsnap.exceptions import (
    BackupError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    TokenError,
    TokenFailure,
    ValidationError,
)
from appsnap.names import (
    BACKUP_NAME_PATTERN,
    generate_backup_name,
    sanitize_upload_name,
    validate_backup_name,
)
from appsnap.tokens import FileTokenCodec, Role, SessionTokenCodec

from conftest import FILE_SECRET, SESSION_SECRET


# ============================================================================
# Test 1: EXCLUSIVITY
# ============================================================================

def test_lock_empty_string_counts_as_held():
    """An active name of "" still blocks every other acquire."""
    coordinator = BackupCoordinator()

    assert coordinator.try_acquire("")
    assert coordinator.is_active()
    assert coordinator.current_name() == ""
    assert not coordinator.try_acquire("other.zip")


def test_lock_release_is_idempotent():
    coordinator = BackupCoordinator()
    coordinator.release()

    assert coordinator.try_acquire("a.zip")
    coordinator.release()
    coordinator.release()

    assert coordinator.current_name() is None
    assert coordinator.try_acquire("b.zip")


def test_lock_name_match_is_exact():
    coordinator = BackupCoordinator()
    coordinator.try_acquire("test1.zip")

    assert coordinator.is_active_name("test1.zip")
    assert not coordinator.is_active_name("test1.ZIP")
    assert not coordinator.is_active_name("test2.zip")


def test_lock_hold_releases_on_error():
    """The slot is freed even when the held block raises."""
    coordinator = BackupCoordinator()

    with pytest.raises(RuntimeError):
        with coordinator.hold("a.zip"):
            assert coordinator.is_active_name("a.zip")
            raise RuntimeError("boom")

    assert not coordinator.is_active()


def test_lock_hold_refuses_when_busy():
    coordinator = BackupCoordinator()
    coordinator.try_acquire("running.zip")

    with pytest.raises(ConflictError):
        with coordinator.hold("other.zip"):
            pass

    assert coordinator.current_name() == "running.zip"


def test_concurrent_threads_admit_exactly_one():
    """
    CRITICAL: Of many simultaneous acquires, exactly one wins.
    """
    coordinator = BackupCoordinator()
    barrier = threading.Barrier(16)

    def attempt(i: int) -> bool:
        barrier.wait()
        return coordinator.try_acquire(f"backup_{i}.zip")

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(attempt, range(16)))

    assert results.count(True) == 1
    winner = results.index(True)
    assert coordinator.current_name() == f"backup_{winner}.zip"


@pytest.mark.asyncio
async def test_concurrent_creates_admit_at_most_one(test_state, backup_keys):
    """Two simultaneous creates: one is stored, the other is refused."""
    results = await asyncio.gather(
        create_backup(test_state, "first.zip"),
        create_backup(test_state, "second.zip"),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, ConflictError)]
    stored = [r for r in results if not isinstance(r, Exception)]

    assert len(conflicts) == 1
    assert len(stored) == 1
    assert await backup_keys() == [stored[0].key]
    assert not test_state["coordinator"].is_active()


@pytest.mark.asyncio
async def test_restore_refused_while_backup_running(test_state, put_backup):
    await put_backup("existing.zip")
    test_state["coordinator"].try_acquire("in_progress.zip")

    with pytest.raises(ConflictError):
        await schedule_restore(test_state, "existing.zip")

    assert test_state["coordinator"].current_name() == "in_progress.zip"
    assert test_state["executor"].pending == 0


@pytest.mark.asyncio
async def test_delete_blocked_only_for_active_name(test_state, put_backup, backup_keys):
    """Deleting X while Y is locked succeeds; deleting the locked name fails."""
    await put_backup("x.zip")
    await put_backup("y.zip")
    test_state["coordinator"].try_acquire("y.zip")

    await delete_backup(test_state, "x.zip")
    with pytest.raises(ConflictError):
        await delete_backup(test_state, "y.zip")

    assert await backup_keys() == ["y.zip"]


@pytest.mark.asyncio
async def test_delete_unknown_name(test_state):
    with pytest.raises(NotFoundError):
        await delete_backup(test_state, "missing.zip")


# ============================================================================
# Test 2: NO OVERWRITES
# ============================================================================

@pytest.mark.asyncio
async def test_duplicate_create_never_changes_existing_bytes(test_state, put_backup):
    """
    CRITICAL: Creating a backup under an existing name must fail without
    touching the stored archive.
    """
    await put_backup("test.zip", b"original bytes")

    with pytest.raises(ValidationError) as exc_info:
        await create_backup(test_state, "test.zip")

    assert "name" in exc_info.value.field_errors
    assert not test_state["coordinator"].is_active()

    reader = await test_state["store"].open_reader("test.zip")
    async with reader:
        assert await reader.read_all() == b"original bytes"


@pytest.mark.asyncio
async def test_failed_create_releases_lock(test_state, put_backup):
    await put_backup("taken.zip")

    with pytest.raises(ValidationError):
        await create_backup(test_state, "taken.zip")

    assert test_state["coordinator"].try_acquire("next.zip")


def zip_bytes(label: str) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("label.txt", label)
    return buffer.getvalue()


async def read_backup(state, name: str) -> bytes:
    reader = await state["store"].open_reader(name)
    async with reader:
        return await reader.read_all()


@pytest.mark.asyncio
async def test_concurrent_uploads_never_replace_each_other(test_state, backup_keys):
    """
    CRITICAL: Two uploads racing for one name store exactly one archive,
    and the loser never replaces the winner's bytes.
    """
    contents = [zip_bytes("A"), zip_bytes("B")]

    results = await asyncio.gather(
        *(upload_backup(test_state, io.BytesIO(c), "upload.zip", "same.zip") for c in contents),
        return_exceptions=True,
    )

    refused = [r for r in results if isinstance(r, ValidationError)]
    stored = [i for i, r in enumerate(results) if not isinstance(r, Exception)]

    assert len(refused) == 1
    assert refused[0].field_errors["name"]["code"] == "validation_backup_name_exists"
    assert len(stored) == 1
    assert await backup_keys() == ["same.zip"]
    assert await read_backup(test_state, "same.zip") == contents[stored[0]]


@pytest.mark.asyncio
async def test_snapshot_refused_when_name_published_meanwhile(test_state, put_backup):
    """An upload that lands while a snapshot is being built keeps its bytes."""
    test_state["coordinator"].acquire_or_raise("race.zip")
    await put_backup("race.zip", b"uploaded first")

    with pytest.raises(ValidationError) as exc_info:
        await build_snapshot(test_state, "race.zip")

    assert "name" in exc_info.value.field_errors
    assert await read_backup(test_state, "race.zip") == b"uploaded first"
    assert not test_state["coordinator"].is_active()


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_abort_snapshot(test_state, backup_keys):
    """A client that goes away after admission still gets its backup stored."""
    executor = test_state["executor"]
    caller = asyncio.create_task(create_backup(test_state, "c.zip"))

    while executor.pending == 0 and not caller.done():
        await asyncio.sleep(0)
    caller.cancel()
    await asyncio.gather(caller, return_exceptions=True)
    await executor.drain()

    assert caller.cancelled()
    assert await backup_keys() == ["c.zip"]
    assert not test_state["coordinator"].is_active()


@pytest.mark.asyncio
async def test_failure_while_streaming_leaves_no_object(test_state, backup_keys, monkeypatch):
    """A snapshot that fails after the writer opened leaves nothing listed."""
    import appsnap.backup.snapshot as snapshot_module

    async def failing_stream(path, writer, chunk_size):
        await writer.write(b"PK partial")
        raise OSError("connection reset")

    monkeypatch.setattr(snapshot_module, "stream_file_to_writer", failing_stream)

    with pytest.raises(BackupError):
        await create_backup(test_state, "partial.zip")

    assert await backup_keys() == []
    assert not test_state["coordinator"].is_active()
    assert not await test_state["store"].exists("partial.zip")


# ============================================================================
# Test 3: NAME RULES
# ============================================================================

@pytest.mark.parametrize(
    "name",
    ["test.zip", "@test4.zip", "_x.zip", "pb_backup_20260101000000.zip", "a-b.c@d.zip"],
)
def test_valid_names_accepted(name):
    assert validate_backup_name(name) == name


@pytest.mark.parametrize(
    "name",
    ["!test.zip", "test", "test.tar.gz", ".hidden.zip", "-dash.zip", "a b.zip", "a/b.zip", "ä.zip"],
)
def test_invalid_names_rejected(name):
    with pytest.raises(ValidationError) as exc_info:
        validate_backup_name(name)

    assert exc_info.value.field_errors["name"]["code"] == "validation_match_invalid"


def test_overlong_name_rejected():
    name = "a" * 147 + ".zip"

    with pytest.raises(ValidationError) as exc_info:
        validate_backup_name(name)

    assert exc_info.value.field_errors["name"]["code"] == "validation_length_out_of_range"


def test_generated_names_always_valid():
    moment = datetime(2026, 3, 12, 9, 30, 0, tzinfo=UTC)

    name = generate_backup_name(now=moment)

    assert name == "pb_backup_20260312093000.zip"
    assert BACKUP_NAME_PATTERN.match(generate_backup_name())
    assert BACKUP_NAME_PATTERN.match("@auto_" + generate_backup_name())


def test_upload_names_are_sanitized():
    assert sanitize_upload_name("test") == "test"
    assert sanitize_upload_name("../../etc/passwd") == "passwd"
    assert sanitize_upload_name("C:\\backups\\my backup.zip") == "my_backup.zip"
    assert sanitize_upload_name(".hidden.zip") == "hidden.zip"


# ============================================================================
# Test 4: TOKEN BOUNDARY
# ============================================================================

def test_session_token_rejected_by_file_codec():
    """
    CRITICAL: A session token must never verify as a file-access token,
    whatever its role.
    """
    sessions = SessionTokenCodec(SESSION_SECRET, 3600)
    files = FileTokenCodec(FILE_SECRET, 180)

    token = sessions.issue("su_0001", Role.SUPERUSER)

    with pytest.raises(TokenError) as exc_info:
        files.verify(token)

    assert exc_info.value.reason == TokenFailure.WRONG_SCOPE


def test_file_token_rejected_as_session():
    sessions = SessionTokenCodec(SESSION_SECRET, 3600)
    files = FileTokenCodec(FILE_SECRET, 180)

    token = files.issue("su_0001", Role.SUPERUSER)

    with pytest.raises(TokenError) as exc_info:
        sessions.verify(token)

    assert exc_info.value.reason == TokenFailure.WRONG_SCOPE


def test_wrong_kind_with_same_secret_rejected():
    """Even signed with the right secret, a token of the other kind is refused."""
    forged = SessionTokenCodec(FILE_SECRET, 3600).issue("su_0001", Role.SUPERUSER)

    with pytest.raises(TokenError) as exc_info:
        FileTokenCodec(FILE_SECRET, 180).verify(forged)

    assert exc_info.value.reason == TokenFailure.WRONG_SCOPE


def test_expired_file_token_rejected():
    files = FileTokenCodec(FILE_SECRET, 180)
    token = files.issue("su_0001", Role.SUPERUSER, ttl=-60)

    with pytest.raises(TokenError) as exc_info:
        files.verify(token)

    assert exc_info.value.reason == TokenFailure.EXPIRED


@pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b.c"])
def test_malformed_file_token_rejected(token):
    with pytest.raises(TokenError) as exc_info:
        FileTokenCodec(FILE_SECRET, 180).verify(token)

    assert exc_info.value.reason == TokenFailure.MALFORMED


def test_valid_file_token_round_trip():
    files = FileTokenCodec(FILE_SECRET, 180)

    claims = files.verify(files.issue("su_0001", Role.SUPERUSER))

    assert claims.subject == "su_0001"
    assert claims.role == Role.SUPERUSER
    assert claims.expires_at > datetime.now(UTC)


# ============================================================================
# Test 5: CONFIGURATION
# ============================================================================

def test_shared_token_secret_refused(temp_dir: Path):
    """The file-access secret must differ from the session secret."""
    from appsnap.config import AppSnapConfig

    with pytest.raises(ConfigurationError) as exc_info:
        AppSnapConfig(
            data_dir=temp_dir,
            session_token_secret="same-secret",
            file_token_secret="same-secret",
        )

    assert len(exc_info.value.details["errors"]) == 1


def test_missing_secrets_refused(temp_dir: Path):
    from appsnap.config import AppSnapConfig

    with pytest.raises(ConfigurationError) as exc_info:
        AppSnapConfig(data_dir=temp_dir)

    assert len(exc_info.value.details["errors"]) == 2


def test_s3_backend_requires_valid_bucket(temp_dir: Path):
    from appsnap.config import AppSnapConfig, StorageBackend

    with pytest.raises(ConfigurationError):
        AppSnapConfig(
            data_dir=temp_dir,
            session_token_secret=SESSION_SECRET,
            file_token_secret=FILE_SECRET,
            storage_backend=StorageBackend.S3,
            s3_bucket="Invalid_Bucket",
        )


def test_builder_produces_frozen_config(temp_dir: Path):
    from dataclasses import FrozenInstanceError

    from appsnap.builder import create_config

    config = create_config(
        temp_dir,
        session_token_secret=SESSION_SECRET,
        file_token_secret=FILE_SECRET,
        schedule_cron="03:30",
    )

    assert config.data_dir == temp_dir
    assert config.file_token_ttl == 180
    assert config.local_backups_path == temp_dir / "backups"
    with pytest.raises(FrozenInstanceError):
        config.file_token_ttl = 10


def test_env_config_requires_both_secrets(temp_dir: Path, monkeypatch):
    from appsnap.env import create_config_from_env

    monkeypatch.setenv("APPSNAP_DATA_DIR", str(temp_dir))
    monkeypatch.setenv("APPSNAP_SESSION_SECRET", SESSION_SECRET)
    monkeypatch.delenv("APPSNAP_FILE_TOKEN_SECRET", raising=False)

    with pytest.raises(ConfigurationError):
        create_config_from_env()

    monkeypatch.setenv("APPSNAP_FILE_TOKEN_SECRET", FILE_SECRET)
    monkeypatch.setenv("APPSNAP_FILE_TOKEN_TTL", "60")

    config = create_config_from_env()
    assert config.file_token_ttl == 60
    assert config.data_dir == temp_dir
