# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for AppSnap tests.

Provides a realistic server data directory (SQLite databases plus a
storage tree), configuration, runtime state, the FastAPI app and auth
helpers.
"""

import tempfile
from pathlib import Path
from typing import Generator

import aiosqlite
import pytest
import pytest_asyncio

SESSION_SECRET = "test-session-secret-0123456789abcdef"
FILE_SECRET = "test-file-secret-fedcba9876543210"

DATA_ROWS = ["alpha", "beta"]
LOG_ROWS = ["server started"]
STORAGE_FILES = {
    "a.txt": b"file a",
    "nested/b.txt": b"file b",
}


class RestartRecorder:
    """Restart hook that only counts invocations."""

    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1


async def create_sqlite_db(path: Path, rows: list) -> None:
    """Create a small SQLite database with one table."""
    async with aiosqlite.connect(path) as db:
        await db.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, value TEXT NOT NULL)")
        await db.executemany("INSERT INTO items (value) VALUES (?)", [(r,) for r in rows])
        await db.commit()


async def read_sqlite_rows(path: Path) -> list:
    """Return the `value` column of the items table, in insertion order."""
    async with aiosqlite.connect(path) as db:
        async with db.execute("SELECT value FROM items ORDER BY id") as cursor:
            return [row[0] async for row in cursor]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest_asyncio.fixture
async def data_dir(temp_dir: Path) -> Path:
    """Create a server data directory with databases and stored files."""
    data = temp_dir / "app_data"
    data.mkdir()

    await create_sqlite_db(data / "data.db", DATA_ROWS)
    await create_sqlite_db(data / "logs.db", LOG_ROWS)

    for rel_path, content in STORAGE_FILES.items():
        path = data / "storage" / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    return data


@pytest.fixture
def test_config(data_dir: Path):
    """Create a test configuration using the local blob store."""
    from appsnap.config import AppSnapConfig

    return AppSnapConfig(
        data_dir=data_dir,
        session_token_secret=SESSION_SECRET,
        file_token_secret=FILE_SECRET,
        chunk_size=1024,
    )


@pytest.fixture
def restart_recorder() -> RestartRecorder:
    return RestartRecorder()


@pytest_asyncio.fixture
async def test_state(test_config, restart_recorder):
    """Create initialized backup state whose restart hook only records calls."""
    from appsnap.core import initialize_backup_state, shutdown_backup_state

    state = await initialize_backup_state(test_config, restart_hook=restart_recorder)
    yield state
    await shutdown_backup_state(state)


@pytest.fixture
def test_app(test_state):
    """FastAPI app with the backup routes and error handlers installed."""
    from fastapi import FastAPI

    from appsnap.integrations.fastapi import install_error_handlers, register_backup_routes

    app = FastAPI()
    install_error_handlers(app)
    register_backup_routes(app, test_state)
    return app


@pytest_asyncio.fixture
async def client(test_app):
    """HTTP client talking to the app in-process."""
    from httpx import AsyncClient, ASGITransport

    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


@pytest.fixture
def superuser_headers(test_state) -> dict:
    from appsnap.tokens import Role

    token = test_state["session_tokens"].issue("su_0001", Role.SUPERUSER)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def record_headers(test_state) -> dict:
    from appsnap.tokens import Role

    token = test_state["session_tokens"].issue("user_0001", Role.RECORD)
    return {"Authorization": token}


@pytest.fixture
def superuser_file_token(test_state) -> str:
    from appsnap.tokens import Role

    return test_state["file_tokens"].issue("su_0001", Role.SUPERUSER)


@pytest.fixture
def put_backup(test_state):
    """Write an object straight into the blob store."""

    async def _put(name: str, content: bytes = b"123") -> None:
        writer = await test_state["store"].open_writer(name)
        async with writer:
            await writer.write(content)

    return _put


@pytest.fixture
def backup_keys(test_state):
    """List the keys currently in the blob store."""

    async def _keys() -> list:
        return [backup.key for backup in await test_state["store"].list()]

    return _keys


@pytest.fixture
def create_test_backups(put_backup):
    """Create test1.zip, test2.zip, test3.zip and @test4.zip."""

    async def _create() -> None:
        for name in ("test1.zip", "test2.zip", "test3.zip", "@test4.zip"):
            await put_backup(name, f"content of {name}".encode())

    return _create


@pytest.fixture
def sqlite_rows():
    """Read back the rows of a test database."""
    return read_sqlite_rows
