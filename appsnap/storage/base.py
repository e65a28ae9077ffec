# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Blob store contract shared by every backup storage backend.

The surface covers listing, streaming writes, streaming reads and
deletes, keyed by an opaque string. An object written through a BlobWriter
must not appear in list() until the writer is closed; an aborted writer
leaves nothing behind.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, List, Protocol, runtime_checkable


@dataclass(frozen=True)
class BlobObject:
    """A stored archive as seen through the store's listing."""

    key: str
    size: int
    modified: datetime

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "size": self.size,
            "modified": self.modified.isoformat(),
        }


class BlobWriter(ABC):
    """
    Streaming writer for one object.

    Used as an async context manager: a clean exit publishes the object,
    an exception aborts it.
    """

    key: str

    @abstractmethod
    async def write(self, data: bytes) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Finalize and publish the object; raises BlobExistsError if the key is taken."""

    @abstractmethod
    async def abort(self) -> None:
        """Discard everything written so far."""

    async def __aenter__(self) -> "BlobWriter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.abort()
        else:
            await self.close()


class BlobReader(ABC):
    """Streaming reader for one object; iterates over byte chunks."""

    key: str

    @abstractmethod
    async def read(self, size: int = -1) -> bytes:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    async def read_all(self) -> bytes:
        return await self.read(-1)

    async def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read(chunk_size)
            if not chunk:
                break
            yield chunk

    async def __aenter__(self) -> "BlobReader":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


@runtime_checkable
class BlobStore(Protocol):
    """Interface for pluggable backup storage backends."""

    async def list(self, prefix: str = "") -> List[BlobObject]:
        """Return all finalized objects whose key starts with prefix."""
        ...

    async def exists(self, key: str) -> bool:
        """Check whether a key exists in the store."""
        ...

    async def attributes(self, key: str) -> BlobObject:
        """Return size and modification time; raises BlobNotFoundError."""
        ...

    async def open_writer(self, key: str) -> BlobWriter:
        """Start writing a new object under key; an existing key is never overwritten."""
        ...

    async def open_reader(self, key: str) -> BlobReader:
        """Open an existing object for reading; raises BlobNotFoundError."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key; raises BlobNotFoundError if absent."""
        ...

    async def close(self) -> None:
        """Release any held resources."""
        ...
