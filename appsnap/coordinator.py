# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Coordinator - Process-wide exclusivity for backup operations.

The coordinator holds a single optional slot with the name of the backup
being created or restored. The slot is volatile: it is never persisted and
starts empty in every new process.

Rules enforced by callers:
- create and restore require the slot to be empty (any value, even "",
  counts as occupied)
- delete is refused only for the exact name in the slot
"""

from contextlib import contextmanager
from threading import Lock
from typing import Iterator

import structlog

from appsnap.exceptions import ConflictError

logger = structlog.get_logger()


class BackupCoordinator:
    """Mutex-guarded slot tracking the active backup name."""

    def __init__(self) -> None:
        self._mutex = Lock()
        self._active_name: str | None = None

    def try_acquire(self, name: str) -> bool:
        """
        Occupy the slot with `name` if it is empty.

        Check and set happen under one mutex, so of any number of
        concurrent callers exactly one succeeds.

        Returns:
            True if acquired, False if another operation holds the slot
        """
        with self._mutex:
            if self._active_name is not None:
                return False
            self._active_name = name

        logger.debug("backup_lock_acquired", name=name)
        return True

    def release(self) -> None:
        """Empty the slot. Releasing an empty slot is a no-op."""
        with self._mutex:
            name = self._active_name
            self._active_name = None

        if name is not None:
            logger.debug("backup_lock_released", name=name)

    def current_name(self) -> str | None:
        """Name held by the slot, or None when unlocked."""
        with self._mutex:
            return self._active_name

    def is_active(self) -> bool:
        """True while any create or restore is in flight."""
        return self.current_name() is not None

    def is_active_name(self, name: str) -> bool:
        """True if `name` is exactly the backup currently being written or restored."""
        with self._mutex:
            return self._active_name is not None and self._active_name == name

    def acquire_or_raise(self, name: str) -> None:
        """Acquire the slot or raise ConflictError."""
        if not self.try_acquire(name):
            raise ConflictError(
                "Try again later - another backup/restore operation has already been started.",
                details={"active": self.current_name(), "requested": name},
            )

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        """
        Hold the slot for the duration of the block.

        Raises ConflictError when busy; releases on every exit path.
        """
        self.acquire_or_raise(name)
        try:
            yield
        finally:
            self.release()
