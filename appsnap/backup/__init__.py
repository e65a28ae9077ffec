# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Snapshot, backup lifecycle and restore operations.
"""

from appsnap.backup.manager import (
    list_backups,
    create_backup,
    upload_backup,
    delete_backup,
    open_backup_download,
    ensure_backup_exists,
)

from appsnap.backup.restore import (
    schedule_restore,
    run_restore,
    RestoreResult,
)

from appsnap.backup.snapshot import build_snapshot

__all__ = [
    # Manager
    "list_backups",
    "create_backup",
    "upload_backup",
    "delete_backup",
    "open_backup_download",
    "ensure_backup_exists",
    # Snapshot
    "build_snapshot",
    # Restore
    "schedule_restore",
    "run_restore",
    "RestoreResult",
]
