# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap - Point-in-time backups for a self-hosted application server.

Snapshots the server's SQLite databases and file-storage tree into ZIP
archives kept in a pluggable blob store (local directory or S3), and
restores the server from any of them while it keeps serving requests.
Package name: appsnap.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from appsnap.builder import create_config
from appsnap.env import create_config_from_env

# Core functions
from appsnap.core import (
    BackupState,
    initialize_backup_state,
    shutdown_backup_state,
)

from appsnap.coordinator import BackupCoordinator
from appsnap.tokens import FileTokenCodec, Role, SessionTokenCodec

__all__ = [
    # Version
    "__version__",
    # Configuration creation (primary user-facing APIs)
    "create_config",
    "create_config_from_env",
    # Core orchestration functions
    "BackupState",
    "initialize_backup_state",
    "shutdown_backup_state",
    # Building blocks
    "BackupCoordinator",
    "FileTokenCodec",
    "SessionTokenCodec",
    "Role",
]
