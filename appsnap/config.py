# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification while a backup or restore is in flight.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Tuple
import re


class StorageBackend(str, Enum):
    """Blob store backend that holds the backup archives."""

    LOCAL = "local"  # Directory on the local filesystem
    S3 = "s3"  # S3 or any S3-compatible object store


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    if ".." in bucket:
        return False

    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


def _validate_cron_time(time_str: str) -> bool:
    """Validate HH:MM time format."""
    if not time_str:
        return False
    try:
        parts = time_str.split(":")
        if len(parts) != 2:
            return False
        hour, minute = int(parts[0]), int(parts[1])
        return 0 <= hour <= 23 and 0 <= minute <= 59
    except (ValueError, AttributeError):
        return False


def _validate_db_files(db_files: Tuple[str, ...]) -> bool:
    """Database files must be plain, unique file names inside data_dir."""
    if not db_files:
        return False
    for name in db_files:
        if not isinstance(name, str) or not name:
            return False
        if "/" in name or "\\" in name or name in (".", ".."):
            return False
    return len(set(db_files)) == len(db_files)


@dataclass(frozen=True)
class AppSnapConfig:
    """
    Immutable configuration for server backups.

    This configuration is frozen after creation so the snapshot builder,
    the restore engine and the HTTP handlers all see the same values.
    """

    # Required: the server's data directory (databases + storage tree)
    data_dir: Path

    # Signing secret for login/session tokens
    session_token_secret: str = ""

    # Signing secret for file-access tokens (must differ from the session one)
    file_token_secret: str = ""

    # SQLite files inside data_dir captured by every snapshot
    db_files: Tuple[str, ...] = ("data.db", "logs.db")

    # File-storage tree inside data_dir
    storage_dirname: str = "storage"

    # Where backup archives are kept
    storage_backend: StorageBackend = StorageBackend.LOCAL

    # Root directory of the local blob store (default: <data_dir>/backups)
    backups_path: Path | None = None

    # S3 settings (only used with StorageBackend.S3)
    s3_bucket: str | None = None
    s3_region: str = "us-east-1"
    s3_endpoint_url: str | None = None
    s3_prefix: str = ""

    # Token lifetimes in seconds
    session_token_ttl: int = 1209600  # 14 days
    file_token_ttl: int = 180  # 3 minutes

    # Prefix of generated backup names
    backup_name_prefix: str = "pb_backup_"

    # Daily automatic backup time in HH:MM format (UTC)
    schedule_cron: str | None = None

    # URL prefix of the HTTP routes
    api_prefix: str = "/api"

    # Chunk size for streaming archives in and out of the blob store
    chunk_size: int = 1024 * 1024

    # Additional directory names inside data_dir excluded from snapshots
    exclude_dirnames: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not isinstance(self.data_dir, Path):
            object.__setattr__(self, "data_dir", Path(self.data_dir))
        if self.backups_path is not None and not isinstance(self.backups_path, Path):
            object.__setattr__(self, "backups_path", Path(self.backups_path))
        if not isinstance(self.db_files, tuple):
            object.__setattr__(self, "db_files", tuple(self.db_files))

        if not self.session_token_secret:
            errors.append("session_token_secret is required")
        if not self.file_token_secret:
            errors.append("file_token_secret is required")
        if (
            self.session_token_secret
            and self.session_token_secret == self.file_token_secret
        ):
            from appsnap.errors import explain_shared_token_secret

            errors.append(explain_shared_token_secret())

        if not _validate_db_files(self.db_files):
            errors.append(f"Invalid db_files: {self.db_files!r}")

        if not self.storage_dirname or "/" in self.storage_dirname:
            errors.append(f"Invalid storage_dirname: {self.storage_dirname!r}")

        if self.storage_backend == StorageBackend.S3:
            if not self.s3_bucket or not _validate_bucket_name(self.s3_bucket):
                errors.append(f"Invalid bucket name: {self.s3_bucket}")

        if self.session_token_ttl <= 0:
            errors.append(f"session_token_ttl must be > 0, got {self.session_token_ttl}")
        if self.file_token_ttl <= 0:
            errors.append(f"file_token_ttl must be > 0, got {self.file_token_ttl}")

        if self.schedule_cron and not _validate_cron_time(self.schedule_cron):
            errors.append(f"Invalid schedule_cron format: {self.schedule_cron}, expected HH:MM")

        if self.chunk_size < 1:
            errors.append(f"chunk_size must be >= 1, got {self.chunk_size}")

        if errors:
            from appsnap.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def storage_path(self) -> Path:
        """Live file-storage tree."""
        return self.data_dir / self.storage_dirname

    @property
    def local_backups_path(self) -> Path:
        """Root of the local blob store."""
        return self.backups_path or (self.data_dir / "backups")

    @property
    def temp_path(self) -> Path:
        """Scratch area for snapshot staging."""
        return self.data_dir / ".appsnap_temp"

    def with_updates(self, **kwargs) -> "AppSnapConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return AppSnapConfig(**current)
