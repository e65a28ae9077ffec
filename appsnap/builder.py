# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Builder - Functional builder pattern for configuration.

This module provides pure functions for building AppSnapConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict, Iterable

from appsnap.config import AppSnapConfig, StorageBackend


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial empty configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "data_dir": None,
        "session_token_secret": "",
        "file_token_secret": "",
        "db_files": ("data.db", "logs.db"),
        "storage_dirname": "storage",
        "storage_backend": StorageBackend.LOCAL,
        "backups_path": None,
        "s3_bucket": None,
        "s3_region": "us-east-1",
        "s3_endpoint_url": None,
        "s3_prefix": "",
        "session_token_ttl": 1209600,
        "file_token_ttl": 180,
        "backup_name_prefix": "pb_backup_",
        "schedule_cron": None,
        "api_prefix": "/api",
        "chunk_size": 1024 * 1024,
        "exclude_dirnames": [],
    }


def with_data_dir(config: ConfigDict, data_dir: Path | str) -> ConfigDict:
    """
    Set the server data directory that snapshots capture.

    Args:
        config: Current configuration dictionary
        data_dir: Directory holding the databases and the storage tree

    Returns:
        New configuration dictionary with data_dir set
    """
    return {**config, "data_dir": Path(data_dir)}


def with_db_files(config: ConfigDict, db_files: Iterable[str]) -> ConfigDict:
    """
    Set the SQLite files (relative to data_dir) captured by snapshots.
    """
    return {**config, "db_files": tuple(db_files)}


def use_local_storage(config: ConfigDict, backups_path: Path | str | None = None) -> ConfigDict:
    """
    Keep backup archives in a local directory.

    Args:
        config: Current configuration dictionary
        backups_path: Directory for archives (default: <data_dir>/backups)

    Returns:
        New configuration dictionary using the local blob store
    """
    path = Path(backups_path) if backups_path is not None else None
    return {**config, "storage_backend": StorageBackend.LOCAL, "backups_path": path}


def use_s3_storage(
    config: ConfigDict,
    bucket: str,
    *,
    region: str = "us-east-1",
    endpoint_url: str | None = None,
    prefix: str = "",
) -> ConfigDict:
    """
    Keep backup archives in an S3 (or S3-compatible) bucket.

    Args:
        config: Current configuration dictionary
        bucket: Bucket name
        region: AWS region
        endpoint_url: Custom endpoint for S3-compatible stores (MinIO, R2, ...)
        prefix: Key prefix under which archives are stored

    Returns:
        New configuration dictionary using the S3 blob store
    """
    return {
        **config,
        "storage_backend": StorageBackend.S3,
        "s3_bucket": bucket,
        "s3_region": region,
        "s3_endpoint_url": endpoint_url,
        "s3_prefix": prefix,
    }


def with_token_secrets(config: ConfigDict, session_secret: str, file_secret: str) -> ConfigDict:
    """
    Set the two signing secrets.

    The secrets must differ: a file-access token must never validate as a
    session and vice versa.
    """
    return {
        **config,
        "session_token_secret": session_secret,
        "file_token_secret": file_secret,
    }


def with_file_token_ttl(config: ConfigDict, seconds: int) -> ConfigDict:
    """
    Set the lifetime of issued file-access tokens.
    """
    if seconds <= 0:
        raise ValueError(f"file token ttl must be > 0, got {seconds}")
    return {**config, "file_token_ttl": seconds}


def with_name_prefix(config: ConfigDict, prefix: str) -> ConfigDict:
    """
    Set the prefix used for generated backup names.
    """
    return {**config, "backup_name_prefix": prefix}


def run_daily_at(config: ConfigDict, time: str) -> ConfigDict:
    """
    Set the daily automatic backup time (UTC).

    Args:
        config: Current configuration dictionary
        time: Time in HH:MM format (e.g., '02:30' for 2:30 AM UTC)

    Returns:
        New configuration dictionary with schedule set
    """
    parts = time.split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid time format: {time}, expected HH:MM")
    try:
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f"Invalid time: {time}")
    except ValueError:
        raise ValueError(f"Invalid time format: {time}, expected HH:MM")

    return {**config, "schedule_cron": time}


def build_config(config_dict: ConfigDict) -> AppSnapConfig:
    """
    Validate and build an immutable AppSnapConfig from a configuration dictionary.

    Raises:
        ConfigurationError: If validation fails
    """
    if not config_dict.get("data_dir"):
        from appsnap.exceptions import ConfigurationError

        raise ConfigurationError("data_dir is required")

    return AppSnapConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        config = build_config(pipe(
            lambda c: with_data_dir(c, "/var/lib/app"),
            lambda c: with_token_secrets(c, session_secret, file_secret),
            lambda c: run_daily_at(c, "03:00"),
        )(create_empty_config()))
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def create_config(
    data_dir: str | Path,
    *,
    session_token_secret: str,
    file_token_secret: str,
    storage_backend: str | StorageBackend = "local",
    backups_path: str | Path | None = None,
    s3_bucket: str | None = None,
    s3_region: str = "us-east-1",
    s3_endpoint_url: str | None = None,
    schedule_cron: str | None = None,
    **kwargs: Any,
) -> AppSnapConfig:
    """
    Create AppSnap configuration from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Example:
        config = create_config(
            "/var/lib/myapp",
            session_token_secret=os.environ["SESSION_SECRET"],
            file_token_secret=os.environ["FILE_TOKEN_SECRET"],
            storage_backend="s3",
            s3_bucket="myapp-backups",
            schedule_cron="02:30",
        )
    """
    config_dict = with_data_dir(create_empty_config(), data_dir)
    config_dict = with_token_secrets(config_dict, session_token_secret, file_token_secret)

    backend = StorageBackend(storage_backend.lower()) if isinstance(storage_backend, str) else storage_backend
    if backend == StorageBackend.S3:
        config_dict = use_s3_storage(
            config_dict,
            s3_bucket or "",
            region=s3_region,
            endpoint_url=s3_endpoint_url,
        )
    else:
        config_dict = use_local_storage(config_dict, backups_path)

    if schedule_cron:
        config_dict = run_daily_at(config_dict, schedule_cron)

    for key, value in kwargs.items():
        if key in config_dict:
            config_dict[key] = value

    return build_config(config_dict)
