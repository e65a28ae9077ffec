# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

A small, convenient wrapper around create_config() that builds a
configuration from well-known environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path

from appsnap.builder import create_config
from appsnap.config import AppSnapConfig, StorageBackend
from appsnap.errors import (
    explain_invalid_storage_backend_env,
    explain_invalid_ttl_env,
    explain_missing_bucket_env,
    explain_missing_secret_env,
)
from appsnap.exceptions import ConfigurationError


def _parse_storage_backend(value: str | None) -> StorageBackend:
    if not value:
        return StorageBackend.LOCAL
    try:
        return StorageBackend(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_storage_backend_env(value)) from exc


def _parse_ttl(env_name: str, default: int) -> int:
    value = os.getenv(env_name)
    if not value:
        return default
    try:
        seconds = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_ttl_env(env_name, value)) from exc
    if seconds <= 0:
        raise ConfigurationError(explain_invalid_ttl_env(env_name, value))
    return seconds


def _require_secret(env_name: str) -> str:
    value = os.getenv(env_name)
    if not value:
        raise ConfigurationError(explain_missing_secret_env(env_name))
    return value


def create_config_from_env() -> AppSnapConfig:
    """
    Create an AppSnapConfig from environment variables.

    Required:
        - APPSNAP_SESSION_SECRET: Signing secret for session tokens
        - APPSNAP_FILE_TOKEN_SECRET: Signing secret for file-access tokens

    Optional environment variables:
        - APPSNAP_DATA_DIR: Server data directory (default: ./app_data)
        - APPSNAP_STORAGE_BACKEND: 'local' | 's3' (default: local)
        - APPSNAP_BACKUPS_PATH: Local archive directory (default: <data_dir>/backups)
        - S3_BUCKET: Bucket for the s3 backend
        - AWS_REGION: AWS region (default: us-east-1)
        - S3_ENDPOINT_URL: Endpoint of an S3-compatible store
        - APPSNAP_FILE_TOKEN_TTL: File token lifetime in seconds (default: 180)
        - APPSNAP_SCHEDULE_CRON: Daily automatic backup in HH:MM (UTC)
    """

    session_secret = _require_secret("APPSNAP_SESSION_SECRET")
    file_secret = _require_secret("APPSNAP_FILE_TOKEN_SECRET")

    data_dir = Path(os.getenv("APPSNAP_DATA_DIR", "./app_data"))
    backend = _parse_storage_backend(os.getenv("APPSNAP_STORAGE_BACKEND"))

    bucket = os.getenv("S3_BUCKET")
    if backend == StorageBackend.S3 and not bucket:
        raise ConfigurationError(explain_missing_bucket_env())

    backups_path_env = os.getenv("APPSNAP_BACKUPS_PATH")

    return create_config(
        data_dir,
        session_token_secret=session_secret,
        file_token_secret=file_secret,
        storage_backend=backend,
        backups_path=Path(backups_path_env) if backups_path_env else None,
        s3_bucket=bucket,
        s3_region=os.getenv("AWS_REGION", "us-east-1"),
        s3_endpoint_url=os.getenv("S3_ENDPOINT_URL"),
        schedule_cron=os.getenv("APPSNAP_SCHEDULE_CRON"),
        file_token_ttl=_parse_ttl("APPSNAP_FILE_TOKEN_TTL", 180),
    )
