# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for AppSnap.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_missing_secret_env(env_name: str) -> str:
    """
    Explain that a token signing secret environment variable is missing.
    """

    return (
        f"{env_name} is not set. "
        "AppSnap needs two distinct signing secrets: one for session tokens "
        "and one for file-access tokens."
    )


def explain_shared_token_secret() -> str:
    """
    Explain that the session and file-access secrets must differ.
    """

    return (
        "session_token_secret and file_token_secret must be different. "
        "A file-access token must never be usable as a login session, and "
        "sharing one secret would make the two interchangeable."
    )


def explain_missing_bucket_env() -> str:
    """
    Explain that the S3 bucket environment variable is missing.
    """

    return (
        "S3 storage backend selected but no bucket is configured. "
        "Set the S3_BUCKET environment variable or pass s3_bucket=... to create_config()."
    )


def explain_invalid_storage_backend_env(value: str | None) -> str:
    """
    Explain that APPSNAP_STORAGE_BACKEND is invalid.
    """

    return (
        f"Invalid APPSNAP_STORAGE_BACKEND value: {value!r}. "
        "Expected 'local' or 's3'."
    )


def explain_invalid_ttl_env(env_name: str, value: str | None) -> str:
    """
    Explain that a token TTL environment variable is invalid.
    """

    return (
        f"Invalid {env_name} value: {value!r}. "
        "It must be a positive integer number of seconds."
    )


def explain_missing_data_dir(path: str) -> str:
    """
    Explain that the configured data directory does not exist.
    """

    return (
        f"Data directory {path!r} does not exist. "
        "Point APPSNAP_DATA_DIR (or data_dir=...) at the server's data directory."
    )
