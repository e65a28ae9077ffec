# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup name validation and generation.
"""

import re
from datetime import datetime, UTC

from appsnap.exceptions import ValidationError

# Letters, digits, "_", ".", "-", "@"; must not start with "." or "-"
BACKUP_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_@][a-zA-Z0-9_.\-@]*\.zip$")
UPLOAD_NAME_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_.\-@]")

BACKUP_EXTENSION = ".zip"
MAX_NAME_LENGTH = 150


def generate_backup_name(prefix: str = "pb_backup_", now: datetime | None = None) -> str:
    """
    Generate a backup name from the current UTC time.

    Example: pb_backup_20260312093000.zip
    """
    moment = now or datetime.now(UTC)
    return f"{prefix}{moment.strftime('%Y%m%d%H%M%S')}{BACKUP_EXTENSION}"


def validate_backup_name(name: str, field: str = "name") -> str:
    """
    Check a caller-supplied backup name.

    Args:
        name: Proposed object key
        field: Request field reported in the validation error

    Returns:
        The name, unchanged

    Raises:
        ValidationError: If the name is too long or fails the pattern
    """
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError.for_field(
            field,
            "validation_length_out_of_range",
            f"The length must be between 1 and {MAX_NAME_LENGTH}.",
        )

    if not BACKUP_NAME_PATTERN.match(name):
        raise ValidationError.for_field(
            field,
            "validation_match_invalid",
            "Must be in a valid format.",
        )

    return name


def sanitize_upload_name(filename: str) -> str:
    """
    Derive a blob key from an uploaded file's original name.

    Directory components are dropped and every character outside the
    allowed set is replaced with "_". The archive extension is not
    enforced for uploads.
    """
    base = filename.replace("\\", "/").rsplit("/", 1)[-1].strip()
    safe = UPLOAD_NAME_INVALID_CHARS.sub("_", base)
    safe = safe.lstrip(".-")
    return safe[-MAX_NAME_LENGTH:]


def name_taken_error(field: str = "name") -> ValidationError:
    """Validation error for a backup name that already exists in the store."""
    return ValidationError.for_field(
        field,
        "validation_backup_name_exists",
        "The backup file name is invalid or already exists.",
    )
