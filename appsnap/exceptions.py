# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Exceptions - Custom exceptions for the appsnap package.

Every exception carries the HTTP status it maps to, so the FastAPI
integration can translate it without a lookup table.
"""

from enum import Enum


class AppSnapError(Exception):
    """Base exception for all AppSnap errors."""

    status_code: int = 500

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def public_data(self) -> dict:
        """Field-level data safe to include in an API response."""
        return {}


class ConfigurationError(AppSnapError):
    """Raised when configuration is invalid."""

    pass


class AuthorizationError(AppSnapError):
    """Raised when the caller lacks the required role."""

    status_code = 401


class ForbiddenError(AuthorizationError):
    """Raised when a scoped credential is absent or invalid."""

    status_code = 403


class ValidationError(AppSnapError):
    """Raised when request data fails validation."""

    status_code = 400

    def __init__(
        self,
        message: str,
        field_errors: dict[str, dict[str, str]] | None = None,
        details: dict | None = None,
    ):
        self.field_errors = field_errors or {}
        super().__init__(message, details)

    @classmethod
    def for_field(cls, field: str, code: str, message: str) -> "ValidationError":
        """Build a validation error scoped to a single field."""
        return cls(
            "Failed to validate the submitted data.",
            field_errors={field: {"code": code, "message": message}},
        )

    def public_data(self) -> dict:
        return self.field_errors


class ConflictError(AppSnapError):
    """Raised when a backup or restore is already in progress."""

    status_code = 400


class NotFoundError(AppSnapError):
    """Raised when a named backup does not exist."""

    status_code = 400


class BackupError(AppSnapError):
    """Raised when backup operations fail."""

    pass


class RestoreError(AppSnapError):
    """Raised when restore operations fail."""

    pass


class BlobStoreError(AppSnapError):
    """Raised when blob store operations fail."""

    pass


class BlobNotFoundError(BlobStoreError):
    """Raised when a blob store key does not exist."""

    status_code = 400


class BlobExistsError(BlobStoreError):
    """Raised when publishing would overwrite an existing key."""

    status_code = 400


class TokenFailure(str, Enum):
    """Reason a token failed verification."""

    MALFORMED = "malformed"
    EXPIRED = "expired"
    WRONG_SCOPE = "wrong_scope"


class TokenError(AppSnapError):
    """Raised when a signed token fails verification."""

    status_code = 403

    def __init__(self, reason: TokenFailure, details: dict | None = None):
        self.reason = reason
        super().__init__(f"Token rejected: {reason.value}", details)
