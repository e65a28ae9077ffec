# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Signed tokens for sessions and file access.

Two codecs exist and they share nothing: each is built with its own secret
and its own token kind, and each returns its own claims type. A file-access
token therefore cannot pass as a session (bad signature, wrong kind) and a
session token cannot open a backup download.

Claims:
    sub   principal id
    role  "superuser" or "record"
    type  "session" or "file"
    iat   issued at (unix seconds)
    exp   expiry (unix seconds)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from enum import Enum

import jwt
import structlog

from appsnap.exceptions import TokenError, TokenFailure

logger = structlog.get_logger()

ALGORITHM = "HS256"


class Role(str, Enum):
    """Principal role as classified by the authentication layer."""

    SUPERUSER = "superuser"
    RECORD = "record"


@dataclass(frozen=True)
class SessionClaims:
    """Verified claims of a login/session token."""

    subject: str
    role: Role
    expires_at: datetime


@dataclass(frozen=True)
class FileTokenClaims:
    """Verified claims of a file-access token."""

    subject: str
    role: Role
    expires_at: datetime


class _TokenCodec:
    """HS256 issue/verify bound to one secret and one token kind."""

    kind: str = ""
    claims_type: type = SessionClaims

    def __init__(self, secret: str, default_ttl: int):
        if not secret:
            raise ValueError(f"{type(self).__name__} requires a non-empty secret")
        self._secret = secret
        self._default_ttl = default_ttl

    def issue(self, subject: str, role: Role, ttl: int | None = None) -> str:
        """Mint a token for `subject` valid for `ttl` seconds."""
        now = datetime.now(UTC)
        expires = now + timedelta(seconds=ttl or self._default_ttl)
        payload = {
            "sub": subject,
            "role": Role(role).value,
            "type": self.kind,
            "iat": int(now.timestamp()),
            "exp": int(expires.timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str | None):
        """
        Verify signature, expiry and kind.

        Raises:
            TokenError: with the failure reason
        """
        if not token:
            raise TokenError(TokenFailure.MALFORMED)

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["exp", "sub", "type"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenError(TokenFailure.EXPIRED) from e
        except jwt.InvalidSignatureError as e:
            raise TokenError(TokenFailure.WRONG_SCOPE) from e
        except jwt.InvalidTokenError as e:
            raise TokenError(TokenFailure.MALFORMED, details={"error": str(e)}) from e

        if payload.get("type") != self.kind:
            raise TokenError(
                TokenFailure.WRONG_SCOPE,
                details={"expected": self.kind, "got": payload.get("type")},
            )

        try:
            role = Role(payload.get("role"))
        except ValueError as e:
            raise TokenError(TokenFailure.MALFORMED, details={"role": payload.get("role")}) from e

        return self.claims_type(
            subject=str(payload["sub"]),
            role=role,
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )


class SessionTokenCodec(_TokenCodec):
    """Login/session tokens, read from the Authorization header."""

    kind = "session"
    claims_type = SessionClaims

    def verify(self, token: str | None) -> SessionClaims:
        return super().verify(token)


class FileTokenCodec(_TokenCodec):
    """Short-lived file-access tokens, accepted only by download routes."""

    kind = "file"
    claims_type = FileTokenClaims

    def verify(self, token: str | None) -> FileTokenClaims:
        return super().verify(token)
