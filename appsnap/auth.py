# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Session authentication - classify a request's caller.

Backups only need to know whether the caller is a superuser. This module
resolves the Authorization header into a Principal using the session codec;
it never looks at file-access tokens.
"""

from dataclasses import dataclass

import structlog

from appsnap.exceptions import TokenError
from appsnap.tokens import Role, SessionTokenCodec

logger = structlog.get_logger()


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""

    id: str
    role: Role

    @property
    def is_superuser(self) -> bool:
        return self.role == Role.SUPERUSER


def _extract_bearer(header_value: str | None) -> str | None:
    """Accept both "Bearer <token>" and a bare token."""
    if not header_value:
        return None
    value = header_value.strip()
    if value[:7].lower() == "bearer ":
        value = value[7:].strip()
    return value or None


def resolve_principal(
    codec: SessionTokenCodec,
    authorization: str | None,
) -> Principal | None:
    """
    Resolve the Authorization header to a Principal.

    Returns:
        The principal, or None for anonymous/invalid credentials
    """
    token = _extract_bearer(authorization)
    if token is None:
        return None

    try:
        claims = codec.verify(token)
    except TokenError as e:
        logger.debug("session_token_rejected", reason=e.reason.value)
        return None

    return Principal(id=claims.subject, role=claims.role)
