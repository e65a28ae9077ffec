# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI plugin and other framework integrations.
"""

from appsnap.integrations.fastapi import (
    appsnap_lifespan,
    create_app,
    get_backup_state,
    install_error_handlers,
    register_backup_routes,
)

__all__ = [
    "appsnap_lifespan",
    "create_app",
    "get_backup_state",
    "install_error_handlers",
    "register_backup_routes",
]
