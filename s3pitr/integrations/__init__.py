# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI plugin.
"""

from s3pitr.integrations.fastapi import (
    pitr_lifespan,
    register_pitr_routes,
    setup_pitr_plugin,
    verify_api_key,
)

__all__ = [
    "setup_pitr_plugin",
    "register_pitr_routes",
    "pitr_lifespan",
    "verify_api_key",
]
