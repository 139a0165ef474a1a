# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Object Store interface.

Every backend exposes the same five operations. Listing returns raw
``aws s3 ls`` style text so that a single parser serves every backend.
Failures raise TransferError carrying the backend's error text.
"""

from pathlib import Path
from typing import Protocol

from s3pitr.config import PITRConfig
from s3pitr.errors import explain_missing_bucket_env
from s3pitr.exceptions import ValidationError


class ObjectStore(Protocol):
    """Remote object store holding full/ and binlogs/."""

    async def list(self, prefix: str) -> str:
        """List one level under ``prefix`` as listing text."""
        ...

    async def sync_down(self, remote_prefix: str, local_dir: Path) -> None:
        """Download everything under ``remote_prefix`` into ``local_dir``."""
        ...

    async def sync_up(self, local_dir: Path, remote_prefix: str, timeout: int | None = None) -> None:
        """Upload new or changed files from ``local_dir`` under ``remote_prefix``."""
        ...

    async def delete_object(self, key: str) -> None:
        """Delete a single object."""
        ...

    async def delete_recursive(self, prefix: str) -> None:
        """Delete every object under ``prefix``."""
        ...


def require_bucket(config: PITRConfig) -> str:
    """
    Return the configured bucket or raise.

    Raises:
        ValidationError: If no bucket is configured
    """
    if not config.bucket:
        raise ValidationError(explain_missing_bucket_env())
    return config.bucket
