# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Object Store - Remote storage backends and listing parser.
"""

from s3pitr.config import PITRConfig, StorageBackend
from s3pitr.runner import CommandRunner
from s3pitr.storage.base import ObjectStore, require_bucket
from s3pitr.storage.cli_store import AwsCliObjectStore
from s3pitr.storage.listing import (
    EntryKind,
    RetentionEntry,
    parse_listing,
    parse_listing_line,
)
from s3pitr.storage.sdk_store import BotocoreObjectStore


def make_object_store(config: PITRConfig, runner: CommandRunner) -> ObjectStore:
    """Build the object store selected by ``config.storage_backend``."""
    if config.storage_backend == StorageBackend.SDK:
        return BotocoreObjectStore(config)
    return AwsCliObjectStore(config, runner)


__all__ = [
    # Backends
    "ObjectStore",
    "AwsCliObjectStore",
    "BotocoreObjectStore",
    "make_object_store",
    "require_bucket",
    # Listing
    "EntryKind",
    "RetentionEntry",
    "parse_listing",
    "parse_listing_line",
]
