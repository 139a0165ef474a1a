# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification while a pipeline is running.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List
import re

from s3pitr.runner import Secret


class StorageBackend(str, Enum):
    """How the remote object store is reached."""

    CLI = "cli"  # aws command line (listing text parsed directly)
    SDK = "sdk"  # aiobotocore client


# Schemas that always survive single-database pruning
SYSTEM_SCHEMAS = frozenset({"mysql", "performance_schema", "sys"})

# Remote layout
FULL_BACKUP_PREFIX = "full/"
BINLOG_PREFIX = "binlogs/"


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    # Must be lowercase letters, numbers, hyphens, or periods
    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    # No consecutive periods
    if ".." in bucket:
        return False

    # Not IP address format
    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


def _validate_clock_time(time_str: str) -> bool:
    """Validate HH:MM time format."""
    if not time_str:
        return False
    try:
        parts = time_str.split(":")
        if len(parts) != 2:
            return False
        hour, minute = int(parts[0]), int(parts[1])
        return 0 <= hour <= 23 and 0 <= minute <= 59
    except (ValueError, AttributeError):
        return False


def is_valid_schema_name(name: str) -> bool:
    """MySQL schema names become directory names; reject path tricks."""
    return bool(name) and "/" not in name and name not in (".", "..")


@dataclass(frozen=True)
class PITRConfig:
    """
    Immutable configuration for backup, cleanup and restore pipelines.

    The bucket may be left empty here: pipelines that talk to the
    object store reject an empty bucket themselves, before any side
    effect, so a misconfigured host can still run local-only work.
    """

    # S3 bucket holding full/ and binlogs/
    bucket: str = ""

    # AWS region (default: us-east-1)
    region: str = "us-east-1"

    # How to reach S3
    storage_backend: StorageBackend = StorageBackend.CLI

    # MySQL connection, used by xtrabackup --backup, FLUSH LOGS and binlog replay
    mysql_host: str = "localhost"
    mysql_port: int = 3306
    mysql_user: str = "root"
    mysql_password: Secret | None = None

    # Live MySQL data directory (xtrabackup --datadir, rsync source of binlogs)
    mysql_datadir: Path = field(default_factory=lambda: Path("/var/lib/mysql"))

    # Root of backups/, logs/ and restored-databases/
    storage_root: Path = field(default_factory=lambda: Path("./storage"))

    # Retention windows in days
    retention_days_local: int = 3
    retention_days_cloud: int = 90

    # Optional single schema to back up / restore
    target_database: str | None = None

    # Owner applied to a restored data directory
    service_account: str = "mysql:mysql"

    # Binlog file basename (binlog.000001, ...)
    binlog_basename: str = "binlog"

    # Executables
    aws_bin: str = "aws"
    xtrabackup_bin: str = "xtrabackup"
    mysql_bin: str = "mysql"
    mysqlbinlog_bin: str = "mysqlbinlog"
    rsync_bin: str = "rsync"
    chown_bin: str = "chown"

    # Timeouts in seconds
    backup_timeout: int = 3600
    flush_logs_timeout: int = 60
    upload_timeout: int = 7200
    binlog_upload_timeout: int = 3600
    rsync_timeout: int = 600
    download_timeout: int = 3600
    prepare_timeout: int = 3600
    copy_back_timeout: int = 3600
    chown_timeout: int = 600
    replay_timeout: int = 3600
    list_timeout: int = 300
    delete_timeout: int = 600

    # Schedules (HH:MM local time; interval in minutes)
    full_backup_at: str = "02:00"
    cleanup_at: str = "03:00"
    binlog_archive_every_minutes: int = 30

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        # Validate bucket name only when one is set
        if self.bucket and not _validate_bucket_name(self.bucket):
            errors.append(f"Invalid bucket name: {self.bucket}")

        if self.retention_days_local < 0:
            errors.append(f"retention_days_local must be >= 0, got {self.retention_days_local}")

        if self.retention_days_cloud < 0:
            errors.append(f"retention_days_cloud must be >= 0, got {self.retention_days_cloud}")

        if not 1 <= self.mysql_port <= 65535:
            errors.append(f"mysql_port must be 1-65535, got {self.mysql_port}")

        if self.target_database is not None and not is_valid_schema_name(self.target_database):
            errors.append(f"Invalid target_database: {self.target_database!r}")

        for name in ("full_backup_at", "cleanup_at"):
            value = getattr(self, name)
            if not _validate_clock_time(value):
                errors.append(f"Invalid {name} format: {value}, expected HH:MM")

        if self.binlog_archive_every_minutes < 1:
            errors.append(
                f"binlog_archive_every_minutes must be >= 1, got {self.binlog_archive_every_minutes}"
            )

        for name in (
            "backup_timeout",
            "flush_logs_timeout",
            "upload_timeout",
            "binlog_upload_timeout",
            "rsync_timeout",
            "download_timeout",
            "prepare_timeout",
            "copy_back_timeout",
            "chown_timeout",
            "replay_timeout",
            "list_timeout",
            "delete_timeout",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be > 0, got {getattr(self, name)}")

        # Raise all errors at once
        if errors:
            from s3pitr.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def backups_dir(self) -> Path:
        return self.storage_root / "backups"

    @property
    def local_full_dir(self) -> Path:
        return self.backups_dir / "full"

    @property
    def local_binlog_dir(self) -> Path:
        return self.backups_dir / "binlogs"

    @property
    def logs_dir(self) -> Path:
        return self.storage_root / "logs"

    @property
    def restore_dir(self) -> Path:
        return self.storage_root / "restored-databases"

    @property
    def journal_path(self) -> Path:
        return self.storage_root / "journal.db"

    def with_updates(self, **kwargs) -> "PITRConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return PITRConfig(**current)

    def redacted(self) -> dict:
        """Configuration as a plain dict, safe to log or return over HTTP."""
        return {
            "bucket": self.bucket,
            "region": self.region,
            "storage_backend": self.storage_backend.value,
            "mysql_host": self.mysql_host,
            "mysql_port": self.mysql_port,
            "mysql_user": self.mysql_user,
            "mysql_password": "***" if self.mysql_password else None,
            "mysql_datadir": str(self.mysql_datadir),
            "storage_root": str(self.storage_root),
            "retention_days_local": self.retention_days_local,
            "retention_days_cloud": self.retention_days_cloud,
            "target_database": self.target_database,
            "full_backup_at": self.full_backup_at,
            "cleanup_at": self.cleanup_at,
            "binlog_archive_every_minutes": self.binlog_archive_every_minutes,
        }
