# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Pipelines - Full hot backups and binlog archiving.
"""

from s3pitr.backup.binlogs import run_binlog_archive
from s3pitr.backup.full import run_full_backup
from s3pitr.backup.result import BackupResult

__all__ = [
    "BackupResult",
    "run_full_backup",
    "run_binlog_archive",
]
