# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 PITR Manager - MySQL point-in-time recovery backed by S3.

Takes daily hot backups, archives binary logs, enforces local and cloud
retention windows, and restores a data directory to any instant covered
by a full backup plus the binlogs written after it. Package name: s3pitr.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from s3pitr.builder import create_config
from s3pitr.env import create_config_from_env

# Pipelines
from s3pitr.backup import run_binlog_archive, run_full_backup
from s3pitr.cleanup import run_cleanup
from s3pitr.restore import parse_restore_request, run_restore

# Orchestration
from s3pitr.core import (
    binlog_archive_job,
    cleanup_job,
    full_backup_job,
    initialize_pitr_state,
    restore_job,
    shutdown_pitr_state,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "create_config",
    "create_config_from_env",
    # Pipelines
    "run_full_backup",
    "run_binlog_archive",
    "run_cleanup",
    "run_restore",
    "parse_restore_request",
    # Orchestration
    "initialize_pitr_state",
    "shutdown_pitr_state",
    "full_backup_job",
    "binlog_archive_job",
    "cleanup_job",
    "restore_job",
]
