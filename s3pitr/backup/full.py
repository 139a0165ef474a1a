# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Full Backup - Daily hot backup of the live data directory.

Steps:
1. Recreate ``backups/full/<date>`` locally
2. ``xtrabackup --backup`` into it
3. ``FLUSH LOGS`` so binlogs written after the backup start a new segment
4. Sync the directory to ``full/<date>/``

Any failing step raises and aborts the run.
"""

import asyncio
import shutil
import time
from datetime import date

import structlog

from s3pitr.backup.result import BackupResult
from s3pitr.config import FULL_BACKUP_PREFIX, PITRConfig
from s3pitr.exceptions import ToolError, WorkspaceError
from s3pitr.runner import CommandRunner, run_or_raise
from s3pitr.storage.base import ObjectStore, require_bucket
from s3pitr.tools import mysql_credentials_file, mysql_flush_logs, xtrabackup_backup

logger = structlog.get_logger()


async def run_full_backup(
    config: PITRConfig,
    store: ObjectStore,
    runner: CommandRunner,
    *,
    today: date | None = None,
) -> BackupResult:
    """
    Take a full hot backup and upload it.

    Args:
        config: S3PITR configuration
        store: Object store receiving ``full/<date>/``
        runner: Command runner for xtrabackup and mysql
        today: Backup date (default: local today)

    Returns:
        BackupResult

    Raises:
        ValidationError: Bucket not configured
        WorkspaceError: Local backup directory cannot be recreated
        ToolError: xtrabackup or FLUSH LOGS failed
        TransferError: Upload failed
    """
    start = time.monotonic()
    backup_date = (today or date.today()).isoformat()
    backup_dir = config.local_full_dir / backup_date
    remote_prefix = f"{FULL_BACKUP_PREFIX}{backup_date}/"

    require_bucket(config)

    logger.info("full_backup_started", date=backup_date, path=str(backup_dir))
    result = BackupResult(kind="full", local_path=str(backup_dir), remote_prefix=remote_prefix)

    try:
        if backup_dir.exists():
            logger.info("full_backup_dir_replacing", path=str(backup_dir))
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, shutil.rmtree, backup_dir)
        backup_dir.mkdir(mode=0o755, parents=True)
    except OSError as e:
        raise WorkspaceError(
            f"Failed to create backup directory: {backup_dir}",
            details={"path": str(backup_dir), "stderr": str(e)},
        )
    result.steps.append("prepare_directory")

    with mysql_credentials_file(config) as credentials:
        await run_or_raise(
            runner,
            xtrabackup_backup(config, credentials, backup_dir),
            ToolError,
            "Failed to run xtrabackup",
        )
        result.steps.append("xtrabackup")

        await run_or_raise(
            runner,
            mysql_flush_logs(config, credentials),
            ToolError,
            "Failed to flush MySQL logs",
        )
        result.steps.append("flush_logs")

    logger.info("full_backup_uploading", prefix=remote_prefix)
    await store.sync_up(backup_dir, remote_prefix, timeout=config.upload_timeout)
    result.steps.append("upload")

    result.duration_seconds = time.monotonic() - start
    logger.info(
        "full_backup_completed",
        date=backup_date,
        prefix=remote_prefix,
        duration=round(result.duration_seconds, 2),
    )
    return result
