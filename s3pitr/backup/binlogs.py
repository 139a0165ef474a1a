# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Binlog Archive - Copy closed binlog segments off the host.

Binlogs are rsynced out of the live data directory into
``backups/binlogs`` and that directory is synced to ``binlogs/``.
The run finishes with a log rotation pass.
"""

import time
from pathlib import Path

import structlog

from s3pitr.backup.result import BackupResult
from s3pitr.config import BINLOG_PREFIX, PITRConfig
from s3pitr.exceptions import ToolError, WorkspaceError
from s3pitr.logsink import rotate_logs
from s3pitr.runner import CommandRunner, run_or_raise
from s3pitr.storage.base import ObjectStore, require_bucket
from s3pitr.tools import rsync_binlogs

logger = structlog.get_logger()


async def run_binlog_archive(
    config: PITRConfig,
    store: ObjectStore,
    runner: CommandRunner,
    *,
    active_log: Path | None = None,
) -> BackupResult:
    """
    Archive binlogs locally and upload them.

    Raises:
        ValidationError: Bucket not configured
        WorkspaceError: Local binlog directory cannot be created
        ToolError: rsync failed
        TransferError: Upload failed
    """
    start = time.monotonic()
    binlog_dir = config.local_binlog_dir

    require_bucket(config)

    logger.info("binlog_archive_started", path=str(binlog_dir))
    result = BackupResult(kind="binlogs", local_path=str(binlog_dir), remote_prefix=BINLOG_PREFIX)

    try:
        binlog_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
    except OSError as e:
        raise WorkspaceError(
            f"Failed to create binlog directory: {binlog_dir}",
            details={"path": str(binlog_dir), "stderr": str(e)},
        )
    result.steps.append("prepare_directory")

    await run_or_raise(
        runner,
        rsync_binlogs(config, binlog_dir),
        ToolError,
        "Failed to sync binlogs",
    )
    result.steps.append("rsync")

    await store.sync_up(binlog_dir, BINLOG_PREFIX, timeout=config.binlog_upload_timeout)
    result.steps.append("upload")

    result.logs = await rotate_logs(
        config.logs_dir,
        config.retention_days_local,
        active_log=active_log,
    )
    result.steps.append("rotate_logs")

    result.duration_seconds = time.monotonic() - start
    logger.info("binlog_archive_completed", duration=round(result.duration_seconds, 2))
    return result
