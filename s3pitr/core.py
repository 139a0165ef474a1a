# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Core - Run orchestration for the backup, cleanup and restore pipelines.

Each job wraps one pipeline with:
- a ULID run ID
- a journal record that is opened before and completed after the run
- an exclusive per-pipeline run lock (asyncio lock within the process,
  flock across processes) so that, for example, two restores never
  share the restore workspace
"""

import asyncio
import dataclasses
import fcntl
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, AsyncIterator, Dict, TypedDict

import aiosqlite
import structlog
from ulid import ULID

from s3pitr.backup import run_binlog_archive, run_full_backup
from s3pitr.cleanup import run_cleanup
from s3pitr.config import PITRConfig
from s3pitr.exceptions import PITRError, RunInProgressError
from s3pitr.journal import (
    complete_run,
    init_journal_db,
    record_deletion,
    record_run,
    record_segment_outcome,
)
from s3pitr.logsink import run_log_file
from s3pitr.restore import run_restore_from_arguments
from s3pitr.runner import CommandRunner, SubprocessRunner
from s3pitr.storage import ObjectStore, make_object_store

logger = structlog.get_logger()

FULL_BACKUP = "full_backup"
BINLOG_ARCHIVE = "binlog_archive"
CLEANUP = "cleanup"
RESTORE = "restore"

# Log file each pipeline writes under <storage_root>/logs
LOG_FILES = {
    FULL_BACKUP: "full_backup.log",
    BINLOG_ARCHIVE: "archive_binlogs.log",
    CLEANUP: "cleanup.log",
    RESTORE: "restore_from_s3.log",
}


class RunLock:
    """Non-blocking exclusive lock held for the duration of one run."""

    def __init__(self, name: str, path: Path):
        self.name = name
        self.path = path
        self._lock = asyncio.Lock()

    def locked(self) -> bool:
        return self._lock.locked()

    def _busy(self) -> RunInProgressError:
        return RunInProgressError(
            f"A {self.name} run is already in progress",
            details={"lock": str(self.path)},
        )

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        if self._lock.locked():
            raise self._busy()

        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
            try:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    raise self._busy()
                try:
                    yield
                finally:
                    fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)


@dataclass
class JobReport:
    """What a job hands back: the run ID and the pipeline result."""

    run_id: str
    kind: str
    succeeded: bool
    result: Any = None
    error: str | None = None
    stderr: str | None = None


class PITRState(TypedDict):
    """Runtime state shared by jobs, the CLI and the FastAPI integration."""

    journal_path: Path
    store: ObjectStore
    runner: CommandRunner
    locks: Dict[str, RunLock]
    active_runs: Dict[str, str]  # kind -> run ID
    last_run_at: datetime | None
    total_runs: int
    last_error: str | None
    scheduler: Any  # APScheduler AsyncIOScheduler when jobs are scheduled


async def initialize_pitr_state(
    config: PITRConfig,
    store: ObjectStore | None = None,
    runner: CommandRunner | None = None,
) -> PITRState:
    """
    Create directories, initialize the journal and build the I/O backends.

    Args:
        config: S3PITR configuration
        store: Object store override (default: chosen by config.storage_backend)
        runner: Command runner override (default: SubprocessRunner)

    Returns:
        Initialized PITRState dictionary
    """
    for path in (config.storage_root, config.backups_dir, config.logs_dir):
        path.mkdir(parents=True, exist_ok=True)

    await init_journal_db(config.journal_path)

    runner = runner or SubprocessRunner()
    store = store or make_object_store(config, runner)

    locks = {
        kind: RunLock(kind, config.storage_root / f".{kind}.lock")
        for kind in (FULL_BACKUP, BINLOG_ARCHIVE, CLEANUP, RESTORE)
    }

    return PITRState(
        journal_path=config.journal_path,
        store=store,
        runner=runner,
        locks=locks,
        active_runs={},
        last_run_at=None,
        total_runs=0,
        last_error=None,
        scheduler=None,
    )


async def shutdown_pitr_state(state: PITRState) -> None:
    """Stop scheduled jobs. Runs already in flight are left to finish."""
    scheduler = state.get("scheduler")
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        state["scheduler"] = None
        logger.info("scheduler_stopped")


def _summary(result: Any) -> dict:
    if result is None:
        return {}
    return dataclasses.asdict(result)


async def _run_job(
    config: PITRConfig,
    state: PITRState,
    kind: str,
    params: dict,
    pipeline,
    journal_details=None,
) -> JobReport:
    """
    Journal and lock one pipeline run.

    ``pipeline`` is awaited with no arguments. It either returns a result
    object exposing ``succeeded`` (or none, meaning success) or raises
    PITRError for a fatal failure.
    """
    lock = state["locks"][kind]

    async with lock.hold():
        run_id = str(ULID())
        state["active_runs"][kind] = run_id
        structlog.contextvars.bind_contextvars(run_id=run_id)

        try:
            with run_log_file(log_file_for(config, kind), run_id):
                logger.info("run_started", kind=kind)
                report = JobReport(run_id=run_id, kind=kind, succeeded=False)

                async with aiosqlite.connect(state["journal_path"]) as db:
                    await record_run(db, run_id, kind, params)

                    try:
                        result = await pipeline()
                    except PITRError as e:
                        report.error = e.message
                        report.stderr = e.stderr or None
                    except Exception as e:
                        logger.exception("run_crashed", kind=kind, run_id=run_id)
                        await complete_run(db, run_id, {}, error=f"Unexpected error: {e}")
                        raise
                    else:
                        report.result = result
                        report.succeeded = getattr(result, "succeeded", True)
                        if not report.succeeded:
                            report.error = getattr(result, "error", None) or f"{kind} run failed"
                            report.stderr = getattr(result, "stderr", None)
                        if journal_details is not None:
                            await journal_details(db, run_id, result)

                    await complete_run(
                        db,
                        run_id,
                        _summary(report.result),
                        error=None if report.succeeded else report.error,
                    )

                state["last_run_at"] = datetime.now(UTC)
                state["total_runs"] += 1
                if not report.succeeded:
                    state["last_error"] = report.error
                    logger.error("run_failed", kind=kind, run_id=run_id, error=report.error)
                else:
                    logger.info("run_completed", kind=kind, run_id=run_id)
        finally:
            state["active_runs"].pop(kind, None)
            structlog.contextvars.unbind_contextvars("run_id")

        return report


def log_file_for(config: PITRConfig, kind: str) -> Path:
    return config.logs_dir / LOG_FILES[kind]


# ============================================================================
# Jobs
# ============================================================================

async def full_backup_job(config: PITRConfig, state: PITRState) -> JobReport:
    return await _run_job(
        config,
        state,
        FULL_BACKUP,
        {},
        lambda: run_full_backup(config, state["store"], state["runner"]),
    )


async def binlog_archive_job(config: PITRConfig, state: PITRState) -> JobReport:
    return await _run_job(
        config,
        state,
        BINLOG_ARCHIVE,
        {},
        lambda: run_binlog_archive(
            config,
            state["store"],
            state["runner"],
            active_log=log_file_for(config, BINLOG_ARCHIVE),
        ),
    )


async def _journal_cleanup(db: aiosqlite.Connection, run_id: str, result) -> None:
    deleted_status = "would_delete" if result.dry_run else "deleted"
    for report in result.remote:
        for key in report.deleted_keys:
            await record_deletion(db, run_id, report.namespace, key, deleted_status)
        for key in report.failed_keys:
            await record_deletion(db, run_id, report.namespace, key, "failed")


async def cleanup_job(config: PITRConfig, state: PITRState, dry_run: bool = False) -> JobReport:
    return await _run_job(
        config,
        state,
        CLEANUP,
        {"dry_run": dry_run},
        lambda: run_cleanup(
            config,
            state["store"],
            dry_run=dry_run,
            active_log=log_file_for(config, CLEANUP),
        ),
        journal_details=_journal_cleanup,
    )


async def _journal_segments(db: aiosqlite.Connection, run_id: str, result) -> None:
    for outcome in result.segment_outcomes:
        await record_segment_outcome(
            db,
            run_id,
            outcome.segment,
            outcome.status.value,
            exit_code=outcome.exit_code,
            error=outcome.error,
        )


async def restore_job(
    config: PITRConfig,
    state: PITRState,
    restore_date: str | None,
    restore_time: str | None,
    target_database: str | None = None,
) -> JobReport:
    """
    Run a point-in-time restore.

    Raises:
        RunInProgressError: Another restore holds the workspace
    """
    return await _run_job(
        config,
        state,
        RESTORE,
        {"date": restore_date, "time": restore_time, "target_database": target_database},
        lambda: run_restore_from_arguments(
            config,
            state["store"],
            state["runner"],
            restore_date,
            restore_time,
            target_database,
        ),
        journal_details=_journal_segments,
    )


def get_status(state: PITRState) -> dict:
    """Snapshot of runtime counters for status endpoints."""
    return {
        "active_runs": dict(state["active_runs"]),
        "last_run_at": state["last_run_at"].isoformat() if state["last_run_at"] else None,
        "total_runs": state["total_runs"],
        "last_error": state["last_error"],
    }
