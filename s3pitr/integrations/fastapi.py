# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR FastAPI Integration - Plugin for FastAPI applications.

This module provides:
- Lifespan management (startup/shutdown)
- Protected admin endpoints for backups, cleanup and restores
- Scheduled runs (full backup daily, binlog archive every N minutes,
  cleanup daily)
- Health checks
"""

import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, UTC

import aiosqlite
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from s3pitr.config import PITRConfig
from s3pitr.core import (
    RESTORE,
    PITRState,
    binlog_archive_job,
    cleanup_job,
    full_backup_job,
    get_status,
    initialize_pitr_state,
    restore_job,
    shutdown_pitr_state,
)
from s3pitr.exceptions import PITRError, RunInProgressError
from s3pitr.journal import (
    get_deletions_by_run,
    get_journal_stats,
    get_run,
    get_segments_by_run,
    list_runs,
)
from s3pitr.storage import require_bucket

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the PITR_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("PITR_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="PITR_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def _conflict(e: RunInProgressError) -> HTTPException:
    return HTTPException(status_code=409, detail=e.message)


def register_pitr_routes(
    app: FastAPI,
    config: PITRConfig,
    state: PITRState,
    prefix: str = "/admin/pitr",
) -> None:
    """
    Register S3PITR admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        config: S3PITR configuration
        state: Runtime state
        prefix: URL prefix for endpoints (default: /admin/pitr)
    """

    @app.post(f"{prefix}/restore", dependencies=[Depends(verify_api_key)])
    async def trigger_restore(
        date: str,
        time: str,
        database: str | None = None,
    ) -> dict:
        """
        Restore the full backup of ``date`` and replay binlogs up to ``time``.

        Responds 409 while another restore is running.
        """
        if state["locks"][RESTORE].locked():
            raise HTTPException(status_code=409, detail="A restore run is already in progress")
        try:
            report = await restore_job(config, state, date, time, database)
        except RunInProgressError as e:
            raise _conflict(e)
        return asdict(report)

    @app.post(f"{prefix}/cleanup", dependencies=[Depends(verify_api_key)])
    async def trigger_cleanup(dry_run: bool = False) -> dict:
        """Enforce the local and cloud retention windows."""
        try:
            report = await cleanup_job(config, state, dry_run=dry_run)
        except RunInProgressError as e:
            raise _conflict(e)
        return asdict(report)

    @app.post(f"{prefix}/backup/full", dependencies=[Depends(verify_api_key)])
    async def trigger_full_backup() -> dict:
        try:
            report = await full_backup_job(config, state)
        except RunInProgressError as e:
            raise _conflict(e)
        return asdict(report)

    @app.post(f"{prefix}/backup/binlogs", dependencies=[Depends(verify_api_key)])
    async def trigger_binlog_archive() -> dict:
        try:
            report = await binlog_archive_job(config, state)
        except RunInProgressError as e:
            raise _conflict(e)
        return asdict(report)

    @app.get(f"{prefix}/runs", dependencies=[Depends(verify_api_key)])
    async def list_pitr_runs(
        limit: int = 50,
        offset: int = 0,
        kind: str | None = None,
    ) -> list:
        """
        List runs, newest first.

        Args:
            limit: Maximum number of runs to return
            offset: Number of runs to skip
            kind: Filter by pipeline (full_backup, binlog_archive, cleanup, restore)
        """
        async with aiosqlite.connect(state["journal_path"]) as db:
            return await list_runs(db, limit, offset, kind)

    @app.get(f"{prefix}/runs/{{run_id}}", dependencies=[Depends(verify_api_key)])
    async def get_pitr_run(run_id: str) -> dict:
        """A run with its recorded deletions and segment outcomes."""
        async with aiosqlite.connect(state["journal_path"]) as db:
            run = await get_run(db, run_id)
            if run is None:
                raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
            return {
                **run,
                "deletions": await get_deletions_by_run(db, run_id),
                "segments": await get_segments_by_run(db, run_id),
            }

    @app.get(f"{prefix}/status", dependencies=[Depends(verify_api_key)])
    async def get_pitr_status() -> dict:
        """Runtime counters, runs in progress and journal statistics."""
        async with aiosqlite.connect(state["journal_path"]) as db:
            journal = await get_journal_stats(db)
        return {
            **get_status(state),
            "journal": journal,
            "bucket": config.bucket,
            "retention_days_local": config.retention_days_local,
            "retention_days_cloud": config.retention_days_cloud,
        }

    @app.get(f"{prefix}/health", dependencies=[Depends(verify_api_key)])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Verifies the journal and object store are reachable.
        """
        journal_ok = state["journal_path"].exists()

        s3_ok = False
        s3_error = None
        try:
            require_bucket(config)
            await state["store"].list("")
            s3_ok = True
        except PITRError as e:
            s3_error = e.stderr or e.message

        status = "healthy"
        if not journal_ok or not s3_ok:
            status = "degraded"
        if not journal_ok and not s3_ok:
            status = "unhealthy"

        return {
            "status": status,
            "journal_accessible": journal_ok,
            "s3_reachable": s3_ok,
            "s3_error": s3_error,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get(f"{prefix}/config", dependencies=[Depends(verify_api_key)])
    async def get_config() -> dict:
        """
        Get current configuration (sensitive values redacted).
        """
        return config.redacted()


def _setup_scheduled_jobs(config: PITRConfig, state: PITRState) -> AsyncIOScheduler:
    """Schedule full backups, binlog archiving and cleanup with APScheduler."""
    scheduler = AsyncIOScheduler()

    def scheduled(name, job):
        async def run():
            logger.info("scheduled_run_starting", job=name)
            try:
                report = await job(config, state)
            except RunInProgressError as e:
                logger.warning("scheduled_run_skipped", job=name, reason=e.message)
                return
            logger.info(
                "scheduled_run_finished",
                job=name,
                run_id=report.run_id,
                succeeded=report.succeeded,
            )

        return run

    backup_hour, backup_minute = map(int, config.full_backup_at.split(":"))
    cleanup_hour, cleanup_minute = map(int, config.cleanup_at.split(":"))

    scheduler.add_job(
        scheduled("full_backup", full_backup_job),
        trigger=CronTrigger(hour=backup_hour, minute=backup_minute),
        id="pitr_full_backup",
        replace_existing=True,
    )
    scheduler.add_job(
        scheduled("binlog_archive", binlog_archive_job),
        trigger=IntervalTrigger(minutes=config.binlog_archive_every_minutes),
        id="pitr_binlog_archive",
        replace_existing=True,
    )
    scheduler.add_job(
        scheduled("cleanup", cleanup_job),
        trigger=CronTrigger(hour=cleanup_hour, minute=cleanup_minute),
        id="pitr_cleanup",
        replace_existing=True,
    )
    scheduler.start()

    logger.info(
        "scheduler_started",
        full_backup_at=config.full_backup_at,
        cleanup_at=config.cleanup_at,
        binlog_archive_every_minutes=config.binlog_archive_every_minutes,
    )
    return scheduler


def setup_pitr_plugin(
    app: FastAPI,
    config: PITRConfig,
    prefix: str = "/admin/pitr",
    schedule: bool = True,
) -> None:
    """
    Set up S3PITR plugin with startup/shutdown handlers.

    Args:
        app: FastAPI application
        config: S3PITR configuration
        prefix: URL prefix for admin endpoints
        schedule: Start the APScheduler jobs
    """
    app.state.pitr_config = config
    app.state.pitr_state = None

    @app.on_event("startup")
    async def startup():
        logger.info("pitr_plugin_starting", bucket=config.bucket)

        state = await initialize_pitr_state(config)
        app.state.pitr_state = state

        register_pitr_routes(app, config, state, prefix)

        if schedule:
            state["scheduler"] = _setup_scheduled_jobs(config, state)

        logger.info("pitr_plugin_started")

    @app.on_event("shutdown")
    async def shutdown():
        logger.info("pitr_plugin_stopping")

        state = app.state.pitr_state
        if state:
            await shutdown_pitr_state(state)

        logger.info("pitr_plugin_stopped")


@asynccontextmanager
async def pitr_lifespan(
    app: FastAPI,
    config: PITRConfig,
    prefix: str = "/admin/pitr",
    schedule: bool = True,
):
    """
    Lifespan context manager for FastAPI.

        app = FastAPI(lifespan=lambda app: pitr_lifespan(app, config))

    Args:
        app: FastAPI application
        config: S3PITR configuration
        prefix: URL prefix for admin endpoints
        schedule: Start the APScheduler jobs
    """
    logger.info("pitr_lifespan_starting")

    state = await initialize_pitr_state(config)
    app.state.pitr_state = state
    app.state.pitr_config = config

    register_pitr_routes(app, config, state, prefix)

    if schedule:
        state["scheduler"] = _setup_scheduled_jobs(config, state)

    logger.info("pitr_lifespan_started")

    try:
        yield
    finally:
        logger.info("pitr_lifespan_stopping")
        await shutdown_pitr_state(state)
        logger.info("pitr_lifespan_stopped")


def get_pitr_state(app: FastAPI) -> PITRState:
    """
    Get S3PITR state from a FastAPI app.

    Raises:
        RuntimeError: If S3PITR not initialized
    """
    state = getattr(app.state, "pitr_state", None)
    if not state:
        raise RuntimeError("S3PITR not initialized. Call setup_pitr_plugin first.")
    return state


def get_pitr_config(app: FastAPI) -> PITRConfig:
    config = getattr(app.state, "pitr_config", None)
    if not config:
        raise RuntimeError("S3PITR not initialized. Call setup_pitr_plugin first.")
    return config
