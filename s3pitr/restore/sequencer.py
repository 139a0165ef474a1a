# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Restore Sequencer - Point-in-time restore of a MySQL data directory.

A restore runs seven stages in order:

    VALIDATE -> PREPARE_WORKSPACE -> FETCH_FULL_BACKUP -> PREPARE_BACKUP
             -> MATERIALIZE_DATADIR -> PRUNE_SCHEMAS -> REPLAY_BINLOGS

Each stage takes the current RestoreContext and returns a new one. How a
stage's failure is treated is looked up in STAGE_POLICIES: a FATAL stage
ends the run with outcome FAILURE, a BEST_EFFORT stage is logged and the
run continues. Inside stages, chown failures and individual binlog
segment failures are always best effort.

The workspace is left in place at the end of every run.
"""

import asyncio
import dataclasses
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Tuple

import structlog

from s3pitr.config import BINLOG_PREFIX, FULL_BACKUP_PREFIX, SYSTEM_SCHEMAS, PITRConfig
from s3pitr.errors import explain_missing_restore_arguments
from s3pitr.exceptions import (
    EmptyBackupError,
    PITRError,
    ToolError,
    ValidationError,
    WorkspaceError,
)
from s3pitr.restore.replay import (
    SegmentOutcome,
    SegmentStatus,
    discover_segments,
    replay_segments,
)
from s3pitr.restore.request import RestoreRequest, parse_restore_request
from s3pitr.restore.workspace import RestoreWorkspace, is_effectively_empty, prepare_workspace
from s3pitr.runner import CommandRunner, run_or_raise
from s3pitr.storage.base import ObjectStore, require_bucket
from s3pitr.tools import (
    chown_recursive,
    mysql_credentials_file,
    xtrabackup_copy_back,
    xtrabackup_prepare,
)

logger = structlog.get_logger()


class Stage(str, Enum):
    VALIDATE = "validate"
    PREPARE_WORKSPACE = "prepare_workspace"
    FETCH_FULL_BACKUP = "fetch_full_backup"
    PREPARE_BACKUP = "prepare_backup"
    MATERIALIZE_DATADIR = "materialize_datadir"
    PRUNE_SCHEMAS = "prune_schemas"
    REPLAY_BINLOGS = "replay_binlogs"


class FailurePolicy(str, Enum):
    FATAL = "fatal"
    BEST_EFFORT = "best_effort"


STAGE_POLICIES: Dict[Stage, FailurePolicy] = {
    Stage.VALIDATE: FailurePolicy.FATAL,
    Stage.PREPARE_WORKSPACE: FailurePolicy.FATAL,
    Stage.FETCH_FULL_BACKUP: FailurePolicy.FATAL,
    Stage.PREPARE_BACKUP: FailurePolicy.FATAL,
    Stage.MATERIALIZE_DATADIR: FailurePolicy.FATAL,
    Stage.PRUNE_SCHEMAS: FailurePolicy.BEST_EFFORT,
    # Downloading the binlogs is fatal; applying a segment is not
    Stage.REPLAY_BINLOGS: FailurePolicy.FATAL,
}


class RestoreOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class RestoreContext:
    """State threaded through the stages. Stages return an updated copy."""

    config: PITRConfig
    request: RestoreRequest | None
    workspace: RestoreWorkspace | None = None
    removed_schemas: Tuple[str, ...] = ()
    segment_outcomes: Tuple[SegmentOutcome, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def target_database(self) -> str | None:
        if self.request is not None and self.request.target_database:
            return self.request.target_database
        return self.config.target_database

    def warn(self, message: str) -> "RestoreContext":
        return dataclasses.replace(self, warnings=self.warnings + (message,))


@dataclass
class RestoreResult:
    """Result of a restore run."""

    outcome: RestoreOutcome
    workspace: str
    date: str | None = None
    cutoff: str | None = None
    target_database: str | None = None
    completed_stages: List[str] = field(default_factory=list)
    failed_stage: str | None = None
    error: str | None = None
    stderr: str | None = None
    removed_schemas: List[str] = field(default_factory=list)
    segment_outcomes: List[SegmentOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome == RestoreOutcome.SUCCESS

    @property
    def failed_segments(self) -> List[str]:
        return [o.segment for o in self.segment_outcomes if o.status == SegmentStatus.FAILED]


@dataclass(frozen=True)
class StageServices:
    store: ObjectStore
    runner: CommandRunner


StageFn = Callable[[RestoreContext, StageServices], Awaitable[RestoreContext]]


# ============================================================================
# Stages
# ============================================================================

async def validate(ctx: RestoreContext, services: StageServices) -> RestoreContext:
    if ctx.request is None:
        raise ValidationError(explain_missing_restore_arguments())
    require_bucket(ctx.config)

    logger.info(
        "restore_request_accepted",
        date=ctx.request.date.isoformat(),
        cutoff=ctx.request.cutoff.isoformat(),
        target_database=ctx.target_database,
    )
    return ctx


async def prepare(ctx: RestoreContext, services: StageServices) -> RestoreContext:
    workspace = await prepare_workspace(ctx.config.restore_dir)
    return dataclasses.replace(ctx, workspace=workspace)


async def fetch_full_backup(ctx: RestoreContext, services: StageServices) -> RestoreContext:
    prefix = f"{FULL_BACKUP_PREFIX}{ctx.request.date.isoformat()}/"
    full_dir = ctx.workspace.full

    logger.info("full_backup_downloading", prefix=prefix, destination=str(full_dir))
    await services.store.sync_down(prefix, full_dir)

    if is_effectively_empty(full_dir):
        raise EmptyBackupError(
            f"No full backup found for {ctx.request.date.isoformat()}",
            details={"prefix": prefix, "path": str(full_dir)},
        )
    return ctx


async def prepare_backup(ctx: RestoreContext, services: StageServices) -> RestoreContext:
    await run_or_raise(
        services.runner,
        xtrabackup_prepare(ctx.config, ctx.workspace.full),
        ToolError,
        "Failed to prepare backup",
    )
    return ctx


async def materialize_datadir(ctx: RestoreContext, services: StageServices) -> RestoreContext:
    await run_or_raise(
        services.runner,
        xtrabackup_copy_back(ctx.config, ctx.workspace.full, ctx.workspace.data),
        ToolError,
        "Failed to copy back backup",
    )

    spec = chown_recursive(ctx.config, ctx.workspace.data)
    result = await services.runner.run(spec)
    if result.failed:
        logger.warning(
            "restore_chown_failed",
            command=result.command,
            exit_code=result.exit_code,
            stderr=result.stderr,
        )
        return ctx.warn(f"chown {ctx.config.service_account} failed: {result.stderr}")
    return ctx


async def prune_schemas(ctx: RestoreContext, services: StageServices) -> RestoreContext:
    target = ctx.target_database
    if not target:
        return ctx

    data_dir = ctx.workspace.data
    keep = SYSTEM_SCHEMAS | {target}

    if not (data_dir / target).is_dir():
        logger.warning("restore_target_schema_missing", target_database=target)
        ctx = ctx.warn(f"schema {target} not present in backup")

    removed: List[str] = []
    loop = asyncio.get_running_loop()
    for entry in sorted(data_dir.iterdir()):
        if not entry.is_dir() or entry.name in keep:
            continue
        try:
            await loop.run_in_executor(None, shutil.rmtree, entry)
        except OSError as e:
            logger.warning("restore_schema_remove_failed", schema=entry.name, error=str(e))
            ctx = ctx.warn(f"could not remove schema {entry.name}: {e}")
            continue
        removed.append(entry.name)

    logger.info("restore_schemas_pruned", kept=sorted(keep), removed=removed)
    return dataclasses.replace(ctx, removed_schemas=ctx.removed_schemas + tuple(removed))


async def replay_binlogs(ctx: RestoreContext, services: StageServices) -> RestoreContext:
    binlog_dir = ctx.workspace.binlogs

    logger.info("binlogs_downloading", prefix=BINLOG_PREFIX, destination=str(binlog_dir))
    await services.store.sync_down(BINLOG_PREFIX, binlog_dir)

    segments = discover_segments(binlog_dir, ctx.config.binlog_basename)
    if not segments:
        logger.warning("no_binlog_segments_found", path=str(binlog_dir))
        return ctx.warn("no binlog segments to replay")

    with mysql_credentials_file(ctx.config) as credentials:
        outcomes = await replay_segments(
            ctx.config,
            services.runner,
            segments,
            ctx.request.cutoff,
            credentials,
            database=ctx.target_database,
        )

    return dataclasses.replace(ctx, segment_outcomes=ctx.segment_outcomes + tuple(outcomes))


STAGES: Tuple[Tuple[Stage, StageFn], ...] = (
    (Stage.VALIDATE, validate),
    (Stage.PREPARE_WORKSPACE, prepare),
    (Stage.FETCH_FULL_BACKUP, fetch_full_backup),
    (Stage.PREPARE_BACKUP, prepare_backup),
    (Stage.MATERIALIZE_DATADIR, materialize_datadir),
    (Stage.PRUNE_SCHEMAS, prune_schemas),
    (Stage.REPLAY_BINLOGS, replay_binlogs),
)


# ============================================================================
# Sequencer
# ============================================================================

def _build_result(
    ctx: RestoreContext,
    outcome: RestoreOutcome,
    completed: List[str],
    start: float,
    failed_stage: Stage | None = None,
    error: PITRError | None = None,
) -> RestoreResult:
    request = ctx.request
    return RestoreResult(
        outcome=outcome,
        workspace=str(ctx.config.restore_dir),
        date=request.date.isoformat() if request else None,
        cutoff=request.cutoff.isoformat(sep=" ") if request else None,
        target_database=ctx.target_database,
        completed_stages=list(completed),
        failed_stage=failed_stage.value if failed_stage else None,
        error=error.message if error else None,
        stderr=(error.stderr or None) if error else None,
        removed_schemas=list(ctx.removed_schemas),
        segment_outcomes=list(ctx.segment_outcomes),
        warnings=list(ctx.warnings),
        duration_seconds=time.monotonic() - start,
    )


async def run_restore(
    config: PITRConfig,
    request: RestoreRequest | None,
    store: ObjectStore,
    runner: CommandRunner,
) -> RestoreResult:
    """
    Restore the full backup of ``request.date`` and roll it forward to ``request.cutoff``.

    Args:
        config: S3PITR configuration
        request: Parsed restore request
        store: Object store holding full/ and binlogs/
        runner: Command runner for xtrabackup, chown, mysqlbinlog and mysql

    Returns:
        RestoreResult. Fatal stage failures are reported in the result,
        not raised.
    """
    start = time.monotonic()
    ctx = RestoreContext(config=config, request=request)
    services = StageServices(store=store, runner=runner)
    completed: List[str] = []

    logger.info(
        "restore_started",
        date=request.date.isoformat() if request else None,
        time=request.cutoff_time.isoformat() if request else None,
        workspace=str(config.restore_dir),
    )

    for stage, stage_fn in STAGES:
        logger.info("restore_stage_started", stage=stage.value)
        try:
            ctx = await stage_fn(ctx, services)
        except (PITRError, OSError) as e:
            error = e if isinstance(e, PITRError) else WorkspaceError(
                f"Filesystem error in {stage.value}: {e}",
                details={"path": getattr(e, "filename", None)},
            )
            if STAGE_POLICIES[stage] is FailurePolicy.BEST_EFFORT:
                logger.warning("restore_stage_degraded", stage=stage.value, error=error.message)
                ctx = ctx.warn(f"{stage.value}: {error.message}")
                continue

            logger.error(
                "restore_failed",
                stage=stage.value,
                error=error.message,
                stderr=error.stderr,
            )
            return _build_result(ctx, RestoreOutcome.FAILURE, completed, start, stage, error)
        completed.append(stage.value)

    result = _build_result(ctx, RestoreOutcome.SUCCESS, completed, start)
    logger.info(
        "restore_completed",
        workspace=result.workspace,
        segments=len(result.segment_outcomes),
        failed_segments=len(result.failed_segments),
        warnings=len(result.warnings),
        duration=round(result.duration_seconds, 2),
    )
    return result


async def run_restore_from_arguments(
    config: PITRConfig,
    store: ObjectStore,
    runner: CommandRunner,
    restore_date: str | None,
    restore_time: str | None,
    target_database: str | None = None,
) -> RestoreResult:
    """Parse raw date/time input and restore; bad input fails the VALIDATE stage."""
    try:
        request = parse_restore_request(restore_date, restore_time, target_database)
    except ValidationError as e:
        logger.error("restore_failed", stage=Stage.VALIDATE.value, error=e.message)
        return RestoreResult(
            outcome=RestoreOutcome.FAILURE,
            workspace=str(config.restore_dir),
            target_database=target_database or config.target_database,
            failed_stage=Stage.VALIDATE.value,
            error=e.message,
        )
    return await run_restore(config, request, store, runner)


__all__ = [
    "Stage",
    "FailurePolicy",
    "STAGE_POLICIES",
    "RestoreOutcome",
    "RestoreContext",
    "RestoreResult",
    "run_restore",
    "run_restore_from_arguments",
]
