# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Run Journal - Append-only history of pipeline runs.

Every backup, cleanup and restore run gets a row in ``runs``. Cleanup
runs additionally record each remote key they deleted (or would have
deleted, or failed to delete), and restore runs record the outcome of
every binlog segment they replayed.
"""

import json
from datetime import datetime, UTC
from pathlib import Path
from typing import List, TypedDict

import aiosqlite
import structlog

from s3pitr.exceptions import JournalError

logger = structlog.get_logger()

RUN_RUNNING = "running"
RUN_SUCCEEDED = "succeeded"
RUN_FAILED = "failed"


class RunRecord(TypedDict):
    """Record of a pipeline run."""

    id: str  # ULID
    kind: str  # full_backup, binlog_archive, cleanup, restore
    started_at: str  # ISO 8601
    params: dict
    status: str  # running, succeeded, failed
    summary: dict
    completed_at: str | None
    error: str | None


class DeletionRecord(TypedDict):
    """Record of one remote retention deletion."""

    id: int
    run_id: str
    namespace: str
    key: str
    status: str  # deleted, would_delete, failed
    recorded_at: str


class SegmentRecord(TypedDict):
    """Record of one replayed binlog segment."""

    id: int
    run_id: str
    segment: str
    status: str  # applied, failed
    exit_code: int
    error: str | None
    recorded_at: str


async def init_journal_db(db_path: Path) -> None:
    """
    Initialize the journal schema. Idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    params TEXT NOT NULL,
                    status TEXT NOT NULL,
                    summary TEXT NOT NULL DEFAULT '{}',
                    completed_at TEXT,
                    error TEXT
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS deletions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    status TEXT NOT NULL,
                    recorded_at TEXT NOT NULL,
                    FOREIGN KEY (run_id) REFERENCES runs(id)
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS segments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    segment TEXT NOT NULL,
                    status TEXT NOT NULL,
                    exit_code INTEGER NOT NULL,
                    error TEXT,
                    recorded_at TEXT NOT NULL,
                    FOREIGN KEY (run_id) REFERENCES runs(id)
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_started_at
                ON runs(started_at)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_deletions_run_id
                ON deletions(run_id)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_segments_run_id
                ON segments(run_id)
            """)

            await db.commit()

        logger.info("journal_db_initialized", db_path=str(db_path))

    except Exception as e:
        raise JournalError(
            f"Failed to initialize journal database: {e}",
            details={"db_path": str(db_path)},
        )


async def record_run(
    db: aiosqlite.Connection,
    run_id: str,
    kind: str,
    params: dict,
) -> None:
    """
    Record the start of a run.

    Args:
        db: SQLite database connection
        run_id: Unique run ID (ULID)
        kind: Pipeline name
        params: Input parameters (must not contain secrets)
    """
    now = datetime.now(UTC).isoformat()

    await db.execute(
        """
        INSERT INTO runs (id, kind, started_at, params, status)
        VALUES (?, ?, ?, ?, ?)
        """,
        (run_id, kind, now, json.dumps(params, default=str), RUN_RUNNING),
    )
    await db.commit()

    logger.info("run_recorded", run_id=run_id, kind=kind)


async def complete_run(
    db: aiosqlite.Connection,
    run_id: str,
    summary: dict,
    error: str | None = None,
) -> None:
    """Mark a run as finished; ``error`` set means it failed."""
    now = datetime.now(UTC).isoformat()
    status = RUN_FAILED if error else RUN_SUCCEEDED

    await db.execute(
        """
        UPDATE runs
        SET status = ?, summary = ?, completed_at = ?, error = ?
        WHERE id = ?
        """,
        (status, json.dumps(summary, default=str), now, error, run_id),
    )
    await db.commit()


async def record_deletion(
    db: aiosqlite.Connection,
    run_id: str,
    namespace: str,
    key: str,
    status: str,
) -> int:
    """Record one remote key handled by a cleanup run. Returns the row ID."""
    now = datetime.now(UTC).isoformat()

    cursor = await db.execute(
        """
        INSERT INTO deletions (run_id, namespace, key, status, recorded_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (run_id, namespace, key, status, now),
    )
    await db.commit()

    logger.debug("deletion_recorded", run_id=run_id, key=key, status=status)
    return cursor.lastrowid


async def record_segment_outcome(
    db: aiosqlite.Connection,
    run_id: str,
    segment: str,
    status: str,
    exit_code: int = 0,
    error: str | None = None,
) -> int:
    """Record the outcome of one replayed binlog segment. Returns the row ID."""
    now = datetime.now(UTC).isoformat()

    cursor = await db.execute(
        """
        INSERT INTO segments (run_id, segment, status, exit_code, error, recorded_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (run_id, segment, status, exit_code, error, now),
    )
    await db.commit()
    return cursor.lastrowid


def _run_from_row(row) -> RunRecord:
    return RunRecord(
        id=row[0],
        kind=row[1],
        started_at=row[2],
        params=json.loads(row[3]),
        status=row[4],
        summary=json.loads(row[5]),
        completed_at=row[6],
        error=row[7],
    )


_RUN_COLUMNS = "id, kind, started_at, params, status, summary, completed_at, error"


async def get_run(db: aiosqlite.Connection, run_id: str) -> RunRecord | None:
    """Get a run record, or None if not found."""
    async with db.execute(
        f"SELECT {_RUN_COLUMNS} FROM runs WHERE id = ?",
        (run_id,),
    ) as cursor:
        row = await cursor.fetchone()
        if row:
            return _run_from_row(row)
        return None


async def list_runs(
    db: aiosqlite.Connection,
    limit: int = 50,
    offset: int = 0,
    kind: str | None = None,
) -> List[RunRecord]:
    """
    List runs, newest first.

    Args:
        db: SQLite database connection
        limit: Maximum number of records to return
        offset: Number of records to skip
        kind: Optional filter by pipeline name

    Returns:
        List of run records
    """
    query = f"SELECT {_RUN_COLUMNS} FROM runs"
    params: List = []

    if kind:
        query += " WHERE kind = ?"
        params.append(kind)

    # ULIDs sort by creation time, which breaks ties between equal timestamps
    query += " ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    records: List[RunRecord] = []

    async with db.execute(query, params) as cursor:
        async for row in cursor:
            records.append(_run_from_row(row))

    return records


async def get_deletions_by_run(db: aiosqlite.Connection, run_id: str) -> List[DeletionRecord]:
    records: List[DeletionRecord] = []

    async with db.execute(
        """
        SELECT id, run_id, namespace, key, status, recorded_at
        FROM deletions
        WHERE run_id = ?
        ORDER BY id
        """,
        (run_id,),
    ) as cursor:
        async for row in cursor:
            records.append(
                DeletionRecord(
                    id=row[0],
                    run_id=row[1],
                    namespace=row[2],
                    key=row[3],
                    status=row[4],
                    recorded_at=row[5],
                )
            )

    return records


async def get_segments_by_run(db: aiosqlite.Connection, run_id: str) -> List[SegmentRecord]:
    records: List[SegmentRecord] = []

    async with db.execute(
        """
        SELECT id, run_id, segment, status, exit_code, error, recorded_at
        FROM segments
        WHERE run_id = ?
        ORDER BY id
        """,
        (run_id,),
    ) as cursor:
        async for row in cursor:
            records.append(
                SegmentRecord(
                    id=row[0],
                    run_id=row[1],
                    segment=row[2],
                    status=row[3],
                    exit_code=row[4],
                    error=row[5],
                    recorded_at=row[6],
                )
            )

    return records


async def get_journal_stats(db: aiosqlite.Connection) -> dict:
    """
    Get journal statistics.

    Returns:
        Dict with run counts by kind and status, deletion and segment totals
    """
    stats = {}

    async with db.execute("SELECT COUNT(*) FROM runs") as cursor:
        row = await cursor.fetchone()
        stats["total_runs"] = row[0] if row else 0

    async with db.execute("SELECT kind, COUNT(*) FROM runs GROUP BY kind") as cursor:
        stats["runs_by_kind"] = {row[0]: row[1] async for row in cursor}

    async with db.execute("SELECT status, COUNT(*) FROM runs GROUP BY status") as cursor:
        stats["runs_by_status"] = {row[0]: row[1] async for row in cursor}

    async with db.execute(
        "SELECT COUNT(*) FROM deletions WHERE status = 'deleted'"
    ) as cursor:
        row = await cursor.fetchone()
        stats["total_deletions"] = row[0] if row else 0

    async with db.execute(
        "SELECT COUNT(*) FROM segments WHERE status = 'failed'"
    ) as cursor:
        row = await cursor.fetchone()
        stats["failed_segments"] = row[0] if row else 0

    return stats
