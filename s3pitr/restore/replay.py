# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Binlog replay - ordering and applying binlog segments.

Each segment is decoded by mysqlbinlog up to the cutoff instant and
piped into the mysql client. A segment that fails to apply is logged
and recorded; the remaining segments are still attempted.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Tuple

import structlog

from s3pitr.config import PITRConfig
from s3pitr.exceptions import ReplayError
from s3pitr.runner import CommandRunner
from s3pitr.tools import mysql_client, mysqlbinlog_replay

logger = structlog.get_logger()


class SegmentStatus(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True)
class SegmentOutcome:
    """What happened to one binlog segment."""

    segment: str
    status: SegmentStatus
    exit_code: int = 0
    error: str | None = None


def segment_sort_key(path: Path) -> Tuple[int, int, str]:
    """
    Order ``binlog.000002`` before ``binlog.000010``.

    Names without a numeric suffix sort after numbered ones, lexicographically.
    """
    suffix = path.name.rsplit(".", 1)[-1]
    if suffix.isdigit():
        return (0, int(suffix), path.name)
    return (1, 0, path.name)


def discover_segments(binlog_dir: Path, basename: str = "binlog") -> List[Path]:
    """Binlog segment files under ``binlog_dir`` in replay order; ``.index`` files excluded."""
    if not binlog_dir.is_dir():
        return []

    segments = [
        p
        for p in binlog_dir.rglob(f"{basename}.*")
        if p.is_file() and p.suffix != ".index"
    ]
    return sorted(segments, key=segment_sort_key)


async def replay_segments(
    config: PITRConfig,
    runner: CommandRunner,
    segments: List[Path],
    cutoff: datetime,
    credentials: Path,
    database: str | None = None,
) -> List[SegmentOutcome]:
    """
    Apply ``segments`` in order, stopping events at ``cutoff``.

    Never raises for a failed segment.
    """
    outcomes: List[SegmentOutcome] = []

    for segment in segments:
        producer = mysqlbinlog_replay(config, segment, cutoff, database)
        consumer = mysql_client(config, credentials)

        logger.info("binlog_segment_applying", segment=segment.name, stop_datetime=cutoff.isoformat())
        result = await runner.pipe(producer, consumer)

        if result.failed:
            error = ReplayError(
                f"Failed to apply binlog segment {segment.name}",
                details={
                    "segment": segment.name,
                    "exit_code": result.exit_code,
                    "stderr": result.stderr,
                },
            )
            logger.warning(
                "binlog_segment_failed",
                segment=segment.name,
                exit_code=result.exit_code,
                timed_out=result.timed_out,
                error=error.message,
                stderr=error.stderr,
            )
            outcomes.append(
                SegmentOutcome(
                    segment=segment.name,
                    status=SegmentStatus.FAILED,
                    exit_code=result.exit_code,
                    error=result.stderr or error.message,
                )
            )
            continue

        outcomes.append(SegmentOutcome(segment=segment.name, status=SegmentStatus.APPLIED))

    applied = sum(1 for o in outcomes if o.status == SegmentStatus.APPLIED)
    logger.info(
        "binlog_replay_complete",
        segments=len(outcomes),
        applied=applied,
        failed=len(outcomes) - applied,
    )
    return outcomes
