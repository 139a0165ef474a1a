# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Listing Parser - Turns ``aws s3 ls`` output into retention entries.

Two line shapes are recognized:

    PRE 2025-11-24/                                  -> prefix group
    2025-11-24 12:00:00      12345 binlog.000042     -> object

Anything else is dropped. A bad line never aborts the scan and is never
turned into a deletion candidate.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List

import structlog

logger = structlog.get_logger()

_PREFIX_GROUP_RE = re.compile(r"PRE\s+(\d{4}-\d{2}-\d{2})/")

_DATE_FORMAT = "%Y-%m-%d"
_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class EntryKind(str, Enum):
    """What a listing line describes."""

    PREFIX_GROUP = "prefix_group"  # a whole day of backup files
    OBJECT = "object"  # a single timestamped object


@dataclass(frozen=True)
class RetentionEntry:
    """One parsed remote listing record."""

    kind: EntryKind
    key: str
    timestamp: datetime  # date-only entries carry midnight
    size: int | None = None


def parse_prefix_group_line(line: str, prefix: str) -> RetentionEntry | None:
    """Parse a ``PRE YYYY-MM-DD/`` line, or return None."""
    match = _PREFIX_GROUP_RE.search(line)
    if not match:
        return None

    date_str = match.group(1)
    try:
        day = datetime.strptime(date_str, _DATE_FORMAT)
    except ValueError:
        return None

    return RetentionEntry(
        kind=EntryKind.PREFIX_GROUP,
        key=f"{prefix}{date_str}/",
        timestamp=day,
    )


def parse_object_line(line: str, prefix: str) -> RetentionEntry | None:
    """Parse a ``date time size name`` line, or return None."""
    parts = line.split()
    if len(parts) < 4:
        return None

    try:
        timestamp = datetime.strptime(f"{parts[0]} {parts[1]}", _DATETIME_FORMAT)
    except ValueError:
        return None

    try:
        size = int(parts[2])
    except ValueError:
        size = None

    return RetentionEntry(
        kind=EntryKind.OBJECT,
        key=f"{prefix}{parts[-1]}",
        timestamp=timestamp,
        size=size,
    )


def parse_listing_line(line: str, prefix: str) -> RetentionEntry | None:
    """Parse one line of listing output."""
    line = line.strip()
    if not line:
        return None

    if line.startswith("PRE"):
        return parse_prefix_group_line(line, prefix)

    return parse_object_line(line, prefix)


def parse_listing(text: str, prefix: str) -> List[RetentionEntry]:
    """
    Parse the full output of a listing of ``prefix``.

    Args:
        text: Raw multi-line listing output
        prefix: The listed prefix, prepended to every key (e.g. "full/")

    Returns:
        Entries in listing order; malformed lines are skipped
    """
    entries: List[RetentionEntry] = []
    skipped = 0

    for line in text.splitlines():
        entry = parse_listing_line(line, prefix)
        if entry is None:
            if line.strip():
                skipped += 1
                logger.debug("listing_line_skipped", prefix=prefix, line=line.strip())
            continue
        entries.append(entry)

    logger.debug("listing_parsed", prefix=prefix, entries=len(entries), skipped=skipped)
    return entries

