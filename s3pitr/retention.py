# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Retention - Decides which remote entries have aged out.

Two granularities coexist and are kept as separate comparisons:

- Prefix groups (one directory per backup day) are compared by calendar
  day. A group dated on the cutoff day is kept.
- Objects (individual binlog segments) are compared by exact instant.

The cutoff is computed once per cleanup run and passed in; nothing in
this module reads the clock on its own while entries are being judged.
"""

from datetime import datetime, timedelta
from typing import Collection, Iterable, List

from s3pitr.storage.listing import EntryKind, RetentionEntry


def start_of_day(moment: datetime) -> datetime:
    """Midnight of the day containing ``moment``."""
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def compute_retention_cutoff(retention_days: int, now: datetime | None = None) -> datetime:
    """
    Compute ``now - retention_days``, normalized to start of day.

    Args:
        retention_days: Retention window in days (>= 0)
        now: Reference instant (default: current local time)

    Returns:
        The cutoff instant; entries strictly before it are expired
    """
    if retention_days < 0:
        raise ValueError(f"retention_days must be >= 0, got {retention_days}")
    reference = now if now is not None else datetime.now()
    return start_of_day(reference - timedelta(days=retention_days))


def is_prefix_group_expired(entry: RetentionEntry, cutoff: datetime) -> bool:
    """A day group is expired when its day starts strictly before the cutoff day."""
    return start_of_day(entry.timestamp) < start_of_day(cutoff)


def is_object_expired(entry: RetentionEntry, cutoff: datetime) -> bool:
    """An object is expired when its timestamp is strictly before the cutoff."""
    return entry.timestamp < cutoff


def is_expired(entry: RetentionEntry, cutoff: datetime) -> bool:
    """Dispatch to the comparison matching the entry's granularity."""
    if entry.kind == EntryKind.PREFIX_GROUP:
        return is_prefix_group_expired(entry, cutoff)
    return is_object_expired(entry, cutoff)


def select_expired(
    entries: Iterable[RetentionEntry],
    cutoff: datetime,
    kinds: Collection[EntryKind] | None = None,
) -> List[RetentionEntry]:
    """
    Filter entries down to the expired ones.

    Args:
        entries: Parsed listing entries
        cutoff: Retention cutoff from compute_retention_cutoff()
        kinds: Only consider these entry kinds (default: all)

    Returns:
        Expired entries, in input order
    """
    return [
        entry
        for entry in entries
        if (kinds is None or entry.kind in kinds) and is_expired(entry, cutoff)
    ]


def age_in_days(mtime: datetime, now: datetime) -> int:
    """Whole days elapsed since ``mtime``, rounded down (``find -mtime`` semantics)."""
    return int((now - mtime).total_seconds() // 86400)


def is_local_path_expired(mtime: datetime, now: datetime, retention_days: int) -> bool:
    """A local file or directory expires once its age in whole days exceeds the window."""
    return age_in_days(mtime, now) > retention_days
