# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore request parsing.
"""

from dataclasses import dataclass
from datetime import date, datetime, time

from s3pitr.config import is_valid_schema_name
from s3pitr.errors import (
    explain_invalid_restore_date,
    explain_invalid_restore_time,
    explain_invalid_target_database,
    explain_missing_restore_arguments,
)
from s3pitr.exceptions import ValidationError


@dataclass(frozen=True)
class RestoreRequest:
    """What to restore: the full backup of ``date``, rolled forward to ``cutoff_time``."""

    date: date
    cutoff_time: time
    target_database: str | None = None

    @property
    def cutoff(self) -> datetime:
        """The absolute instant binlog replay stops at."""
        return datetime.combine(self.date, self.cutoff_time)


def _parse_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValidationError(explain_invalid_restore_date(value)) from exc


def _parse_time(value: str | time) -> time:
    if isinstance(value, time):
        return value
    try:
        return datetime.strptime(value.strip(), "%H:%M:%S").time()
    except ValueError as exc:
        raise ValidationError(explain_invalid_restore_time(value)) from exc


def parse_restore_request(
    restore_date: str | date | None,
    restore_time: str | time | None,
    target_database: str | None = None,
) -> RestoreRequest:
    """
    Build a RestoreRequest from user input.

    Raises:
        ValidationError: If date or time is missing or malformed, or the
            target database is not a usable schema name
    """
    if not restore_date or not restore_time:
        raise ValidationError(
            explain_missing_restore_arguments(),
            details={"date": restore_date, "time": restore_time},
        )

    if target_database and not is_valid_schema_name(target_database):
        raise ValidationError(
            explain_invalid_target_database(target_database),
            details={"target_database": target_database},
        )

    return RestoreRequest(
        date=_parse_date(restore_date),
        cutoff_time=_parse_time(restore_time),
        target_database=target_database or None,
    )
