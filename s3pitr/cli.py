# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR command line.

    s3pitr backup:full
    s3pitr backup:binlogs
    s3pitr backup:cleanup [--dry-run]
    s3pitr backup:restore --date YYYY-MM-DD --time HH:MM:SS [--database NAME]

Configuration comes from the environment. Exit status is 0 on success
and 1 on failure.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import structlog

from s3pitr import __version__
from s3pitr.config import PITRConfig
from s3pitr.core import (
    BINLOG_ARCHIVE,
    CLEANUP,
    FULL_BACKUP,
    RESTORE,
    JobReport,
    PITRState,
    binlog_archive_job,
    cleanup_job,
    full_backup_job,
    initialize_pitr_state,
    log_file_for,
    restore_job,
)
from s3pitr.env import create_config_from_env
from s3pitr.exceptions import PITRError
from s3pitr.logsink import configure_logging

logger = structlog.get_logger()

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

COMMAND_KINDS = {
    "backup:full": FULL_BACKUP,
    "backup:binlogs": BINLOG_ARCHIVE,
    "backup:cleanup": CLEANUP,
    "backup:restore": RESTORE,
}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="s3pitr",
        description="MySQL point-in-time recovery backed by S3",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Log debug events")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("backup:full", help="Take a full hot backup and upload it to S3")
    sub.add_parser("backup:binlogs", help="Archive MySQL binary logs and upload them to S3")

    p_cleanup = sub.add_parser("backup:cleanup", help="Delete backups past the retention windows")
    p_cleanup.add_argument(
        "--dry-run", action="store_true", help="Report what would be deleted without deleting"
    )

    p_restore = sub.add_parser("backup:restore", help="Restore a database to a point in time")
    p_restore.add_argument("--date", default=None, help="Full backup date (YYYY-MM-DD)")
    p_restore.add_argument("--time", default=None, help="Replay binlogs up to this time (HH:MM:SS)")
    p_restore.add_argument(
        "--database", default=None, help="Keep only this schema (default: TARGET_DATABASE)"
    )

    return p


async def _dispatch(config: PITRConfig, state: PITRState, args: argparse.Namespace) -> JobReport:
    if args.cmd == "backup:full":
        return await full_backup_job(config, state)
    if args.cmd == "backup:binlogs":
        return await binlog_archive_job(config, state)
    if args.cmd == "backup:cleanup":
        return await cleanup_job(config, state, dry_run=args.dry_run)
    return await restore_job(config, state, args.date, args.time, args.database)


async def run_command(config: PITRConfig, args: argparse.Namespace) -> int:
    """Run one command against ``config``; returns the exit status."""
    state = await initialize_pitr_state(config)

    try:
        report = await _dispatch(config, state, args)
    except PITRError as e:
        logger.error("command_failed", command=args.cmd, error=e.message)
        return EXIT_FAILURE

    if not report.succeeded:
        logger.error(
            "command_failed",
            command=args.cmd,
            run_id=report.run_id,
            error=report.error,
            stderr=report.stderr,
        )
        return EXIT_FAILURE

    logger.info("command_completed", command=args.cmd, run_id=report.run_id)
    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.INFO

    try:
        config = create_config_from_env()
    except PITRError as e:
        configure_logging(level=level)
        logger.error("configuration_invalid", error=str(e))
        return EXIT_FAILURE

    configure_logging(log_file_for(config, COMMAND_KINDS[args.cmd]), level=level)
    return asyncio.run(run_command(config, args))


if __name__ == "__main__":
    sys.exit(main())
