# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Log Sink - structlog wiring and log file rotation.

Every event goes to two places: a human-readable line on stderr and a
key/value line in the running command's log file under ``logs/``.

Rotation follows the retention windows: ``*.log`` files older than one
day are compressed with zstd, and compressed logs older than the local
retention window are deleted.
"""

import asyncio
import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, List

import structlog
import zstandard as zstd

from s3pitr.retention import is_local_path_expired
from s3pitr.runner import REDACTED, Secret

logger = structlog.get_logger()

LOG_ZSTD_LEVEL = 19
COMPRESSED_SUFFIX = ".log.zst"

# Handlers installed by configure_logging(), replaced on reconfiguration
_installed_handlers: List[logging.Handler] = []


def redact_secrets(_logger: Any, _method: str, event_dict: dict) -> dict:
    """structlog processor: never render a Secret, wherever it appears."""
    for key, value in event_dict.items():
        if isinstance(value, Secret):
            event_dict[key] = REDACTED
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
        redact_secrets,
    ]


def _file_handler(log_file: Path) -> logging.FileHandler:
    """Key/value lines, one event per line."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.KeyValueRenderer(
                    key_order=["timestamp", "level", "event"],
                ),
            ],
        )
    )
    return handler


def configure_logging(log_file: Path | None = None, level: int = logging.INFO) -> None:
    """
    Route structlog through stdlib logging to stderr and, optionally, a file.

    Safe to call more than once; the previous handlers are replaced.
    """
    shared_processors = _shared_processors()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
            ],
        )
    )
    _installed_handlers.append(console)

    if log_file is not None:
        _installed_handlers.append(_file_handler(log_file))

    for handler in _installed_handlers:
        root.addHandler(handler)
    root.setLevel(level)


class _RunFilter(logging.Filter):
    """Pass only structlog events carrying one run id."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        event = record.msg
        return isinstance(event, dict) and event.get("run_id") == self.run_id


@contextmanager
def run_log_file(log_file: Path, run_id: str) -> Iterator[None]:
    """
    Copy the events of one run into ``log_file`` while the block runs.

    Runs started over HTTP or by the scheduler get the same per-command
    log file as CLI runs. Concurrent runs of other kinds are filtered out.
    Nothing is attached when ``log_file`` already has a handler, as it
    does under the CLI.
    """
    root = logging.getLogger()
    target = os.path.abspath(log_file)
    if any(getattr(h, "baseFilename", None) == target for h in root.handlers):
        yield
        return

    handler = _file_handler(log_file)
    handler.addFilter(_RunFilter(run_id))
    root.addHandler(handler)
    try:
        yield
    finally:
        root.removeHandler(handler)
        handler.close()


@dataclass
class LogRotationReport:
    """What a rotation pass did."""

    compressed: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _compress_file_sync(source: Path, target: Path) -> None:
    """Synchronous streaming zstd compression that keeps the source mtime."""
    stat = source.stat()
    cctx = zstd.ZstdCompressor(level=LOG_ZSTD_LEVEL)
    with open(source, "rb") as ifh, open(target, "wb") as ofh:
        cctx.copy_stream(ifh, ofh)
    os.utime(target, (stat.st_atime, stat.st_mtime))
    source.unlink()


async def compress_log_file(path: Path) -> Path:
    """Compress ``path`` to ``<path>.zst`` off the event loop and remove the original."""
    target = path.with_name(path.name + ".zst")
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _compress_file_sync, path, target)
    return target


async def rotate_logs(
    logs_dir: Path,
    retention_days: int,
    active_log: Path | None = None,
    now: datetime | None = None,
    dry_run: bool = False,
) -> LogRotationReport:
    """
    Compress day-old logs and delete compressed logs past retention.

    Args:
        logs_dir: Directory holding ``*.log`` files
        retention_days: Local retention window in days
        active_log: The log currently being written; never compressed, touched at the end
        now: Reference instant (default: current local time)
        dry_run: Report only

    Returns:
        LogRotationReport
    """
    report = LogRotationReport()
    reference = now if now is not None else datetime.now()

    if not logs_dir.exists():
        return report

    for path in sorted(logs_dir.glob("*.log")):
        if active_log is not None and path.resolve() == active_log.resolve():
            continue
        try:
            mtime = datetime.fromtimestamp(path.stat().st_mtime)
            if not is_local_path_expired(mtime, reference, 1):
                continue
            if not dry_run:
                await compress_log_file(path)
            report.compressed.append(path.name)
            logger.debug("log_compressed", path=str(path), dry_run=dry_run)
        except OSError as e:
            report.errors.append(f"{path.name}: {e}")
            logger.warning("log_compress_failed", path=str(path), error=str(e))

    for path in sorted(logs_dir.glob(f"*{COMPRESSED_SUFFIX}")):
        try:
            mtime = datetime.fromtimestamp(path.stat().st_mtime)
            if not is_local_path_expired(mtime, reference, retention_days):
                continue
            if not dry_run:
                path.unlink()
            report.deleted.append(path.name)
            logger.debug("log_deleted", path=str(path), dry_run=dry_run)
        except OSError as e:
            report.errors.append(f"{path.name}: {e}")
            logger.warning("log_delete_failed", path=str(path), error=str(e))

    if active_log is not None and not dry_run:
        active_log.parent.mkdir(parents=True, exist_ok=True)
        active_log.touch()

    logger.info(
        "logs_rotated",
        compressed=len(report.compressed),
        deleted=len(report.deleted),
        dry_run=dry_run,
    )
    return report
