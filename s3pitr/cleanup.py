# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Cleanup Engine - Retention enforcement for local and remote backups.

Two independent windows are enforced:

- Local window (days): dated full-backup directories and archived binlog
  files on this host, judged by filesystem modification time.
- Cloud window (days): ``full/<date>/`` day groups and ``binlogs/``
  objects in S3, judged from the parsed listing.

Every pass is independent. A failed listing aborts only its own
namespace, and a failed deletion is logged and left for the next
scheduled run. The cloud cutoff is computed once, before the first pass.
"""

import asyncio
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import FrozenSet, Iterable, List

import structlog

from s3pitr.config import BINLOG_PREFIX, FULL_BACKUP_PREFIX, PITRConfig
from s3pitr.exceptions import PITRError, TransferError
from s3pitr.logsink import LogRotationReport, rotate_logs
from s3pitr.retention import compute_retention_cutoff, is_local_path_expired, select_expired
from s3pitr.storage.base import ObjectStore, require_bucket
from s3pitr.storage.listing import EntryKind, RetentionEntry, parse_listing

logger = structlog.get_logger()


@dataclass(frozen=True)
class RemoteNamespace:
    """A listed prefix and the kind of entries retention manages under it."""

    name: str
    prefix: str
    kinds: FrozenSet[EntryKind]


REMOTE_FULL_BACKUPS = RemoteNamespace(
    "remote_full_backups", FULL_BACKUP_PREFIX, frozenset({EntryKind.PREFIX_GROUP})
)
REMOTE_BINLOGS = RemoteNamespace(
    "remote_binlogs", BINLOG_PREFIX, frozenset({EntryKind.OBJECT})
)
REMOTE_NAMESPACES = (REMOTE_FULL_BACKUPS, REMOTE_BINLOGS)


@dataclass
class NamespaceReport:
    """Outcome of one remote namespace pass."""

    namespace: str
    prefix: str
    listed: bool = False
    examined: int = 0
    expired: int = 0
    deleted_keys: List[str] = field(default_factory=list)
    failed_keys: List[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class LocalPruneReport:
    """Outcome of one local pruning pass."""

    namespace: str
    root: str
    skipped: bool = False
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class CleanupResult:
    """Result of a cleanup run."""

    retention_cutoff: datetime
    dry_run: bool
    local: List[LocalPruneReport] = field(default_factory=list)
    remote: List[NamespaceReport] = field(default_factory=list)
    logs: LogRotationReport = field(default_factory=LogRotationReport)
    duration_seconds: float = 0.0

    @property
    def failed_namespaces(self) -> List[str]:
        return [r.namespace for r in self.remote if not r.listed]

    @property
    def succeeded(self) -> bool:
        return not self.failed_namespaces

    @property
    def error(self) -> str | None:
        if self.succeeded:
            return None
        return f"Listing failed for: {', '.join(self.failed_namespaces)}"

    @property
    def deleted_count(self) -> int:
        return sum(len(r.deleted_keys) for r in self.remote) + sum(
            len(r.removed) for r in self.local
        )


# ============================================================================
# Local pruning
# ============================================================================

async def _prune_local(
    namespace: str,
    root: Path,
    candidates: Iterable[Path],
    retention_days: int,
    now: datetime,
    dry_run: bool,
) -> LocalPruneReport:
    report = LocalPruneReport(namespace=namespace, root=str(root))
    loop = asyncio.get_running_loop()

    for path in candidates:
        try:
            mtime = datetime.fromtimestamp(path.stat().st_mtime)
            if not is_local_path_expired(mtime, now, retention_days):
                continue

            if not dry_run:
                if path.is_dir():
                    await loop.run_in_executor(None, shutil.rmtree, path)
                else:
                    path.unlink()

            report.removed.append(str(path))
            logger.info(
                "local_entry_removed" if not dry_run else "local_entry_would_remove",
                namespace=namespace,
                path=str(path),
            )
        except OSError as e:
            report.failed.append(str(path))
            logger.warning(
                "local_prune_failed",
                namespace=namespace,
                path=str(path),
                error=str(e),
            )

    return report


def _listing_failed(namespace: str, root: Path, error: OSError) -> LocalPruneReport:
    logger.warning("local_listing_failed", namespace=namespace, path=str(root), error=str(error))
    return LocalPruneReport(namespace=namespace, root=str(root), skipped=True, error=str(error))


async def prune_local_full_backups(
    root: Path,
    retention_days: int,
    now: datetime,
    dry_run: bool = False,
) -> LocalPruneReport:
    """
    Remove dated backup directories directly under ``root`` past the window.

    The root itself is never removed. An unreadable root skips the pass.
    """
    if not root.is_dir():
        logger.warning("local_backup_dir_missing", path=str(root))
        return LocalPruneReport(namespace="local_full_backups", root=str(root), skipped=True)

    try:
        candidates = sorted(p for p in root.iterdir() if p.is_dir())
    except OSError as e:
        return _listing_failed("local_full_backups", root, e)
    return await _prune_local("local_full_backups", root, candidates, retention_days, now, dry_run)


async def prune_local_binlogs(
    root: Path,
    retention_days: int,
    now: datetime,
    dry_run: bool = False,
) -> LocalPruneReport:
    """Delete archived binlog files anywhere under ``root`` past the window."""
    if not root.is_dir():
        logger.warning("local_binlog_dir_missing", path=str(root))
        return LocalPruneReport(namespace="local_binlogs", root=str(root), skipped=True)

    try:
        candidates = sorted(p for p in root.rglob("*") if p.is_file())
    except OSError as e:
        return _listing_failed("local_binlogs", root, e)
    return await _prune_local("local_binlogs", root, candidates, retention_days, now, dry_run)


# ============================================================================
# Remote pruning
# ============================================================================

async def _delete_entry(store: ObjectStore, entry: RetentionEntry) -> None:
    if entry.kind == EntryKind.PREFIX_GROUP:
        await store.delete_recursive(entry.key)
    else:
        await store.delete_object(entry.key)


async def prune_remote_namespace(
    store: ObjectStore,
    namespace: RemoteNamespace,
    cutoff: datetime,
    dry_run: bool = False,
) -> NamespaceReport:
    """
    List, parse, filter and delete one remote namespace.

    Never raises for listing or deletion failures; they are recorded in
    the returned report.
    """
    report = NamespaceReport(namespace=namespace.name, prefix=namespace.prefix)

    logger.info(
        "remote_namespace_checking",
        namespace=namespace.name,
        prefix=namespace.prefix,
        cutoff=cutoff.isoformat(),
    )

    try:
        text = await store.list(namespace.prefix)
    except TransferError as e:
        report.error = e.stderr or e.message
        logger.error(
            "remote_listing_failed",
            namespace=namespace.name,
            prefix=namespace.prefix,
            error=report.error,
        )
        return report

    report.listed = True

    entries = [e for e in parse_listing(text, namespace.prefix) if e.kind in namespace.kinds]
    expired = select_expired(entries, cutoff)
    report.examined = len(entries)
    report.expired = len(expired)

    for entry in expired:
        if dry_run:
            report.deleted_keys.append(entry.key)
            logger.info("remote_entry_would_delete", namespace=namespace.name, key=entry.key)
            continue

        logger.info(
            "remote_entry_deleting",
            namespace=namespace.name,
            key=entry.key,
            timestamp=entry.timestamp.isoformat(),
        )
        try:
            await _delete_entry(store, entry)
        except TransferError as e:
            report.failed_keys.append(entry.key)
            logger.warning(
                "remote_delete_failed",
                namespace=namespace.name,
                key=entry.key,
                error=e.stderr or e.message,
            )
            continue
        report.deleted_keys.append(entry.key)

    logger.info(
        "remote_namespace_checked",
        namespace=namespace.name,
        examined=report.examined,
        expired=report.expired,
        deleted=len(report.deleted_keys),
        failed=len(report.failed_keys),
        dry_run=dry_run,
    )
    return report


# ============================================================================
# Cleanup run
# ============================================================================

async def run_cleanup(
    config: PITRConfig,
    store: ObjectStore,
    *,
    now: datetime | None = None,
    dry_run: bool = False,
    active_log: Path | None = None,
) -> CleanupResult:
    """
    Enforce both retention windows across all managed namespaces.

    Order: local full backups, local binlogs, remote full backups,
    remote binlogs, log rotation.

    Args:
        config: S3PITR configuration
        store: Object store for the remote passes
        now: Reference instant (default: current local time)
        dry_run: Report what would be deleted without deleting anything
        active_log: Log file of the running command, kept out of rotation

    Returns:
        CleanupResult
    """
    start = time.monotonic()
    reference = now if now is not None else datetime.now()

    # Computed once; every namespace pass compares against the same value
    cutoff = compute_retention_cutoff(config.retention_days_cloud, reference)

    logger.info(
        "cleanup_started",
        retention_days_local=config.retention_days_local,
        retention_days_cloud=config.retention_days_cloud,
        cloud_cutoff=cutoff.isoformat(),
        dry_run=dry_run,
    )

    result = CleanupResult(retention_cutoff=cutoff, dry_run=dry_run)

    result.local.append(
        await prune_local_full_backups(
            config.local_full_dir, config.retention_days_local, reference, dry_run
        )
    )
    result.local.append(
        await prune_local_binlogs(
            config.local_binlog_dir, config.retention_days_local, reference, dry_run
        )
    )

    try:
        require_bucket(config)
    except PITRError as e:
        logger.error("remote_cleanup_skipped", error=e.message)
        for namespace in REMOTE_NAMESPACES:
            result.remote.append(
                NamespaceReport(namespace=namespace.name, prefix=namespace.prefix, error=e.message)
            )
    else:
        for namespace in REMOTE_NAMESPACES:
            result.remote.append(
                await prune_remote_namespace(store, namespace, cutoff, dry_run)
            )

    result.logs = await rotate_logs(
        config.logs_dir,
        config.retention_days_local,
        active_log=active_log,
        now=reference,
        dry_run=dry_run,
    )

    result.duration_seconds = time.monotonic() - start

    logger.info(
        "cleanup_completed",
        deleted=result.deleted_count,
        failed_namespaces=result.failed_namespaces,
        duration=round(result.duration_seconds, 2),
        dry_run=dry_run,
    )
    return result
