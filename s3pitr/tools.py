# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Tools - Command lines for the database tools the pipelines drive.

MySQL credentials never appear on a command line. They are written to
an ephemeral option file (mode 0600) that is handed to the tool with
``--defaults-extra-file`` and removed as soon as the tool exits.
"""

import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from s3pitr.config import PITRConfig
from s3pitr.runner import CommandSpec


def _option_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def render_option_file(config: PITRConfig) -> str:
    """Option file contents for the [client] and [xtrabackup] groups."""
    lines = []
    for group in ("client", "xtrabackup"):
        lines.append(f"[{group}]")
        lines.append(f"user={_option_value(config.mysql_user)}")
        if config.mysql_password:
            lines.append(f"password={_option_value(config.mysql_password.reveal())}")
        lines.append(f"host={config.mysql_host}")
        lines.append(f"port={config.mysql_port}")
        lines.append("")
    return "\n".join(lines)


@contextmanager
def mysql_credentials_file(config: PITRConfig) -> Iterator[Path]:
    """
    Write an ephemeral MySQL option file and remove it afterwards.

    Yields:
        Path to a file readable only by the current user
    """
    fd, name = tempfile.mkstemp(prefix="s3pitr-", suffix=".cnf")
    path = Path(name)
    try:
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(render_option_file(config))
        yield path
    finally:
        path.unlink(missing_ok=True)


def xtrabackup_backup(config: PITRConfig, credentials: Path, target_dir: Path) -> CommandSpec:
    """Hot backup of the live datadir into ``target_dir``."""
    return CommandSpec.of(
        config.xtrabackup_bin,
        f"--defaults-extra-file={credentials}",
        "--backup",
        f"--datadir={config.mysql_datadir}",
        f"--target-dir={target_dir}",
        timeout=config.backup_timeout,
    )


def xtrabackup_prepare(config: PITRConfig, target_dir: Path) -> CommandSpec:
    """Replay redo logs so the backup in ``target_dir`` is consistent."""
    return CommandSpec.of(
        config.xtrabackup_bin,
        "--prepare",
        f"--target-dir={target_dir}",
        timeout=config.prepare_timeout,
    )


def xtrabackup_copy_back(config: PITRConfig, target_dir: Path, datadir: Path) -> CommandSpec:
    """Copy a prepared backup into ``datadir``."""
    return CommandSpec.of(
        config.xtrabackup_bin,
        "--copy-back",
        f"--target-dir={target_dir}",
        f"--datadir={datadir}",
        timeout=config.copy_back_timeout,
    )


def mysql_flush_logs(config: PITRConfig, credentials: Path) -> CommandSpec:
    """Close the current binlog so the next one starts after the backup."""
    return CommandSpec.of(
        config.mysql_bin,
        f"--defaults-extra-file={credentials}",
        "-e",
        "FLUSH LOGS;",
        timeout=config.flush_logs_timeout,
    )


def mysql_client(config: PITRConfig, credentials: Path) -> CommandSpec:
    """A mysql client reading SQL from stdin (the consuming end of a replay)."""
    return CommandSpec.of(
        config.mysql_bin,
        f"--defaults-extra-file={credentials}",
        timeout=config.replay_timeout,
    )


def mysqlbinlog_replay(
    config: PITRConfig,
    segment: Path,
    stop_datetime: datetime,
    database: str | None = None,
) -> CommandSpec:
    """Decode ``segment`` into SQL, stopping at ``stop_datetime``."""
    argv = [
        config.mysqlbinlog_bin,
        f"--stop-datetime={stop_datetime.strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    if database:
        argv.append(f"--database={database}")
    argv.append(str(segment))
    return CommandSpec.of(*argv, timeout=config.replay_timeout)


def rsync_binlogs(config: PITRConfig, dest_dir: Path) -> CommandSpec:
    """Copy ``<basename>.*`` files out of the live datadir."""
    return CommandSpec.of(
        config.rsync_bin,
        "-a",
        f"--include={config.binlog_basename}.*",
        "--exclude=*",
        f"{config.mysql_datadir}/",
        f"{dest_dir}/",
        timeout=config.rsync_timeout,
    )


def chown_recursive(config: PITRConfig, path: Path) -> CommandSpec:
    """Hand ``path`` over to the database service account."""
    return CommandSpec.of(
        config.chown_bin,
        "-R",
        config.service_account,
        str(path),
        timeout=config.chown_timeout,
    )
