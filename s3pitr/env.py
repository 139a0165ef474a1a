# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration.

Reads the same variables the deployment's .env file has always carried
(AWS_S3_BUCKET, MYSQL_*, RETENTION_DAYS_FOR_*) and passes them through
create_config().
"""

from __future__ import annotations

import os
from pathlib import Path

from s3pitr.builder import create_config
from s3pitr.config import PITRConfig, StorageBackend
from s3pitr.errors import (
    explain_invalid_port_env,
    explain_invalid_retention_days_env,
    explain_invalid_storage_backend_env,
)
from s3pitr.exceptions import ConfigurationError


def _parse_days(name: str, value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        days = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_retention_days_env(name, value)) from exc
    if days < 0:
        raise ConfigurationError(explain_invalid_retention_days_env(name, value))
    return days


def _parse_port(value: str | None) -> int:
    if not value:
        return 3306
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_port_env(value)) from exc


def _parse_storage_backend(value: str | None) -> StorageBackend:
    if not value:
        return StorageBackend.CLI
    try:
        return StorageBackend(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_storage_backend_env(value)) from exc


def create_config_from_env() -> PITRConfig:
    """
    Create a PITRConfig from environment variables.

    Variables:
        - AWS_S3_BUCKET: Bucket holding full/ and binlogs/ (quotes stripped)
        - AWS_S3_REGION / AWS_REGION: Region (default: us-east-1)
        - MYSQL_USER, MYSQL_PASS, MYSQL_HOST, MYSQL_PORT: MySQL connection
        - MYSQL_DIR: Live data directory (default: /var/lib/mysql)
        - RETENTION_DAYS_FOR_LOCAL: Local window in days (default: 3)
        - RETENTION_DAYS_FOR_CLOUD: S3 window in days (default: 90)
        - TARGET_DATABASE: Optional single schema to restore
        - PITR_STORAGE_ROOT: Root for backups/, logs/, restores (default: ./storage)
        - PITR_STORAGE_BACKEND: 'cli' | 'sdk' (default: cli)
    """

    bucket = os.getenv("AWS_S3_BUCKET", "")
    region = os.getenv("AWS_S3_REGION") or os.getenv("AWS_REGION") or "us-east-1"

    storage_root_env = os.getenv("PITR_STORAGE_ROOT")
    storage_root = Path(storage_root_env) if storage_root_env else Path("./storage")

    return create_config(
        bucket=bucket,
        region=region,
        storage_root=storage_root,
        retention_days_local=_parse_days(
            "RETENTION_DAYS_FOR_LOCAL", os.getenv("RETENTION_DAYS_FOR_LOCAL"), 3
        ),
        retention_days_cloud=_parse_days(
            "RETENTION_DAYS_FOR_CLOUD", os.getenv("RETENTION_DAYS_FOR_CLOUD"), 90
        ),
        target_database=os.getenv("TARGET_DATABASE") or None,
        storage_backend=_parse_storage_backend(os.getenv("PITR_STORAGE_BACKEND")),
        mysql_user=os.getenv("MYSQL_USER", "root"),
        mysql_password=os.getenv("MYSQL_PASS") or None,
        mysql_host=os.getenv("MYSQL_HOST", "localhost"),
        mysql_port=_parse_port(os.getenv("MYSQL_PORT")),
        mysql_datadir=Path(os.getenv("MYSQL_DIR", "/var/lib/mysql")),
    )
