# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Builder - Functional builder pattern for configuration.

This module provides pure functions for building PITRConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Dict

from s3pitr.config import PITRConfig, StorageBackend
from s3pitr.runner import Secret


# Type alias for builder state
ConfigDict = Dict[str, Any]


def create_empty_config() -> ConfigDict:
    """
    Create an initial configuration dictionary.

    Returns:
        Dict with default values for the commonly configured fields
    """
    return {
        "bucket": "",
        "region": "us-east-1",
        "storage_backend": StorageBackend.CLI,
        "mysql_host": "localhost",
        "mysql_port": 3306,
        "mysql_user": "root",
        "mysql_password": None,
        "mysql_datadir": Path("/var/lib/mysql"),
        "storage_root": Path("./storage"),
        "retention_days_local": 3,
        "retention_days_cloud": 90,
        "target_database": None,
    }


def with_bucket(config: ConfigDict, bucket_name: str) -> ConfigDict:
    """
    Set the S3 bucket name.

    Surrounding quotes, as left behind by some .env loaders, are stripped.
    """
    return {**config, "bucket": bucket_name.strip().strip("'\"")}


def with_region(config: ConfigDict, region: str) -> ConfigDict:
    """Set the AWS region."""
    return {**config, "region": region}


def with_storage_backend(config: ConfigDict, backend: StorageBackend | str) -> ConfigDict:
    """Choose between the aws CLI and the aiobotocore SDK."""
    if isinstance(backend, str):
        backend = StorageBackend(backend.lower())
    return {**config, "storage_backend": backend}


def with_mysql(
    config: ConfigDict,
    user: str,
    password: str | Secret | None = None,
    host: str = "localhost",
    port: int = 3306,
) -> ConfigDict:
    """
    Set the MySQL connection used for backups and binlog replay.

    The password is wrapped in a Secret so it can never leak into logs.
    """
    if isinstance(password, str):
        password = Secret(password) if password else None
    return {
        **config,
        "mysql_user": user,
        "mysql_password": password,
        "mysql_host": host,
        "mysql_port": port,
    }


def with_datadir(config: ConfigDict, datadir: Path | str) -> ConfigDict:
    """Set the live MySQL data directory."""
    return {**config, "mysql_datadir": Path(datadir)}


def with_storage_root(config: ConfigDict, storage_root: Path | str) -> ConfigDict:
    """Set the root directory for local backups, logs and restores."""
    return {**config, "storage_root": Path(storage_root)}


def retain_local_for(config: ConfigDict, days: int) -> ConfigDict:
    """
    Set the local retention window in days.

    Local backups, binlogs and compressed logs older than this are removed.
    """
    if days < 0:
        raise ValueError(f"retention days must be >= 0, got {days}")
    return {**config, "retention_days_local": days}


def retain_cloud_for(config: ConfigDict, days: int) -> ConfigDict:
    """Set the remote (S3) retention window in days."""
    if days < 0:
        raise ValueError(f"retention days must be >= 0, got {days}")
    return {**config, "retention_days_cloud": days}


def only_database(config: ConfigDict, name: str | None) -> ConfigDict:
    """Restrict restores to a single schema (None restores every schema)."""
    return {**config, "target_database": name or None}


def build_config(config: ConfigDict) -> PITRConfig:
    """
    Build an immutable PITRConfig from a configuration dictionary.

    Raises:
        ConfigurationError: If the assembled configuration is invalid
    """
    return PITRConfig(**config)


def create_config(
    bucket: str = "",
    region: str | None = None,
    storage_root: Path | str | None = None,
    retention_days_local: int | None = None,
    retention_days_cloud: int | None = None,
    target_database: str | None = None,
    storage_backend: StorageBackend | str | None = None,
    **kwargs: Any,
) -> PITRConfig:
    """
    Create a validated configuration.

    This is the recommended user-facing API for creating configurations.

    Example:
        config = create_config(
            bucket="db-backups",
            region="eu-west-1",
            storage_root="/srv/pitr",
            retention_days_cloud=30,
        )
    """
    config_dict = create_empty_config()
    config_dict = with_bucket(config_dict, bucket)

    if region:
        config_dict = with_region(config_dict, region)

    if storage_root:
        config_dict = with_storage_root(config_dict, storage_root)

    if retention_days_local is not None:
        config_dict = retain_local_for(config_dict, retention_days_local)

    if retention_days_cloud is not None:
        config_dict = retain_cloud_for(config_dict, retention_days_cloud)

    if target_database:
        config_dict = only_database(config_dict, target_database)

    if storage_backend:
        config_dict = with_storage_backend(config_dict, storage_backend)

    if isinstance(kwargs.get("mysql_password"), str):
        kwargs["mysql_password"] = Secret(kwargs["mysql_password"]) if kwargs["mysql_password"] else None

    # Apply any additional kwargs
    for key, value in kwargs.items():
        config_dict[key] = value

    return build_config(config_dict)
