# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for S3PITR.

These helpers centralize wording for common configuration and argument
errors so that the CLI, the HTTP routes and the pipelines all present
consistent, actionable messages.
"""


def explain_missing_bucket_env() -> str:
    """
    Explain that the S3 bucket environment variable is missing.
    """

    return (
        "S3 bucket is not configured. "
        "Set the AWS_S3_BUCKET environment variable or pass bucket=... to create_config()."
    )


def explain_missing_restore_arguments() -> str:
    """
    Explain that a restore needs both a date and a time.
    """

    return (
        "Missing required arguments. "
        "Usage: s3pitr backup:restore --date <YYYY-MM-DD> --time <HH:MM:SS>"
    )


def explain_invalid_restore_date(value: str | None) -> str:
    """
    Explain that the restore date could not be parsed.
    """

    return f"Invalid restore date: {value!r}. Expected YYYY-MM-DD."


def explain_invalid_restore_time(value: str | None) -> str:
    """
    Explain that the restore time could not be parsed.
    """

    return f"Invalid restore time: {value!r}. Expected HH:MM:SS."


def explain_invalid_target_database(value: str) -> str:
    """
    Explain that the requested schema name cannot be a directory name.
    """

    return f"Invalid target database: {value!r}. Expected a schema name without '/'."


def explain_invalid_retention_days_env(name: str, value: str | None) -> str:
    """
    Explain that a retention window variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "It must be a non-negative integer number of days."
    )


def explain_invalid_port_env(value: str | None) -> str:
    """
    Explain that MYSQL_PORT is invalid.
    """

    return f"Invalid MYSQL_PORT value: {value!r}. Expected an integer between 1 and 65535."


def explain_invalid_storage_backend_env(value: str | None) -> str:
    """
    Explain that the storage backend env is invalid.
    """

    return (
        f"Invalid PITR_STORAGE_BACKEND value: {value!r}. "
        "Expected 'cli' (aws command line) or 'sdk' (aiobotocore)."
    )
