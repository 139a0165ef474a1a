# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Exceptions - Custom exceptions for the s3pitr package.

Fatal errors abort the current pipeline and are surfaced to the caller.
Tool stderr, when there is one, travels in ``details["stderr"]``.
"""


class PITRError(Exception):
    """Base exception for all S3PITR errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    @property
    def stderr(self) -> str:
        """Verbatim stderr of the failing tool, or an empty string."""
        return self.details.get("stderr", "")


class ConfigurationError(PITRError):
    """Raised when configuration is invalid."""

    pass


class ValidationError(PITRError):
    """Raised when restore arguments or required identity are missing or malformed."""

    pass


class WorkspaceError(PITRError):
    """Raised when a working directory cannot be removed, created or written."""

    pass


class TransferError(PITRError):
    """Raised when listing, sync, upload or download against the object store fails."""

    pass


class EmptyBackupError(TransferError):
    """Raised when a fetched full backup is absent or contains no entries."""

    pass


class ToolError(PITRError):
    """Raised when a database tool (xtrabackup, mysql, rsync) exits non-zero."""

    pass


class ReplayError(PITRError):
    """Per-segment binlog apply failure. Recorded and logged, never raised out of a restore."""

    pass


class JournalError(PITRError):
    """Raised when run journal operations fail."""

    pass


class RunInProgressError(PITRError):
    """Raised when a run is requested while another run of the same kind holds the lock."""

    pass
