# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

from dataclasses import dataclass, field

from s3pitr.logsink import LogRotationReport


@dataclass
class BackupResult:
    """Result of a backup pipeline run."""

    kind: str
    local_path: str
    remote_prefix: str
    steps: list[str] = field(default_factory=list)
    logs: LogRotationReport | None = None
    duration_seconds: float = 0.0
