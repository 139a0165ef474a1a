# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Sequencer - Point-in-time restore from a full backup plus binlogs.
"""

from s3pitr.restore.replay import SegmentOutcome, SegmentStatus, discover_segments
from s3pitr.restore.request import RestoreRequest, parse_restore_request
from s3pitr.restore.sequencer import (
    STAGE_POLICIES,
    FailurePolicy,
    RestoreOutcome,
    RestoreResult,
    Stage,
    run_restore,
    run_restore_from_arguments,
)
from s3pitr.restore.workspace import RestoreWorkspace, prepare_workspace

__all__ = [
    "RestoreRequest",
    "parse_restore_request",
    "RestoreWorkspace",
    "prepare_workspace",
    "SegmentOutcome",
    "SegmentStatus",
    "discover_segments",
    "Stage",
    "FailurePolicy",
    "STAGE_POLICIES",
    "RestoreOutcome",
    "RestoreResult",
    "run_restore",
    "run_restore_from_arguments",
]
