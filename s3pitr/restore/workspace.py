# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore workspace - the directory tree a restore run owns exclusively.

    restored-databases/
        full/       downloaded hot backup
        binlogs/    downloaded binlog segments
        data/       reconstructed data directory

The tree is wiped at the start of every run and left in place at the
end, whatever the outcome, so it can be inspected.
"""

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path

import structlog

from s3pitr.exceptions import WorkspaceError

logger = structlog.get_logger()


@dataclass(frozen=True)
class RestoreWorkspace:
    root: Path

    @property
    def full(self) -> Path:
        return self.root / "full"

    @property
    def binlogs(self) -> Path:
        return self.root / "binlogs"

    @property
    def data(self) -> Path:
        return self.root / "data"


async def prepare_workspace(root: Path) -> RestoreWorkspace:
    """
    Destroy any previous workspace at ``root`` and create an empty one.

    Raises:
        WorkspaceError: If the old tree cannot be removed or the new one created
    """
    workspace = RestoreWorkspace(root)

    if root.exists():
        logger.info("restore_workspace_cleaning", path=str(root))
        try:
            await asyncio.get_running_loop().run_in_executor(None, shutil.rmtree, root)
        except OSError as e:
            raise WorkspaceError(
                f"Failed to remove existing restore directory: {root}",
                details={"path": str(root), "stderr": str(e)},
            )

    for path in (workspace.binlogs, workspace.full, workspace.data):
        try:
            path.mkdir(mode=0o755, parents=True)
        except OSError as e:
            raise WorkspaceError(
                f"Failed to create restore directory: {path}",
                details={"path": str(path), "stderr": str(e)},
            )

    logger.info("restore_workspace_created", path=str(root))
    return workspace


def is_effectively_empty(path: Path) -> bool:
    """True when ``path`` is missing, not a directory, or has no entries."""
    if not path.is_dir():
        return True
    return not any(path.iterdir())
