# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for S3PITR tests.

Provides a scripted command runner, an in-memory object store and
test configuration helpers.
"""

import os
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Tuple

import pytest
import pytest_asyncio

from s3pitr.config import PITRConfig
from s3pitr.exceptions import TransferError
from s3pitr.runner import CommandResult, CommandSpec, Secret

# Set test environment variables
os.environ["PITR_ADMIN_API_KEY"] = "test-api-key-12345"

TEST_PASSWORD = "s3cr3t-pa55"


class FakeRunner:
    """
    CommandRunner that records every command and returns scripted results.

    Results are scripted per program name (``xtrabackup``, ``chown``...).
    Hooks run before a result is returned, so a test can make a command
    produce files the way the real tool would.
    """

    def __init__(self):
        self.calls: List[CommandSpec] = []
        self.pipes: List[Tuple[CommandSpec, CommandSpec]] = []
        self.results: Dict[str, CommandResult] = {}
        self.hooks: Dict[str, Callable[[CommandSpec], None]] = {}
        self.failing_segments: Dict[str, str] = {}

    def script(self, program: str, exit_code: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.results[program] = CommandResult(
            command=program, exit_code=exit_code, stdout=stdout, stderr=stderr
        )

    def on(self, program: str, hook: Callable[[CommandSpec], None]) -> None:
        self.hooks[program] = hook

    def fail_segment(self, name: str, stderr: str = "ERROR 1062 (23000): Duplicate entry") -> None:
        self.failing_segments[name] = stderr

    async def run(self, spec: CommandSpec) -> CommandResult:
        self.calls.append(spec)
        hook = self.hooks.get(spec.program)
        if hook is not None:
            hook(spec)
        scripted = self.results.get(spec.program)
        if scripted is None:
            return CommandResult(command=spec.display(), exit_code=0)
        return CommandResult(
            command=spec.display(),
            exit_code=scripted.exit_code,
            stdout=scripted.stdout,
            stderr=scripted.stderr,
        )

    async def pipe(self, producer: CommandSpec, consumer: CommandSpec) -> CommandResult:
        self.pipes.append((producer, consumer))
        segment = Path(str(producer.argv[-1])).name
        command = f"{producer.display()} | {consumer.display()}"
        if segment in self.failing_segments:
            return CommandResult(
                command=command, exit_code=1, stderr=self.failing_segments[segment]
            )
        return CommandResult(command=command, exit_code=0)

    @property
    def programs(self) -> List[str]:
        return [spec.program for spec in self.calls]

    @property
    def replayed_segments(self) -> List[str]:
        return [Path(str(producer.argv[-1])).name for producer, _ in self.pipes]


class FakeObjectStore:
    """In-memory ObjectStore. Remote trees are dicts of relative path -> bytes."""

    def __init__(self):
        self.listings: Dict[str, str] = {}
        self.list_errors: Dict[str, str] = {}
        self.remote_trees: Dict[str, Dict[str, bytes]] = {}
        self.sync_down_errors: Dict[str, str] = {}
        self.delete_errors: set = set()
        self.uploads: List[Tuple[Path, str]] = []
        self.deleted_objects: List[str] = []
        self.deleted_prefixes: List[str] = []
        self.list_calls: List[str] = []
        self.sync_down_calls: List[str] = []

    async def list(self, prefix: str) -> str:
        self.list_calls.append(prefix)
        if prefix in self.list_errors:
            raise TransferError(
                f"Failed to list s3://test-bucket/{prefix}",
                details={"stderr": self.list_errors[prefix]},
            )
        return self.listings.get(prefix, "")

    async def sync_down(self, remote_prefix: str, local_dir: Path) -> None:
        self.sync_down_calls.append(remote_prefix)
        if remote_prefix in self.sync_down_errors:
            raise TransferError(
                f"Failed to download s3://test-bucket/{remote_prefix}",
                details={"stderr": self.sync_down_errors[remote_prefix]},
            )
        for relative, data in self.remote_trees.get(remote_prefix, {}).items():
            target = local_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

    async def sync_up(self, local_dir: Path, remote_prefix: str, timeout: int | None = None) -> None:
        self.uploads.append((local_dir, remote_prefix))

    async def delete_object(self, key: str) -> None:
        if key in self.delete_errors:
            raise TransferError(f"Failed to delete {key}", details={"stderr": "AccessDenied"})
        self.deleted_objects.append(key)

    async def delete_recursive(self, prefix: str) -> None:
        if prefix in self.delete_errors:
            raise TransferError(f"Failed to delete {prefix}", details={"stderr": "AccessDenied"})
        self.deleted_prefixes.append(prefix)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> PITRConfig:
    """Create a test configuration."""
    datadir = temp_dir / "mysql"
    datadir.mkdir()

    return PITRConfig(
        bucket="test-bucket",
        region="us-east-1",
        mysql_user="backup",
        mysql_password=Secret(TEST_PASSWORD),
        mysql_datadir=datadir,
        storage_root=temp_dir / "storage",
        retention_days_local=3,
        retention_days_cloud=90,
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest_asyncio.fixture
async def test_state(test_config: PITRConfig, fake_store: FakeObjectStore, fake_runner: FakeRunner):
    """Create initialized PITR state wired to the fakes."""
    from s3pitr.core import initialize_pitr_state, shutdown_pitr_state

    state = await initialize_pitr_state(test_config, store=fake_store, runner=fake_runner)
    yield state
    await shutdown_pitr_state(state)


def set_age(path: Path, days: float) -> None:
    """Backdate a file's mtime by ``days``."""
    import time

    stamp = time.time() - days * 86400
    os.utime(path, (stamp, stamp))
