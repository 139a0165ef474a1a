# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Command line tests.
"""

import pytest

from conftest import FakeObjectStore, FakeRunner
from s3pitr import cli
from s3pitr.core import initialize_pitr_state
from s3pitr.logsink import configure_logging


@pytest.fixture
def cli_env(monkeypatch, temp_dir):
    for name in ("AWS_S3_BUCKET", "TARGET_DATABASE", "PITR_STORAGE_BACKEND", "MYSQL_PASS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PITR_STORAGE_ROOT", str(temp_dir / "storage"))
    monkeypatch.setenv("MYSQL_DIR", str(temp_dir / "mysql"))
    yield monkeypatch
    configure_logging()


@pytest.fixture
def fakes(monkeypatch):
    """Route run_command through the in-memory store and scripted runner."""
    store = FakeObjectStore()
    runner = FakeRunner()

    async def initialize(config):
        return await initialize_pitr_state(config, store=store, runner=runner)

    monkeypatch.setattr(cli, "initialize_pitr_state", initialize)
    return store, runner


def test_parser_commands():
    parser = cli.build_parser()

    restore = parser.parse_args(
        ["backup:restore", "--date", "2025-01-10", "--time", "12:00:00", "--database", "app"]
    )
    assert (restore.date, restore.time, restore.database) == ("2025-01-10", "12:00:00", "app")

    assert parser.parse_args(["backup:cleanup", "--dry-run"]).dry_run is True
    assert parser.parse_args(["backup:cleanup"]).dry_run is False


def test_unknown_command_exits_with_usage():
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["backup:everything"])

    assert excinfo.value.code == 2


def test_full_backup_without_bucket_fails(cli_env, fakes):
    _, runner = fakes

    assert cli.main(["backup:full"]) == 1
    assert runner.calls == []


def test_restore_without_arguments_fails(cli_env, fakes):
    cli_env.setenv("AWS_S3_BUCKET", "test-bucket")
    store, runner = fakes

    assert cli.main(["backup:restore", "--date", "2025-01-10"]) == 1
    assert store.sync_down_calls == []
    assert runner.calls == []


def test_cleanup_without_bucket_fails(cli_env, fakes):
    store, _ = fakes

    assert cli.main(["backup:cleanup"]) == 1
    assert store.list_calls == []


def test_invalid_environment_fails(cli_env):
    cli_env.setenv("RETENTION_DAYS_FOR_CLOUD", "ninety")

    assert cli.main(["backup:cleanup"]) == 1


def test_cleanup_succeeds_and_writes_its_log(cli_env, fakes, temp_dir):
    cli_env.setenv("AWS_S3_BUCKET", "test-bucket")
    store, _ = fakes

    assert cli.main(["backup:cleanup", "--dry-run"]) == 0
    assert store.list_calls == ["full/", "binlogs/"]
    assert (temp_dir / "storage" / "logs" / "cleanup.log").exists()


def test_binlog_archive_succeeds(cli_env, fakes):
    cli_env.setenv("AWS_S3_BUCKET", "test-bucket")
    store, runner = fakes

    assert cli.main(["backup:binlogs"]) == 0
    assert runner.programs == ["rsync"]
    assert [prefix for _, prefix in store.uploads] == ["binlogs/"]
