# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Run journal and job orchestration tests.
"""

import aiosqlite
import pytest
import structlog

from s3pitr.core import (
    CLEANUP,
    FULL_BACKUP,
    RESTORE,
    _run_job,
    cleanup_job,
    full_backup_job,
    get_status,
    restore_job,
)
from s3pitr.exceptions import RunInProgressError
from s3pitr.journal import (
    RUN_FAILED,
    RUN_RUNNING,
    RUN_SUCCEEDED,
    complete_run,
    get_deletions_by_run,
    get_journal_stats,
    get_run,
    get_segments_by_run,
    init_journal_db,
    list_runs,
    record_deletion,
    record_run,
    record_segment_outcome,
)
from s3pitr.logsink import configure_logging, run_log_file


# ============================================================================
# Journal
# ============================================================================

@pytest.mark.asyncio
async def test_record_and_complete_run(temp_dir):
    db_path = temp_dir / "journal" / "journal.db"
    await init_journal_db(db_path)

    async with aiosqlite.connect(db_path) as db:
        await record_run(db, "01RUN", "cleanup", {"dry_run": True})

        running = await get_run(db, "01RUN")
        assert running["status"] == RUN_RUNNING
        assert running["params"] == {"dry_run": True}
        assert running["completed_at"] is None

        await complete_run(db, "01RUN", {"deleted": 2})

        done = await get_run(db, "01RUN")
        assert done["status"] == RUN_SUCCEEDED
        assert done["summary"] == {"deleted": 2}
        assert done["completed_at"] is not None


@pytest.mark.asyncio
async def test_failed_run_keeps_error(temp_dir):
    db_path = temp_dir / "journal.db"
    await init_journal_db(db_path)

    async with aiosqlite.connect(db_path) as db:
        await record_run(db, "01RUN", "full_backup", {})
        await complete_run(db, "01RUN", {}, error="Failed to run xtrabackup")

        run = await get_run(db, "01RUN")
        assert run["status"] == RUN_FAILED
        assert run["error"] == "Failed to run xtrabackup"


@pytest.mark.asyncio
async def test_init_is_idempotent(temp_dir):
    db_path = temp_dir / "journal.db"
    await init_journal_db(db_path)
    await init_journal_db(db_path)

    async with aiosqlite.connect(db_path) as db:
        assert await get_run(db, "missing") is None


@pytest.mark.asyncio
async def test_list_runs_newest_first_and_filtered(temp_dir):
    db_path = temp_dir / "journal.db"
    await init_journal_db(db_path)

    async with aiosqlite.connect(db_path) as db:
        await record_run(db, "01A", "cleanup", {})
        await record_run(db, "01B", "restore", {})
        await record_run(db, "01C", "cleanup", {})

        runs = await list_runs(db)
        assert [r["id"] for r in runs][0] == "01C"
        assert len(runs) == 3

        cleanups = await list_runs(db, kind="cleanup")
        assert {r["id"] for r in cleanups} == {"01A", "01C"}

        assert len(await list_runs(db, limit=1)) == 1


@pytest.mark.asyncio
async def test_deletions_segments_and_stats(temp_dir):
    db_path = temp_dir / "journal.db"
    await init_journal_db(db_path)

    async with aiosqlite.connect(db_path) as db:
        await record_run(db, "01CLEAN", "cleanup", {})
        await record_deletion(db, "01CLEAN", "remote_binlogs", "binlogs/binlog.000001", "deleted")
        await record_deletion(db, "01CLEAN", "remote_binlogs", "binlogs/binlog.000002", "failed")

        await record_run(db, "01RESTORE", "restore", {})
        await record_segment_outcome(db, "01RESTORE", "binlog.000001", "applied")
        await record_segment_outcome(
            db, "01RESTORE", "binlog.000002", "failed", exit_code=1, error="ERROR 1062"
        )

        deletions = await get_deletions_by_run(db, "01CLEAN")
        assert [d["status"] for d in deletions] == ["deleted", "failed"]

        segments = await get_segments_by_run(db, "01RESTORE")
        assert [s["segment"] for s in segments] == ["binlog.000001", "binlog.000002"]
        assert segments[1]["exit_code"] == 1
        assert segments[1]["error"] == "ERROR 1062"

        stats = await get_journal_stats(db)
        assert stats["total_runs"] == 2
        assert stats["runs_by_kind"] == {"cleanup": 1, "restore": 1}
        assert stats["total_deletions"] == 1
        assert stats["failed_segments"] == 1


# ============================================================================
# Jobs
# ============================================================================

@pytest.mark.asyncio
async def test_full_backup_job_journals_success(test_config, test_state):
    report = await full_backup_job(test_config, test_state)

    assert report.succeeded
    assert report.kind == FULL_BACKUP

    async with aiosqlite.connect(test_state["journal_path"]) as db:
        run = await get_run(db, report.run_id)
    assert run["status"] == RUN_SUCCEEDED
    assert run["summary"]["steps"] == ["prepare_directory", "xtrabackup", "flush_logs", "upload"]

    status = get_status(test_state)
    assert status["total_runs"] == 1
    assert status["active_runs"] == {}
    assert status["last_error"] is None


@pytest.mark.asyncio
async def test_failed_job_is_reported_not_raised(test_config, test_state, fake_runner):
    fake_runner.script("xtrabackup", exit_code=1, stderr="Access denied")

    report = await full_backup_job(test_config, test_state)

    assert not report.succeeded
    assert report.stderr == "Access denied"
    assert test_state["last_error"] == report.error

    async with aiosqlite.connect(test_state["journal_path"]) as db:
        run = await get_run(db, report.run_id)
    assert run["status"] == RUN_FAILED


@pytest.mark.asyncio
async def test_cleanup_job_journals_deletions(test_config, test_state, fake_store):
    fake_store.listings["binlogs/"] = (
        "2020-01-01 00:00:00       1024 binlog.000001\n"
        "2999-01-01 00:00:00       1024 binlog.000002\n"
    )

    report = await cleanup_job(test_config, test_state)

    assert report.succeeded
    assert report.kind == CLEANUP
    async with aiosqlite.connect(test_state["journal_path"]) as db:
        deletions = await get_deletions_by_run(db, report.run_id)
    assert [(d["key"], d["status"]) for d in deletions] == [("binlogs/binlog.000001", "deleted")]


@pytest.mark.asyncio
async def test_cleanup_job_dry_run_journals_would_delete(test_config, test_state, fake_store):
    fake_store.listings["full/"] = "                           PRE 2020-01-01/\n"

    report = await cleanup_job(test_config, test_state, dry_run=True)

    assert fake_store.deleted_prefixes == []
    async with aiosqlite.connect(test_state["journal_path"]) as db:
        deletions = await get_deletions_by_run(db, report.run_id)
    assert [(d["key"], d["status"]) for d in deletions] == [("full/2020-01-01/", "would_delete")]


@pytest.mark.asyncio
async def test_cleanup_job_fails_on_listing_error(test_config, test_state, fake_store):
    fake_store.list_errors["binlogs/"] = "An error occurred (AccessDenied)"

    report = await cleanup_job(test_config, test_state)

    assert not report.succeeded
    assert report.error == "Listing failed for: remote_binlogs"


@pytest.mark.asyncio
async def test_restore_job_rejects_bad_arguments(test_config, test_state, fake_runner):
    report = await restore_job(test_config, test_state, "2025-01-10", None)

    assert not report.succeeded
    assert report.kind == RESTORE
    assert "Missing required arguments" in report.error
    assert fake_runner.calls == []


@pytest.mark.asyncio
async def test_restore_job_journals_segments(test_config, test_state, fake_store, fake_runner):
    fake_store.remote_trees["full/2025-01-10/"] = {"xtrabackup_checkpoints": b"backup_type = full-backuped"}
    fake_store.remote_trees["binlogs/"] = {"binlog.000001": b"\xfebin", "binlog.000002": b"\xfebin"}
    fake_runner.fail_segment("binlog.000002")

    report = await restore_job(test_config, test_state, "2025-01-10", "12:00:00")

    assert report.succeeded
    async with aiosqlite.connect(test_state["journal_path"]) as db:
        segments = await get_segments_by_run(db, report.run_id)
    assert [(s["segment"], s["status"]) for s in segments] == [
        ("binlog.000001", "applied"),
        ("binlog.000002", "failed"),
    ]


@pytest.mark.asyncio
async def test_concurrent_run_of_same_kind_rejected(test_config, test_state):
    async with test_state["locks"][RESTORE].hold():
        with pytest.raises(RunInProgressError):
            await restore_job(test_config, test_state, "2025-01-10", "12:00:00")


@pytest.mark.asyncio
async def test_different_kinds_do_not_block_each_other(test_config, test_state):
    async with test_state["locks"][RESTORE].hold():
        report = await full_backup_job(test_config, test_state)

    assert report.succeeded


@pytest.mark.asyncio
async def test_unexpected_error_marks_run_failed(test_config, test_state):
    async def pipeline():
        raise RuntimeError("disk on fire")

    with pytest.raises(RuntimeError):
        await _run_job(test_config, test_state, CLEANUP, {}, pipeline)

    async with aiosqlite.connect(test_state["journal_path"]) as db:
        (run,) = await list_runs(db)
    assert run["status"] == RUN_FAILED
    assert "disk on fire" in run["error"]
    assert test_state["active_runs"] == {}


# ============================================================================
# Run log files
# ============================================================================

def test_run_log_file_keeps_only_its_own_run(temp_dir):
    configure_logging()
    log = structlog.get_logger()
    path = temp_dir / "logs" / "cleanup.log"

    try:
        with run_log_file(path, "run-a"):
            log.info("mine", run_id="run-a")
            log.info("someone_else", run_id="run-b")
            log.info("unbound")
        log.info("after", run_id="run-a")
    finally:
        configure_logging()

    text = path.read_text()
    assert "mine" in text
    assert "someone_else" not in text
    assert "unbound" not in text
    assert "after" not in text


def test_run_log_file_not_doubled_under_cli_handler(temp_dir):
    path = temp_dir / "logs" / "cleanup.log"
    configure_logging(path)
    log = structlog.get_logger()

    try:
        with run_log_file(path, "run-a"):
            log.info("once", run_id="run-a")
    finally:
        configure_logging()

    assert path.read_text().count("once") == 1
