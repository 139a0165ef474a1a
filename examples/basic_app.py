# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example FastAPI Application with S3PITR Integration.

Serves the admin endpoints and runs the backup schedule in-process:
full backup daily, binlog archive every 30 minutes, cleanup daily.

Run with:
    uvicorn examples.basic_app:app

Environment variables:
    AWS_S3_BUCKET: Bucket holding full/ and binlogs/
    AWS_REGION: Bucket region
    MYSQL_USER / MYSQL_PASS / MYSQL_HOST / MYSQL_PORT: MySQL connection
    MYSQL_DIR: Live MySQL data directory
    PITR_STORAGE_ROOT: Local backups, logs and restores
    PITR_ADMIN_API_KEY: API key for admin endpoints
"""

import os
from pathlib import Path

from fastapi import FastAPI

from s3pitr.builder import (
    build_config,
    create_empty_config,
    retain_cloud_for,
    retain_local_for,
    with_bucket,
    with_datadir,
    with_mysql,
    with_region,
    with_storage_root,
)
from s3pitr.integrations.fastapi import setup_pitr_plugin
from s3pitr.logsink import configure_logging


def create_pitr_config():
    """
    Create S3PITR configuration from environment variables.

    This uses the functional builder pattern for clean, composable configuration.
    """
    config = create_empty_config()

    config = with_bucket(config, os.getenv("AWS_S3_BUCKET", "my-db-backups"))
    config = with_region(config, os.getenv("AWS_REGION", "us-east-1"))

    config = with_mysql(
        config,
        user=os.getenv("MYSQL_USER", "root"),
        password=os.getenv("MYSQL_PASS"),
        host=os.getenv("MYSQL_HOST", "localhost"),
        port=int(os.getenv("MYSQL_PORT", "3306")),
    )
    config = with_datadir(config, os.getenv("MYSQL_DIR", "/var/lib/mysql"))
    config = with_storage_root(config, Path(os.getenv("PITR_STORAGE_ROOT", "/srv/pitr")))

    # Keep three days on this host and ninety in S3
    config = retain_local_for(config, 3)
    config = retain_cloud_for(config, 90)

    return build_config(config)


configure_logging()

app = FastAPI(
    title="MySQL PITR",
    description="Example application running S3PITR backups and restores",
    version="1.0.0",
)

setup_pitr_plugin(app, create_pitr_config())


@app.get("/")
async def root():
    return {
        "message": "MySQL point-in-time recovery",
        "docs": "/docs",
        "pitr_admin": "/admin/pitr/health",
    }


# ============================================================================
# S3PITR Admin Endpoints (auto-registered by plugin)
# ============================================================================
#
# POST /admin/pitr/restore?date=YYYY-MM-DD&time=HH:MM:SS[&database=NAME]
# POST /admin/pitr/cleanup[?dry_run=true]
# POST /admin/pitr/backup/full
# POST /admin/pitr/backup/binlogs
# GET  /admin/pitr/runs
# GET  /admin/pitr/runs/{run_id}
# GET  /admin/pitr/status
# GET  /admin/pitr/health
# GET  /admin/pitr/config
#
# All admin endpoints require: Authorization: Bearer <PITR_ADMIN_API_KEY>


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
