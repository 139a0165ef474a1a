# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR aws CLI store - Object store operations through the ``aws s3`` command.
"""

from pathlib import Path

import structlog

from s3pitr.config import PITRConfig
from s3pitr.exceptions import TransferError
from s3pitr.runner import CommandRunner, CommandSpec, run_or_raise

logger = structlog.get_logger()


class AwsCliObjectStore:
    """ObjectStore that shells out to ``aws s3``."""

    def __init__(self, config: PITRConfig, runner: CommandRunner):
        self.config = config
        self.runner = runner

    def _url(self, key: str) -> str:
        return f"s3://{self.config.bucket}/{key}"

    def _spec(self, *args: str, timeout: int) -> CommandSpec:
        return CommandSpec.of(
            self.config.aws_bin,
            "s3",
            *args,
            "--region",
            self.config.region,
            timeout=timeout,
        )

    async def list(self, prefix: str) -> str:
        spec = self._spec("ls", self._url(prefix), timeout=self.config.list_timeout)
        result = await self.runner.run(spec)

        # aws s3 ls exits 1 without output when nothing exists under the prefix
        if result.exit_code == 1 and not result.timed_out and not (result.stdout or result.stderr):
            return ""

        if result.failed:
            logger.error(
                "s3_listing_failed",
                command=result.command,
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
            raise TransferError(
                f"Failed to list {self._url(prefix)}: {result.stderr}",
                details={
                    "command": result.command,
                    "exit_code": result.exit_code,
                    "stderr": result.stderr,
                },
            )
        return result.stdout

    async def sync_down(self, remote_prefix: str, local_dir: Path) -> None:
        await run_or_raise(
            self.runner,
            self._spec(
                "sync",
                self._url(remote_prefix),
                str(local_dir),
                timeout=self.config.download_timeout,
            ),
            TransferError,
            f"Failed to download {self._url(remote_prefix)}",
        )

    async def sync_up(self, local_dir: Path, remote_prefix: str, timeout: int | None = None) -> None:
        # Trailing slash: sync the directory's contents, not the directory
        await run_or_raise(
            self.runner,
            self._spec(
                "sync",
                f"{local_dir}/",
                self._url(remote_prefix),
                timeout=timeout or self.config.upload_timeout,
            ),
            TransferError,
            f"Failed to upload to {self._url(remote_prefix)}",
        )

    async def delete_object(self, key: str) -> None:
        await run_or_raise(
            self.runner,
            self._spec("rm", self._url(key), timeout=self.config.delete_timeout),
            TransferError,
            f"Failed to delete {self._url(key)}",
        )

    async def delete_recursive(self, prefix: str) -> None:
        await run_or_raise(
            self.runner,
            self._spec(
                "rm",
                self._url(prefix),
                "--recursive",
                timeout=self.config.delete_timeout,
            ),
            TransferError,
            f"Failed to delete {self._url(prefix)}",
        )
