# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR SDK store - Object store operations through aiobotocore.

Listings are rendered in the same text shape ``aws s3 ls`` prints, with
timestamps converted to local time, so the retention parser does not
care which backend produced them.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

import aiofiles
import structlog

from s3pitr.config import PITRConfig
from s3pitr.exceptions import TransferError

logger = structlog.get_logger()

# S3 DeleteObjects accepts at most 1000 keys per request
DELETE_BATCH_SIZE = 1000

# Bytes read per chunk when streaming downloads to disk
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

# Files at least this large are uploaded in parts
MULTIPART_THRESHOLD = 64 * 1024 * 1024

# S3 requires every part but the last to be at least 5 MiB
MULTIPART_PART_SIZE = 16 * 1024 * 1024


class BotocoreObjectStore:
    """ObjectStore backed by an aiobotocore session."""

    def __init__(
        self,
        config: PITRConfig,
        session: Any = None,
        multipart_threshold: int = MULTIPART_THRESHOLD,
        part_size: int = MULTIPART_PART_SIZE,
    ):
        if session is None:
            from aiobotocore.session import get_session

            session = get_session()
        self.config = config
        self.session = session
        self.multipart_threshold = multipart_threshold
        self.part_size = part_size

    def _client(self):
        return self.session.create_client("s3", region_name=self.config.region)

    async def _guard(self, coro, timeout: int, message: str, **details):
        """Await ``coro`` under a timeout, turning any failure into TransferError."""
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            raise TransferError(
                f"{message}: timed out after {timeout}s",
                details={**details, "stderr": f"timed out after {timeout}s"},
            )
        except TransferError:
            raise
        except Exception as e:
            logger.error("s3_operation_failed", error=str(e), **details)
            raise TransferError(f"{message}: {e}", details={**details, "stderr": str(e)})

    # ------------------------------------------------------------------
    # list
    # ------------------------------------------------------------------

    async def list(self, prefix: str) -> str:
        return await self._guard(
            self._list(prefix),
            self.config.list_timeout,
            f"Failed to list s3://{self.config.bucket}/{prefix}",
            prefix=prefix,
        )

    async def _list(self, prefix: str) -> str:
        lines: List[str] = []

        async with self._client() as client:
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(
                Bucket=self.config.bucket, Prefix=prefix, Delimiter="/"
            ):
                for common in page.get("CommonPrefixes", []):
                    name = common["Prefix"][len(prefix):]
                    lines.append(f"{'PRE':>30} {name}")

                for obj in page.get("Contents", []):
                    name = obj["Key"][len(prefix):]
                    if not name:
                        continue
                    lines.append(
                        f"{_local_time(obj['LastModified'])} {obj.get('Size', 0):>10} {name}"
                    )

        return "\n".join(lines)

    # ------------------------------------------------------------------
    # sync
    # ------------------------------------------------------------------

    async def sync_down(self, remote_prefix: str, local_dir: Path) -> None:
        await self._guard(
            self._sync_down(remote_prefix, local_dir),
            self.config.download_timeout,
            f"Failed to download s3://{self.config.bucket}/{remote_prefix}",
            prefix=remote_prefix,
        )

    async def _sync_down(self, remote_prefix: str, local_dir: Path) -> None:
        downloaded = 0

        async with self._client() as client:
            for key, _meta in (await self._list_recursive(client, remote_prefix)).items():
                relative = key[len(remote_prefix):]
                if not relative or relative.endswith("/"):
                    continue

                target = local_dir / relative
                target.parent.mkdir(parents=True, exist_ok=True)

                response = await client.get_object(Bucket=self.config.bucket, Key=key)
                async with response["Body"] as stream:
                    async with aiofiles.open(target, "wb") as f:
                        while True:
                            chunk = await stream.read(DOWNLOAD_CHUNK_SIZE)
                            if not chunk:
                                break
                            await f.write(chunk)
                downloaded += 1

        logger.info("s3_sync_down_complete", prefix=remote_prefix, files=downloaded)

    async def sync_up(self, local_dir: Path, remote_prefix: str, timeout: int | None = None) -> None:
        await self._guard(
            self._sync_up(local_dir, remote_prefix),
            timeout or self.config.upload_timeout,
            f"Failed to upload to s3://{self.config.bucket}/{remote_prefix}",
            prefix=remote_prefix,
        )

    async def _sync_up(self, local_dir: Path, remote_prefix: str) -> None:
        uploaded = 0
        unchanged = 0

        async with self._client() as client:
            existing = await self._list_recursive(client, remote_prefix)

            for path in sorted(p for p in local_dir.rglob("*") if p.is_file()):
                key = remote_prefix + path.relative_to(local_dir).as_posix()
                stat = path.stat()

                # Same rule as ``aws s3 sync``: skip when size matches and remote is newer
                remote = existing.get(key)
                if remote and remote["Size"] == stat.st_size and (
                    remote["LastModified"].timestamp() >= stat.st_mtime
                ):
                    unchanged += 1
                    continue

                await self._upload_file(client, path, key, stat.st_size)
                uploaded += 1

        logger.info(
            "s3_sync_up_complete",
            prefix=remote_prefix,
            uploaded=uploaded,
            unchanged=unchanged,
        )

    async def _upload_file(self, client: Any, path: Path, key: str, size: int) -> None:
        if size < self.multipart_threshold:
            async with aiofiles.open(path, "rb") as f:
                body = await f.read()
            await client.put_object(Bucket=self.config.bucket, Key=key, Body=body)
            return

        upload = await client.create_multipart_upload(Bucket=self.config.bucket, Key=key)
        upload_id = upload["UploadId"]
        parts = []

        try:
            async with aiofiles.open(path, "rb") as f:
                part_number = 1
                while True:
                    chunk = await f.read(self.part_size)
                    if not chunk:
                        break
                    response = await client.upload_part(
                        Bucket=self.config.bucket,
                        Key=key,
                        UploadId=upload_id,
                        PartNumber=part_number,
                        Body=chunk,
                    )
                    parts.append({"PartNumber": part_number, "ETag": response["ETag"]})
                    part_number += 1

            await client.complete_multipart_upload(
                Bucket=self.config.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except (Exception, asyncio.CancelledError):
            logger.warning("s3_multipart_upload_aborted", key=key, parts=len(parts))
            await client.abort_multipart_upload(
                Bucket=self.config.bucket, Key=key, UploadId=upload_id
            )
            raise

        logger.debug("s3_multipart_upload_complete", key=key, parts=len(parts), size=size)

    # ------------------------------------------------------------------
    # delete
    # ------------------------------------------------------------------

    async def delete_object(self, key: str) -> None:
        await self._guard(
            self._delete_object(key),
            self.config.delete_timeout,
            f"Failed to delete s3://{self.config.bucket}/{key}",
            key=key,
        )

    async def _delete_object(self, key: str) -> None:
        async with self._client() as client:
            await client.delete_object(Bucket=self.config.bucket, Key=key)

    async def delete_recursive(self, prefix: str) -> None:
        await self._guard(
            self._delete_recursive(prefix),
            self.config.delete_timeout,
            f"Failed to delete s3://{self.config.bucket}/{prefix}",
            prefix=prefix,
        )

    async def _delete_recursive(self, prefix: str) -> None:
        async with self._client() as client:
            keys = list(await self._list_recursive(client, prefix))

            for start in range(0, len(keys), DELETE_BATCH_SIZE):
                batch = keys[start:start + DELETE_BATCH_SIZE]
                response = await client.delete_objects(
                    Bucket=self.config.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
                errors = response.get("Errors", [])
                if errors:
                    first = errors[0]
                    raise TransferError(
                        f"Failed to delete {len(errors)} object(s) under {prefix}",
                        details={
                            "prefix": prefix,
                            "stderr": f"{first.get('Key')}: {first.get('Code')} {first.get('Message')}",
                        },
                    )

        logger.debug("s3_prefix_deleted", prefix=prefix, objects=len(keys))

    async def _list_recursive(self, client: Any, prefix: str) -> Dict[str, dict]:
        """Every object under ``prefix``, keyed by S3 key."""
        objects: Dict[str, dict] = {}
        paginator = client.get_paginator("list_objects_v2")
        async for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                objects[obj["Key"]] = obj
        return objects


def _local_time(moment: datetime) -> str:
    """Render an S3 timestamp the way ``aws s3 ls`` does (local time)."""
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.strftime("%Y-%m-%d %H:%M:%S")
