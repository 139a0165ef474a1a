# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
aiobotocore object store tests against an in-memory S3 client.
"""

import asyncio
from datetime import datetime

import pytest

from s3pitr.exceptions import TransferError
from s3pitr.storage import BotocoreObjectStore, EntryKind, parse_listing


class FakeBody:
    def __init__(self, data: bytes):
        self._data = data

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            size = len(self._data)
        chunk, self._data = self._data[:size], self._data[size:]
        return chunk


class FakePaginator:
    def __init__(self, client: "FakeS3Client"):
        self.client = client

    def paginate(self, Bucket, Prefix, Delimiter=None):
        return self._pages(Prefix, Delimiter)

    async def _pages(self, prefix, delimiter):
        prefixes = []
        contents = []
        for key in sorted(self.client.objects):
            if not key.startswith(prefix):
                continue
            rest = key[len(prefix):]
            if delimiter and delimiter in rest:
                common = prefix + rest.split(delimiter)[0] + delimiter
                if {"Prefix": common} not in prefixes:
                    prefixes.append({"Prefix": common})
                continue
            size, modified, _ = self.client.objects[key]
            contents.append({"Key": key, "Size": size, "LastModified": modified})

        size = self.client.page_size
        for start in range(0, max(len(contents), 1), size):
            page = {"Contents": contents[start:start + size]}
            if start == 0:
                page["CommonPrefixes"] = prefixes
            yield page


class FakeS3Client:
    """Just enough of the S3 client surface for BotocoreObjectStore."""

    def __init__(self):
        self.objects = {}
        self.page_size = 2
        self.put_keys = []
        self.delete_batches = []
        self.delete_errors = []
        self.fail_with = None
        self.uploads = {}
        self.completed_parts = {}
        self.aborted = []
        self.fail_part = None

    def add(self, key, data=b"x", modified=datetime(2025, 1, 10, 8, 30, 0)):
        self.objects[key] = (len(data), modified, data)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        if self.fail_with is not None:
            raise self.fail_with
        return FakePaginator(self)

    async def get_object(self, Bucket, Key):
        return {"Body": FakeBody(self.objects[Key][2])}

    async def put_object(self, Bucket, Key, Body):
        self.put_keys.append(Key)
        self.objects[Key] = (len(Body), datetime.now(), Body)

    async def create_multipart_upload(self, Bucket, Key):
        upload_id = f"upload-{len(self.uploads) + 1}"
        self.uploads[upload_id] = {"key": Key, "parts": {}}
        return {"UploadId": upload_id}

    async def upload_part(self, Bucket, Key, UploadId, PartNumber, Body):
        if self.fail_part == PartNumber:
            raise RuntimeError("connection reset by peer")
        self.uploads[UploadId]["parts"][PartNumber] = Body
        return {"ETag": f'"etag-{PartNumber}"'}

    async def complete_multipart_upload(self, Bucket, Key, UploadId, MultipartUpload):
        upload = self.uploads.pop(UploadId)
        numbers = [p["PartNumber"] for p in MultipartUpload["Parts"]]
        assert numbers == sorted(upload["parts"])
        self.completed_parts[Key] = [len(upload["parts"][n]) for n in numbers]
        data = b"".join(upload["parts"][n] for n in numbers)
        self.objects[Key] = (len(data), datetime.now(), data)

    async def abort_multipart_upload(self, Bucket, Key, UploadId):
        self.uploads.pop(UploadId)
        self.aborted.append(Key)

    async def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    async def delete_objects(self, Bucket, Delete):
        keys = [o["Key"] for o in Delete["Objects"]]
        self.delete_batches.append(keys)
        for key in keys:
            self.objects.pop(key, None)
        return {"Errors": self.delete_errors}


class FakeSession:
    def __init__(self, client: FakeS3Client):
        self.client = client
        self.regions = []

    def create_client(self, service, region_name=None):
        assert service == "s3"
        self.regions.append(region_name)
        return self.client


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def sdk_store(test_config, s3_client) -> BotocoreObjectStore:
    return BotocoreObjectStore(test_config, session=FakeSession(s3_client))


# ============================================================================
# list
# ============================================================================

@pytest.mark.asyncio
async def test_list_renders_parseable_text(sdk_store, s3_client):
    s3_client.add("full/2025-01-09/ibdata1")
    s3_client.add("full/2025-01-10/ibdata1")
    s3_client.add("binlogs/binlog.000001", b"12345", datetime(2025, 1, 10, 8, 30, 0))

    full = parse_listing(await sdk_store.list("full/"), "full/")
    binlogs = parse_listing(await sdk_store.list("binlogs/"), "binlogs/")

    assert [(e.kind, e.key) for e in full] == [
        (EntryKind.PREFIX_GROUP, "full/2025-01-09/"),
        (EntryKind.PREFIX_GROUP, "full/2025-01-10/"),
    ]
    assert [(e.kind, e.key, e.timestamp) for e in binlogs] == [
        (EntryKind.OBJECT, "binlogs/binlog.000001", datetime(2025, 1, 10, 8, 30, 0)),
    ]


@pytest.mark.asyncio
async def test_list_follows_pagination(sdk_store, s3_client):
    for n in range(1, 6):
        s3_client.add(f"binlogs/binlog.00000{n}")

    entries = parse_listing(await sdk_store.list("binlogs/"), "binlogs/")

    assert len(entries) == 5


@pytest.mark.asyncio
async def test_list_failure_becomes_transfer_error(sdk_store, s3_client):
    s3_client.fail_with = RuntimeError("An error occurred (AccessDenied) when calling ListObjectsV2")

    with pytest.raises(TransferError) as excinfo:
        await sdk_store.list("binlogs/")

    assert "AccessDenied" in excinfo.value.stderr


@pytest.mark.asyncio
async def test_list_timeout(test_config, s3_client):
    class SlowPaginator(FakePaginator):
        async def _pages(self, prefix, delimiter):
            await asyncio.sleep(5)
            yield {}

    s3_client.get_paginator = lambda name: SlowPaginator(s3_client)
    store = BotocoreObjectStore(
        test_config.with_updates(list_timeout=1), session=FakeSession(s3_client)
    )

    with pytest.raises(TransferError) as excinfo:
        await store.list("binlogs/")

    assert "timed out" in excinfo.value.stderr


# ============================================================================
# sync
# ============================================================================

@pytest.mark.asyncio
async def test_sync_down_writes_tree(sdk_store, s3_client, temp_dir):
    s3_client.add("full/2025-01-10/ibdata1", b"innodb" * 1000)
    s3_client.add("full/2025-01-10/app/users.ibd", b"rows")

    await sdk_store.sync_down("full/2025-01-10/", temp_dir / "full")

    assert (temp_dir / "full" / "ibdata1").read_bytes() == b"innodb" * 1000
    assert (temp_dir / "full" / "app" / "users.ibd").read_bytes() == b"rows"


@pytest.mark.asyncio
async def test_sync_up_skips_unchanged(sdk_store, s3_client, temp_dir):
    local = temp_dir / "binlogs"
    local.mkdir()
    (local / "binlog.000001").write_bytes(b"same")
    (local / "binlog.000002").write_bytes(b"new")
    s3_client.add("binlogs/binlog.000001", b"same", datetime(2999, 1, 1))

    await sdk_store.sync_up(local, "binlogs/")

    assert s3_client.put_keys == ["binlogs/binlog.000002"]


@pytest.mark.asyncio
async def test_sync_up_uses_multipart_for_large_files(test_config, s3_client, temp_dir):
    store = BotocoreObjectStore(
        test_config, session=FakeSession(s3_client), multipart_threshold=8, part_size=4
    )
    local = temp_dir / "full"
    local.mkdir()
    (local / "ibdata1").write_bytes(b"0123456789")
    (local / "small").write_bytes(b"tiny")

    await store.sync_up(local, "full/2025-01-10/")

    assert s3_client.completed_parts == {"full/2025-01-10/ibdata1": [4, 4, 2]}
    assert s3_client.objects["full/2025-01-10/ibdata1"][2] == b"0123456789"
    assert s3_client.put_keys == ["full/2025-01-10/small"]
    assert s3_client.uploads == {}


@pytest.mark.asyncio
async def test_failed_part_aborts_multipart_upload(test_config, s3_client, temp_dir):
    store = BotocoreObjectStore(
        test_config, session=FakeSession(s3_client), multipart_threshold=8, part_size=4
    )
    local = temp_dir / "full"
    local.mkdir()
    (local / "ibdata1").write_bytes(b"0123456789")
    s3_client.fail_part = 2

    with pytest.raises(TransferError) as exc_info:
        await store.sync_up(local, "full/2025-01-10/")

    assert "connection reset" in exc_info.value.stderr
    assert s3_client.aborted == ["full/2025-01-10/ibdata1"]
    assert s3_client.uploads == {}
    assert "full/2025-01-10/ibdata1" not in s3_client.objects


# ============================================================================
# delete
# ============================================================================

@pytest.mark.asyncio
async def test_delete_recursive_batches(sdk_store, s3_client):
    s3_client.page_size = 1000
    for n in range(1500):
        s3_client.add(f"full/2024-10-01/file{n:05d}")
    s3_client.add("full/2024-10-02/ibdata1")

    await sdk_store.delete_recursive("full/2024-10-01/")

    assert [len(batch) for batch in s3_client.delete_batches] == [1000, 500]
    assert list(s3_client.objects) == ["full/2024-10-02/ibdata1"]


@pytest.mark.asyncio
async def test_delete_recursive_reports_errors(sdk_store, s3_client):
    s3_client.add("full/2024-10-01/ibdata1")
    s3_client.delete_errors = [
        {"Key": "full/2024-10-01/ibdata1", "Code": "AccessDenied", "Message": "Access Denied"}
    ]

    with pytest.raises(TransferError) as excinfo:
        await sdk_store.delete_recursive("full/2024-10-01/")

    assert excinfo.value.stderr == "full/2024-10-01/ibdata1: AccessDenied Access Denied"


@pytest.mark.asyncio
async def test_delete_object(sdk_store, s3_client):
    s3_client.add("binlogs/binlog.000001")

    await sdk_store.delete_object("binlogs/binlog.000001")

    assert s3_client.objects == {}
