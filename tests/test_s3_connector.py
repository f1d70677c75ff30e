"""S3 connector logic against an in-process stand-in for the boto3 client."""

from __future__ import annotations

import hashlib
import io
import json
from datetime import datetime, timedelta, timezone

import pytest
from botocore.exceptions import ClientError

from mediumroast.config import MediumroastConfig
from mediumroast.connectors.s3 import S3Connector
from mediumroast.entities import STUDIES
from mediumroast.errors import LockConflictError, VersionConflictError
from mediumroast.store import ObjectStore


def _client_error(code: str, op: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


class _Paginator:
    def __init__(self, objects):
        self._objects = objects

    def paginate(self, Bucket, Prefix=""):
        now = datetime.now(timezone.utc)
        contents = [
            {"Key": k, "Size": len(v), "ETag": FakeS3._etag(v), "LastModified": now}
            for k, v in sorted(self._objects.items())
            if k.startswith(Prefix)
        ]
        yield {"Contents": contents}


class FakeS3:
    """Honours IfNoneMatch/IfMatch on put and IfMatch on delete."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}

    @staticmethod
    def _etag(body: bytes) -> str:
        return f'"{hashlib.md5(body).hexdigest()}"'

    def put_object(self, *, Bucket, Key, Body, ContentType=None, IfNoneMatch=None, IfMatch=None):
        current = self.objects.get(Key)
        if IfNoneMatch == "*" and current is not None:
            raise _client_error("PreconditionFailed", "PutObject")
        if IfMatch is not None and (current is None or self._etag(current) != IfMatch):
            raise _client_error("PreconditionFailed", "PutObject")
        self.objects[Key] = Body
        return {"ETag": self._etag(Body)}

    def get_object(self, *, Bucket, Key):
        if Key not in self.objects:
            raise _client_error("NoSuchKey", "GetObject")
        body = self.objects[Key]
        return {"Body": io.BytesIO(body), "ETag": self._etag(body)}

    def delete_object(self, *, Bucket, Key, IfMatch=None):
        current = self.objects.get(Key)
        if IfMatch is not None and current is not None and self._etag(current) != IfMatch:
            raise _client_error("PreconditionFailed", "DeleteObject")
        self.objects.pop(Key, None)
        return {}

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return _Paginator(self.objects)


@pytest.fixture
def fake():
    s3 = FakeS3()
    s3.objects["mr/Studies/studies.json"] = json.dumps([{"name": "Study 1"}]).encode()
    return s3


@pytest.fixture
def s3(fake):
    return S3Connector(
        bucket="bucket", prefix="mr/", config=MediumroastConfig(process_name="test"), client=fake
    )


@pytest.mark.asyncio
async def test_read_uses_etag_token(s3, fake):
    snapshot = await s3.read_collection("Studies")
    assert snapshot.records == [{"name": "Study 1"}]
    assert snapshot.version_token == FakeS3._etag(fake.objects["mr/Studies/studies.json"])


@pytest.mark.asyncio
async def test_reads_are_cached_until_invalidated(s3, fake):
    await s3.read_collection("Studies")
    fake.objects["mr/Studies/studies.json"] = b"[]"
    assert (await s3.read_collection("Studies")).records == [{"name": "Study 1"}]
    assert (await s3.read_collection("Studies", fresh=True)).records == []
    s3.invalidate_cache("Studies")
    assert (await s3.read_collection("Studies")).records == []


@pytest.mark.asyncio
async def test_conditional_write_conflict(s3, fake):
    token = (await s3.read_collection("Studies")).version_token
    fake.objects["mr/Studies/studies.json"] = b'[{"name": "Other"}]'
    with pytest.raises(VersionConflictError):
        await s3.write_collection("Studies", [{"name": "Mine"}], token)
    assert fake.objects["mr/Studies/studies.json"] == b'[{"name": "Other"}]'


@pytest.mark.asyncio
async def test_first_write_uses_if_none_match(s3, fake):
    snapshot = await s3.read_collection("Companies")
    assert snapshot.version_token == ""
    await s3.write_collection("Companies", [{"name": "Acme"}], snapshot.version_token)
    with pytest.raises(VersionConflictError):
        await s3.write_collection("Companies", [{"name": "Late"}], "")


@pytest.mark.asyncio
async def test_lock_conflict_and_release(s3, fake):
    handle = await s3.acquire_container_lock("Studies", "a", 30000)
    assert "mr/Studies/mediumroast.lock" in fake.objects
    with pytest.raises(LockConflictError) as exc:
        await s3.acquire_container_lock("Studies", "b", 30000)
    assert exc.value.owner == "a"
    await s3.release_container_lock(handle)
    assert not await s3.check_lock("Studies")


@pytest.mark.asyncio
async def test_stale_lock_taken_over(s3, fake):
    past = datetime.now(timezone.utc) - timedelta(seconds=1)
    fake.objects["mr/Studies/mediumroast.lock"] = json.dumps(
        {"owner_id": "crashed", "expires_at": past.isoformat()}
    ).encode()
    handle = await s3.acquire_container_lock("Studies", "next", 30000)
    assert handle.owner_id == "next"
    assert json.loads(fake.objects["mr/Studies/mediumroast.lock"])["owner_id"] == "next"


@pytest.mark.asyncio
async def test_break_lock(s3):
    await s3.acquire_container_lock("Studies", "a", 30000)
    assert await s3.break_container_lock("Studies") is True
    assert await s3.break_container_lock("Studies") is False


@pytest.mark.asyncio
async def test_store_create_and_delete(s3, fake):
    store = ObjectStore(STUDIES, s3)
    assert (await store.create({"name": "Study 2"})).success
    assert (await store.delete("Study 1")).success
    assert json.loads(fake.objects["mr/Studies/studies.json"]) == [{"name": "Study 2"}]
    assert "mr/Studies/mediumroast.lock" not in fake.objects


@pytest.mark.asyncio
async def test_repo_size_sums_objects(s3, fake):
    size = await s3.read_usage_metric("repo_size")
    assert size["objects"] == 1
    assert size["size"] == len(fake.objects["mr/Studies/studies.json"])


@pytest.mark.asyncio
async def test_release_by_superseded_handle_keeps_lock(s3, fake):
    old = await s3.acquire_container_lock("Studies", "a", 30000)
    await s3.break_container_lock("Studies")
    new = await s3.acquire_container_lock("Studies", "a", 30000)
    await s3.release_container_lock(old)
    assert await s3.check_lock("Studies")
    await s3.release_container_lock(new)
    assert not await s3.check_lock("Studies")


@pytest.mark.asyncio
async def test_expired_lock_reports_unlocked(s3, fake):
    past = datetime.now(timezone.utc) - timedelta(seconds=1)
    fake.objects["mr/Studies/mediumroast.lock"] = json.dumps(
        {"owner_id": "crashed", "expires_at": past.isoformat()}
    ).encode()
    assert not await s3.check_lock("Studies")


@pytest.mark.asyncio
async def test_branch_status_ignores_locks_and_tracks_writes(s3, fake):
    before = await s3.read_usage_metric("branch_status")
    assert before["repository"] == "s3://bucket"
    await s3.acquire_container_lock("Studies", "a", 30000)
    assert (await s3.read_usage_metric("branch_status"))["sha"] == before["sha"]
    token = (await s3.read_collection("Studies")).version_token
    await s3.write_collection("Studies", [{"name": "Study 2"}], token)
    after = await s3.read_usage_metric("branch_status")
    assert after["sha"] != before["sha"]
    assert after["timestamp"] is not None
