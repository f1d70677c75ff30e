"""S3 backend connector with conditional writes and ETag version tokens."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, ParamValidationError

from mediumroast.cache import CacheManager
from mediumroast.config import MediumroastConfig
from mediumroast.connectors.base import (
    CollectionConnector,
    CollectionSnapshot,
    LockHandle,
    WorkflowBundle,
    check_usage_metric,
    lock_is_stale,
    lock_payload,
    parse_collection,
    tree_token,
)
from mediumroast.errors import (
    BackendError,
    LockConflictError,
    NotFoundError,
    VersionConflictError,
)
from mediumroast.logging import get_logger
from mediumroast.records import Record

log = get_logger(__name__)

# Version token of a container whose object file does not exist yet.
ABSENT = ""


class _PreconditionFailed(Exception):
    pass


class S3Connector(CollectionConnector):
    """Stores each container as ``<prefix>/<Container>/<object file>`` in one bucket."""

    def __init__(
        self,
        *,
        bucket: str,
        prefix: str = "",
        config: MediumroastConfig | None = None,
        client: Any | None = None,
    ) -> None:
        super().__init__(config)
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        if client is None:
            session = boto3.Session(region_name=self.config.s3_region)
            client = session.client(
                "s3",
                region_name=self.config.s3_region,
                endpoint_url=self.config.s3_endpoint_url,
                config=BotoConfig(
                    connect_timeout=self.config.request_timeout_s,
                    read_timeout=self.config.request_timeout_s,
                    retries={"max_attempts": 5, "mode": "standard"},
                ),
            )
        self._s3 = client
        self._cache = CacheManager(self.config.cache_ttl_s)

    def _k(self, rel_path: str) -> str:
        return f"{self.prefix}/{rel_path}" if self.prefix else rel_path

    def _collection_key(self, container: str) -> str:
        return self._k(f"{container}/{self.config.object_file(container)}")

    def _lock_key(self, container: str) -> str:
        return self._k(f"{container}/{self.config.lock_file_name}")

    def _usage_key(self, kind: str) -> str:
        return self._k(f"usage/{kind}.json")

    def _workflow_key(self, name: str) -> str:
        return self._k(f"actions/workflows/{name}")

    def _manifest_key(self) -> str:
        return self._k("actions/manifest.json")

    def _bundle_key(self) -> str:
        return self._k("actions/bundle.json")

    def _is_not_found(self, err: Exception) -> bool:
        if isinstance(err, ClientError):
            code = err.response.get("Error", {}).get("Code", "")
            return code in {"NoSuchKey", "404", "NotFound"}
        return False

    def _is_precondition_failed(self, err: Exception) -> bool:
        if isinstance(err, ClientError):
            code = err.response.get("Error", {}).get("Code", "")
            return code in {"PreconditionFailed", "412", "ConditionalRequestConflict", "409"}
        return False

    def _put_bytes(
        self,
        *,
        key: str,
        body: bytes,
        if_none_match: str | None = None,
        if_match: str | None = None,
        content_type: str | None = None,
    ) -> str:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": body,
        }
        if content_type is not None:
            kwargs["ContentType"] = content_type
        if if_none_match is not None:
            kwargs["IfNoneMatch"] = if_none_match
        if if_match is not None:
            kwargs["IfMatch"] = if_match

        try:
            resp = self._s3.put_object(**kwargs)
        except ParamValidationError as e:
            raise BackendError(
                "conditional_write",
                "S3 endpoint does not support conditional write preconditions",
            ) from e
        except ClientError as e:
            if self._is_precondition_failed(e):
                raise _PreconditionFailed() from e
            raise BackendError("put_object", f"{key}: {e}") from e
        etag = resp.get("ETag")
        return etag if isinstance(etag, str) else ""

    def _get_bytes(self, key: str) -> tuple[bytes | None, str | None]:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if self._is_not_found(e):
                return None, None
            raise BackendError("get_object", f"{key}: {e}") from e
        body = resp["Body"].read()
        etag = resp.get("ETag")
        return body, etag if isinstance(etag, str) else None

    def _get_json(self, key: str) -> tuple[Any | None, str | None]:
        body, etag = self._get_bytes(key)
        if body is None:
            return None, etag
        return json.loads(body.decode("utf-8")), etag

    def _put_json(self, *, key: str, obj: Any, **conditions: str | None) -> str:
        body = json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return self._put_bytes(key=key, body=body, content_type="application/json", **conditions)

    # --- Collections ---

    def _read_sync(self, container: str) -> CollectionSnapshot:
        body, etag = self._get_bytes(self._collection_key(container))
        records = parse_collection(body, container)
        return CollectionSnapshot(container, records, etag or ABSENT)

    def _write_sync(self, container: str, records: list[Record], expected: str) -> str:
        key = self._collection_key(container)
        body = json.dumps(records, indent=2).encode("utf-8")
        try:
            if expected == ABSENT:
                etag = self._put_bytes(
                    key=key, body=body, if_none_match="*", content_type="application/json"
                )
            else:
                etag = self._put_bytes(
                    key=key, body=body, if_match=expected, content_type="application/json"
                )
        except _PreconditionFailed as e:
            current = self._read_sync(container).version_token
            raise VersionConflictError(container, expected, current) from e
        self.invalidate_cache(container)
        return etag

    async def read_collection(self, container: str, *, fresh: bool = False) -> CollectionSnapshot:
        key = f"container_{container}"
        if not fresh:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
        snapshot = await asyncio.to_thread(self._read_sync, container)
        self._cache.set(key, snapshot)
        return snapshot

    async def write_collection(
        self, container: str, records: list[Record], expected_version_token: str
    ) -> str:
        return await asyncio.to_thread(self._write_sync, container, records, expected_version_token)

    def invalidate_cache(self, container: str | None = None) -> None:
        if container is None:
            self._cache.clear()
        else:
            self._cache.invalidate(f"container_{container}")

    # --- Locking ---

    def _acquire_sync(self, container: str, owner_id: str, lease_ms: int) -> LockHandle:
        payload, now, expires = lock_payload(owner_id, lease_ms)
        key = self._lock_key(container)
        try:
            etag = self._put_json(key=key, obj=payload, if_none_match="*")
            return LockHandle(container, owner_id, etag, now, expires)
        except _PreconditionFailed:
            pass

        # Existing lock: take it over only when its lease has passed.
        lock_obj, etag = self._get_json(key)
        if lock_obj is not None and not lock_is_stale(lock_obj):
            raise LockConflictError(container, lock_obj.get("owner_id"))
        try:
            if etag is None:
                new_etag = self._put_json(key=key, obj=payload, if_none_match="*")
            else:
                new_etag = self._put_json(key=key, obj=payload, if_match=etag)
        except _PreconditionFailed as e:
            raise LockConflictError(container) from e
        log.warning("lock_taken_over", container=container, owner=owner_id, previous=lock_obj)
        return LockHandle(container, owner_id, new_etag, now, expires)

    def _release_sync(self, handle: LockHandle) -> None:
        key = self._lock_key(handle.container)
        lock_obj, etag = self._get_json(key)
        if lock_obj is None or etag is None or etag != handle.token:
            return
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=key, IfMatch=etag)
        except ParamValidationError:
            # Stacks without conditional delete support.
            _refreshed, refreshed_etag = self._get_json(key)
            if refreshed_etag == handle.token:
                self._s3.delete_object(Bucket=self.bucket, Key=key)

    def _break_sync(self, container: str) -> bool:
        key = self._lock_key(container)
        lock_obj, _etag = self._get_json(key)
        if lock_obj is None:
            return False
        self._s3.delete_object(Bucket=self.bucket, Key=key)
        return True

    async def acquire_container_lock(self, container: str, owner_id: str, lease_ms: int) -> LockHandle:
        return await asyncio.to_thread(self._acquire_sync, container, owner_id, lease_ms)

    async def release_container_lock(self, handle: LockHandle) -> None:
        await asyncio.to_thread(self._release_sync, handle)

    async def break_container_lock(self, container: str) -> bool:
        return await asyncio.to_thread(self._break_sync, container)

    async def check_lock(self, container: str) -> bool:
        lock_obj, _etag = await asyncio.to_thread(self._get_json, self._lock_key(container))
        return lock_obj is not None and not lock_is_stale(lock_obj)

    # --- Usage ---

    def _repo_size_sync(self) -> dict[str, Any]:
        paginator = self._s3.get_paginator("list_objects_v2")
        size = 0
        count = 0
        kwargs: dict[str, Any] = {"Bucket": self.bucket}
        if self.prefix:
            kwargs["Prefix"] = f"{self.prefix}/"
        for page in paginator.paginate(**kwargs):
            for obj in page.get("Contents", []):
                size += int(obj.get("Size", 0))
                count += 1
        return {"size": size, "objects": count, "bucket": self.bucket, "prefix": self.prefix}

    def _branch_status_sync(self) -> dict[str, Any]:
        paginator = self._s3.get_paginator("list_objects_v2")
        kwargs: dict[str, Any] = {"Bucket": self.bucket}
        if self.prefix:
            kwargs["Prefix"] = f"{self.prefix}/"
        entries = []
        latest = None
        for page in paginator.paginate(**kwargs):
            for obj in page.get("Contents", []):
                key = obj["Key"]
                if key.rsplit("/", 1)[-1] == self.config.lock_file_name:
                    continue
                entries.append((key, str(obj.get("ETag", ""))))
                modified = obj.get("LastModified")
                if modified is not None and (latest is None or modified > latest):
                    latest = modified
        return {
            "sha": tree_token(entries),
            "branch": self.prefix or "/",
            "repository": f"s3://{self.bucket}",
            "timestamp": latest.isoformat() if latest is not None else None,
        }

    def _usage_sync(self, kind: str) -> Any:
        if kind == "repo_size":
            return self._repo_size_sync()
        if kind == "branch_status":
            return self._branch_status_sync()
        data, _etag = self._get_json(self._usage_key(kind))
        if data is None:
            raise NotFoundError(f"Usage metric [{kind}] is not available")
        return data

    async def read_usage_metric(self, kind: str) -> Any:
        check_usage_metric(kind)
        if kind == "branch_status":
            return await asyncio.to_thread(self._usage_sync, kind)
        return await self._cache.get_or_fetch(
            f"usage_{kind}", lambda: asyncio.to_thread(self._usage_sync, kind)
        )

    # --- Workflows ---

    def _bundle_sync(self) -> WorkflowBundle:
        data, _etag = self._get_json(self._bundle_key())
        if data is None:
            raise NotFoundError(f"Workflow bundle not found at s3://{self.bucket}/{self._bundle_key()}")
        return WorkflowBundle.model_validate(data)

    async def fetch_workflow_bundle(self) -> WorkflowBundle:
        return await asyncio.to_thread(self._bundle_sync)

    async def read_workflow_manifest(self) -> dict[str, str]:
        data, _etag = await asyncio.to_thread(self._get_json, self._manifest_key())
        return dict(data or {})

    async def write_workflow_manifest(self, manifest: dict[str, str]) -> None:
        await asyncio.to_thread(self._put_json, key=self._manifest_key(), obj=manifest)

    async def write_workflow(self, name: str, content: str) -> None:
        await asyncio.to_thread(
            self._put_bytes, key=self._workflow_key(name), body=content.encode("utf-8")
        )

    async def delete_workflow(self, name: str) -> None:
        key = self._workflow_key(name)
        body, _etag = await asyncio.to_thread(self._get_bytes, key)
        if body is None:
            raise NotFoundError(f"Workflow [{name}] is not installed")
        await asyncio.to_thread(self._s3.delete_object, Bucket=self.bucket, Key=key)
