"""In-process backend connector.

Every operation yields to the event loop once before touching state so that
concurrent callers interleave the way they would against a remote backend.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any

from mediumroast.config import MediumroastConfig
from mediumroast.connectors.base import (
    CollectionConnector,
    CollectionSnapshot,
    LockHandle,
    WorkflowBundle,
    canonical_json,
    check_usage_metric,
    content_token,
    lock_payload,
    tree_token,
)
from mediumroast.errors import LockConflictError, NotFoundError, VersionConflictError
from mediumroast.records import Record, clone_records


def collection_token(records: list[Record]) -> str:
    return content_token(canonical_json(records))


class MemoryConnector(CollectionConnector):
    """Dictionary-backed connector holding collections, locks, usage data and workflows."""

    def __init__(
        self,
        config: MediumroastConfig | None = None,
        *,
        collections: dict[str, list[Record]] | None = None,
        usage: dict[str, Any] | None = None,
        bundle: WorkflowBundle | None = None,
    ) -> None:
        super().__init__(config)
        self._collections: dict[str, list[Record]] = {
            name: clone_records(records) for name, records in (collections or {}).items()
        }
        self._locks: dict[str, LockHandle] = {}
        self._usage: dict[str, Any] = dict(usage or {})
        self._bundle = bundle
        self.workflows: dict[str, str] = {}
        self.workflow_manifest: dict[str, str] = {}

    async def read_collection(self, container: str, *, fresh: bool = False) -> CollectionSnapshot:
        await asyncio.sleep(0)
        records = clone_records(self._collections.get(container, []))
        return CollectionSnapshot(container, records, collection_token(records))

    async def write_collection(
        self, container: str, records: list[Record], expected_version_token: str
    ) -> str:
        await asyncio.sleep(0)
        current = collection_token(self._collections.get(container, []))
        if current != expected_version_token:
            raise VersionConflictError(container, expected_version_token, current)
        self._collections[container] = clone_records(records)
        return collection_token(records)

    # --- Locking ---

    async def acquire_container_lock(self, container: str, owner_id: str, lease_ms: int) -> LockHandle:
        await asyncio.sleep(0)
        existing = self._locks.get(container)
        if existing is not None and not existing.expired():
            raise LockConflictError(container, existing.owner_id)
        _payload, now, expires = lock_payload(owner_id, lease_ms)
        handle = LockHandle(container, owner_id, uuid.uuid4().hex, now, expires)
        self._locks[container] = handle
        return handle

    async def release_container_lock(self, handle: LockHandle) -> None:
        await asyncio.sleep(0)
        current = self._locks.get(handle.container)
        if current is not None and current.token == handle.token:
            del self._locks[handle.container]

    async def break_container_lock(self, container: str) -> bool:
        await asyncio.sleep(0)
        return self._locks.pop(container, None) is not None

    async def check_lock(self, container: str) -> bool:
        await asyncio.sleep(0)
        existing = self._locks.get(container)
        return existing is not None and not existing.expired()

    # --- Usage ---

    async def read_usage_metric(self, kind: str) -> Any:
        check_usage_metric(kind)
        await asyncio.sleep(0)
        if kind in self._usage:
            return self._usage[kind]
        if kind == "repo_size":
            size = sum(len(canonical_json(r)) for r in self._collections.values())
            return {"size": size, "containers": sorted(self._collections)}
        if kind == "branch_status":
            sha = tree_token((c, collection_token(r)) for c, r in self._collections.items())
            return {"sha": sha, "branch": "memory", "repository": "memory", "timestamp": None}
        raise NotFoundError(f"Usage metric [{kind}] is not available")

    # --- Workflows ---

    async def fetch_workflow_bundle(self) -> WorkflowBundle:
        await asyncio.sleep(0)
        if self._bundle is None:
            raise NotFoundError("No workflow bundle configured")
        return self._bundle.model_copy(deep=True)

    async def read_workflow_manifest(self) -> dict[str, str]:
        await asyncio.sleep(0)
        return dict(self.workflow_manifest)

    async def write_workflow_manifest(self, manifest: dict[str, str]) -> None:
        await asyncio.sleep(0)
        self.workflow_manifest = dict(manifest)

    async def write_workflow(self, name: str, content: str) -> None:
        await asyncio.sleep(0)
        self.workflows[name] = content

    async def delete_workflow(self, name: str) -> None:
        await asyncio.sleep(0)
        if self.workflows.pop(name, None) is None:
            raise NotFoundError(f"Workflow [{name}] is not installed")
