"""Directory-backed connector: one folder per container, JSON files on disk."""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from mediumroast.config import MediumroastConfig
from mediumroast.connectors.base import (
    CollectionConnector,
    CollectionSnapshot,
    LockHandle,
    WorkflowBundle,
    check_usage_metric,
    content_token,
    lock_is_stale,
    lock_payload,
    parse_collection,
    tree_token,
)
from mediumroast.errors import BackendError, LockConflictError, NotFoundError, VersionConflictError
from mediumroast.logging import get_logger
from mediumroast.records import Record

log = get_logger(__name__)

_MANIFEST_NAME = "mediumroast-actions.json"


def _read_bytes(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def _write_atomic(path: Path, body: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(body)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def _publish_exclusive(path: Path, body: bytes) -> bool:
    """Link a fully written temp file into place; False when ``path`` already exists."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(body)
        os.link(tmp, path)
    except FileExistsError:
        return False
    finally:
        Path(tmp).unlink(missing_ok=True)
    return True


class LocalConnector(CollectionConnector):
    """Stores each container as ``<root>/<Container>/<object file>``."""

    def __init__(self, root: str | os.PathLike[str], config: MediumroastConfig | None = None) -> None:
        super().__init__(config)
        self.root = Path(root)

    def _collection_path(self, container: str) -> Path:
        return self.root / container / self.config.object_file(container)

    def _lock_path(self, container: str) -> Path:
        return self.root / container / self.config.lock_file_name

    def _workflow_dir(self) -> Path:
        return self.root / ".github" / "workflows"

    def _manifest_path(self) -> Path:
        return self.root / ".github" / _MANIFEST_NAME

    # --- Collections ---

    def _read_sync(self, container: str) -> CollectionSnapshot:
        body = _read_bytes(self._collection_path(container))
        records = parse_collection(body, container)
        return CollectionSnapshot(container, records, content_token(body or b""))

    def _write_sync(self, container: str, records: list[Record], expected: str) -> str:
        path = self._collection_path(container)
        current = content_token(_read_bytes(path) or b"")
        if current != expected:
            raise VersionConflictError(container, expected, current)
        body = json.dumps(records, indent=2).encode("utf-8")
        _write_atomic(path, body)
        return content_token(body)

    async def read_collection(self, container: str, *, fresh: bool = False) -> CollectionSnapshot:
        return await asyncio.to_thread(self._read_sync, container)

    async def write_collection(
        self, container: str, records: list[Record], expected_version_token: str
    ) -> str:
        return await asyncio.to_thread(self._write_sync, container, records, expected_version_token)

    # --- Locking ---

    def _lock_is_stale(self, path: Path, body: bytes) -> bool:
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            payload = None
        if isinstance(payload, dict) and "expires_at" in payload:
            return lock_is_stale(payload)
        # Empty or unreadable: a writer may still be publishing it, so age it by mtime.
        try:
            age_s = time.time() - path.stat().st_mtime
        except FileNotFoundError:
            return True
        return age_s * 1000 >= self.config.lock_lease_ms

    def _retire_lock(self, path: Path, observed: bytes) -> bool:
        """Move the stale lock aside; False when it changed after ``observed`` was read."""
        tombstone = path.with_name(f".{path.name}.{uuid.uuid4().hex}.stale")
        try:
            os.rename(path, tombstone)
        except FileNotFoundError:
            return False
        try:
            if tombstone.read_bytes() == observed:
                return True
            # A fresh lock was moved: put it back unless another holder already exists.
            try:
                os.link(tombstone, path)
            except FileExistsError:
                log.warning("lock_restore_failed", path=str(path))
            return False
        finally:
            tombstone.unlink(missing_ok=True)

    def _acquire_sync(self, container: str, owner_id: str, lease_ms: int) -> LockHandle:
        path = self._lock_path(container)
        payload, now, expires = lock_payload(owner_id, lease_ms)
        body = json.dumps(payload).encode("utf-8")
        for _attempt in range(2):
            if _publish_exclusive(path, body):
                return LockHandle(container, owner_id, content_token(body), now, expires)
            existing = _read_bytes(path)
            if existing is None:
                continue
            if not self._lock_is_stale(path, existing):
                try:
                    owner = json.loads(existing).get("owner_id")
                except (ValueError, AttributeError):
                    owner = None
                raise LockConflictError(container, owner)
            if not self._retire_lock(path, existing):
                raise LockConflictError(container)
            log.warning("lock_taken_over", container=container, owner=owner_id)
        raise LockConflictError(container)

    def _release_sync(self, handle: LockHandle) -> None:
        path = self._lock_path(handle.container)
        body = _read_bytes(path)
        if body is not None and content_token(body) == handle.token:
            path.unlink(missing_ok=True)

    def _check_sync(self, container: str) -> bool:
        path = self._lock_path(container)
        body = _read_bytes(path)
        return body is not None and not self._lock_is_stale(path, body)

    async def acquire_container_lock(self, container: str, owner_id: str, lease_ms: int) -> LockHandle:
        return await asyncio.to_thread(self._acquire_sync, container, owner_id, lease_ms)

    async def release_container_lock(self, handle: LockHandle) -> None:
        await asyncio.to_thread(self._release_sync, handle)

    async def break_container_lock(self, container: str) -> bool:
        path = self._lock_path(container)
        existed = path.exists()
        await asyncio.to_thread(path.unlink, missing_ok=True)
        return existed

    async def check_lock(self, container: str) -> bool:
        return await asyncio.to_thread(self._check_sync, container)

    # --- Usage ---

    def _branch_status_sync(self) -> dict[str, Any]:
        entries = []
        latest = 0.0
        dirs = [p for p in self.root.iterdir() if p.is_dir()] if self.root.is_dir() else []
        for container_dir in sorted(dirs):
            path = self._collection_path(container_dir.name)
            body = _read_bytes(path)
            if body is None:
                continue
            entries.append((container_dir.name, content_token(body)))
            latest = max(latest, path.stat().st_mtime)
        return {
            "sha": tree_token(entries),
            "branch": "local",
            "repository": str(self.root),
            "timestamp": datetime.fromtimestamp(latest).astimezone().isoformat() if latest else None,
        }

    def _usage_sync(self, kind: str) -> Any:
        if kind == "repo_size":
            files = [p for p in self.root.rglob("*") if p.is_file()]
            return {
                "size": sum(p.stat().st_size for p in files),
                "files": len(files),
                "measured_at": datetime.now().astimezone().isoformat(),
            }
        if kind == "branch_status":
            return self._branch_status_sync()
        body = _read_bytes(self.root / ".usage" / f"{kind}.json")
        if body is None:
            raise NotFoundError(f"Usage metric [{kind}] is not available")
        return json.loads(body)

    async def read_usage_metric(self, kind: str) -> Any:
        check_usage_metric(kind)
        return await asyncio.to_thread(self._usage_sync, kind)

    # --- Workflows ---

    def _bundle_sync(self) -> WorkflowBundle:
        if not self.config.actions_bundle_path:
            raise NotFoundError("No workflow bundle configured (actions_bundle_path)")
        body = _read_bytes(Path(self.config.actions_bundle_path))
        if body is None:
            raise NotFoundError(f"Workflow bundle not found: {self.config.actions_bundle_path}")
        try:
            return WorkflowBundle.model_validate_json(body)
        except ValueError as e:
            raise BackendError("fetch_workflow_bundle", str(e)) from e

    async def fetch_workflow_bundle(self) -> WorkflowBundle:
        return await asyncio.to_thread(self._bundle_sync)

    async def read_workflow_manifest(self) -> dict[str, str]:
        body = await asyncio.to_thread(_read_bytes, self._manifest_path())
        return json.loads(body) if body else {}

    async def write_workflow_manifest(self, manifest: dict[str, str]) -> None:
        body = json.dumps(manifest, indent=2, sort_keys=True).encode("utf-8")
        await asyncio.to_thread(_write_atomic, self._manifest_path(), body)

    async def write_workflow(self, name: str, content: str) -> None:
        await asyncio.to_thread(_write_atomic, self._workflow_dir() / name, content.encode("utf-8"))

    async def delete_workflow(self, name: str) -> None:
        path = self._workflow_dir() / name
        if not path.exists():
            raise NotFoundError(f"Workflow [{name}] is not installed")
        await asyncio.to_thread(path.unlink)
