"""Backend connector contract and the collection-level helpers shared by connectors."""

from __future__ import annotations

import abc
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Protocol, runtime_checkable
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from mediumroast.config import MediumroastConfig
from mediumroast.errors import (
    BackendError,
    InvalidParameterError,
    NotFoundError,
    VersionConflictError,
)
from mediumroast.records import Record, clone_records

USAGE_METRICS = frozenset(
    {
        "repo_size",
        "storage_billing",
        "actions_billing",
        "workflow_runs",
        "users",
        "current_user",
        "branch_status",
    }
)


@dataclass(frozen=True)
class CollectionSnapshot:
    """A collection as read from the backend, with the token it was read at."""

    container: str
    records: list[Record]
    version_token: str


@dataclass(frozen=True)
class LockHandle:
    """Proof of a held container lock; ``token`` is the backend's handle for it."""

    container: str
    owner_id: str
    token: str
    acquired_at: datetime
    expires_at: datetime

    def expired(self, *, margin_ms: int = 0, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now + timedelta(milliseconds=margin_ms) >= self.expires_at


class WorkflowAsset(BaseModel):
    name: str
    version: str
    content: str


class WorkflowBundle(BaseModel):
    """Remote automation assets plus the version each one is published at."""

    version: str = "0"
    workflows: list[WorkflowAsset] = Field(default_factory=list)

    def manifest(self) -> dict[str, str]:
        return {w.name: w.version for w in self.workflows}


def canonical_json(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def content_token(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()


def tree_token(entries: Iterable[tuple[str, str]]) -> str:
    """Digest of ``(path, version)`` pairs; changes whenever any stored object does."""
    return content_token(canonical_json(sorted(entries)))


def lock_payload(owner_id: str, lease_ms: int) -> tuple[dict[str, Any], datetime, datetime]:
    now = datetime.now(timezone.utc)
    expires = now + timedelta(milliseconds=lease_ms)
    payload = {
        "owner_id": owner_id,
        "acquired_at": now.isoformat(),
        "expires_at": expires.isoformat(),
        "lease_ttl_ms": lease_ms,
    }
    return payload, now, expires


def lock_is_stale(payload: dict[str, Any] | None) -> bool:
    """A lock whose lease cannot be read or has passed may be taken over."""
    if not payload:
        return True
    try:
        expires_at = datetime.fromisoformat(str(payload["expires_at"]))
    except (KeyError, ValueError):
        return True
    return datetime.now(timezone.utc) >= expires_at


def parse_collection(body: bytes | None, container: str) -> list[Record]:
    if not body:
        return []
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BackendError("read_collection", f"Unable to parse [{container}] as JSON: {e}") from e
    if not isinstance(data, list):
        raise BackendError("read_collection", f"[{container}] does not hold a JSON array")
    return data


def check_usage_metric(kind: str) -> None:
    if kind not in USAGE_METRICS:
        raise InvalidParameterError(
            f"Invalid parameter: unknown usage metric [{kind}]; expected one of {sorted(USAGE_METRICS)}"
        )


@runtime_checkable
class BackendConnector(Protocol):
    """Capability set the object store, lock manager and workflow runner consume."""

    config: MediumroastConfig

    async def read_collection(self, container: str, *, fresh: bool = False) -> CollectionSnapshot: ...

    async def write_collection(
        self, container: str, records: list[Record], expected_version_token: str
    ) -> str: ...

    async def write_new_record(
        self, container: str, record: Record | list[Record], expected_version_token: str
    ) -> str: ...

    async def update_record(
        self, container: str, name: str, patch: dict[str, Any], expected_version_token: str
    ) -> str: ...

    async def delete_record(self, container: str, name: str, expected_version_token: str) -> str: ...

    async def acquire_container_lock(
        self, container: str, owner_id: str, lease_ms: int
    ) -> LockHandle: ...

    async def release_container_lock(self, handle: LockHandle) -> None: ...

    async def break_container_lock(self, container: str) -> bool: ...

    async def check_lock(self, container: str) -> bool: ...

    async def read_usage_metric(self, kind: str) -> Any: ...

    def invalidate_cache(self, container: str | None = None) -> None: ...

    async def fetch_workflow_bundle(self) -> WorkflowBundle: ...

    async def read_workflow_manifest(self) -> dict[str, str]: ...

    async def write_workflow_manifest(self, manifest: dict[str, str]) -> None: ...

    async def write_workflow(self, name: str, content: str) -> None: ...

    async def delete_workflow(self, name: str) -> None: ...

    async def close(self) -> None: ...


class CollectionConnector(abc.ABC):
    """Implements the record-level writes on top of a compare-and-swap collection write.

    Subclasses provide ``read_collection`` and ``write_collection``; the latter
    must refuse (``VersionConflictError``) when the stored collection no longer
    matches ``expected_version_token``.
    """

    def __init__(self, config: MediumroastConfig | None = None) -> None:
        self.config = config or MediumroastConfig()

    @abc.abstractmethod
    async def read_collection(self, container: str, *, fresh: bool = False) -> CollectionSnapshot:
        raise NotImplementedError

    @abc.abstractmethod
    async def write_collection(
        self, container: str, records: list[Record], expected_version_token: str
    ) -> str:
        raise NotImplementedError

    async def _current(self, container: str, expected_version_token: str) -> CollectionSnapshot:
        snapshot = await self.read_collection(container, fresh=True)
        if snapshot.version_token != expected_version_token:
            raise VersionConflictError(container, expected_version_token, snapshot.version_token)
        return snapshot

    async def write_new_record(
        self, container: str, record: Record | list[Record], expected_version_token: str
    ) -> str:
        new = [record] if isinstance(record, dict) else list(record)
        snapshot = await self._current(container, expected_version_token)
        return await self.write_collection(
            container, snapshot.records + clone_records(new), expected_version_token
        )

    async def update_record(
        self, container: str, name: str, patch: dict[str, Any], expected_version_token: str
    ) -> str:
        snapshot = await self._current(container, expected_version_token)
        found = False
        for record in snapshot.records:
            if record.get("name") == name:
                record.update(clone_records([patch])[0])
                found = True
        if not found:
            raise NotFoundError(f"Object with name [{name}] not found in [{container}]")
        return await self.write_collection(container, snapshot.records, expected_version_token)

    async def delete_record(self, container: str, name: str, expected_version_token: str) -> str:
        snapshot = await self._current(container, expected_version_token)
        remaining = [r for r in snapshot.records if r.get("name") != name]
        if len(remaining) == len(snapshot.records):
            raise NotFoundError(f"Object with name [{name}] not found in [{container}]")
        return await self.write_collection(container, remaining, expected_version_token)

    def invalidate_cache(self, container: str | None = None) -> None:
        return None

    async def close(self) -> None:
        return None


@dataclass(frozen=True)
class BackendTarget:
    """Resolved backend target from a connector URI."""

    backend: str
    uri: str
    path: str | None = None
    bucket: str | None = None
    prefix: str | None = None
    org: str | None = None
    repo: str | None = None


def parse_backend_target(uri: str) -> BackendTarget:
    """Resolve ``memory://``, ``file:///dir``, ``s3://bucket/prefix`` or ``github://org/repo``."""
    parsed = urlparse(uri)

    if parsed.scheme == "memory":
        return BackendTarget(backend="memory", uri=uri)

    if parsed.scheme == "file":
        path = f"{parsed.netloc}{parsed.path}" if parsed.netloc else parsed.path
        if not path:
            raise InvalidParameterError(f"Invalid file URI: {uri}")
        return BackendTarget(backend="local", uri=uri, path=path)

    if parsed.scheme == "s3":
        bucket = parsed.netloc
        if not bucket:
            raise InvalidParameterError(f"Invalid s3 URI: {uri}")
        prefix = parsed.path.strip("/")
        return BackendTarget(backend="s3", uri=uri, bucket=bucket, prefix=prefix)

    if parsed.scheme == "github":
        org = parsed.netloc
        repo = parsed.path.strip("/") or None
        if not org:
            raise InvalidParameterError(f"Invalid github URI: {uri}")
        return BackendTarget(backend="github", uri=uri, org=org, repo=repo)

    raise InvalidParameterError(f"Unsupported backend URI scheme '{parsed.scheme}' for '{uri}'")


def open_connector(uri: str, config: MediumroastConfig | None = None) -> BackendConnector:
    """Open a backend connector from a URI-style binding."""
    target = parse_backend_target(uri)
    cfg = config or MediumroastConfig()

    if target.backend == "memory":
        from mediumroast.connectors.memory import MemoryConnector

        return MemoryConnector(cfg)
    if target.backend == "local":
        from mediumroast.connectors.local import LocalConnector

        assert target.path is not None
        return LocalConnector(target.path, cfg)
    if target.backend == "s3":
        from mediumroast.connectors.s3 import S3Connector

        assert target.bucket is not None
        return S3Connector(bucket=target.bucket, prefix=target.prefix or "", config=cfg)

    from mediumroast.connectors.github import GitHubConnector

    cfg.github_org = target.org
    if target.repo:
        cfg.github_repo = target.repo
    return GitHubConnector(cfg)
