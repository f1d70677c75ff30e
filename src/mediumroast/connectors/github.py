"""GitHub connector: containers live in a repository, read and written through the contents API.

The blob sha GitHub reports for each file is the version token. A ``PUT`` that
presents a stale sha is answered with 409, which becomes a
``VersionConflictError``; creating a file that already exists without a sha is
answered with 422, which is how lock creation fails fast.
"""

from __future__ import annotations

import base64
import json
from typing import Any

import httpx

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
)
from mediumroast.errors import (
    BackendError,
    InvalidParameterError,
    LockConflictError,
    NotFoundError,
    VersionConflictError,
)
from mediumroast.logging import get_logger
from mediumroast.records import Record

log = get_logger(__name__)

ABSENT = ""
API_VERSION = "2022-11-28"
MANIFEST_PATH = ".github/mediumroast-actions.json"
WORKFLOW_DIR = ".github/workflows"


class _Conflict(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(status_code)
        self.status_code = status_code


def _encode(body: bytes) -> str:
    return base64.b64encode(body).decode("ascii")


class GitHubConnector(CollectionConnector):
    """Reads and writes ``<Container>/<object file>`` in ``<org>/<repo>`` on one branch."""

    def __init__(
        self,
        config: MediumroastConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config)
        if not self.config.github_org:
            raise InvalidParameterError(
                "Invalid parameter: github_org is required for the GitHub backend"
            )
        self.org = self.config.github_org
        self.repo = self.config.repo_name()
        self.branch = self.config.github_branch
        if client is None:
            headers = {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            }
            if self.config.github_token:
                headers["Authorization"] = f"Bearer {self.config.github_token}"
            client = httpx.AsyncClient(
                base_url=self.config.github_api_url,
                headers=headers,
                timeout=self.config.request_timeout_s,
            )
        self._http = client
        self._cache = CacheManager(self.config.cache_ttl_s)

    def _contents_url(self, path: str) -> str:
        return f"/repos/{self.org}/{self.repo}/contents/{path}"

    def _collection_path(self, container: str) -> str:
        return f"{container}/{self.config.object_file(container)}"

    def _lock_path(self, container: str) -> str:
        return f"{container}/{self.config.lock_file_name}"

    async def _request(self, method: str, url: str, operation: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise BackendError(operation, f"{method} {url}: {e}") from e
        if resp.status_code >= 400 and resp.status_code not in (404, 409, 422):
            raise BackendError(
                operation, f"{method} {url} returned {resp.status_code}", status_code=resp.status_code
            )
        return resp

    async def _get_file(self, path: str) -> tuple[bytes | None, str | None]:
        resp = await self._request(
            "GET", self._contents_url(path), "get_contents", params={"ref": self.branch}
        )
        if resp.status_code == 404:
            return None, None
        data = resp.json()
        sha = data.get("sha")
        content = data.get("content") or ""
        if not content and sha and data.get("size", 0):
            # Files above 1MB come back without inline content.
            blob = await self._request(
                "GET", f"/repos/{self.org}/{self.repo}/git/blobs/{sha}", "get_blob"
            )
            content = blob.json().get("content") or ""
        return base64.b64decode(content), sha

    async def _put_file(self, path: str, body: bytes, message: str, sha: str | None = None) -> str:
        payload: dict[str, Any] = {
            "message": message,
            "content": _encode(body),
            "branch": self.branch,
        }
        if sha:
            payload["sha"] = sha
        resp = await self._request("PUT", self._contents_url(path), "put_contents", json=payload)
        if resp.status_code in (409, 422):
            raise _Conflict(resp.status_code)
        if resp.status_code == 404:
            raise BackendError(
                "put_contents", f"repository {self.org}/{self.repo} not found", status_code=404
            )
        return resp.json()["content"]["sha"]

    async def _delete_file(self, path: str, sha: str, message: str) -> None:
        resp = await self._request(
            "DELETE",
            self._contents_url(path),
            "delete_contents",
            json={"message": message, "sha": sha, "branch": self.branch},
        )
        if resp.status_code in (409, 422):
            raise _Conflict(resp.status_code)
        if resp.status_code == 404:
            raise NotFoundError(f"[{path}] not found in {self.org}/{self.repo}")

    # --- Collections ---

    async def read_collection(self, container: str, *, fresh: bool = False) -> CollectionSnapshot:
        key = f"container_{container}"
        if not fresh:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
        body, sha = await self._get_file(self._collection_path(container))
        snapshot = CollectionSnapshot(container, parse_collection(body, container), sha or ABSENT)
        self._cache.set(key, snapshot)
        return snapshot

    async def write_collection(
        self, container: str, records: list[Record], expected_version_token: str
    ) -> str:
        body = json.dumps(records, indent=2).encode("utf-8")
        try:
            sha = await self._put_file(
                self._collection_path(container),
                body,
                f"Update {container} objects",
                expected_version_token or None,
            )
        except _Conflict as e:
            current = (await self.read_collection(container, fresh=True)).version_token
            raise VersionConflictError(container, expected_version_token, current) from e
        self.invalidate_cache(container)
        return sha

    def invalidate_cache(self, container: str | None = None) -> None:
        if container is None:
            self._cache.clear()
        else:
            self._cache.invalidate(f"container_{container}")

    # --- Locking ---

    async def acquire_container_lock(self, container: str, owner_id: str, lease_ms: int) -> LockHandle:
        payload, now, expires = lock_payload(owner_id, lease_ms)
        body = json.dumps(payload).encode("utf-8")
        path = self._lock_path(container)
        try:
            sha = await self._put_file(path, body, f"Lock {container}")
            return LockHandle(container, owner_id, sha, now, expires)
        except _Conflict:
            pass

        existing_body, existing_sha = await self._get_file(path)
        try:
            existing = json.loads(existing_body) if existing_body else None
        except ValueError:
            existing = None
        if existing_body is not None and not lock_is_stale(existing):
            raise LockConflictError(container, (existing or {}).get("owner_id"))
        try:
            sha = await self._put_file(
                path, body, f"Take over expired lock on {container}", existing_sha
            )
        except _Conflict as e:
            raise LockConflictError(container) from e
        log.warning("lock_taken_over", container=container, owner=owner_id, previous=existing)
        return LockHandle(container, owner_id, sha, now, expires)

    async def release_container_lock(self, handle: LockHandle) -> None:
        path = self._lock_path(handle.container)
        _body, sha = await self._get_file(path)
        if sha is None or sha != handle.token:
            return
        try:
            await self._delete_file(path, sha, f"Unlock {handle.container}")
        except (_Conflict, NotFoundError):
            log.debug("lock_already_replaced", container=handle.container, owner=handle.owner_id)

    async def break_container_lock(self, container: str) -> bool:
        path = self._lock_path(container)
        _body, sha = await self._get_file(path)
        if sha is None:
            return False
        try:
            await self._delete_file(path, sha, f"Force unlock {container}")
        except _Conflict as e:
            raise BackendError(
                "break_container_lock",
                f"lock on [{container}] changed while removing it",
                status_code=409,
            ) from e
        return True

    async def check_lock(self, container: str) -> bool:
        body, sha = await self._get_file(self._lock_path(container))
        if sha is None:
            return False
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            return True
        return not isinstance(payload, dict) or not lock_is_stale(payload)

    # --- Usage ---

    def _usage_url(self, kind: str) -> str:
        repo = f"/repos/{self.org}/{self.repo}"
        return {
            "repo_size": repo,
            "storage_billing": f"/orgs/{self.org}/settings/billing/shared-storage",
            "actions_billing": f"/orgs/{self.org}/settings/billing/actions",
            "workflow_runs": f"{repo}/actions/runs",
            "users": f"{repo}/collaborators",
            "current_user": "/user",
            "branch_status": f"{repo}/commits",
        }[kind]

    async def _branch_status(self) -> dict[str, Any]:
        resp = await self._request(
            "GET",
            self._usage_url("branch_status"),
            "read_usage_metric[branch_status]",
            params={"sha": self.branch, "per_page": 1},
        )
        commits = resp.json() if resp.status_code != 404 else []
        if not commits:
            raise NotFoundError(f"No commits found in branch [{self.branch}]")
        head = commits[0]
        commit = head.get("commit") or {}
        return {
            "sha": head.get("sha"),
            "message": commit.get("message"),
            "author": (commit.get("author") or {}).get("name"),
            "html_url": head.get("html_url"),
            "timestamp": (commit.get("committer") or {}).get("date"),
            "branch": self.branch,
            "repository": f"{self.org}/{self.repo}",
        }

    async def _fetch_usage(self, kind: str) -> Any:
        resp = await self._request("GET", self._usage_url(kind), f"read_usage_metric[{kind}]")
        if resp.status_code == 404:
            raise NotFoundError(f"Usage metric [{kind}] is not available")
        data = resp.json()
        if kind == "repo_size":
            # GitHub reports repository size in KB.
            return {"size": data.get("size", 0), "unit": "KB", "full_name": data.get("full_name")}
        return data

    async def read_usage_metric(self, kind: str) -> Any:
        check_usage_metric(kind)
        if kind == "branch_status":
            return await self._branch_status()
        return await self._cache.get_or_fetch(f"usage_{kind}", lambda: self._fetch_usage(kind))

    # --- Workflows ---

    async def fetch_workflow_bundle(self) -> WorkflowBundle:
        url = self.config.actions_bundle_url
        if not url:
            raise NotFoundError("No workflow bundle configured (actions_bundle_url)")
        resp = await self._request("GET", url, "fetch_workflow_bundle")
        if resp.status_code == 404:
            raise NotFoundError(f"Workflow bundle not found: {url}")
        try:
            return WorkflowBundle.model_validate(resp.json())
        except ValueError as e:
            raise BackendError("fetch_workflow_bundle", str(e)) from e

    async def read_workflow_manifest(self) -> dict[str, str]:
        body, _sha = await self._get_file(MANIFEST_PATH)
        return json.loads(body) if body else {}

    async def write_workflow_manifest(self, manifest: dict[str, str]) -> None:
        body = json.dumps(manifest, indent=2, sort_keys=True).encode("utf-8")
        _old, sha = await self._get_file(MANIFEST_PATH)
        await self._put_file(MANIFEST_PATH, body, "Update workflow manifest", sha)

    async def write_workflow(self, name: str, content: str) -> None:
        path = f"{WORKFLOW_DIR}/{name}"
        _old, sha = await self._get_file(path)
        try:
            await self._put_file(path, content.encode("utf-8"), f"Install workflow {name}", sha)
        except _Conflict as e:
            raise BackendError("write_workflow", f"{name} changed during write", status_code=409) from e

    async def delete_workflow(self, name: str) -> None:
        path = f"{WORKFLOW_DIR}/{name}"
        _body, sha = await self._get_file(path)
        if sha is None:
            raise NotFoundError(f"Workflow [{name}] is not installed")
        try:
            await self._delete_file(path, sha, f"Remove workflow {name}")
        except _Conflict as e:
            raise BackendError(
                "delete_workflow", f"{name} changed during delete", status_code=409
            ) from e

    async def close(self) -> None:
        await self._http.aclose()
