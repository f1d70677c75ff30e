"""Container locks and version-token validation for the write path.

A write runs inside ``LockManager.hold(...)``: every container it touches is
locked in sorted order (fail fast, no waiting), the mutation is committed only
if the container's version token is unchanged since it was read, and every
lock is released on the way out regardless of how the block exits.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from mediumroast.config import MediumroastConfig
from mediumroast.connectors.base import BackendConnector, LockHandle
from mediumroast.errors import LeaseExpiredError, MediumroastError, VersionConflictError
from mediumroast.logging import get_logger

log = get_logger(__name__)


class LockManager:
    """Acquires, tracks and releases container locks for one owner."""

    def __init__(
        self,
        connector: BackendConnector,
        config: MediumroastConfig | None = None,
        *,
        owner_id: str | None = None,
    ) -> None:
        self.connector = connector
        self.config = config or connector.config
        self.owner_id = owner_id or f"{self.config.process_name}-{uuid.uuid4().hex[:12]}"
        self._held: dict[str, LockHandle] = {}

    def holds(self, container: str) -> bool:
        return container in self._held

    async def acquire(self, container: str) -> LockHandle:
        """Create the container lock or raise ``LockConflictError`` immediately."""
        handle = await self.connector.acquire_container_lock(
            container, self.owner_id, self.config.lock_lease_ms
        )
        self._held[container] = handle
        log.debug("lock_acquired", container=container, owner=self.owner_id)
        return handle

    async def release(self, handle: LockHandle) -> None:
        """Remove the lock ``handle`` stands for. Failures are logged, not raised.

        A handle superseded by a later acquire of the same container (an expired
        lease taken over) leaves the newer entry in place.
        """
        container = handle.container
        if self._held.get(container) is handle:
            del self._held[container]
        try:
            await self.connector.release_container_lock(handle)
        except MediumroastError as e:
            log.warning(
                "lock_release_failed", container=container, owner=self.owner_id, error=str(e)
            )
        except Exception:
            log.exception("lock_release_failed", container=container, owner=self.owner_id)
        else:
            log.debug("lock_released", container=container, owner=self.owner_id)

    @asynccontextmanager
    async def hold(self, *containers: str) -> AsyncIterator[dict[str, LockHandle]]:
        """Lock every container for the duration of the block."""
        acquired: list[LockHandle] = []
        try:
            for container in sorted(set(containers)):
                acquired.append(await self.acquire(container))
            yield {h.container: h for h in acquired}
        finally:
            for handle in reversed(acquired):
                await self.release(handle)

    async def get_version_token(self, container: str) -> str:
        snapshot = await self.connector.read_collection(container, fresh=True)
        return snapshot.version_token

    def ensure_lease(self, container: str, handle: LockHandle | None = None) -> None:
        """Refuse to commit when the lease is gone, superseded or about to lapse."""
        current = self._held.get(container)
        handle = handle or current
        if handle is None or handle is not current:
            raise LeaseExpiredError(container)
        lease_ms = int((handle.expires_at - handle.acquired_at).total_seconds() * 1000)
        if handle.expired(margin_ms=max(1, lease_ms // 3)):
            raise LeaseExpiredError(container)

    async def validate_and_commit(
        self,
        container: str,
        expected_token: str,
        mutation: Callable[[str], Awaitable[str]],
        *,
        handle: LockHandle | None = None,
    ) -> str:
        """Run ``mutation(expected_token)`` only if the container is still at ``expected_token``."""
        self.ensure_lease(container, handle)
        current = await self.get_version_token(container)
        if current != expected_token:
            raise VersionConflictError(container, expected_token, current)
        new_token = await mutation(expected_token)
        self.connector.invalidate_cache(container)
        log.debug("write_committed", container=container, owner=self.owner_id)
        return new_token

    async def is_locked(self, container: str) -> bool:
        return await self.connector.check_lock(container)

    async def force_release(self, container: str) -> bool:
        """Remove a lock regardless of owner (recovery for crashed writers)."""
        self._held.pop(container, None)
        removed = await self.connector.break_container_lock(container)
        log.warning("lock_force_released", container=container, removed=removed)
        return removed
