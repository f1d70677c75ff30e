"""TTL cache with dependency-driven invalidation used by remote connectors."""

from __future__ import annotations

import copy
import time
from typing import Any, Awaitable, Callable


class CacheManager:
    """Caches fetched values for a TTL; invalidating a key also drops its dependents."""

    def __init__(self, default_ttl_s: float = 300.0) -> None:
        self.default_ttl_s = default_ttl_s
        self._entries: dict[str, tuple[float, Any]] = {}
        self._dependents: dict[str, set[str]] = {}

    def get(self, key: str, ttl_s: float | None = None) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        ttl = self.default_ttl_s if ttl_s is None else ttl_s
        if time.monotonic() - stored_at >= ttl:
            self._entries.pop(key, None)
            return None
        return copy.deepcopy(value)

    def set(self, key: str, value: Any, depends_on: tuple[str, ...] = ()) -> None:
        self._entries[key] = (time.monotonic(), copy.deepcopy(value))
        for dep in depends_on:
            self._dependents.setdefault(dep, set()).add(key)

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        *,
        ttl_s: float | None = None,
        depends_on: tuple[str, ...] = (),
    ) -> Any:
        cached = self.get(key, ttl_s)
        if cached is not None:
            return cached
        value = await fetch()
        self.set(key, value, depends_on)
        return copy.deepcopy(value)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)
        for dependent in self._dependents.pop(key, set()):
            self.invalidate(dependent)

    def clear(self) -> None:
        self._entries.clear()
        self._dependents.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries
