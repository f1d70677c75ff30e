"""Object store: the generic entity client bound to one container.

Reads fetch the collection through the connector and hand it to the query
engine. Writes run inside ``LockManager.hold``: the container (and any
container a cascading delete touches) is locked, the collection is re-read at
its current version token, the change is committed through
``LockManager.validate_and_commit`` and the locks are released on every exit
path. Every public operation returns an ``Ok``/``Err`` envelope; nothing raises
out of the store.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping

from mediumroast import query
from mediumroast.config import MediumroastConfig
from mediumroast.connectors.base import BackendConnector
from mediumroast.errors import (
    BackendError,
    ForbiddenFieldError,
    InvalidParameterError,
    MediumroastError,
    NotFoundError,
    ReadOnlyError,
)
from mediumroast.locking import LockManager
from mediumroast.logging import get_logger
from mediumroast.query import QuerySpec
from mediumroast.records import Record, clone_records, link_names, now_iso, validate_records
from mediumroast.result import Err, Ok, Result

log = get_logger(__name__)


@dataclass(frozen=True)
class EntitySpec:
    """Configuration that turns the generic store into one entity client.

    ``links`` names the ``(container, field)`` pairs holding references to this
    container's records; deleting a record removes its name from each of them.
    Read-only specs read ``usage_metric`` instead of a collection; ``list_key``
    locates the record list inside that payload when it is not the payload itself.
    """

    container: str
    writable: bool = True
    updatable_fields: frozenset[str] = frozenset()
    links: tuple[tuple[str, str], ...] = ()
    usage_metric: str | None = None
    list_key: str | None = None
    text_fields: tuple[str, ...] = ()


def _require_name(value: Any, label: str = "name") -> str:
    if not isinstance(value, str) or not value:
        raise InvalidParameterError(f"Invalid parameter: [{label}] must be a non-empty string")
    return value


def _unlink(records: list[Record], field: str, name: str, stamp: str) -> bool:
    changed = False
    for record in records:
        linked = record.get(field)
        if isinstance(linked, dict) and name in linked:
            del linked[name]
        elif isinstance(linked, list) and name in linked:
            record[field] = [n for n in linked if n != name]
        else:
            continue
        record["modification_date"] = stamp
        changed = True
    return changed


def _add_link(record: Record, field: str, name: str, stamp: str) -> None:
    linked = record.get(field)
    if isinstance(linked, list):
        if name not in linked:
            record[field] = [*linked, name]
    else:
        linked = dict(linked) if isinstance(linked, dict) else {}
        linked[name] = {"linked_date": stamp}
        record[field] = linked
    record["modification_date"] = stamp


class ObjectStore:
    """Entity client for one container on one backend connector."""

    def __init__(
        self,
        spec: EntitySpec,
        connector: BackendConnector,
        config: MediumroastConfig | None = None,
        *,
        lock_manager: LockManager | None = None,
    ) -> None:
        self.spec = spec
        self.connector = connector
        self.config = config or connector.config
        self.locks = lock_manager or LockManager(connector, self.config)

    @property
    def container(self) -> str:
        return self.spec.container

    def __repr__(self) -> str:
        return f"ObjectStore({self.container!r}, writable={self.spec.writable})"

    # --- Envelope plumbing ---

    async def _guarded(
        self,
        operation: str,
        call: Callable[[], Awaitable[Result[Any]]],
        *,
        failure: str | None = None,
    ) -> Result[Any]:
        try:
            result = await call()
        except MediumroastError as e:
            return self._fail(operation, e, failure)
        except Exception as e:
            log.exception("unexpected_error", container=self.container, operation=operation)
            return self._fail(operation, BackendError(operation, str(e)), failure)
        if result.success:
            log.debug("operation_ok", container=self.container, operation=operation)
        else:
            self._log_failure(operation, result.error)
        return result

    def _fail(self, operation: str, error: MediumroastError, failure: str | None) -> Err[Any]:
        self._log_failure(operation, error)
        reason = f"{failure}: {error}" if failure else None
        return Err(error, reason=reason)

    def _log_failure(self, operation: str, error: MediumroastError) -> None:
        level = log.error if error.status_code >= 500 else log.warning
        level(
            "operation_failed",
            container=self.container,
            operation=operation,
            status_code=error.status_code,
            error=str(error),
        )

    def _require_writable(self) -> None:
        if not self.spec.writable:
            raise ReadOnlyError(self.container)

    # --- Reads ---

    def _extract_records(self, payload: Any) -> list[Record]:
        if self.spec.list_key and isinstance(payload, Mapping):
            payload = payload.get(self.spec.list_key, [])
        if isinstance(payload, list):
            return [r for r in payload if isinstance(r, dict)]
        if isinstance(payload, dict):
            return [payload]
        return []

    async def records(self) -> list[Record]:
        """Fetch the collection (or the record list of a read-only metric)."""
        if self.spec.usage_metric is not None:
            return self._extract_records(await self.connector.read_usage_metric(self.spec.usage_metric))
        snapshot = await self.connector.read_collection(self.container)
        return clone_records(snapshot.records)

    async def query(
        self, operation: str, run: Callable[[list[Record]], Result[Any]]
    ) -> Result[Any]:
        """Apply a pure query function to the fetched collection."""

        async def _call() -> Result[Any]:
            return run(await self.records())

        return await self._guarded(operation, _call)

    async def get_all(self) -> Result[Any]:
        async def _call() -> Result[Any]:
            if self.spec.usage_metric is not None:
                payload = await self.connector.read_usage_metric(self.spec.usage_metric)
                return Ok(payload, f"Retrieved {self.container}")
            records = await self.records()
            return Ok(records, f"Retrieved [{len(records)}] {self.container}")

        return await self._guarded(
            "get_all", _call, failure=f"Failed to retrieve {self.container}"
        )

    async def find_by_name(self, name: Any) -> Result[list[Record]]:
        return await self.query(
            "find_by_name", lambda rs: query.find_by_name(rs, name, container=self.container)
        )

    async def find_by_x(self, attribute: Any, value: Any) -> Result[list[Record]]:
        return await self.query(
            "find_by_x", lambda rs: query.find_by_x(rs, attribute, value, container=self.container)
        )

    async def search(
        self,
        filters: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | QuerySpec | None = None,
    ) -> Result[list[Record]]:
        return await self.query(
            "search", lambda rs: query.search(rs, filters, options, container=self.container)
        )

    async def find_by_text(self, text: Any) -> Result[list[Record]]:
        if not self.spec.text_fields:
            return Err(
                InvalidParameterError(f"Invalid parameter: [{self.container}] has no text fields")
            )
        return await self.query(
            "find_by_text",
            lambda rs: query.find_by_text(rs, text, self.spec.text_fields, container=self.container),
        )

    async def read(self, kind: str) -> Result[Any]:
        """Pass a usage metric payload through unchanged."""

        async def _call() -> Result[Any]:
            return Ok(await self.connector.read_usage_metric(kind), f"Retrieved {kind}")

        return await self._guarded(f"read[{kind}]", _call)

    async def check_for_lock(self) -> Result[bool]:
        async def _call() -> Result[bool]:
            self._require_writable()
            locked = await self.locks.is_locked(self.container)
            state = "locked" if locked else "not locked"
            return Ok(locked, f"The container [{self.container}] is {state}")

        return await self._guarded("check_for_lock", _call)

    async def unlock(self) -> Result[bool]:
        """Remove the container lock whoever holds it."""

        async def _call() -> Result[bool]:
            self._require_writable()
            removed = await self.locks.force_release(self.container)
            if removed:
                return Ok(True, f"Removed the lock on [{self.container}]")
            return Ok(False, f"The container [{self.container}] was not locked")

        return await self._guarded("unlock", _call)

    def link(self, records: Iterable[Record]) -> dict[str, str]:
        return link_names(records)

    # --- Writes ---

    async def _assert_present(self, names: Iterable[str]) -> None:
        present = {r.get("name") for r in await self.records()}
        for name in names:
            if name not in present:
                raise NotFoundError(f"Object with name [{name}] not found in [{self.container}]")

    def _check_fields(self, keys: Iterable[str], system: bool) -> None:
        if system:
            return
        for key in keys:
            if key not in self.spec.updatable_fields:
                raise ForbiddenFieldError(key)

    async def create(self, records: Record | list[Record]) -> Result[list[Record]]:
        async def _call() -> Result[list[Record]]:
            self._require_writable()
            if isinstance(records, dict):
                batch = [records]
            elif isinstance(records, list):
                batch = records
            else:
                raise InvalidParameterError("Invalid parameter: [records] must be an object or array")
            if not batch:
                raise InvalidParameterError("Invalid parameter: [records] must not be empty")
            new = validate_records(batch)
            names = [r["name"] for r in new]
            if len(set(names)) != len(names):
                raise InvalidParameterError("Invalid parameter: duplicate names in [records]")

            async with self.locks.hold(self.container) as held:
                snapshot = await self.connector.read_collection(self.container, fresh=True)
                existing = {r.get("name") for r in snapshot.records}
                clash = sorted(existing.intersection(names))
                if clash:
                    raise InvalidParameterError(
                        f"Invalid parameter: [{clash[0]}] already exists in [{self.container}]"
                    )
                await self.locks.validate_and_commit(
                    self.container,
                    snapshot.version_token,
                    functools.partial(self.connector.write_new_record, self.container, new),
                    handle=held[self.container],
                )
            return Ok(clone_records(new), f"Created [{len(new)}] {self.container}")

        return await self._guarded("create", _call)

    async def update(
        self, name: Any, patch: Mapping[str, Any], *, system: bool = False
    ) -> Result[None]:
        async def _call() -> Result[None]:
            self._require_writable()
            _require_name(name)
            if not isinstance(patch, Mapping) or not patch:
                raise InvalidParameterError("Invalid parameter: [patch] must be a non-empty object")
            self._check_fields(patch, system)
            await self._assert_present([name])

            stamped = {**patch, "modification_date": now_iso()}
            async with self.locks.hold(self.container) as held:
                token = await self.locks.get_version_token(self.container)
                await self.locks.validate_and_commit(
                    self.container,
                    token,
                    functools.partial(self.connector.update_record, self.container, name, stamped),
                    handle=held[self.container],
                )
            keys = ", ".join(sorted(patch))
            return Ok(None, f"Updated [{keys}] of [{name}] in [{self.container}]")

        return await self._guarded("update", _call)

    async def batch_update(self, updates: list[Mapping[str, Any]]) -> Result[None]:
        """Apply several ``{name, key, value, system}`` patches in one locked write."""

        async def _call() -> Result[None]:
            self._require_writable()
            if not isinstance(updates, list) or not updates:
                raise InvalidParameterError("Invalid parameter: [updates] must be a non-empty array")
            for update in updates:
                if not isinstance(update, Mapping):
                    raise InvalidParameterError("Invalid parameter: each update must be an object")
                _require_name(update.get("name"))
                key = _require_name(update.get("key"), "key")
                self._check_fields([key], bool(update.get("system", False)))
            await self._assert_present({u["name"] for u in updates})

            async with self.locks.hold(self.container) as held:
                snapshot = await self.connector.read_collection(self.container, fresh=True)
                records = snapshot.records
                by_name = {r.get("name"): r for r in records}
                stamp = now_iso()
                for update in updates:
                    target = by_name.get(update["name"])
                    if target is None:
                        raise NotFoundError(
                            f"Object with name [{update['name']}] not found in [{self.container}]"
                        )
                    target[update["key"]] = update.get("value")
                    target["modification_date"] = stamp
                await self.locks.validate_and_commit(
                    self.container,
                    snapshot.version_token,
                    functools.partial(self.connector.write_collection, self.container, records),
                    handle=held[self.container],
                )
            return Ok(None, f"Updated [{len(updates)}] objects in [{self.container}]")

        return await self._guarded("batch_update", _call)

    async def delete(self, name: Any) -> Result[None]:
        async def _call() -> Result[None]:
            self._require_writable()
            _require_name(name)
            await self._assert_present([name])

            linked = [c for c, _field in self.spec.links]
            async with self.locks.hold(self.container, *linked) as held:
                token = await self.locks.get_version_token(self.container)
                await self.locks.validate_and_commit(
                    self.container,
                    token,
                    functools.partial(self.connector.delete_record, self.container, name),
                    handle=held[self.container],
                )
                stamp = now_iso()
                for other, field in self.spec.links:
                    snapshot = await self.connector.read_collection(other, fresh=True)
                    if not _unlink(snapshot.records, field, name, stamp):
                        continue
                    await self.locks.validate_and_commit(
                        other,
                        snapshot.version_token,
                        functools.partial(self.connector.write_collection, other, snapshot.records),
                        handle=held[other],
                    )
                    log.debug("cascade_unlinked", container=other, field=field, name=name)
            return Ok(None, f"Deleted [{name}] from [{self.container}]")

        return await self._guarded("delete", _call)

    async def add_link(self, name: Any, container: Any, other_name: Any) -> Result[None]:
        """Link ``name`` here with ``other_name`` in ``container``, updating both sides."""

        async def _call() -> Result[None]:
            self._require_writable()
            _require_name(name)
            _require_name(other_name, "other_name")
            if not isinstance(container, str) or not container or container == self.container:
                raise InvalidParameterError(
                    f"Invalid parameter: cannot link [{self.container}] to [{container}]"
                )

            async with self.locks.hold(self.container, container) as held:
                mine = await self.connector.read_collection(self.container, fresh=True)
                theirs = await self.connector.read_collection(container, fresh=True)
                record = next((r for r in mine.records if r.get("name") == name), None)
                if record is None:
                    raise NotFoundError(f"Object with name [{name}] not found in [{self.container}]")
                other = next((r for r in theirs.records if r.get("name") == other_name), None)
                if other is None:
                    raise NotFoundError(f"{container} with name [{other_name}] not found")

                stamp = now_iso()
                _add_link(record, f"linked_{container.lower()}", other_name, stamp)
                _add_link(other, f"linked_{self.container.lower()}", name, stamp)
                await self.locks.validate_and_commit(
                    self.container,
                    mine.version_token,
                    functools.partial(self.connector.write_collection, self.container, mine.records),
                    handle=held[self.container],
                )
                await self.locks.validate_and_commit(
                    container,
                    theirs.version_token,
                    functools.partial(self.connector.write_collection, container, theirs.records),
                    handle=held[container],
                )
            return Ok(
                None, f"Linked [{name}] in [{self.container}] with [{other_name}] in [{container}]"
            )

        return await self._guarded("add_link", _call)

    async def close(self) -> None:
        await self.connector.close()
