"""In-memory query engine over a fetched collection.

All functions are pure: they never mutate the input collection and always
return detached copies of matching records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from mediumroast.errors import InvalidParameterError, NotFoundError
from mediumroast.records import Record, clone_records
from mediumroast.result import Err, Ok, Result

_MISSING = object()


def resolve_attribute(record: Mapping[str, Any], attribute: str) -> Any:
    """Resolve a plain or dotted attribute, returning ``_MISSING`` when absent."""
    if attribute in record:
        return record[attribute]
    current: Any = record
    for segment in attribute.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return _MISSING
        current = current[segment]
    return current


def _equal(actual: Any, expected: Any) -> bool:
    # bool is an int subclass; True must not match 1
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def matches(record: Mapping[str, Any], attribute: str, expected: Any) -> bool:
    """``name`` with a string value is a case-insensitive substring match, else equality."""
    actual = resolve_attribute(record, attribute)
    if actual is _MISSING:
        return False
    if attribute == "name" and isinstance(expected, str):
        return isinstance(actual, str) and expected.lower() in actual.lower()
    return _equal(actual, expected)


@dataclass(frozen=True)
class QuerySpec:
    """AND-combined filters followed by an optional sort, offset and limit."""

    filters: Mapping[str, Any] = field(default_factory=dict)
    sort: str | None = None
    descending: bool = False
    limit: int | None = None
    offset: int = 0

    @classmethod
    def from_options(
        cls, filters: Mapping[str, Any] | None = None, options: Mapping[str, Any] | None = None
    ) -> QuerySpec:
        opts = dict(options or {})
        return cls(
            filters=dict(filters or {}),
            sort=opts.get("sort") or None,
            descending=bool(opts.get("descending", False)),
            limit=opts.get("limit") or None,
            offset=int(opts.get("offset") or 0),
        )

    def validate(self) -> None:
        if not isinstance(self.filters, Mapping):
            raise InvalidParameterError("Invalid parameter: [filters] must be an object")
        for key in self.filters:
            if not isinstance(key, str) or not key:
                raise InvalidParameterError("Invalid parameter: filter keys must be non-empty strings")
        if self.sort is not None and not isinstance(self.sort, str):
            raise InvalidParameterError("Invalid parameter: [sort] must be a string")
        if self.limit is not None and (not isinstance(self.limit, int) or self.limit < 0):
            raise InvalidParameterError("Invalid parameter: [limit] must be a non-negative integer")
        if not isinstance(self.offset, int) or self.offset < 0:
            raise InvalidParameterError("Invalid parameter: [offset] must be a non-negative integer")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def sort_records(records: list[Record], attribute: str, descending: bool = False) -> list[Record]:
    """Stable sort; descending is the exact reverse of the ascending order.

    Records lacking the attribute sort after those that have it. When no record
    has the attribute the input order is returned unchanged.
    """
    values = (resolve_attribute(r, attribute) for r in records)
    present = [v for v in values if v is not _MISSING and v is not None]
    if not present:
        return list(records)
    numeric = all(_is_number(v) for v in present)

    def _key(record: Record) -> tuple[int, Any]:
        value = resolve_attribute(record, attribute)
        if value is _MISSING or value is None:
            return (1, 0)
        return (0, value if numeric else str(value))

    ordered = sorted(records, key=_key)
    if descending:
        ordered.reverse()
    return ordered


def filter_records(records: Iterable[Record], filters: Mapping[str, Any]) -> list[Record]:
    return [r for r in records if all(matches(r, k, v) for k, v in filters.items())]


def run_query(records: Iterable[Record], spec: QuerySpec) -> list[Record]:
    """Apply a validated QuerySpec and return copies of the matching records."""
    results = filter_records(records, spec.filters)
    if spec.sort:
        results = sort_records(results, spec.sort, spec.descending)
    if spec.offset:
        results = results[spec.offset :]
    if spec.limit:
        results = results[: spec.limit]
    return clone_records(results)


def find_by_x(
    records: list[Record], attribute: Any, value: Any, *, container: str = "objects"
) -> Result[list[Record]]:
    if not isinstance(attribute, str) or not attribute:
        return Err(InvalidParameterError("Invalid parameter: [attribute] must be a non-empty string"))
    if not records:
        return Err(NotFoundError(f"No {container} found"))
    found = run_query(records, QuerySpec(filters={attribute: value}))
    if not found:
        return Err(NotFoundError(f"No {container} found where {attribute} = {value}"))
    return Ok(found, f"Found {len(found)} objects where {attribute} = {value}")


def find_by_name(
    records: list[Record], name: Any, *, container: str = "objects"
) -> Result[list[Record]]:
    return find_by_x(records, "name", name, container=container)


def search(
    records: list[Record],
    filters: Mapping[str, Any] | None = None,
    options: Mapping[str, Any] | QuerySpec | None = None,
    *,
    container: str = "objects",
) -> Result[list[Record]]:
    if filters is not None and not isinstance(filters, Mapping):
        return Err(InvalidParameterError("Invalid parameter: [filters] must be an object"))
    if options is not None and not isinstance(options, (Mapping, QuerySpec)):
        return Err(InvalidParameterError("Invalid parameter: [options] must be an object"))
    if isinstance(options, QuerySpec):
        spec = QuerySpec(
            filters=dict(filters or options.filters),
            sort=options.sort,
            descending=options.descending,
            limit=options.limit,
            offset=options.offset,
        )
    else:
        spec = QuerySpec.from_options(filters, options)
    try:
        spec.validate()
    except InvalidParameterError as e:
        return Err(e)
    found = run_query(records, spec)
    return Ok(found, f"Found {len(found)} {container}")


def find_by_text(
    records: list[Record],
    text: Any,
    fields: Iterable[str],
    *,
    container: str = "objects",
) -> Result[list[Record]]:
    """Case-insensitive substring match of ``text`` against any of ``fields``."""
    if not isinstance(text, str) or not text:
        return Err(InvalidParameterError("Invalid parameter: [text] must be a non-empty string"))
    needle = text.lower()
    fields = tuple(fields)
    found = [
        r
        for r in records
        if any(isinstance(r.get(f), str) and needle in r[f].lower() for f in fields)
    ]
    if not found:
        return Err(NotFoundError(f"No {container} found containing [{text}]"))
    return Ok(clone_records(found), f"Found {len(found)} {container} containing [{text}]")
