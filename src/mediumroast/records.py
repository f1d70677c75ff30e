"""Record validation and helpers shared by the query engine and object store."""

from __future__ import annotations

import copy
import hashlib
from datetime import datetime, timezone
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from mediumroast.errors import InvalidParameterError

Record = dict[str, Any]


class RecordModel(BaseModel):
    """Minimal shape every stored record must satisfy: a non-empty ``name``."""

    model_config = ConfigDict(extra="allow")

    name: str

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must be a non-empty string")
        return value


def validate_records(records: Iterable[Any]) -> list[Record]:
    """Validate incoming records and return detached copies."""
    out: list[Record] = []
    for index, raw in enumerate(records):
        if not isinstance(raw, dict):
            raise InvalidParameterError(f"Invalid parameter: record {index} must be an object")
        try:
            RecordModel.model_validate(raw)
        except ValidationError as e:
            first = e.errors()[0]
            raise InvalidParameterError(
                f"Invalid parameter: record {index} field "
                f"[{'.'.join(str(p) for p in first['loc'])}] {first['msg']}"
            ) from e
        out.append(copy.deepcopy(raw))
    return out


def clone_records(records: Iterable[Record]) -> list[Record]:
    return [copy.deepcopy(r) for r in records]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def link_names(records: Iterable[Record]) -> dict[str, str]:
    """Map record names to sha256 digests for ``linked_*`` reference fields."""
    return {
        str(r["name"]): hashlib.sha256(str(r["name"]).encode("utf-8")).hexdigest()
        for r in records
    }
