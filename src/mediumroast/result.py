"""Result envelope returned by every entity client operation.

``Ok`` carries a payload, ``Err`` carries a ``MediumroastError``. Both expose the
four fields callers inspect (``success``, ``message``, ``payload``,
``status_code``) and can be flattened into the legacy positional tuple with
``as_tuple()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from mediumroast.errors import MediumroastError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result containing a payload."""

    value: T
    status_msg: str = ""
    status_code: int = 200

    @property
    def success(self) -> bool:
        return True

    @property
    def payload(self) -> T:
        return self.value

    @property
    def message(self) -> dict[str, Any]:
        return {"status_code": self.status_code, "status_msg": self.status_msg}

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def as_tuple(self) -> tuple[bool, dict[str, Any], T, int]:
        return (True, self.message, self.value, self.status_code)

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True)
class Err(Generic[T]):
    """Failed result containing the error and optional diagnostic payload."""

    error: MediumroastError
    detail: Any = None
    reason: str | None = None

    @property
    def success(self) -> bool:
        return False

    @property
    def payload(self) -> Any:
        return self.detail

    @property
    def status_code(self) -> int:
        return self.error.status_code

    @property
    def status_msg(self) -> str:
        return self.reason or self.error.status_msg

    @property
    def message(self) -> dict[str, Any]:
        return {"status_code": self.status_code, "status_msg": self.status_msg}

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def as_tuple(self) -> tuple[bool, dict[str, Any], Any, int]:
        return (False, self.message, self.detail, self.status_code)

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Union[Ok[T], Err[T]]
