"""Structured error types for Mediumroast."""

from __future__ import annotations

from typing import Any


class MediumroastError(Exception):
    """Base error for all Mediumroast errors."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code

    @property
    def status_msg(self) -> str:
        return str(self)

    def to_message(self) -> dict[str, Any]:
        return {"status_code": self.status_code, "status_msg": self.status_msg}


class InvalidParameterError(MediumroastError):
    """Raised for malformed query or write input."""

    status_code = 400


class ForbiddenFieldError(MediumroastError):
    """Raised when an update touches a key outside the container's whitelist."""

    status_code = 403

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Unauthorized operation: updating the key [{key}] is not supported")


class NotFoundError(MediumroastError):
    """Raised when no record matches a lookup."""

    status_code = 404


class ReadOnlyError(MediumroastError):
    """Raised when a write is attempted through a read-only client."""

    status_code = 405

    def __init__(self, container: str) -> None:
        self.container = container
        super().__init__(f"[{container}] is read-only; creates, updates and deletes are rejected")


class VersionConflictError(MediumroastError):
    """Raised when a write presents a version token that is no longer current."""

    status_code = 409

    def __init__(self, container: str, expected: str | None, current: str | None) -> None:
        self.container = container
        self.expected = expected
        self.current = current
        super().__init__(
            f"Concurrent modification of [{container}] detected: "
            f"expected version {expected!r}, found {current!r}"
        )


class LockConflictError(MediumroastError):
    """Raised when a container lock is already held by another writer."""

    status_code = 423

    def __init__(self, container: str, owner: str | None = None) -> None:
        self.container = container
        self.owner = owner
        held_by = f" by [{owner}]" if owner else ""
        super().__init__(
            f"The container [{container}] is locked{held_by}; "
            "unable to perform creates, updates or deletes"
        )


class LeaseExpiredError(LockConflictError):
    """Raised when a write lease expires or is taken over before commit."""

    def __init__(self, container: str) -> None:
        self.container = container
        self.owner = None
        MediumroastError.__init__(self, f"Write lease on [{container}] expired before commit")


class BackendError(MediumroastError):
    """Raised when a backend connector operation fails."""

    def __init__(self, operation: str, detail: str, *, status_code: int = 500) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Backend error during {operation}: {detail}", status_code=status_code)
