"""Backend connectors: memory, local directory, S3 and GitHub."""

from __future__ import annotations

from mediumroast.connectors.base import (
    USAGE_METRICS,
    BackendConnector,
    BackendTarget,
    CollectionConnector,
    CollectionSnapshot,
    LockHandle,
    WorkflowAsset,
    WorkflowBundle,
    open_connector,
    parse_backend_target,
)
from mediumroast.connectors.local import LocalConnector
from mediumroast.connectors.memory import MemoryConnector

__all__ = [
    "USAGE_METRICS",
    "BackendConnector",
    "BackendTarget",
    "CollectionConnector",
    "CollectionSnapshot",
    "LocalConnector",
    "LockHandle",
    "MemoryConnector",
    "WorkflowAsset",
    "WorkflowBundle",
    "open_connector",
    "parse_backend_target",
]
