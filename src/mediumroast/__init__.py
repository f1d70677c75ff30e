"""Mediumroast: typed entity clients over a repository-backed JSON object store."""

__version__ = "0.1.0"

from mediumroast.config import MediumroastConfig
from mediumroast.connectors import (
    BackendConnector,
    LocalConnector,
    MemoryConnector,
    WorkflowAsset,
    WorkflowBundle,
    open_connector,
)
from mediumroast.entities import (
    ACTIONS,
    COMPANIES,
    INTERACTIONS,
    STORAGE,
    STUDIES,
    USERS,
    Clients,
    add_to_study,
    check_for_updates,
    find_by_hash,
    get_actions_billing,
    get_branch_status,
    get_myself,
    get_repo_size,
    get_storage_billing,
    get_storage_by_container,
    get_workflow_run,
    get_workflow_runs,
    link_interactions,
    open_clients,
)
from mediumroast.errors import (
    BackendError,
    ForbiddenFieldError,
    InvalidParameterError,
    LeaseExpiredError,
    LockConflictError,
    MediumroastError,
    NotFoundError,
    ReadOnlyError,
    VersionConflictError,
)
from mediumroast.locking import LockManager
from mediumroast.query import QuerySpec
from mediumroast.result import Err, Ok, Result
from mediumroast.store import EntitySpec, ObjectStore
from mediumroast.workflows import (
    WorkflowReport,
    delete_workflows,
    install_workflows,
    update_workflows,
)

__all__ = [
    "__version__",
    "MediumroastConfig",
    "BackendConnector",
    "LocalConnector",
    "MemoryConnector",
    "WorkflowAsset",
    "WorkflowBundle",
    "open_connector",
    "EntitySpec",
    "ObjectStore",
    "Clients",
    "open_clients",
    "STUDIES",
    "COMPANIES",
    "INTERACTIONS",
    "USERS",
    "STORAGE",
    "ACTIONS",
    "find_by_hash",
    "get_myself",
    "get_repo_size",
    "get_storage_billing",
    "get_actions_billing",
    "get_workflow_runs",
    "get_workflow_run",
    "get_storage_by_container",
    "get_branch_status",
    "check_for_updates",
    "add_to_study",
    "link_interactions",
    "LockManager",
    "QuerySpec",
    "Ok",
    "Err",
    "Result",
    "MediumroastError",
    "InvalidParameterError",
    "ForbiddenFieldError",
    "NotFoundError",
    "LockConflictError",
    "LeaseExpiredError",
    "VersionConflictError",
    "ReadOnlyError",
    "BackendError",
    "WorkflowReport",
    "install_workflows",
    "update_workflows",
    "delete_workflows",
]
