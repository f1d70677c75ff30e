"""Entity client configurations and their domain-specific helpers."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from mediumroast.config import MediumroastConfig
from mediumroast.connectors.base import BackendConnector
from mediumroast.errors import InvalidParameterError, NotFoundError
from mediumroast.locking import LockManager
from mediumroast.logging import get_logger
from mediumroast.records import Record, link_names, now_iso
from mediumroast.result import Err, Ok, Result
from mediumroast.store import EntitySpec, ObjectStore

log = get_logger(__name__)

_LOCATION_FIELDS = (
    "region",
    "country",
    "city",
    "state_province",
    "zip_postal",
    "street_address",
    "latitude",
    "longitude",
)

STUDIES = EntitySpec(
    container="Studies",
    updatable_fields=frozenset({"description", "status", "public", "groups"}),
    links=(("Companies", "linked_studies"), ("Interactions", "linked_studies")),
)

COMPANIES = EntitySpec(
    container="Companies",
    updatable_fields=frozenset(
        {
            "description",
            "company_type",
            "url",
            "role",
            "wikipedia_url",
            "status",
            "logo_url",
            *_LOCATION_FIELDS,
            "phone",
            "google_maps_url",
            "google_news_url",
            "google_finance_url",
            "google_patents_url",
            "cik",
            "stock_symbol",
            "stock_exchange",
            "recent_10k_url",
            "recent_10q_url",
            "firmographic_url",
            "filings_url",
            "owner_transactions",
            "industry",
            "industry_code",
            "industry_group_code",
            "industry_group_description",
            "major_group_code",
            "major_group_description",
        }
    ),
    links=(("Interactions", "linked_companies"),),
)

INTERACTIONS = EntitySpec(
    container="Interactions",
    updatable_fields=frozenset(
        {
            "status",
            "content_type",
            "file_size",
            "reading_time",
            "word_count",
            "page_count",
            "description",
            "abstract",
            *_LOCATION_FIELDS,
            "public",
            "groups",
        }
    ),
    links=(("Companies", "linked_interactions"),),
    text_fields=("name", "abstract", "description", "summary"),
)

USERS = EntitySpec(container="Users", writable=False, usage_metric="users")
STORAGE = EntitySpec(container="Storage", writable=False, usage_metric="repo_size")
ACTIONS = EntitySpec(
    container="Actions",
    writable=False,
    usage_metric="workflow_runs",
    list_key="workflow_runs",
)

ENTITY_SPECS: dict[str, EntitySpec] = {
    spec.container: spec for spec in (STUDIES, COMPANIES, INTERACTIONS, USERS, STORAGE, ACTIONS)
}


async def find_by_hash(interactions: ObjectStore, file_hash: Any) -> Result[list[Record]]:
    return await interactions.find_by_x("file_hash", file_hash)


async def get_myself(users: ObjectStore) -> Result[Any]:
    return await users.read("current_user")


async def get_repo_size(storage: ObjectStore) -> Result[Any]:
    return await storage.read("repo_size")


async def get_storage_billing(storage: ObjectStore) -> Result[Any]:
    return await storage.read("storage_billing")


async def get_actions_billing(actions: ObjectStore) -> Result[Any]:
    return await actions.read("actions_billing")


async def get_workflow_runs(actions: ObjectStore) -> Result[Any]:
    return await actions.get_all()


async def get_workflow_run(actions: ObjectStore, run_id: Any) -> Result[Record]:
    if isinstance(run_id, bool) or run_id is None or run_id == "":
        return Err(InvalidParameterError("Invalid parameter: [run_id] must be a workflow run id"))

    def _match(runs: list[Record]) -> Result[Record]:
        for run in runs:
            if str(run.get("id")) == str(run_id):
                return Ok(run, f"Retrieved workflow run [{run_id}]")
        return Err(NotFoundError(f"Workflow run [{run_id}] not found"))

    return await actions.query("get_workflow_run", _match)


async def get_branch_status(storage: ObjectStore) -> Result[Any]:
    """Head of the backing branch: ``sha``, ``branch``, ``repository``, ``timestamp``."""
    return await storage.read("branch_status")


async def check_for_updates(storage: ObjectStore, last_known_sha: Any) -> Result[dict[str, Any]]:
    """Compare ``last_known_sha`` with the current branch head.

    The payload's ``update_needed`` is true when anything was written since the
    caller last looked. Failures reading the branch head pass through unchanged.
    """
    if not isinstance(last_known_sha, str) or not last_known_sha:
        return Err(
            InvalidParameterError("Invalid parameter: [last_known_sha] must be a non-empty string")
        )
    status = await get_branch_status(storage)
    if not status.success:
        return status
    current = status.payload.get("sha")
    update_needed = current != last_known_sha
    payload = {
        "update_needed": update_needed,
        "last_known_sha": last_known_sha,
        "current_sha": current,
        "branch": status.payload.get("branch"),
        "repository": status.payload.get("repository"),
        "checked_at": now_iso(),
    }
    if update_needed:
        return Ok(payload, f"Repository has been updated since commit {last_known_sha[:7]}")
    return Ok(payload, "Repository is up to date")


async def add_to_study(
    studies: ObjectStore, study_name: Any, entity_type: Any, entity_name: Any
) -> Result[None]:
    if entity_type not in ("Interactions", "Companies"):
        return Err(
            InvalidParameterError(
                f"Invalid entity type: [{entity_type}]. Must be 'Interactions' or 'Companies'"
            )
        )
    return await studies.add_link(study_name, entity_type, entity_name)


async def link_interactions(
    companies: ObjectStore, company_name: Any, interactions: Any
) -> Result[None]:
    """Replace a company's ``linked_interactions`` with the given interaction records."""
    if not isinstance(interactions, list) or not all(
        isinstance(i, dict) and isinstance(i.get("name"), str) and i["name"] for i in interactions
    ):
        return Err(
            InvalidParameterError("Invalid parameter: [interactions] must be an array of named objects")
        )
    return await companies.update(
        company_name, {"linked_interactions": link_names(interactions)}, system=True
    )


async def get_storage_by_container(clients: Clients) -> Result[dict[str, Any]]:
    """Serialized size, object count and last modification per collection."""
    containers: dict[str, dict[str, Any]] = {}
    for client in (clients.studies, clients.companies, clients.interactions):
        result = await client.get_all()
        if not result.success:
            log.warning(
                "storage_container_skipped", container=client.container, error=result.status_msg
            )
            continue
        records = result.payload
        dates = [r["modification_date"] for r in records if isinstance(r.get("modification_date"), str)]
        entry: dict[str, Any] = {
            "size": len(json.dumps(records, indent=2).encode("utf-8")),
            "object_count": len(records),
            "last_updated": max(dates) if dates else None,
        }
        if client.container == "Interactions":
            entry["file_size"] = sum(
                r["file_size"]
                for r in records
                if isinstance(r.get("file_size"), (int, float)) and not isinstance(r["file_size"], bool)
            )
        containers[client.container] = entry
    total = sum(c["size"] for c in containers.values())
    return Ok({"total_size": total, "containers": containers}, "Retrieved storage by container")


@dataclass
class Clients:
    """One entity client per container, sharing a connector and lock owner."""

    studies: ObjectStore
    companies: ObjectStore
    interactions: ObjectStore
    users: ObjectStore
    storage: ObjectStore
    actions: ObjectStore

    def for_container(self, container: str) -> ObjectStore:
        for client in (
            self.studies,
            self.companies,
            self.interactions,
            self.users,
            self.storage,
            self.actions,
        ):
            if client.container.lower() == container.lower():
                return client
        raise KeyError(container)

    async def close(self) -> None:
        await self.studies.connector.close()


def open_clients(
    connector: BackendConnector, config: MediumroastConfig | None = None
) -> Clients:
    cfg = config or connector.config
    locks = LockManager(connector, cfg)

    def _client(spec: EntitySpec) -> ObjectStore:
        return ObjectStore(spec, connector, cfg, lock_manager=locks)

    return Clients(
        studies=_client(STUDIES),
        companies=_client(COMPANIES),
        interactions=_client(INTERACTIONS),
        users=_client(USERS),
        storage=_client(STORAGE),
        actions=_client(ACTIONS),
    )
