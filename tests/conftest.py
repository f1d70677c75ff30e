"""Shared test fixtures for Mediumroast tests."""

from __future__ import annotations

import pytest

from mediumroast.config import MediumroastConfig
from mediumroast.connectors.base import WorkflowAsset, WorkflowBundle
from mediumroast.connectors.memory import MemoryConnector
from mediumroast.entities import STUDIES, open_clients
from mediumroast.store import ObjectStore

# --- Seed data ---

STUDIES_SEED = [
    {"name": "Study 1", "status": "active", "description": "Edge compute"},
    {"name": "Study 2", "status": "inactive", "description": "Robotics"},
]

COMPANIES_SEED = [
    {
        "name": "Acme",
        "company_type": "Public",
        "linked_studies": {"Study 1": {"linked_date": "2024-01-01T00:00:00+00:00"}},
        "linked_interactions": {"Acme 10-K": {"linked_date": "2024-01-02T00:00:00+00:00"}},
    },
    {"name": "Globex", "company_type": "Private", "linked_studies": {}},
]

INTERACTIONS_SEED = [
    {
        "name": "Acme 10-K",
        "file_hash": "abc123",
        "abstract": "Annual report covering the robotics division",
        "linked_companies": {"Acme": {"linked_date": "2024-01-02T00:00:00+00:00"}},
        "linked_studies": {"Study 1": {"linked_date": "2024-01-01T00:00:00+00:00"}},
    },
    {
        "name": "Globex call",
        "file_hash": "def456",
        "description": "Customer interview",
        "linked_companies": {},
    },
]

USAGE_SEED = {
    "users": [
        {"login": "octocat", "role_name": "admin"},
        {"login": "hubot", "role_name": "write"},
    ],
    "current_user": {"login": "octocat", "name": "The Octocat"},
    "storage_billing": {"estimated_storage_for_month": 40},
    "actions_billing": {"total_minutes_used": 305, "included_minutes": 3000},
    "workflow_runs": {"total_count": 1, "workflow_runs": [{"name": "basic-reporting", "id": 7}]},
}


@pytest.fixture
def config():
    return MediumroastConfig(process_name="test")


@pytest.fixture
def bundle():
    return WorkflowBundle(
        version="1.2.0",
        workflows=[
            WorkflowAsset(name="basic-reporting.yml", version="1.2.0", content="on: push\n"),
            WorkflowAsset(name="prune-branches.yml", version="1.0.0", content="on: schedule\n"),
        ],
    )


@pytest.fixture
def connector(config, bundle):
    """Memory connector seeded with all three collections and usage metrics."""
    return MemoryConnector(
        config,
        collections={
            "Studies": STUDIES_SEED,
            "Companies": COMPANIES_SEED,
            "Interactions": INTERACTIONS_SEED,
        },
        usage=USAGE_SEED,
        bundle=bundle,
    )


@pytest.fixture
def clients(connector, config):
    return open_clients(connector, config)


@pytest.fixture
def studies(connector, config):
    return ObjectStore(STUDIES, connector, config)
