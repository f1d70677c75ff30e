"""CLI helpers for backend-aware client construction."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Awaitable, Callable, TypeVar

import typer

from mediumroast.cli import _exitcodes as ec
from mediumroast.cli._output import print_error
from mediumroast.config import MediumroastConfig
from mediumroast.connectors.base import open_connector
from mediumroast.entities import Clients, open_clients
from mediumroast.errors import InvalidParameterError
from mediumroast.store import ObjectStore

T = TypeVar("T")


def config_from_env() -> MediumroastConfig:
    """Build client config from MEDIUMROAST_* environment variables."""
    cfg = MediumroastConfig(
        github_token=os.getenv("MEDIUMROAST_GITHUB_TOKEN") or os.getenv("GITHUB_TOKEN"),
        s3_region=os.getenv("MEDIUMROAST_S3_REGION"),
        s3_endpoint_url=os.getenv("MEDIUMROAST_S3_ENDPOINT_URL"),
        actions_bundle_url=os.getenv("MEDIUMROAST_ACTIONS_BUNDLE_URL"),
        actions_bundle_path=os.getenv("MEDIUMROAST_ACTIONS_BUNDLE_PATH"),
        work_dir=os.getenv("MEDIUMROAST_WORK_DIR"),
    )
    if os.getenv("MEDIUMROAST_PROCESS_NAME"):
        cfg.process_name = os.environ["MEDIUMROAST_PROCESS_NAME"]
    if os.getenv("MEDIUMROAST_GITHUB_BRANCH"):
        cfg.github_branch = os.environ["MEDIUMROAST_GITHUB_BRANCH"]
    if os.getenv("MEDIUMROAST_GITHUB_API_URL"):
        cfg.github_api_url = os.environ["MEDIUMROAST_GITHUB_API_URL"]
    if os.getenv("MEDIUMROAST_LOCK_LEASE_MS"):
        cfg.lock_lease_ms = int(os.environ["MEDIUMROAST_LOCK_LEASE_MS"])
    return cfg


def parse_value(raw: str) -> Any:
    """Interpret a command-line value as JSON when it parses, else as a plain string."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def run_with_clients(call: Callable[[Clients], Awaitable[T]]) -> T:
    """Open the selected backend, run ``call`` against its clients and close it."""
    from mediumroast.cli import state

    if not state.backend:
        print_error("No backend selected; pass --backend or set MEDIUMROAST_BACKEND")
        raise typer.Exit(ec.USAGE)
    config = config_from_env()
    try:
        connector = open_connector(state.backend, config)
    except InvalidParameterError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE)

    async def _main() -> T:
        clients = open_clients(connector, config)
        try:
            return await call(clients)
        finally:
            await clients.close()

    return asyncio.run(_main())


def select(clients: Clients, container: str) -> ObjectStore:
    try:
        return clients.for_container(container)
    except KeyError:
        print_error(f"Unknown container: {container}")
        raise typer.Exit(ec.USAGE)
