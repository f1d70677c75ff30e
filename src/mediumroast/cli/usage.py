"""mroast usage: read repository usage and billing metrics."""

from __future__ import annotations

from typing import Any

import typer

from mediumroast.cli._backend import run_with_clients
from mediumroast.cli._output import emit
from mediumroast.connectors.base import USAGE_METRICS
from mediumroast.entities import Clients


def usage_cmd(
    kind: str = typer.Argument(..., help=f"One of: {', '.join(sorted(USAGE_METRICS))}"),
) -> None:
    """Print one usage metric exactly as the backend reports it."""
    from mediumroast.cli import state

    async def _call(clients: Clients) -> Any:
        return await clients.storage.read(kind)

    emit(run_with_clients(_call), json_mode=state.json_output)
