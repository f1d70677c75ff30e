"""mroast lock-status/unlock: inspect and clear container locks."""

from __future__ import annotations

from typing import Any

import typer

from mediumroast.cli._backend import run_with_clients, select
from mediumroast.cli._output import emit
from mediumroast.entities import Clients


def lock_status_cmd(
    container: str = typer.Argument(..., help="Container name"),
) -> None:
    """Report whether a container is locked."""
    from mediumroast.cli import state

    async def _call(clients: Clients) -> Any:
        return await select(clients, container).check_for_lock()

    emit(run_with_clients(_call), json_mode=state.json_output, show_payload=state.json_output)


def unlock_cmd(
    container: str = typer.Argument(..., help="Container name"),
) -> None:
    """Remove a container lock left behind by a crashed writer."""
    from mediumroast.cli import state

    async def _call(clients: Clients) -> Any:
        return await select(clients, container).unlock()

    emit(run_with_clients(_call), json_mode=state.json_output, show_payload=False)
