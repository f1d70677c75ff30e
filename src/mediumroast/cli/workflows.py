"""mroast workflows: install, update or remove repository automation workflows."""

from __future__ import annotations

from typing import Any

import typer

from mediumroast import workflows
from mediumroast.cli._backend import run_with_clients
from mediumroast.cli._output import emit, print_table
from mediumroast.entities import Clients
from mediumroast.result import Result
from mediumroast.workflows import WorkflowReport

app = typer.Typer(no_args_is_help=True)


def _report(result: Result[WorkflowReport]) -> None:
    from mediumroast.cli import state

    report = result.payload
    if not state.json_output and isinstance(report, WorkflowReport):
        print_table(
            ["step", "success", "detail"],
            [[s.name, s.success, s.detail] for s in report.steps],
        )
        if report.files:
            print()
            print_table(
                ["file", "operation", "success", "message"],
                [[f.name, f.operation, f.success, f.message] for f in report.files],
            )
    emit(result, json_mode=state.json_output, show_payload=False)


@app.command("install")
def install_cmd() -> None:
    """Install every workflow in the configured bundle."""

    async def _call(clients: Clients) -> Any:
        return await workflows.install_workflows(clients.actions.connector)

    _report(run_with_clients(_call))


@app.command("update")
def update_cmd() -> None:
    """Install workflows whose bundle version differs from the installed one."""

    async def _call(clients: Clients) -> Any:
        return await workflows.update_workflows(clients.actions.connector)

    _report(run_with_clients(_call))


@app.command("delete")
def delete_cmd() -> None:
    """Remove every installed workflow."""

    async def _call(clients: Clients) -> Any:
        return await workflows.delete_workflows(clients.actions.connector)

    _report(run_with_clients(_call))
