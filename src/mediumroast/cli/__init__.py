"""Mediumroast CLI: operator console for entity containers on a backend."""

from __future__ import annotations

from typing import Optional

import typer

from mediumroast.cli import locks, objects, usage, workflows
from mediumroast.logging import configure_logging

app = typer.Typer(
    name="mroast",
    help="Mediumroast CLI: read and write entity containers on a repository backend.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    backend: str | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        from mediumroast import __version__

        print(f"mroast {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    backend: Optional[str] = typer.Option(
        None,
        "--backend",
        "-b",
        envvar="MEDIUMROAST_BACKEND",
        help="Backend URI (memory://, file:///dir, s3://bucket/prefix, github://org/repo)",
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the full result envelope as JSON"),
    log_level: str = typer.Option(
        "WARNING", "--log-level", envvar="MEDIUMROAST_LOG_LEVEL", help="Log level for stderr"
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all mroast commands."""
    from mediumroast.connectors.base import parse_backend_target
    from mediumroast.errors import InvalidParameterError

    if backend:
        try:
            parse_backend_target(backend)
        except InvalidParameterError as e:
            raise typer.BadParameter(str(e), param_hint="--backend")

    configure_logging(log_level, json_format=json_output)
    state.backend = backend
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.add_typer(workflows.app, name="workflows", help="Install, update or remove automation workflows")

app.command(name="list")(objects.list_cmd)
app.command(name="find")(objects.find_cmd)
app.command(name="search")(objects.search_cmd)
app.command(name="create")(objects.create_cmd)
app.command(name="update")(objects.update_cmd)
app.command(name="delete")(objects.delete_cmd)
app.command(name="lock-status")(locks.lock_status_cmd)
app.command(name="unlock")(locks.unlock_cmd)
app.command(name="usage")(usage.usage_cmd)


def main() -> None:
    """Entry point for the mroast CLI."""
    app()
