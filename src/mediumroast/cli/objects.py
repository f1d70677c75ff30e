"""mroast list/find/search/create/update/delete: record operations on one container."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer

from mediumroast.cli import _exitcodes as ec
from mediumroast.cli._backend import parse_value, run_with_clients, select
from mediumroast.cli._output import emit, print_error, print_table
from mediumroast.entities import Clients

_LIST_COLUMNS = ["name", "status", "modification_date"]


def _is_record_list(payload: Any) -> bool:
    return isinstance(payload, list) and all(isinstance(r, dict) and "name" in r for r in payload)


def list_cmd(
    container: str = typer.Argument(..., help="Container name, e.g. Studies"),
) -> None:
    """List every object in a container."""
    from mediumroast.cli import state

    async def _call(clients: Clients) -> Any:
        return await select(clients, container).get_all()

    result = run_with_clients(_call)
    if not state.json_output and result.success and _is_record_list(result.payload):
        rows = [[r.get(c) for c in _LIST_COLUMNS] for r in result.payload]
        print_table(_LIST_COLUMNS, rows)
        return
    emit(result, json_mode=state.json_output)


def find_cmd(
    container: str = typer.Argument(..., help="Container name"),
    name: str = typer.Argument(..., help="Name, or part of a name, to look up"),
) -> None:
    """Find objects whose name contains NAME (case-insensitive)."""
    from mediumroast.cli import state

    async def _call(clients: Clients) -> Any:
        return await select(clients, container).find_by_name(name)

    emit(run_with_clients(_call), json_mode=state.json_output)


def _parse_where(where: list[str]) -> dict[str, Any]:
    filters: dict[str, Any] = {}
    for clause in where:
        key, sep, raw = clause.partition("=")
        if not sep or not key:
            print_error(f"Invalid --where clause (expected key=value): {clause}")
            raise typer.Exit(ec.USAGE)
        filters[key] = parse_value(raw)
    return filters


def search_cmd(
    container: str = typer.Argument(..., help="Container name"),
    where: Optional[list[str]] = typer.Option(
        None, "--where", "-w", help="Filter key=value (repeatable)"
    ),
    sort: Optional[str] = typer.Option(None, "--sort", help="Attribute to sort by"),
    desc: bool = typer.Option(False, "--desc", help="Sort descending"),
    limit: Optional[int] = typer.Option(None, "--limit", min=0, help="Maximum number of results"),
) -> None:
    """Filter, sort and limit the objects in a container."""
    from mediumroast.cli import state

    filters = _parse_where(where or [])
    options = {"sort": sort, "descending": desc, "limit": limit}

    async def _call(clients: Clients) -> Any:
        return await select(clients, container).search(filters, options)

    emit(run_with_clients(_call), json_mode=state.json_output)


def create_cmd(
    container: str = typer.Argument(..., help="Container name"),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON object or array to add"),
) -> None:
    """Add the objects in FILE to a container."""
    from mediumroast.cli import state

    try:
        records = json.loads(file.read_text(encoding="utf-8"))
    except ValueError as e:
        print_error(f"Cannot parse {file}: {e}")
        raise typer.Exit(ec.USAGE)

    async def _call(clients: Clients) -> Any:
        return await select(clients, container).create(records)

    emit(run_with_clients(_call), json_mode=state.json_output, show_payload=False)


def update_cmd(
    container: str = typer.Argument(..., help="Container name"),
    name: str = typer.Argument(..., help="Exact name of the object to update"),
    key: str = typer.Argument(..., help="Attribute to set"),
    value: str = typer.Argument(..., help="New value (parsed as JSON when possible)"),
    system: bool = typer.Option(False, "--system", help="Allow keys outside the update whitelist"),
) -> None:
    """Set one attribute on one object."""
    from mediumroast.cli import state

    async def _call(clients: Clients) -> Any:
        return await select(clients, container).update(name, {key: parse_value(value)}, system=system)

    emit(run_with_clients(_call), json_mode=state.json_output)


def delete_cmd(
    container: str = typer.Argument(..., help="Container name"),
    name: str = typer.Argument(..., help="Exact name of the object to delete"),
) -> None:
    """Delete one object and remove references to it from linked containers."""
    from mediumroast.cli import state

    async def _call(clients: Clients) -> Any:
        return await select(clients, container).delete(name)

    emit(run_with_clients(_call), json_mode=state.json_output)
